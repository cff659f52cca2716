from datetime import date, datetime
from functools import lru_cache

from pydantic import BaseModel, Field

from ..models.invoice import Invoice, Customer
from ..models.approval import ActionType
from ..models.collections import StrategyType
from ..services.approval_engine import ApprovalWorkflowEngine
from ..services.approvers import ApproverDirectory
from ..services.collections_automation import CollectionsAutomationEngine
from ..services.events.notification_publisher import get_notification_publisher
from ..services.storage import create_repository


class SubmitRequest(BaseModel):
    invoice: Invoice
    submitter_id: str
    workflow_id: str | None = None
    customer: Customer | None = None


class ActionRequest(BaseModel):
    approver_id: str
    action: ActionType
    comments: str | None = None
    conditions: list[str] = Field(default_factory=list)
    delegate_to: str | None = None


class CancelRequest(BaseModel):
    actor_id: str
    reason: str | None = None


class ReenterRequest(BaseModel):
    actor_id: str
    level: int


class TimeoutCheckRequest(BaseModel):
    now: datetime | None = None  # Defaults to the engine clock


class CreateAutomationRequest(BaseModel):
    invoice: Invoice
    customer: Customer
    strategy_preference: StrategyType | None = None


class AttemptRequest(BaseModel):
    attempt_number: int
    responded: bool = False


class PaymentRequest(BaseModel):
    amount: float
    paid_on: date | None = None


class PaymentPlanRequest(BaseModel):
    invoice: Invoice
    customer: Customer
    installments: int
    first_payment_date: date
    interest_rate: float = 0.0


@lru_cache
def get_approval_engine() -> ApprovalWorkflowEngine:
    return ApprovalWorkflowEngine(
        repository=create_repository(),
        notifier=get_notification_publisher(),
        approvers=ApproverDirectory(),
    )


@lru_cache
def get_collections_engine() -> CollectionsAutomationEngine:
    return CollectionsAutomationEngine()
