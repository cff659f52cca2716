"""
Collections automation models: strategy, schedule, metrics and monitoring.
"""

from datetime import date, datetime
from typing import Literal
from pydantic import BaseModel, Field

StrategyType = Literal["gentle", "standard", "aggressive", "legal"]
Channel = Literal["email", "sms", "phone", "portal", "letter"]
Tone = Literal["friendly", "professional", "urgent", "formal"]


class PaymentRecord(BaseModel):
    """A settled invoice used to profile customer payment behavior"""
    invoice_id: str
    amount: float
    days_to_pay: int
    days_late: int = 0
    channel: Channel | None = None


class CustomerPaymentBehavior(BaseModel):
    customer_id: str
    invoices_analyzed: int = 0
    average_days_to_pay: float = 0.0
    average_days_late: float = 0.0
    payment_reliability_score: float = 5.0  # 0-10
    default_probability: float = 0.15
    collection_difficulty: Literal["easy", "moderate", "difficult"] = "moderate"
    preferred_channel: Channel = "email"


class ScheduledAttempt(BaseModel):
    attempt_number: int
    channel: Channel
    scheduled_at: datetime
    tone: Tone
    template_id: str
    status: Literal["scheduled", "sent", "responded", "skipped"] = "scheduled"


class CollectionEscalationStep(BaseModel):
    step: int
    trigger_condition: str
    days_since_last_action: int
    action_type: str
    notification_recipients: list[str] = Field(default_factory=list)
    approval_required: bool = False


class AutomationSchedule(BaseModel):
    trigger_type: Literal["days_after_due"] = "days_after_due"
    trigger_value: int = 1
    max_attempts: int
    interval_days: int
    attempts: list[ScheduledAttempt] = Field(default_factory=list)
    escalation_steps: list[CollectionEscalationStep] = Field(default_factory=list)
    business_hours: tuple[int, int] = (9, 17)
    excluded_weekdays: list[int] = Field(default_factory=lambda: [6])  # Sunday


class CollectionStrategy(BaseModel):
    strategy_type: StrategyType
    communication_channels: list[Channel]
    days_overdue: int
    rationale: list[str] = Field(default_factory=list)
    payment_incentives: list[str] = Field(default_factory=list)


class AutomationMetrics(BaseModel):
    attempts_made: int = 0
    responses: int = 0
    response_rates: dict[str, float] = Field(default_factory=dict)
    amount_targeted: float = 0.0
    total_amount_recovered: float = 0.0
    recovery_rate: float = 0.0
    payments_received: int = 0
    average_days_to_payment: float = 0.0
    customer_satisfaction_impact: float = 8.0


class AutomationPayment(BaseModel):
    amount: float
    paid_on: date


class CollectionAutomation(BaseModel):
    id: str
    invoice_id: str
    customer_id: str
    invoice_number: str
    customer_name: str
    customer_email: str | None = None
    currency: str = "USD"
    automation_type: Literal["collection_strategy", "payment_plan"] = "collection_strategy"
    status: Literal["active", "paused", "completed", "failed"] = "active"
    created_at: datetime
    updated_at: datetime
    due_date: date | None = None
    schedule: AutomationSchedule
    strategy: CollectionStrategy
    behavior: CustomerPaymentBehavior
    performance_metrics: AutomationMetrics = Field(default_factory=AutomationMetrics)
    payments: list[AutomationPayment] = Field(default_factory=list)


class PerformanceAlert(BaseModel):
    type: Literal["performance_drop", "low_response_rate", "attempts_exhausted", "high_complaint_rate"]
    message: str
    automation_id: str
    severity: Literal["low", "medium", "high", "critical"]
    recommended_action: str


class ImprovementRecommendation(BaseModel):
    type: Literal["strategy_optimization", "timing_adjustment", "message_improvement", "channel_shift"]
    title: str
    description: str
    expected_improvement: float
    confidence_level: float
    action_items: list[str] = Field(default_factory=list)


class MonitoringReport(BaseModel):
    active_automations: int
    success_rate: float
    pending_actions: int
    revenue_recovered_today: float
    total_recovered: float
    average_days_to_payment: float
    customer_satisfaction_score: float
    performance_alerts: list[PerformanceAlert] = Field(default_factory=list)
    recommendations: list[ImprovementRecommendation] = Field(default_factory=list)


class MessageTemplate(BaseModel):
    id: str
    name: str
    channel: Channel
    tone: Tone
    subject: str
    content: str


class PersonalizedMessage(BaseModel):
    automation_id: str
    attempt_number: int
    channel: Channel
    subject: str
    content: str
    recommended_send_time: datetime


class Installment(BaseModel):
    installment_number: int
    amount: float
    due_date: date
    status: Literal["scheduled", "paid", "overdue"] = "scheduled"


class PaymentPlan(BaseModel):
    plan_id: str
    invoice_id: str
    customer_id: str
    principal: float
    interest_rate: float
    total_payable: float
    installments: list[Installment]
    success_probability: float
    estimated_recovery_timeline: str
