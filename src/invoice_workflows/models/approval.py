"""
Approval request state and the analysis value objects attached to it.

``InvoiceApprovalRequest`` is the only mutable entity; it is changed
exclusively through ``ApprovalWorkflowEngine`` and persisted with a
version number for optimistic concurrency.
"""

from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field

from .invoice import Invoice
from .workflow import ApprovalWorkflow

RequestStatus = Literal["pending", "in_review", "approved", "rejected", "escalated", "cancelled"]
ActionType = Literal["approved", "rejected", "request_info", "escalated", "delegated"]
RecommendationType = Literal["approve", "reject", "request_info", "escalate", "conditional_approve"]
NextAction = Literal["continue", "complete", "escalate", "reject", "await_info", "delegated"]

TERMINAL_STATUSES = frozenset({"approved", "rejected", "cancelled"})
OPEN_STATUSES = frozenset({"pending", "in_review"})


class RiskFactor(BaseModel):
    factor_type: str
    factor_name: str
    rule_id: str
    risk_score: float
    signal: float
    confidence: float
    description: str
    evidence: list[str] = Field(default_factory=list)
    mitigation_suggestions: list[str] = Field(default_factory=list)


class HistoricalComparison(BaseModel):
    similar_invoices_analyzed: int = 0
    average_risk_score: float = 0.0
    false_positive_rate: float = 0.0
    detection_accuracy: float = 0.0


class FraudRiskBreakdown(BaseModel):
    overall_score: float
    risk_factors: list[RiskFactor] = Field(default_factory=list)
    historical_comparison: HistoricalComparison = Field(default_factory=HistoricalComparison)
    insights: list[str] = Field(default_factory=list)
    degraded_rules: list[str] = Field(default_factory=list)


class CheckResult(BaseModel):
    check_id: str
    check_name: str
    status: Literal["passed", "failed", "warning", "skipped"]
    details: str
    auto_fix_applied: bool = False
    manual_review_required: bool = False


class RegulatoryRequirement(BaseModel):
    regulation: str
    status: Literal["compliant", "non_compliant", "not_applicable"]
    requirements_met: list[str] = Field(default_factory=list)
    requirements_failed: list[str] = Field(default_factory=list)


class ComplianceStatus(BaseModel):
    overall_status: Literal["compliant", "non_compliant", "requires_review", "partial_compliance"]
    compliance_score: float
    checks_performed: list[CheckResult] = Field(default_factory=list)
    regulatory_requirements: list[RegulatoryRequirement] = Field(default_factory=list)
    degraded_checks: list[str] = Field(default_factory=list)


class ImpactAnalysis(BaseModel):
    financial_impact: float
    compliance_impact: str
    business_impact: str
    timeline_impact: str


class ApprovalRecommendation(BaseModel):
    recommendation_id: str
    recommendation_type: RecommendationType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: list[str] = Field(default_factory=list)
    risk_assessment: str = ""
    supporting_evidence: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
    alternative_actions: list[str] = Field(default_factory=list)
    impact_analysis: ImpactAnalysis


class ApprovalAction(BaseModel):
    action_id: str
    approver_id: str
    approver_role: str
    action: ActionType
    level: int
    timestamp: datetime
    comments: str | None = None
    conditions: list[str] = Field(default_factory=list)
    delegated_to: str | None = None
    ai_assisted: bool = False


class ApproverAssignment(BaseModel):
    approver_id: str
    approver_role: str
    level: int
    assigned_date: datetime
    due_date: datetime
    status: Literal["pending", "completed", "delegated", "overdue"] = "pending"
    delegation_allowed: bool = True


class SupportingDocument(BaseModel):
    document_id: str
    file_name: str
    document_category: Literal["invoice_copy", "contract", "purchase_order", "receipt", "authorization", "other"] = "other"
    uploaded_by: str
    upload_date: datetime


class ApprovalComment(BaseModel):
    comment_id: str
    author_id: str
    comment_text: str
    comment_type: Literal["general", "question", "concern", "recommendation", "approval_note"] = "general"
    timestamp: datetime


class AuditTrailEntry(BaseModel):
    entry_id: str
    timestamp: datetime
    user_id: str
    action: str
    details: str
    data_changes: dict[str, dict[str, Any]] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class InvoiceApprovalRequest(BaseModel):
    id: str
    version: int = 1
    invoice: Invoice
    workflow: ApprovalWorkflow
    current_level: int
    status: RequestStatus
    submission_date: datetime
    due_date: datetime
    submitter_id: str
    fraud_risk_score: float
    fraud_risk_breakdown: FraudRiskBreakdown
    compliance_status: ComplianceStatus
    ai_recommendations: list[ApprovalRecommendation] = Field(default_factory=list)
    approval_history: list[ApprovalAction] = Field(default_factory=list)
    current_approvers: list[ApproverAssignment] = Field(default_factory=list)
    required_approvals_remaining: int = Field(default=0, ge=0)
    supporting_documents: list[SupportingDocument] = Field(default_factory=list)
    comments: list[ApprovalComment] = Field(default_factory=list)
    audit_trail: list[AuditTrailEntry] = Field(default_factory=list)

    @property
    def workflow_id(self) -> str:
        return self.workflow.id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ActionOutcome(BaseModel):
    """Result of processing one approver action"""
    request: InvoiceApprovalRequest
    next_action: NextAction
    notifications_sent: list[str] = Field(default_factory=list)


class ApprovalProgress(BaseModel):
    current_level: int
    total_levels: int
    completion_percentage: float
    time_remaining_hours: float


class ApprovalMetrics(BaseModel):
    total_requests: int
    by_status: dict[str, int] = Field(default_factory=dict)
    auto_approved: int = 0
    auto_approval_rate: float = 0.0
    approval_rate: float = 0.0
    escalation_rate: float = 0.0
    average_approval_time_hours: float = 0.0
    average_fraud_score: float = 0.0
    overdue_requests: int = 0


class FraudRiskMonitor(BaseModel):
    requests_analyzed: int
    average_score: float = 0.0
    high_risk_threshold: float
    high_risk_requests: list[dict[str, Any]] = Field(default_factory=list)
    risk_distribution: dict[str, int] = Field(default_factory=dict)
    top_risk_factors: list[dict[str, Any]] = Field(default_factory=list)
    degraded_rule_occurrences: int = 0


class ComplianceOverview(BaseModel):
    requests_analyzed: int
    average_compliance_score: float = 0.0
    status_counts: dict[str, int] = Field(default_factory=dict)
    most_failed_checks: list[dict[str, Any]] = Field(default_factory=list)
    auto_fixes_applied: int = 0
    regulations: dict[str, dict[str, int]] = Field(default_factory=dict)
