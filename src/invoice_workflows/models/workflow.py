"""
Approval workflow configuration models.

A workflow is created by administrators and captured by value on every
approval request at submission time, so later edits never affect
in-flight requests.
"""

from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field

ApprovalCriteria = Literal["all_must_approve", "majority_required", "any_can_approve", "sequential_approval"]
CheckType = Literal["regulatory", "tax", "accounting_standards", "internal_policy", "industry_specific"]
Severity = Literal["low", "medium", "high", "critical"]
ValidationType = Literal["required", "format", "range", "lookup", "calculation", "custom"]
FraudType = Literal[
    "duplicate_invoice", "unusual_amount", "suspicious_vendor",
    "timing_anomaly", "pattern_deviation", "ghost_entity",
]
AlgorithmType = Literal[
    "statistical_analysis", "pattern_matching", "ml_classification",
    "anomaly_detection", "neural_network",
]
EscalationTrigger = Literal["timeout", "rejection", "high_risk_score", "compliance_failure", "manual_escalation"]
NotificationMethod = Literal["email", "sms", "push", "in_app", "all"]


class TimeBasedTriggers(BaseModel):
    business_hours_only: bool = False
    weekdays_only: bool = False
    excluded_dates: list[str] = Field(default_factory=list)  # ISO dates


class CustomFieldCondition(BaseModel):
    field_name: str
    operator: Literal["equals", "not_equals", "greater_than", "less_than", "contains"]
    value: Any = None


class TriggerConditions(BaseModel):
    invoice_amount_threshold: float | None = None
    customer_risk_score_threshold: float | None = None
    line_item_count_threshold: int | None = None
    currency_restrictions: list[str] = Field(default_factory=list)
    customer_type_restrictions: list[str] = Field(default_factory=list)
    department_restrictions: list[str] = Field(default_factory=list)
    time_based_triggers: TimeBasedTriggers | None = None
    custom_field_conditions: list[CustomFieldCondition] = Field(default_factory=list)


class ApprovalLevel(BaseModel):
    level: int
    name: str
    description: str = ""
    required_approvers: int = Field(default=1, ge=1)
    approver_roles: list[str] = Field(default_factory=list)
    approver_users: list[str] = Field(default_factory=list)
    approval_criteria: ApprovalCriteria = "all_must_approve"
    timeout_hours: float = 24
    auto_escalate_on_timeout: bool = True
    delegation_allowed: bool = True


class ValidationRule(BaseModel):
    rule_id: str
    rule_name: str
    field_path: str = ""
    validation_type: ValidationType
    parameters: dict[str, Any] = Field(default_factory=dict)
    error_message: str = ""
    auto_correction_logic: str | None = None


class ComplianceCheck(BaseModel):
    id: str
    name: str
    description: str = ""
    check_type: CheckType
    severity: Severity = "medium"
    auto_fix_available: bool = False
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    regulation: str | None = None


class DetectionAlgorithm(BaseModel):
    algorithm_type: AlgorithmType = "statistical_analysis"
    parameters: dict[str, Any] = Field(default_factory=dict)
    confidence_threshold: float = 0.8
    false_positive_rate: float = 0.05


class ThresholdConfiguration(BaseModel):
    low_risk_threshold: float = 25
    medium_risk_threshold: float = 50
    high_risk_threshold: float = 70
    critical_risk_threshold: float = 90


class FraudDetectionRule(BaseModel):
    rule_id: str
    rule_name: str
    description: str = ""
    fraud_type: FraudType
    risk_score_weight: float = Field(default=10, ge=0, le=100)
    detection_algorithm: DetectionAlgorithm = Field(default_factory=DetectionAlgorithm)
    threshold_config: ThresholdConfiguration = Field(default_factory=ThresholdConfiguration)
    historical_analysis_window: int = 90  # days


class EscalationRule(BaseModel):
    rule_id: str
    trigger_condition: EscalationTrigger
    escalation_level: int = 1
    target_roles: list[str] = Field(default_factory=list)
    target_users: list[str] = Field(default_factory=list)
    notification_method: NotificationMethod = "email"
    urgency_level: Severity = "medium"


class NotificationPreferences(BaseModel):
    approver_notifications: bool = True
    submitter_notifications: bool = True
    stakeholder_updates: bool = True
    compliance_alerts: bool = True


class AutomationSettings(BaseModel):
    auto_approve_low_risk: bool = True
    auto_approve_threshold: float = 25
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)


class ApprovalWorkflow(BaseModel):
    id: str
    name: str
    description: str = ""
    is_active: bool = True
    version: int = 1
    trigger_conditions: TriggerConditions = Field(default_factory=TriggerConditions)
    approval_levels: list[ApprovalLevel] = Field(default_factory=list)
    compliance_checks: list[ComplianceCheck] = Field(default_factory=list)
    fraud_detection_rules: list[FraudDetectionRule] = Field(default_factory=list)
    escalation_rules: list[EscalationRule] = Field(default_factory=list)
    automation_settings: AutomationSettings = Field(default_factory=AutomationSettings)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def level(self, number: int) -> ApprovalLevel:
        """Return the approval level by its 1-based position"""
        return self.approval_levels[number - 1]
