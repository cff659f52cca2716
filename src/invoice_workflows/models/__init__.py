"""Data models for approval workflows and collections automation."""

from .invoice import Invoice, LineItem, Customer
from .workflow import (
    ApprovalWorkflow,
    ApprovalLevel,
    TriggerConditions,
    TimeBasedTriggers,
    CustomFieldCondition,
    ComplianceCheck,
    ValidationRule,
    FraudDetectionRule,
    DetectionAlgorithm,
    ThresholdConfiguration,
    EscalationRule,
    AutomationSettings,
    NotificationPreferences,
)
from .approval import (
    InvoiceApprovalRequest,
    ApprovalAction,
    ApproverAssignment,
    AuditTrailEntry,
    FraudRiskBreakdown,
    RiskFactor,
    HistoricalComparison,
    ComplianceStatus,
    CheckResult,
    RegulatoryRequirement,
    ApprovalRecommendation,
    ImpactAnalysis,
    ActionOutcome,
    ApprovalProgress,
    ApprovalMetrics,
    FraudRiskMonitor,
    ComplianceOverview,
    TERMINAL_STATUSES,
    OPEN_STATUSES,
)

__all__ = [
    "Invoice",
    "LineItem",
    "Customer",
    "ApprovalWorkflow",
    "ApprovalLevel",
    "TriggerConditions",
    "TimeBasedTriggers",
    "CustomFieldCondition",
    "ComplianceCheck",
    "ValidationRule",
    "FraudDetectionRule",
    "DetectionAlgorithm",
    "ThresholdConfiguration",
    "EscalationRule",
    "AutomationSettings",
    "NotificationPreferences",
    "InvoiceApprovalRequest",
    "ApprovalAction",
    "ApproverAssignment",
    "AuditTrailEntry",
    "FraudRiskBreakdown",
    "RiskFactor",
    "HistoricalComparison",
    "ComplianceStatus",
    "CheckResult",
    "RegulatoryRequirement",
    "ApprovalRecommendation",
    "ImpactAnalysis",
    "ActionOutcome",
    "ApprovalProgress",
    "ApprovalMetrics",
    "FraudRiskMonitor",
    "ComplianceOverview",
    "TERMINAL_STATUSES",
    "OPEN_STATUSES",
]
