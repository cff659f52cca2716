"""
Invoice approval workflow engine.

Owns the approval state machine: workflow selection, submission with
fraud/compliance analysis, auto-approval, multi-level approver actions,
timeouts and escalation re-entry, plus reporting over stored requests.

Every mutating call reads the stored request, works on a deep copy and
commits it with one versioned update. Any error before the commit leaves
the stored request untouched; notifications are sent only after commit.
"""

import uuid
from collections import Counter
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from ..core.config import settings
from ..core.errors import (
    NoWorkflowFound,
    NotFoundError,
    RequestNotFound,
    StateConflictError,
    ValidationError,
)
from ..models.invoice import Invoice, Customer
from ..models.workflow import (
    ApprovalLevel,
    ApprovalWorkflow,
    AutomationSettings,
    ComplianceCheck,
    CustomFieldCondition,
    DetectionAlgorithm,
    EscalationRule,
    FraudDetectionRule,
    TriggerConditions,
    ValidationRule,
)
from ..models.approval import (
    OPEN_STATUSES,
    ActionOutcome,
    ApprovalAction,
    ApprovalMetrics,
    ApprovalProgress,
    AuditTrailEntry,
    ComplianceOverview,
    FraudRiskMonitor,
    InvoiceApprovalRequest,
)
from .approvers import ApproverDirectory
from .compliance import ComplianceChecker
from .events.notification_publisher import NotificationPublisher
from .fraud_detection import FraudRiskAnalyzer, HistoricalInvoice
from .recommendations import RecommendationGenerator
from .storage import ApprovalRepositoryBase, InMemoryApprovalRepository

SYSTEM_USER = "system"
ACTIONS = ("approved", "rejected", "request_info", "escalated", "delegated")


def default_workflows(now: Optional[datetime] = None) -> List[ApprovalWorkflow]:
    """
    Built-in workflows installed into an empty repository.

    ``standard_approval`` matches every invoice; ``high_value_approval``
    takes over for totals at or above the high-value threshold.
    """
    now = now or datetime.now(UTC)
    escalation_roles = settings.default_escalation_roles

    completeness = ComplianceCheck(
        id="invoice_completeness",
        name="Invoice completeness",
        check_type="internal_policy",
        severity="medium",
        validation_rules=[
            ValidationRule(rule_id="number_required", rule_name="Invoice number present",
                           field_path="invoice_number", validation_type="required",
                           error_message="Invoice number is required"),
            ValidationRule(rule_id="customer_required", rule_name="Customer present",
                           field_path="customer_id", validation_type="required",
                           error_message="Customer is required"),
        ],
    )
    arithmetic = ComplianceCheck(
        id="amount_integrity",
        name="Amount integrity",
        check_type="accounting_standards",
        severity="high",
        auto_fix_available=True,
        validation_rules=[
            ValidationRule(rule_id="subtotal_sum", rule_name="Subtotal matches line items",
                           validation_type="calculation",
                           parameters={"expression": "subtotal_matches_line_items"},
                           auto_correction_logic="recompute_subtotal"),
            ValidationRule(rule_id="total_sum", rule_name="Total matches subtotal plus tax",
                           validation_type="calculation",
                           parameters={"expression": "total_matches_subtotal_plus_tax"},
                           auto_correction_logic="recompute_total"),
        ],
    )

    def fraud_rules() -> List[FraudDetectionRule]:
        return [
            FraudDetectionRule(rule_id="duplicate_check", rule_name="Duplicate invoice",
                               fraud_type="duplicate_invoice", risk_score_weight=40),
            FraudDetectionRule(rule_id="amount_check", rule_name="Unusual amount",
                               fraud_type="unusual_amount", risk_score_weight=25,
                               detection_algorithm=DetectionAlgorithm(parameters={"max_ratio": 3.0})),
            FraudDetectionRule(rule_id="vendor_check", rule_name="Suspicious vendor",
                               fraud_type="suspicious_vendor", risk_score_weight=20),
            FraudDetectionRule(rule_id="timing_check", rule_name="Timing anomaly",
                               fraud_type="timing_anomaly", risk_score_weight=10,
                               detection_algorithm=DetectionAlgorithm(false_positive_rate=0.15)),
            FraudDetectionRule(rule_id="pattern_check", rule_name="Pattern deviation",
                               fraud_type="pattern_deviation", risk_score_weight=10),
            FraudDetectionRule(rule_id="ghost_check", rule_name="Ghost entity",
                               fraud_type="ghost_entity", risk_score_weight=30),
        ]

    def escalation_rules() -> List[EscalationRule]:
        return [
            EscalationRule(rule_id="timeout_escalation", trigger_condition="timeout",
                           target_roles=escalation_roles, urgency_level="high"),
            EscalationRule(rule_id="high_risk_alert", trigger_condition="high_risk_score",
                           target_roles=escalation_roles, urgency_level="critical", notification_method="all"),
            EscalationRule(rule_id="compliance_alert", trigger_condition="compliance_failure",
                           target_roles=["compliance_officer"], urgency_level="high"),
            EscalationRule(rule_id="manual_escalation", trigger_condition="manual_escalation",
                           target_roles=escalation_roles, urgency_level="high"),
        ]

    standard = ApprovalWorkflow(
        id="standard_approval",
        name="Standard Invoice Approval",
        description="Single manager sign-off for routine invoices",
        approval_levels=[
            ApprovalLevel(level=1, name="Manager Approval", required_approvers=1,
                          approver_roles=["manager"], approval_criteria="any_can_approve",
                          timeout_hours=24),
        ],
        compliance_checks=[completeness, arithmetic],
        fraud_detection_rules=fraud_rules(),
        escalation_rules=escalation_rules(),
        automation_settings=AutomationSettings(
            auto_approve_low_risk=True,
            auto_approve_threshold=settings.approval_auto_approve_threshold,
        ),
        created_at=now,
        updated_at=now,
    )

    high_value = ApprovalWorkflow(
        id="high_value_approval",
        name="High Value Invoice Approval",
        description="Finance manager then director/CFO sign-off for large invoices",
        trigger_conditions=TriggerConditions(invoice_amount_threshold=settings.approval_high_value_threshold),
        approval_levels=[
            ApprovalLevel(level=1, name="Finance Manager Approval", required_approvers=1,
                          approver_roles=["finance_manager"], approval_criteria="all_must_approve",
                          timeout_hours=48),
            ApprovalLevel(level=2, name="Executive Approval", required_approvers=1,
                          approver_roles=["finance_director", "cfo"], approval_criteria="any_can_approve",
                          timeout_hours=72, delegation_allowed=False),
        ],
        compliance_checks=[completeness, arithmetic],
        fraud_detection_rules=fraud_rules(),
        escalation_rules=escalation_rules(),
        automation_settings=AutomationSettings(auto_approve_low_risk=False),
        created_at=now,
        updated_at=now,
    )
    return [standard, high_value]


def level_quorum(level: ApprovalLevel) -> int:
    """
    Approvals needed to clear a level.

    all_must_approve and sequential_approval need ``required_approvers``;
    majority_required needs a strict majority of them; any_can_approve
    needs one.
    """
    if level.approval_criteria == "any_can_approve":
        return 1
    if level.approval_criteria == "majority_required":
        return level.required_approvers // 2 + 1
    return level.required_approvers


def _custom_field_matches(condition: CustomFieldCondition, invoice: Invoice) -> bool:
    actual = invoice.custom_fields.get(condition.field_name)
    expected = condition.value
    try:
        if condition.operator == "equals":
            return actual == expected
        if condition.operator == "not_equals":
            return actual != expected
        if condition.operator == "greater_than":
            return actual is not None and float(actual) > float(expected)
        if condition.operator == "less_than":
            return actual is not None and float(actual) < float(expected)
        if condition.operator == "contains":
            return actual is not None and expected in actual
    except (TypeError, ValueError):
        return False
    return False


def match_conditions(
    conditions: TriggerConditions,
    invoice: Invoice,
    customer: Optional[Customer],
    now: datetime,
) -> Optional[int]:
    """
    Evaluate trigger conditions (ANDed).

    Returns:
        Number of conditions that were set and satisfied, or None if any
        set condition fails
    """
    satisfied = 0

    if conditions.invoice_amount_threshold is not None:
        if invoice.total < conditions.invoice_amount_threshold:
            return None
        satisfied += 1

    if conditions.customer_risk_score_threshold is not None:
        if customer is None or customer.risk_score < conditions.customer_risk_score_threshold:
            return None
        satisfied += 1

    if conditions.line_item_count_threshold is not None:
        if len(invoice.line_items) < conditions.line_item_count_threshold:
            return None
        satisfied += 1

    if conditions.currency_restrictions:
        if invoice.currency not in conditions.currency_restrictions:
            return None
        satisfied += 1

    if conditions.customer_type_restrictions:
        if customer is None or customer.customer_type not in conditions.customer_type_restrictions:
            return None
        satisfied += 1

    if conditions.department_restrictions:
        if invoice.department not in conditions.department_restrictions:
            return None
        satisfied += 1

    timing = conditions.time_based_triggers
    if timing is not None:
        if timing.business_hours_only and not 9 <= now.hour < 17:
            return None
        if timing.weekdays_only and now.weekday() >= 5:
            return None
        if now.date().isoformat() in timing.excluded_dates:
            return None
        satisfied += 1

    for condition in conditions.custom_field_conditions:
        if not _custom_field_matches(condition, invoice):
            return None
        satisfied += 1

    return satisfied


class ApprovalWorkflowEngine:
    """
    Multi-level invoice approval engine.

    Collaborators are injected so tests can substitute fixed-score
    analyzers, a recording notifier or a frozen clock.

    Args:
        repository: Workflow and request storage (in-memory by default)
        fraud_analyzer: Object with ``analyze(invoice, customer, rules)``
        compliance_checker: Object with ``check(invoice, checks)``
        recommender: Object with ``recommend(invoice, fraud, compliance, workflow)``
        notifier: Object with ``notify(target_roles, target_users, method, urgency, payload, event_type)``
        approvers: Directory resolving level roles to approver ids
        clock: Returns the current time (UTC)
        high_risk_threshold: Fraud score that triggers high-risk escalation alerts
        install_defaults: Install the built-in workflows into an empty repository
    """

    def __init__(
        self,
        repository: Optional[ApprovalRepositoryBase] = None,
        fraud_analyzer=None,
        compliance_checker=None,
        recommender=None,
        notifier=None,
        approvers: Optional[ApproverDirectory] = None,
        clock: Optional[Callable[[], datetime]] = None,
        high_risk_threshold: Optional[float] = None,
        install_defaults: bool = True,
    ):
        self.repository = repository or InMemoryApprovalRepository()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.high_risk_threshold = (
            settings.approval_high_risk_threshold if high_risk_threshold is None else high_risk_threshold
        )
        self.fraud_analyzer = fraud_analyzer or FraudRiskAnalyzer(
            history_provider=self._customer_history, clock=self.clock
        )
        self.compliance_checker = compliance_checker or ComplianceChecker()
        self.recommender = recommender or RecommendationGenerator(self.high_risk_threshold)
        self.notifier = notifier or NotificationPublisher()
        self.approvers = approvers or ApproverDirectory()

        if install_defaults and not self.repository.list_workflows():
            for workflow in default_workflows(self.clock()):
                self.repository.save_workflow(workflow)

    # Workflow registry

    def create_workflow(self, workflow: ApprovalWorkflow) -> ApprovalWorkflow:
        if self.repository.get_workflow(workflow.id) is not None:
            raise StateConflictError(f"Workflow {workflow.id} already exists")
        self._validate_workflow(workflow)

        now = self.clock()
        workflow = workflow.model_copy(deep=True, update={"created_at": now, "updated_at": now})
        saved = self.repository.save_workflow(workflow)
        logger.info("Workflow created", workflow_id=workflow.id, levels=len(workflow.approval_levels))
        return saved

    def get_workflow(self, workflow_id: str) -> ApprovalWorkflow:
        workflow = self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise NoWorkflowFound(f"Workflow {workflow_id} not found")
        return workflow

    def list_workflows(self) -> List[ApprovalWorkflow]:
        return self.repository.list_workflows()

    def select_workflow(
        self,
        invoice: Invoice,
        customer: Optional[Customer] = None,
        now: Optional[datetime] = None,
        workflow_id: Optional[str] = None,
    ) -> ApprovalWorkflow:
        """
        Pick the workflow for an invoice.

        An explicit id wins. Otherwise the active workflow with the most
        satisfied trigger conditions is chosen, then the highest amount
        threshold, then definition order.
        """
        if workflow_id:
            workflow = self.get_workflow(workflow_id)
            if not workflow.is_active:
                raise NoWorkflowFound(f"Workflow {workflow_id} is not active")
            return workflow

        now = now or self.clock()
        candidates = []
        for position, workflow in enumerate(self.repository.list_workflows()):
            if not workflow.is_active:
                continue
            satisfied = match_conditions(workflow.trigger_conditions, invoice, customer, now)
            if satisfied is None:
                continue
            threshold = workflow.trigger_conditions.invoice_amount_threshold or 0.0
            candidates.append((-satisfied, -threshold, position, workflow))

        if not candidates:
            raise NoWorkflowFound(f"No active workflow matches invoice {invoice.invoice_number}")

        candidates.sort(key=lambda c: c[:3])
        return candidates[0][3]

    # Submission

    def submit(
        self,
        invoice: Invoice,
        submitter_id: str,
        workflow_id: Optional[str] = None,
        customer: Optional[Customer] = None,
    ) -> InvoiceApprovalRequest:
        """
        Submit an invoice for approval.

        Returns:
            The stored request, either terminal ``approved`` (auto-approval)
            or ``pending`` at level 1 with approvers assigned

        Raises:
            ValidationError: Invoice is missing required fields
            NoWorkflowFound: No workflow applies
        """
        self._validate_invoice(invoice, customer, submitter_id)

        now = self.clock()
        invoice = invoice.model_copy(deep=True)
        if invoice.submitted_at is None:
            invoice.submitted_at = now

        workflow = self.select_workflow(invoice, customer, now, workflow_id)
        fraud = self.fraud_analyzer.analyze(invoice, customer, workflow.fraud_detection_rules)
        compliance = self.compliance_checker.check(invoice, workflow.compliance_checks)
        recommendations = self.recommender.recommend(invoice, fraud, compliance, workflow)

        automation = workflow.automation_settings
        auto_approve = (
            automation.auto_approve_low_risk
            and fraud.overall_score < automation.auto_approve_threshold
            and compliance.overall_status == "compliant"
        )

        metadata = {
            "workflow_id": workflow.id,
            "workflow_version": workflow.version,
            "fraud_risk_score": fraud.overall_score,
            "compliance_status": compliance.overall_status,
            "degraded_rules": fraud.degraded_rules,
            "degraded_checks": compliance.degraded_checks,
            "auto_fixes": [c.check_id for c in compliance.checks_performed if c.auto_fix_applied],
        }

        base = dict(
            id=str(uuid.uuid4()),
            invoice=invoice,
            workflow=workflow,
            submission_date=now,
            submitter_id=submitter_id,
            fraud_risk_score=fraud.overall_score,
            fraud_risk_breakdown=fraud,
            compliance_status=compliance,
            ai_recommendations=recommendations,
        )

        if auto_approve:
            invoice.status = "approved"
            request = InvoiceApprovalRequest(
                **base,
                current_level=0,
                status="approved",
                due_date=now,
                required_approvals_remaining=0,
                approval_history=[ApprovalAction(
                    action_id=str(uuid.uuid4()),
                    approver_id=SYSTEM_USER,
                    approver_role=SYSTEM_USER,
                    action="approved",
                    level=0,
                    timestamp=now,
                    comments=(
                        f"Auto-approved: fraud score {fraud.overall_score:.1f} below "
                        f"{automation.auto_approve_threshold:.0f} and fully compliant"
                    ),
                    ai_assisted=True,
                )],
                audit_trail=[self._audit(
                    now, SYSTEM_USER, "auto_approved",
                    f"Invoice {invoice.invoice_number} auto-approved by workflow {workflow.id}",
                    metadata=metadata,
                )],
            )
        else:
            level = workflow.level(1)
            assignments = self.approvers.assign(level, now)
            request = InvoiceApprovalRequest(
                **base,
                current_level=1,
                status="pending",
                due_date=now + timedelta(hours=level.timeout_hours),
                current_approvers=assignments,
                required_approvals_remaining=self._quorum(level, len(assignments)),
                audit_trail=[self._audit(
                    now, submitter_id, "submitted",
                    f"Invoice {invoice.invoice_number} submitted to workflow {workflow.id}",
                    metadata=metadata,
                )],
            )

        stored = self.repository.create_request(request)
        logger.info(
            "Invoice submitted for approval",
            request_id=stored.id,
            invoice_number=invoice.invoice_number,
            workflow_id=workflow.id,
            status=stored.status,
            fraud_risk_score=fraud.overall_score,
            compliance=compliance.overall_status,
        )

        if stored.status == "approved":
            self._notify_submitter(stored, "InvoiceApproved", "low")
        else:
            self._notify_approvers(stored)
            self._notify_submission_alerts(stored)
        return stored

    # Approver actions

    def process_action(
        self,
        request_id: str,
        approver_id: str,
        action: str,
        comments: Optional[str] = None,
        conditions: Optional[List[str]] = None,
        delegate_to: Optional[str] = None,
    ) -> ActionOutcome:
        """
        Apply one approver action to a request.

        Raises:
            RequestNotFound: Unknown request id
            StateConflictError: Request is terminal or escalated, the
                approver already acted, or a sequential approval is out of order
            NotFoundError: Approver is not assigned at the current level
            ValidationError: Malformed action or delegation
        """
        if action not in ACTIONS:
            raise ValidationError(f"Unknown action: {action}")

        request = self._load(request_id)
        if request.is_terminal:
            raise StateConflictError(f"Request {request_id} is already {request.status}")
        if request.status == "escalated":
            raise StateConflictError(f"Request {request_id} is escalated and must be re-entered first")

        expected_version = request.version
        level = request.workflow.level(request.current_level)
        assignment = self._assignment_for(request, approver_id)
        if assignment.status in ("completed", "delegated"):
            raise StateConflictError(f"Approver {approver_id} has already acted at level {request.current_level}")

        now = self.clock()
        before = self._snapshot(request)
        record = ApprovalAction(
            action_id=str(uuid.uuid4()),
            approver_id=approver_id,
            approver_role=assignment.approver_role,
            action=action,
            level=request.current_level,
            timestamp=now,
            comments=comments,
            conditions=conditions or [],
            delegated_to=delegate_to,
        )

        if action == "approved":
            if level.approval_criteria == "sequential_approval":
                next_in_line = next(
                    a for a in request.current_approvers
                    if a.level == request.current_level and a.status == "pending"
                )
                if next_in_line.approver_id != approver_id:
                    raise StateConflictError(
                        f"Sequential approval expects {next_in_line.approver_id} before {approver_id}"
                    )
            assignment.status = "completed"
            request.required_approvals_remaining -= 1

            if request.required_approvals_remaining > 0:
                next_action = "continue"
                details = f"Approved by {approver_id}; {request.required_approvals_remaining} approval(s) remaining"
            elif request.current_level < len(request.workflow.approval_levels):
                request.current_level += 1
                next_level = request.workflow.level(request.current_level)
                request.current_approvers = self.approvers.assign(next_level, now)
                request.required_approvals_remaining = self._quorum(next_level, len(request.current_approvers))
                request.due_date = now + timedelta(hours=next_level.timeout_hours)
                next_action = "continue"
                details = f"Level {record.level} complete; advanced to level {request.current_level}"
            else:
                request.status = "approved"
                request.invoice.status = "approved"
                next_action = "complete"
                details = f"Final approval by {approver_id}"

        elif action == "rejected":
            request.status = "rejected"
            assignment.status = "completed"
            next_action = "reject"
            details = f"Rejected by {approver_id}"

        elif action == "escalated":
            request.status = "escalated"
            assignment.status = "completed"
            next_action = "escalate"
            details = f"Escalated by {approver_id}"

        elif action == "request_info":
            request.status = "in_review"
            next_action = "await_info"
            details = f"{approver_id} requested more information"

        elif action == "delegated":
            if not delegate_to:
                raise ValidationError("delegate_to is required for delegation")
            if not (level.delegation_allowed and assignment.delegation_allowed):
                raise ValidationError(f"Delegation is not allowed at level {request.current_level}")
            if any(a.approver_id == delegate_to and a.level == request.current_level for a in request.current_approvers):
                raise StateConflictError(f"{delegate_to} is already assigned at level {request.current_level}")
            assignment.status = "delegated"
            delegate = assignment.model_copy(update={
                "approver_id": delegate_to,
                "assigned_date": now,
                "status": "pending",
            })
            # Delegate takes the delegator's place in sequential order
            position = request.current_approvers.index(assignment)
            request.current_approvers.insert(position + 1, delegate)
            next_action = "delegated"
            details = f"{approver_id} delegated to {delegate_to}"

        if comments:
            details += f": {comments}"
        request.approval_history.append(record)
        request.audit_trail.append(self._audit(
            now, approver_id, action, details,
            data_changes=self._changes(before, self._snapshot(request)),
        ))

        stored = self.repository.update_request(request, expected_version)
        logger.info(
            "Approval action processed",
            request_id=request_id,
            approver_id=approver_id,
            action=action,
            status=stored.status,
            level=stored.current_level,
            remaining=stored.required_approvals_remaining,
        )

        notifications = self._notify_after_action(stored, action, next_action, delegate_to)
        return ActionOutcome(request=stored, next_action=next_action, notifications_sent=notifications)

    def cancel(self, request_id: str, actor_id: str, reason: Optional[str] = None) -> InvoiceApprovalRequest:
        request = self._load(request_id)
        if request.status not in OPEN_STATUSES:
            raise StateConflictError(f"Request {request_id} cannot be cancelled from {request.status}")

        expected_version = request.version
        now = self.clock()
        before = self._snapshot(request)
        request.status = "cancelled"
        request.audit_trail.append(self._audit(
            now, actor_id, "cancelled",
            f"Cancelled by {actor_id}" + (f": {reason}" if reason else ""),
            data_changes=self._changes(before, self._snapshot(request)),
        ))

        stored = self.repository.update_request(request, expected_version)
        logger.info("Approval request cancelled", request_id=request_id, actor_id=actor_id)

        pending = [a.approver_id for a in stored.current_approvers if a.status == "pending"]
        self._notify([], pending, "in_app", "low", self._payload(stored), "ApprovalCancelled")
        return stored

    # Escalation

    def check_timeouts(self, now: Optional[datetime] = None) -> List[InvoiceApprovalRequest]:
        """
        Escalate overdue pending/in_review requests.

        A naive ``now`` is interpreted as UTC. Levels with
        ``auto_escalate_on_timeout`` disabled are left alone.
        A request changed concurrently is skipped and picked up by the
        next sweep.

        Returns:
            The requests that were escalated
        """
        now = now or self.clock()
        if now.tzinfo is None:
            # Naive timestamps are taken as UTC
            now = now.replace(tzinfo=UTC)
        escalated = []

        for request in self.repository.list_overdue(now):
            level = request.workflow.level(request.current_level)
            if not level.auto_escalate_on_timeout:
                logger.debug("Overdue request not auto-escalated", request_id=request.id, level=level.level)
                continue

            expected_version = request.version
            before = self._snapshot(request)
            request.status = "escalated"
            for assignment in request.current_approvers:
                if assignment.level == request.current_level and assignment.status == "pending":
                    assignment.status = "overdue"
            request.approval_history.append(ApprovalAction(
                action_id=str(uuid.uuid4()),
                approver_id=SYSTEM_USER,
                approver_role=SYSTEM_USER,
                action="escalated",
                level=request.current_level,
                timestamp=now,
                comments=f"Level {request.current_level} timed out after {level.timeout_hours:g}h",
            ))
            request.audit_trail.append(self._audit(
                now, SYSTEM_USER, "timeout_escalated",
                f"Level {request.current_level} exceeded its {level.timeout_hours:g}h timeout",
                data_changes=self._changes(before, self._snapshot(request)),
            ))

            try:
                stored = self.repository.update_request(request, expected_version)
            except StateConflictError:
                logger.warning("Skipping timeout escalation after concurrent update", request_id=request.id)
                continue

            logger.warning("Approval request escalated on timeout", request_id=stored.id, level=stored.current_level)
            self._notify_escalation(stored, "timeout")
            escalated.append(stored)

        return escalated

    def reenter_escalation(self, request_id: str, actor_id: str, level: int) -> InvoiceApprovalRequest:
        """
        Resume an escalated request at a caller-designated level.

        The level is never inferred; the resolving authority supplies it.
        """
        request = self._load(request_id)
        if request.status != "escalated":
            raise StateConflictError(f"Request {request_id} is {request.status}, not escalated")
        if not 1 <= level <= len(request.workflow.approval_levels):
            raise ValidationError(
                f"Level {level} is outside 1..{len(request.workflow.approval_levels)}"
            )

        expected_version = request.version
        now = self.clock()
        before = self._snapshot(request)
        target = request.workflow.level(level)

        request.current_level = level
        request.current_approvers = self.approvers.assign(target, now)
        request.required_approvals_remaining = self._quorum(target, len(request.current_approvers))
        request.due_date = now + timedelta(hours=target.timeout_hours)
        request.status = "pending"
        request.audit_trail.append(self._audit(
            now, actor_id, "escalation_reentered",
            f"Escalation resolved by {actor_id}; resumed at level {level}",
            data_changes=self._changes(before, self._snapshot(request)),
        ))

        stored = self.repository.update_request(request, expected_version)
        logger.info("Escalated request re-entered", request_id=request_id, level=level, actor_id=actor_id)
        self._notify_approvers(stored)
        return stored

    # Queries and reporting

    def get_request(self, request_id: str) -> InvoiceApprovalRequest:
        return self._load(request_id)

    def list_requests(self, status: Optional[str] = None) -> List[InvoiceApprovalRequest]:
        if status:
            return self.repository.query_by_status(status)
        return self.repository.list_requests()

    def calculate_approval_progress(self, request: InvoiceApprovalRequest) -> ApprovalProgress:
        total_levels = len(request.workflow.approval_levels)

        if request.status == "approved":
            percentage = 100.0
        elif request.current_level == 0 or total_levels == 0:
            percentage = 0.0
        else:
            level = request.workflow.level(request.current_level)
            quorum = level_quorum(level)
            within = (quorum - request.required_approvals_remaining) / quorum if quorum else 0.0
            percentage = (request.current_level - 1 + within) / total_levels * 100

        if request.status in OPEN_STATUSES:
            remaining = max(0.0, (request.due_date - self.clock()).total_seconds() / 3600)
        else:
            remaining = 0.0

        return ApprovalProgress(
            current_level=request.current_level,
            total_levels=total_levels,
            completion_percentage=round(percentage, 1),
            time_remaining_hours=round(remaining, 2),
        )

    def get_approval_metrics(self) -> ApprovalMetrics:
        requests = self.repository.list_requests()
        total = len(requests)
        by_status = Counter(r.status for r in requests)
        auto_approved = [r for r in requests if r.status == "approved" and r.current_level == 0]
        decided = by_status["approved"] + by_status["rejected"]
        escalations = [r for r in requests if any(a.action == "escalated" for a in r.approval_history)]

        durations = [
            (r.approval_history[-1].timestamp - r.submission_date).total_seconds() / 3600
            for r in requests
            if r.status == "approved" and r.approval_history
        ]

        return ApprovalMetrics(
            total_requests=total,
            by_status=dict(by_status),
            auto_approved=len(auto_approved),
            auto_approval_rate=round(len(auto_approved) / total, 3) if total else 0.0,
            approval_rate=round(by_status["approved"] / decided, 3) if decided else 0.0,
            escalation_rate=round(len(escalations) / total, 3) if total else 0.0,
            average_approval_time_hours=round(sum(durations) / len(durations), 2) if durations else 0.0,
            average_fraud_score=round(sum(r.fraud_risk_score for r in requests) / total, 2) if total else 0.0,
            overdue_requests=len(self.repository.list_overdue(self.clock())),
        )

    def monitor_fraud_risk(self) -> FraudRiskMonitor:
        requests = self.repository.list_requests()
        distribution = {"low": 0, "medium": 0, "high": 0, "critical": 0}
        factors: Counter = Counter()
        degraded = 0

        for r in requests:
            score = r.fraud_risk_score
            if score >= 90:
                distribution["critical"] += 1
            elif score >= self.high_risk_threshold:
                distribution["high"] += 1
            elif score >= 25:
                distribution["medium"] += 1
            else:
                distribution["low"] += 1
            for factor in r.fraud_risk_breakdown.risk_factors:
                if factor.risk_score > 0:
                    factors[factor.factor_name] += 1
            degraded += len(r.fraud_risk_breakdown.degraded_rules)

        high_risk = [
            {
                "request_id": r.id,
                "invoice_number": r.invoice.invoice_number,
                "fraud_risk_score": r.fraud_risk_score,
                "status": r.status,
            }
            for r in sorted(requests, key=lambda r: r.fraud_risk_score, reverse=True)
            if r.fraud_risk_score >= self.high_risk_threshold
        ]

        return FraudRiskMonitor(
            requests_analyzed=len(requests),
            average_score=round(sum(r.fraud_risk_score for r in requests) / len(requests), 2) if requests else 0.0,
            high_risk_threshold=self.high_risk_threshold,
            high_risk_requests=high_risk,
            risk_distribution=distribution,
            top_risk_factors=[{"factor": name, "occurrences": n} for name, n in factors.most_common(5)],
            degraded_rule_occurrences=degraded,
        )

    def get_compliance_overview(self) -> ComplianceOverview:
        requests = self.repository.list_requests()
        failed_checks: Counter = Counter()
        regulations: Dict[str, Dict[str, int]] = {}
        auto_fixes = 0

        for r in requests:
            for check in r.compliance_status.checks_performed:
                if check.status == "failed":
                    failed_checks[check.check_name] += 1
                if check.auto_fix_applied:
                    auto_fixes += 1
            for requirement in r.compliance_status.regulatory_requirements:
                counts = regulations.setdefault(requirement.regulation, {})
                counts[requirement.status] = counts.get(requirement.status, 0) + 1

        scores = [r.compliance_status.compliance_score for r in requests]
        return ComplianceOverview(
            requests_analyzed=len(requests),
            average_compliance_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
            status_counts=dict(Counter(r.compliance_status.overall_status for r in requests)),
            most_failed_checks=[{"check": name, "failures": n} for name, n in failed_checks.most_common(5)],
            auto_fixes_applied=auto_fixes,
            regulations=regulations,
        )

    # Internals

    def _customer_history(self, customer_id: str) -> List[HistoricalInvoice]:
        return [
            HistoricalInvoice(invoice=r.invoice, submitted_at=r.submission_date, fraud_score=r.fraud_risk_score)
            for r in self.repository.list_by_customer(customer_id)
            if r.status != "cancelled"
        ]

    def _load(self, request_id: str) -> InvoiceApprovalRequest:
        request = self.repository.get_request(request_id)
        if request is None:
            raise RequestNotFound(f"Approval request {request_id} not found")
        return request

    @staticmethod
    def _assignment_for(request: InvoiceApprovalRequest, approver_id: str):
        for assignment in request.current_approvers:
            if assignment.approver_id == approver_id and assignment.level == request.current_level:
                return assignment
        raise NotFoundError(f"{approver_id} is not an approver at level {request.current_level}")

    @staticmethod
    def _quorum(level: ApprovalLevel, assigned: int) -> int:
        quorum = level_quorum(level)
        if assigned < quorum:
            logger.warning(
                "Level has fewer approvers than its quorum",
                level=level.level,
                assigned=assigned,
                required=quorum,
            )
            raise ValidationError(
                f"Level {level.level} needs {quorum} approval(s) but only {assigned} approver(s) are assigned"
            )
        return quorum

    @staticmethod
    def _validate_invoice(invoice: Invoice, customer: Optional[Customer], submitter_id: str) -> None:
        missing = [name for name in ("id", "invoice_number", "customer_id") if not getattr(invoice, name)]
        if missing:
            raise ValidationError(f"Invoice is missing required fields: {', '.join(missing)}")
        if not submitter_id:
            raise ValidationError("submitter_id is required")
        if invoice.total < 0:
            raise ValidationError(f"Invoice total cannot be negative: {invoice.total}")
        if customer is not None and customer.id != invoice.customer_id:
            raise ValidationError(f"Customer {customer.id} does not match invoice customer {invoice.customer_id}")

    @staticmethod
    def _validate_workflow(workflow: ApprovalWorkflow) -> None:
        if not workflow.approval_levels:
            raise ValidationError(f"Workflow {workflow.id} needs at least one approval level")
        numbers = [level.level for level in workflow.approval_levels]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValidationError(f"Workflow {workflow.id} levels must be numbered 1..{len(numbers)} in order")
        for level in workflow.approval_levels:
            if not level.approver_roles and not level.approver_users:
                raise ValidationError(f"Level {level.level} of workflow {workflow.id} has no approvers")
            # Role membership is resolved at assignment time; fixed user lists can be checked now
            if not level.approver_roles and len(set(level.approver_users)) < level_quorum(level):
                raise ValidationError(
                    f"Level {level.level} of workflow {workflow.id} needs {level_quorum(level)} approval(s) "
                    f"but lists {len(set(level.approver_users))} approver(s)"
                )
        if not 0 <= workflow.automation_settings.auto_approve_threshold <= 100:
            raise ValidationError("auto_approve_threshold must be between 0 and 100")

    @staticmethod
    def _audit(
        now: datetime,
        user_id: str,
        action: str,
        details: str,
        data_changes: Optional[Dict[str, Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditTrailEntry:
        return AuditTrailEntry(
            entry_id=str(uuid.uuid4()),
            timestamp=now,
            user_id=user_id,
            action=action,
            details=details,
            data_changes=data_changes or {},
            metadata=metadata or {},
        )

    @staticmethod
    def _snapshot(request: InvoiceApprovalRequest) -> Dict[str, Any]:
        return {
            "status": request.status,
            "current_level": request.current_level,
            "required_approvals_remaining": request.required_approvals_remaining,
        }

    @staticmethod
    def _changes(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        return {
            key: {"from": before[key], "to": after[key]}
            for key in before
            if before[key] != after[key]
        }

    # Notifications (always after commit)

    @staticmethod
    def _payload(request: InvoiceApprovalRequest) -> Dict[str, Any]:
        return {
            "request_id": request.id,
            "invoice_number": request.invoice.invoice_number,
            "customer_id": request.invoice.customer_id,
            "total": request.invoice.total,
            "currency": request.invoice.currency,
            "status": request.status,
            "level": request.current_level,
            "fraud_risk_score": request.fraud_risk_score,
            "compliance": request.compliance_status.overall_status,
        }

    def _notify(self, roles, users, method, urgency, payload, event_type) -> List[str]:
        try:
            return self.notifier.notify(roles, users, method, urgency, payload, event_type)
        except Exception as e:
            logger.error("Notification delivery failed", event_type=event_type, request_id=payload.get("request_id"), error=str(e))
            return []

    def _notify_approvers(self, request: InvoiceApprovalRequest) -> List[str]:
        if not request.workflow.automation_settings.notification_preferences.approver_notifications:
            return []
        users = [
            a.approver_id for a in request.current_approvers
            if a.level == request.current_level and a.status == "pending"
        ]
        urgency = "high" if request.fraud_risk_score >= self.high_risk_threshold else "medium"
        return self._notify([], users, "email", urgency, self._payload(request), "ApproverAssigned")

    def _notify_submitter(self, request: InvoiceApprovalRequest, event_type: str, urgency: str) -> List[str]:
        if not request.workflow.automation_settings.notification_preferences.submitter_notifications:
            return []
        return self._notify([], [request.submitter_id], "email", urgency, self._payload(request), event_type)

    def _notify_rules(self, request: InvoiceApprovalRequest, trigger: str, event_type: str) -> List[str]:
        sent = []
        for rule in request.workflow.escalation_rules:
            if rule.trigger_condition == trigger:
                payload = {**self._payload(request), "escalation_rule": rule.rule_id, "trigger": trigger}
                sent += self._notify(
                    rule.target_roles, rule.target_users, rule.notification_method,
                    rule.urgency_level, payload, event_type,
                )
        return sent

    def _notify_escalation(self, request: InvoiceApprovalRequest, trigger: str) -> List[str]:
        if not request.workflow.automation_settings.notification_preferences.stakeholder_updates:
            return []
        sent = self._notify_rules(request, trigger, "ApprovalEscalated")
        if not any(r.trigger_condition == trigger for r in request.workflow.escalation_rules):
            payload = {**self._payload(request), "trigger": trigger}
            sent += self._notify(settings.default_escalation_roles, [], "email", "high", payload, "ApprovalEscalated")
        return sent

    def _notify_submission_alerts(self, request: InvoiceApprovalRequest) -> List[str]:
        prefs = request.workflow.automation_settings.notification_preferences
        sent = []
        if prefs.stakeholder_updates and request.fraud_risk_score >= self.high_risk_threshold:
            sent += self._notify_rules(request, "high_risk_score", "HighRiskInvoice")
        if prefs.compliance_alerts and request.compliance_status.overall_status in ("non_compliant", "partial_compliance"):
            sent += self._notify_rules(request, "compliance_failure", "ComplianceFailure")
        return sent

    def _notify_after_action(
        self,
        request: InvoiceApprovalRequest,
        action: str,
        next_action: str,
        delegate_to: Optional[str],
    ) -> List[str]:
        if next_action == "reject":
            return self._notify_submitter(request, "InvoiceRejected", "medium") + self._notify_rules(
                request, "rejection", "ApprovalRejected"
            )
        if next_action == "escalate":
            return self._notify_escalation(request, "manual_escalation")
        if next_action == "await_info":
            return self._notify_submitter(request, "InformationRequested", "medium")
        if next_action == "delegated":
            payload = self._payload(request)
            return self._notify([], [delegate_to], "email", "medium", payload, "ApproverAssigned")
        if next_action == "complete":
            sent = self._notify_submitter(request, "InvoiceApproved", "low")
            if request.workflow.automation_settings.notification_preferences.stakeholder_updates:
                sent += self._notify(["accounts_payable"], [], "email", "low", self._payload(request), "InvoiceApproved")
            return sent
        # Level advanced: new approvers need to hear about it
        if action == "approved" and all(a.status == "pending" for a in request.current_approvers):
            return self._notify_approvers(request)
        return []
