"""
Compliance checking for invoices.

Runs each configured ComplianceCheck by evaluating its ValidationRules
against invoice fields. Deterministic auto-fixes (recomputing subtotal,
tax or total) are applied to the invoice in place when the check allows
it. A rule with malformed parameters degrades its check to ``skipped``
instead of failing the whole submission.
"""

import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..core.errors import RuleEvaluationError
from ..models.invoice import Invoice
from ..models.workflow import ComplianceCheck, ValidationRule
from ..models.approval import CheckResult, ComplianceStatus, RegulatoryRequirement

REGULATION_BY_CHECK_TYPE = {
    "regulatory": "SOX",
    "accounting_standards": "GAAP",
    "tax": "Tax Regulations",
    "internal_policy": "Internal Policy",
    "industry_specific": "Industry Specific",
}

FIXABLE_FIELDS = ("subtotal", "tax_amount", "total", "balance_due")

_MISSING = object()


def resolve_field(obj: Any, path: str) -> Any:
    """
    Resolve a dotted field path against a model, dict or list.

    ``line_items.0.amount`` and ``custom_fields.po_number`` are both valid.
    Returns None for any missing segment.
    """
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            value = getattr(current, part, _MISSING)
            current = None if value is _MISSING else value
    return current


def _number(rule: ValidationRule, name: str, default: Optional[float] = None) -> Optional[float]:
    raw = rule.parameters.get(name, default)
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise RuleEvaluationError(rule.rule_id, f"parameter '{name}' must be numeric, got {raw!r}")


def _recompute_subtotal(invoice: Invoice) -> None:
    invoice.subtotal = round(sum(item.amount for item in invoice.line_items), 2)
    _recompute_total(invoice)


def _recompute_tax(invoice: Invoice, rate: Optional[float] = None) -> None:
    invoice.tax_amount = round(invoice.subtotal * (invoice.tax_rate if rate is None else rate), 2)
    _recompute_total(invoice)


def _recompute_total(invoice: Invoice) -> None:
    old_total = invoice.total
    invoice.total = round(invoice.subtotal + invoice.tax_amount, 2)
    if invoice.balance_due is not None and abs(invoice.balance_due - old_total) < 0.005:
        invoice.balance_due = invoice.total


class ComplianceChecker:
    """
    Validates invoices against regulatory and internal rule sets.

    Args:
        reference_tables: Named lookup tables for ``lookup`` rules and
            ``rate_table`` tax calculations
        custom_predicates: Named callables for ``custom`` rules
    """

    def __init__(
        self,
        reference_tables: Optional[Dict[str, Any]] = None,
        custom_predicates: Optional[Dict[str, Callable[[Invoice], bool]]] = None,
    ):
        self.reference_tables = reference_tables or {}
        self.custom_predicates = custom_predicates or {}

    def check(self, invoice: Invoice, checks: List[ComplianceCheck]) -> ComplianceStatus:
        results: List[CheckResult] = []
        degraded: List[str] = []
        critical_failure = False

        for check in checks:
            result = self._run_check(invoice, check, degraded)
            if result.status == "failed" and check.severity == "critical":
                critical_failure = True
            results.append(result)

        failed = [r for r in results if r.status == "failed"]
        if critical_failure:
            overall = "non_compliant"
        elif failed:
            overall = "partial_compliance"
        elif degraded:
            overall = "requires_review"
        else:
            overall = "compliant"

        status = ComplianceStatus(
            overall_status=overall,
            compliance_score=self._score(results),
            checks_performed=results,
            regulatory_requirements=self._regulatory_summary(checks, results),
            degraded_checks=degraded,
        )

        logger.info(
            "Compliance check complete",
            invoice_number=invoice.invoice_number,
            overall_status=overall,
            checks=len(results),
            failed=len(failed),
        )
        return status

    def _run_check(self, invoice: Invoice, check: ComplianceCheck, degraded: List[str]) -> CheckResult:
        failures = []
        fixed = []
        # Fixes land on a working copy and are kept only if the whole check evaluates
        working = invoice.model_copy(deep=True)
        try:
            for rule in check.validation_rules:
                ok, detail = self._evaluate_rule(working, rule)
                if not ok and check.auto_fix_available and rule.auto_correction_logic:
                    if self._apply_fix(working, rule):
                        ok, detail = self._evaluate_rule(working, rule)
                        if ok:
                            fixed.append(rule.rule_name)
                if not ok:
                    failures.append(rule.error_message or detail)
        except RuleEvaluationError as e:
            logger.warning("Compliance check skipped", check_id=check.id, error=str(e))
            degraded.append(f"{check.id}: {e}")
            return CheckResult(
                check_id=check.id,
                check_name=check.name,
                status="skipped",
                details=f"Rule evaluation error: {e}",
                manual_review_required=True,
            )

        if fixed:
            for field in FIXABLE_FIELDS:
                setattr(invoice, field, getattr(working, field))

        if not failures:
            details = "All validation rules passed"
            if fixed:
                details += f" after auto-fix ({', '.join(fixed)})"
            return CheckResult(
                check_id=check.id,
                check_name=check.name,
                status="passed",
                details=details,
                auto_fix_applied=bool(fixed),
            )

        return CheckResult(
            check_id=check.id,
            check_name=check.name,
            status="warning" if check.severity == "low" else "failed",
            details="; ".join(failures),
            auto_fix_applied=bool(fixed),
            manual_review_required=True,
        )

    def _evaluate_rule(self, invoice: Invoice, rule: ValidationRule) -> Tuple[bool, str]:
        kind = rule.validation_type
        value = resolve_field(invoice, rule.field_path) if rule.field_path else None

        if kind == "required":
            if not rule.field_path:
                raise RuleEvaluationError(rule.rule_id, "required rule needs a field_path")
            ok = value not in (None, "", [], {})
            return ok, f"{rule.field_path} is required"

        if kind == "format":
            pattern = rule.parameters.get("pattern")
            if not isinstance(pattern, str):
                raise RuleEvaluationError(rule.rule_id, "format rule needs a 'pattern' string")
            try:
                matched = value is not None and re.fullmatch(pattern, str(value)) is not None
            except re.error as e:
                raise RuleEvaluationError(rule.rule_id, f"invalid pattern: {e}")
            return matched, f"{rule.field_path} does not match {pattern}"

        if kind == "range":
            low = _number(rule, "min")
            high = _number(rule, "max")
            if low is None and high is None:
                raise RuleEvaluationError(rule.rule_id, "range rule needs 'min' or 'max'")
            if not isinstance(value, (int, float)):
                return False, f"{rule.field_path} is not numeric"
            ok = (low is None or value >= low) and (high is None or value <= high)
            return ok, f"{rule.field_path}={value} outside [{low}, {high}]"

        if kind == "lookup":
            allowed = self._lookup_values(rule)
            return value in allowed, f"{rule.field_path}={value!r} not in reference values"

        if kind == "calculation":
            return self._evaluate_calculation(invoice, rule)

        if kind == "custom":
            name = rule.parameters.get("predicate")
            predicate = self.custom_predicates.get(name)
            if predicate is None:
                raise RuleEvaluationError(rule.rule_id, f"unknown custom predicate {name!r}")
            try:
                passed = bool(predicate(invoice))
            except Exception as e:
                raise RuleEvaluationError(rule.rule_id, f"custom predicate {name} raised {type(e).__name__}: {e}") from e
            return passed, f"custom predicate {name} failed"

        raise RuleEvaluationError(rule.rule_id, f"unsupported validation type {kind!r}")

    def _lookup_values(self, rule: ValidationRule) -> Iterable:
        if "allowed" in rule.parameters:
            allowed = rule.parameters["allowed"]
            if not isinstance(allowed, (list, tuple, set)):
                raise RuleEvaluationError(rule.rule_id, "'allowed' must be a list")
            return allowed
        table = rule.parameters.get("table")
        if table not in self.reference_tables:
            raise RuleEvaluationError(rule.rule_id, f"unknown reference table {table!r}")
        return self.reference_tables[table]

    def _tax_rate(self, invoice: Invoice, rule: ValidationRule) -> float:
        if "rate" in rule.parameters:
            return _number(rule, "rate")
        table = rule.parameters.get("rate_table")
        if table is not None:
            rates = self.reference_tables.get(table)
            if not isinstance(rates, dict):
                raise RuleEvaluationError(rule.rule_id, f"unknown rate table {table!r}")
            if invoice.currency not in rates:
                raise RuleEvaluationError(rule.rule_id, f"no rate for {invoice.currency} in {table}")
            return float(rates[invoice.currency])
        return invoice.tax_rate

    def _evaluate_calculation(self, invoice: Invoice, rule: ValidationRule) -> Tuple[bool, str]:
        expression = rule.parameters.get("expression")
        tolerance = _number(rule, "tolerance", 0.01)

        if expression == "subtotal_matches_line_items":
            if not invoice.line_items:
                return True, ""
            expected = sum(item.amount for item in invoice.line_items)
            actual = invoice.subtotal
            label = "subtotal"
        elif expression == "total_matches_subtotal_plus_tax":
            expected = invoice.subtotal + invoice.tax_amount
            actual = invoice.total
            label = "total"
        elif expression == "tax_matches_rate":
            expected = invoice.subtotal * self._tax_rate(invoice, rule)
            actual = invoice.tax_amount
            label = "tax_amount"
        else:
            raise RuleEvaluationError(rule.rule_id, f"unknown calculation {expression!r}")

        ok = abs(expected - actual) <= tolerance
        return ok, f"{label} is {actual:.2f}, expected {expected:.2f}"

    def _apply_fix(self, invoice: Invoice, rule: ValidationRule) -> bool:
        logic = rule.auto_correction_logic
        if logic == "recompute_subtotal":
            _recompute_subtotal(invoice)
        elif logic == "recompute_tax":
            _recompute_tax(invoice, self._tax_rate(invoice, rule))
        elif logic == "recompute_total":
            _recompute_total(invoice)
        else:
            # Non-deterministic or unknown fixes are left for manual review
            return False

        logger.info("Applied compliance auto-fix", rule_id=rule.rule_id, fix=logic, invoice_number=invoice.invoice_number)
        return True

    @staticmethod
    def _score(results: List[CheckResult]) -> float:
        weights = {"passed": 1.0, "warning": 0.5, "failed": 0.0}
        scored = [weights[r.status] for r in results if r.status in weights]
        if not scored:
            return 100.0
        return round(sum(scored) / len(scored) * 100, 1)

    @staticmethod
    def _regulatory_summary(checks: List[ComplianceCheck], results: List[CheckResult]) -> List[RegulatoryRequirement]:
        grouped: Dict[str, List[Tuple[ComplianceCheck, CheckResult]]] = {}
        for check, result in zip(checks, results):
            regulation = check.regulation or REGULATION_BY_CHECK_TYPE[check.check_type]
            grouped.setdefault(regulation, []).append((check, result))

        summary = []
        for regulation, pairs in grouped.items():
            met = [c.name for c, r in pairs if r.status in ("passed", "warning")]
            failed = [c.name for c, r in pairs if r.status == "failed"]
            if failed:
                status = "non_compliant"
            elif met:
                status = "compliant"
            else:
                status = "not_applicable"
            summary.append(RegulatoryRequirement(
                regulation=regulation,
                status=status,
                requirements_met=met,
                requirements_failed=failed,
            ))
        return summary
