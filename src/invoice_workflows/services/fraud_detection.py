"""
Fraud risk scoring for submitted invoices.

Each configured FraudDetectionRule selects a signal evaluator by its
``fraud_type``. An evaluator returns a signal in [0, 1] with evidence; the
rule contributes ``risk_score_weight x signal`` points and the overall
score is the clamped sum of all contributions (0-100), so heavily weighted
rules dominate rather than being averaged away.

Evaluators are pluggable: pass ``signals={...}`` to FraudRiskAnalyzer to
substitute statistical or ML-backed implementations per fraud type.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, List, Optional

from loguru import logger

from ..core.errors import RuleEvaluationError
from ..models.invoice import Invoice, Customer
from ..models.workflow import FraudDetectionRule
from ..models.approval import FraudRiskBreakdown, RiskFactor, HistoricalComparison


@dataclass
class HistoricalInvoice:
    """A previously submitted invoice for the same customer"""
    invoice: Invoice
    submitted_at: datetime
    fraud_score: Optional[float] = None


@dataclass
class Signal:
    value: float
    evidence: List[str] = field(default_factory=list)
    mitigations: List[str] = field(default_factory=list)


HistoryProvider = Callable[[str], List[HistoricalInvoice]]


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _param(rule: FraudDetectionRule, name: str, default: float) -> float:
    """Read a numeric algorithm parameter, raising RuleEvaluationError if malformed"""
    raw = rule.detection_algorithm.parameters.get(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise RuleEvaluationError(rule.rule_id, f"parameter '{name}' must be numeric, got {raw!r}")


class FraudSignal(ABC):
    """Strategy interface for one fraud type"""

    factor_type: str = "generic"
    factor_name: str = "Generic signal"

    @abstractmethod
    def evaluate(
        self,
        invoice: Invoice,
        customer: Optional[Customer],
        history: List[HistoricalInvoice],
        rule: FraudDetectionRule,
        now: datetime,
    ) -> Signal:
        """
        Compute the rule-specific signal.

        Returns:
            Signal with value in [0, 1]

        Raises:
            RuleEvaluationError: if the rule's parameters are malformed
        """
        pass


class DuplicateInvoiceSignal(FraudSignal):
    factor_type = "duplicate_detection"
    factor_name = "Possible duplicate invoice"

    def evaluate(self, invoice, customer, history, rule, now):
        window = timedelta(days=rule.historical_analysis_window)
        others = [h for h in history if h.invoice.id != invoice.id]

        same_number = [h for h in others if h.invoice.invoice_number == invoice.invoice_number]
        if same_number:
            return Signal(
                1.0,
                [f"Invoice number {invoice.invoice_number} was already submitted"],
                ["Confirm with the customer that this is not a resubmission", "Void the earlier invoice if superseded"],
            )

        tolerance = _param(rule, "amount_tolerance", 0.01)
        same_amount = [
            h for h in others
            if abs(h.invoice.total - invoice.total) <= tolerance and now - _as_utc(h.submitted_at) <= window
        ]
        if same_amount:
            return Signal(
                0.8,
                [
                    f"{len(same_amount)} invoice(s) with total {invoice.total:.2f} "
                    f"in the last {rule.historical_analysis_window} days"
                ],
                ["Compare line items with the matching invoice(s)"],
            )
        return Signal(0.0)


class UnusualAmountSignal(FraudSignal):
    factor_type = "amount_analysis"
    factor_name = "Unusual amount pattern"

    def evaluate(self, invoice, customer, history, rule, now):
        max_ratio = _param(rule, "max_ratio", 3.0)
        if max_ratio <= 1:
            raise RuleEvaluationError(rule.rule_id, "parameter 'max_ratio' must be greater than 1")

        amounts = [h.invoice.total for h in history if h.invoice.id != invoice.id]
        if not amounts:
            # No baseline is itself a mild signal
            return Signal(0.2, ["No invoice history to establish an amount baseline"], ["Verify against a purchase order"])

        baseline = sum(amounts) / len(amounts)
        if baseline <= 0:
            return Signal(0.2, ["Historical baseline amount is zero"], ["Verify against a purchase order"])

        ratio = invoice.total / baseline
        value = _clamp((ratio - 1) / (max_ratio - 1))
        if value == 0:
            return Signal(0.0)
        return Signal(
            value,
            [f"Amount is {ratio:.0%} of the customer's average of {baseline:.2f}"],
            ["Verify with purchase order", "Contact customer for confirmation"],
        )


class SuspiciousVendorSignal(FraudSignal):
    factor_type = "entity_verification"
    factor_name = "New or unverified customer"

    def evaluate(self, invoice, customer, history, rule, now):
        if customer is None:
            return Signal(1.0, [f"Customer {invoice.customer_id} is not on record"], ["Complete customer onboarding checks"])
        if not customer.is_active:
            return Signal(1.0, [f"Customer {customer.name} is inactive"], ["Confirm the account was reactivated legitimately"])

        new_entity_days = _param(rule, "new_entity_days", 30)
        if customer.created_at and now - _as_utc(customer.created_at) <= timedelta(days=new_entity_days):
            return Signal(0.6, [f"Customer created within the last {new_entity_days:.0f} days"], ["Verify customer identity and bank details"])
        if not history:
            return Signal(0.3, ["First invoice submitted for this customer"], ["Review customer master data"])
        return Signal(0.0)


class TimingAnomalySignal(FraudSignal):
    factor_type = "timing_analysis"
    factor_name = "Time of submission anomaly"

    def evaluate(self, invoice, customer, history, rule, now):
        start = _param(rule, "business_start", 7)
        end = _param(rule, "business_end", 20)
        if not 0 <= start < end <= 24:
            raise RuleEvaluationError(rule.rule_id, f"invalid business hours {start}-{end}")

        submitted = invoice.submitted_at or now
        value = 0.0
        evidence = []
        if submitted.weekday() >= 5:
            value += 0.6
            evidence.append(f"Submitted on a {submitted.strftime('%A')}")
        if not start <= submitted.hour < end:
            value += 0.5
            evidence.append(f"Submitted outside business hours ({submitted.strftime('%H:%M')})")
        if value == 0:
            return Signal(0.0)
        return Signal(_clamp(value), evidence, ["Confirm the submitter's activity with their manager"])


class PatternDeviationSignal(FraudSignal):
    factor_type = "pattern_analysis"
    factor_name = "Invoice structure deviation"

    def evaluate(self, invoice, customer, history, rule, now):
        round_unit = _param(rule, "round_unit", 1000)
        tolerance = _param(rule, "tolerance", 0.01)
        if round_unit <= 0:
            raise RuleEvaluationError(rule.rule_id, "parameter 'round_unit' must be positive")

        value = 0.0
        evidence = []
        if invoice.total >= round_unit and invoice.total % round_unit == 0:
            value += 0.5
            evidence.append(f"Total {invoice.total:.2f} is a round multiple of {round_unit:.0f}")
        if invoice.line_items:
            line_sum = sum(item.amount for item in invoice.line_items)
            if abs(line_sum - invoice.subtotal) > tolerance:
                value += 0.7
                evidence.append(f"Line items sum to {line_sum:.2f} but subtotal is {invoice.subtotal:.2f}")
        if value == 0:
            return Signal(0.0)
        return Signal(_clamp(value), evidence, ["Request an itemised breakdown"])


class GhostEntitySignal(FraudSignal):
    factor_type = "entity_verification"
    factor_name = "Possible ghost entity"

    def evaluate(self, invoice, customer, history, rule, now):
        if customer is None or not customer.name.strip():
            return Signal(1.0, ["No customer record backs this invoice"], ["Block payment until the entity is verified"])
        if not customer.email and not customer.address:
            return Signal(0.7, [f"Customer {customer.name} has no contact details"], ["Obtain and verify contact details"])
        return Signal(0.0)


DEFAULT_SIGNALS: Dict[str, FraudSignal] = {
    "duplicate_invoice": DuplicateInvoiceSignal(),
    "unusual_amount": UnusualAmountSignal(),
    "suspicious_vendor": SuspiciousVendorSignal(),
    "timing_anomaly": TimingAnomalySignal(),
    "pattern_deviation": PatternDeviationSignal(),
    "ghost_entity": GhostEntitySignal(),
}


def _run_signal(
    evaluator: FraudSignal,
    invoice: Invoice,
    customer: Optional[Customer],
    history: List[HistoricalInvoice],
    rule: FraudDetectionRule,
    now: datetime,
) -> Signal:
    # Plug-in evaluators may fail in arbitrary ways; treat any failure as a malformed rule
    try:
        return evaluator.evaluate(invoice, customer, history, rule, now)
    except RuleEvaluationError:
        raise
    except Exception as e:
        raise RuleEvaluationError(rule.rule_id, f"{type(e).__name__}: {e}") from e


class FraudRiskAnalyzer:
    """
    Scores an invoice for fraud likelihood against a rule set.

    Args:
        history_provider: Callable returning prior invoices for a customer id
        signals: Evaluator overrides keyed by fraud_type
        clock: Returns the current time (UTC)
    """

    def __init__(
        self,
        history_provider: Optional[HistoryProvider] = None,
        signals: Optional[Dict[str, FraudSignal]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.history_provider = history_provider or (lambda customer_id: [])
        self.signals = {**DEFAULT_SIGNALS, **(signals or {})}
        self.clock = clock or (lambda: datetime.now(UTC))

    def analyze(
        self,
        invoice: Invoice,
        customer: Optional[Customer],
        rules: List[FraudDetectionRule],
    ) -> FraudRiskBreakdown:
        now = self.clock()
        history = self.history_provider(invoice.customer_id)

        factors: List[RiskFactor] = []
        degraded: List[str] = []
        total = 0.0

        for rule in rules:
            evaluator = self.signals.get(rule.fraud_type)
            try:
                if evaluator is None:
                    raise RuleEvaluationError(rule.rule_id, f"no evaluator for fraud type '{rule.fraud_type}'")
                signal = _run_signal(evaluator, invoice, customer, history, rule, now)
            except RuleEvaluationError as e:
                # Neutral risk for a malformed rule; recorded for the audit trail
                logger.warning("Fraud rule degraded to neutral risk", rule_id=rule.rule_id, error=str(e))
                degraded.append(f"{rule.rule_id}: {e}")
                continue

            value = _clamp(signal.value)
            if value <= 0:
                continue

            contribution = rule.risk_score_weight * value
            total += contribution
            fpr = rule.detection_algorithm.false_positive_rate
            factors.append(RiskFactor(
                factor_type=evaluator.factor_type,
                factor_name=evaluator.factor_name,
                rule_id=rule.rule_id,
                risk_score=round(contribution, 2),
                signal=round(value, 3),
                confidence=round(_clamp(1 - fpr) * (1.0 if history else 0.7), 3),
                description=rule.description or rule.rule_name,
                evidence=signal.evidence,
                mitigation_suggestions=signal.mitigations,
            ))

        overall = round(_clamp(total, 0.0, 100.0), 2)
        factors.sort(key=lambda f: f.risk_score, reverse=True)

        breakdown = FraudRiskBreakdown(
            overall_score=overall,
            risk_factors=factors,
            historical_comparison=self._compare_history(history, rules),
            insights=self._insights(overall, factors, rules, history),
            degraded_rules=degraded,
        )

        logger.info(
            "Fraud analysis complete",
            invoice_number=invoice.invoice_number,
            score=overall,
            factors=len(factors),
            degraded=len(degraded),
        )
        return breakdown

    def _compare_history(self, history, rules) -> HistoricalComparison:
        scores = [h.fraud_score for h in history if h.fraud_score is not None]
        fpr = sum(r.detection_algorithm.false_positive_rate for r in rules) / len(rules) if rules else 0.0
        return HistoricalComparison(
            similar_invoices_analyzed=len(history),
            average_risk_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
            false_positive_rate=round(fpr, 4),
            detection_accuracy=round(1 - fpr, 4) if rules else 0.0,
        )

    def _insights(self, overall, factors, rules, history) -> List[str]:
        insights = []
        if not factors:
            insights.append(f"No risk signals detected across {len(rules)} rule(s)")
        else:
            top = factors[0]
            insights.append(f"Highest risk factor: {top.factor_name} ({top.risk_score:.1f} points)")
        if not history:
            insights.append("No prior invoices for this customer; scores carry lower confidence")
        return insights
