"""
Collections automation for overdue invoices.

Builds an outreach strategy and attempt schedule per invoice from days
overdue and the customer's payment behavior, tracks attempts and
payments, and monitors active automations for performance problems.

Shares only the Invoice/Customer shapes with the approval engine.
"""

import calendar
import threading
import uuid
from collections import Counter
from datetime import date, datetime, time, timedelta, UTC
from typing import Callable, Dict, List, Optional

from loguru import logger

from ..core.config import settings
from ..core.errors import NotFoundError, StateConflictError, ValidationError
from ..models.invoice import Invoice, Customer
from ..models.collections import (
    AutomationPayment,
    AutomationSchedule,
    CollectionAutomation,
    CollectionEscalationStep,
    CollectionStrategy,
    CustomerPaymentBehavior,
    ImprovementRecommendation,
    Installment,
    MessageTemplate,
    MonitoringReport,
    PaymentPlan,
    PaymentRecord,
    PerformanceAlert,
    PersonalizedMessage,
    ScheduledAttempt,
)

STRATEGY_ORDER = ["gentle", "standard", "aggressive"]
TONE_ORDER = ["friendly", "professional", "urgent", "formal"]

STRATEGY_CHANNELS = {
    "gentle": ["email", "portal"],
    "standard": ["email", "sms", "phone"],
    "aggressive": ["email", "phone", "sms", "letter"],
    "legal": ["letter", "email", "phone"],
}
STRATEGY_INTERVAL_DAYS = {"gentle": 7, "standard": 5, "aggressive": 3, "legal": 7}
STRATEGY_TONE = {"gentle": "friendly", "standard": "professional", "aggressive": "urgent", "legal": "formal"}
TONE_TEMPLATE = {
    "friendly": "gentle_reminder",
    "professional": "standard_followup",
    "urgent": "urgent_notice",
    "formal": "urgent_notice",
}

DEFAULT_TEMPLATES = [
    MessageTemplate(
        id="gentle_reminder",
        name="Gentle Payment Reminder",
        channel="email",
        tone="friendly",
        subject="Friendly Reminder: Invoice {{invoice_number}} Payment Due",
        content=(
            "Hi {{customer_name}},\n\n"
            "{{personalized_greeting}}\n\n"
            "This is a friendly reminder that Invoice {{invoice_number}} for {{invoice_amount}} "
            "was due on {{due_date}}. If you've already sent the payment, please disregard this message.\n\n"
            "{{incentive_offer}}\n\n"
            "Pay online: {{payment_link}}\n\n"
            "Thank you for your business!"
        ),
    ),
    MessageTemplate(
        id="standard_followup",
        name="Standard Follow-up",
        channel="email",
        tone="professional",
        subject="Payment Required: Invoice {{invoice_number}} - {{days_overdue}} Days Overdue",
        content=(
            "Dear {{customer_name}},\n\n"
            "Our records show that Invoice {{invoice_number}} for {{invoice_amount}} is now "
            "{{days_overdue}} days overdue. The original due date was {{due_date}}.\n\n"
            "Please arrange payment to keep your account in good standing.\n\n"
            "{{incentive_offer}}\n\n"
            "Pay online: {{payment_link}}\n\n"
            "{{next_steps}}\n\n"
            "Accounts Receivable"
        ),
    ),
    MessageTemplate(
        id="urgent_notice",
        name="Urgent Payment Notice",
        channel="email",
        tone="urgent",
        subject="URGENT: Final Notice - Invoice {{invoice_number}} Payment Required",
        content=(
            "{{customer_name}},\n\n"
            "This is your FINAL NOTICE for Invoice {{invoice_number}} in the amount of "
            "{{invoice_amount}}, which is now {{days_overdue}} days overdue.\n\n"
            "Payment must be received within 7 days to avoid collection agency involvement, "
            "additional fees and account suspension.\n\n"
            "{{incentive_offer}}\n\n"
            "Pay online: {{payment_link}}\n\n"
            "{{next_steps}}\n\n"
            "Collections Department"
        ),
    ),
]


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class CollectionsAutomationEngine:
    """
    Overdue-invoice outreach engine.

    Args:
        payment_history: Callable returning settled PaymentRecords for a
            customer id (payments recorded through this engine are added)
        clock: Returns the current time (UTC)
        templates: Message templates (defaults to DEFAULT_TEMPLATES)
    """

    def __init__(
        self,
        payment_history: Optional[Callable[[str], List[PaymentRecord]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        templates: Optional[List[MessageTemplate]] = None,
        legal_threshold: Optional[float] = None,
        min_recovery_rate: Optional[float] = None,
        min_response_rate: Optional[float] = None,
    ):
        self.payment_history = payment_history or (lambda customer_id: [])
        self.clock = clock or (lambda: datetime.now(UTC))
        self.templates = {t.id: t for t in (templates or DEFAULT_TEMPLATES)}
        self.legal_threshold = settings.collections_legal_threshold if legal_threshold is None else legal_threshold
        self.min_recovery_rate = (
            settings.collections_min_recovery_rate if min_recovery_rate is None else min_recovery_rate
        )
        self.min_response_rate = (
            settings.collections_min_response_rate if min_response_rate is None else min_response_rate
        )
        self.business_hours = (settings.collections_business_start_hour, settings.collections_business_end_hour)

        self._automations: Dict[str, CollectionAutomation] = {}
        self._recorded_payments: Dict[str, List[PaymentRecord]] = {}
        self._lock = threading.Lock()

    # Behavior and strategy

    def analyze_customer_behavior(self, customer: Customer) -> CustomerPaymentBehavior:
        records = list(self.payment_history(customer.id)) + self._recorded_payments.get(customer.id, [])

        if not records:
            return CustomerPaymentBehavior(
                customer_id=customer.id,
                collection_difficulty="difficult" if customer.risk_score >= 70 else "moderate",
            )

        on_time = sum(1 for r in records if r.days_late <= 0) / len(records)
        avg_late = sum(max(r.days_late, 0) for r in records) / len(records)
        reliability = max(0.0, min(10.0, 10 * on_time - min(avg_late, 30) / 10))
        default_probability = max(0.01, min(0.95, 0.05 + avg_late / 100 + (1 - on_time) * 0.2))

        if reliability >= 8:
            difficulty = "easy"
        elif reliability <= 4:
            difficulty = "difficult"
        else:
            difficulty = "moderate"

        channels = Counter(r.channel for r in records if r.channel)
        preferred = channels.most_common(1)[0][0] if channels else "email"

        return CustomerPaymentBehavior(
            customer_id=customer.id,
            invoices_analyzed=len(records),
            average_days_to_pay=round(sum(r.days_to_pay for r in records) / len(records), 1),
            average_days_late=round(avg_late, 1),
            payment_reliability_score=round(reliability, 1),
            default_probability=round(default_probability, 3),
            collection_difficulty=difficulty,
            preferred_channel=preferred,
        )

    def select_strategy(
        self,
        days_overdue: int,
        outstanding: float,
        behavior: CustomerPaymentBehavior,
        preference: Optional[str] = None,
    ) -> CollectionStrategy:
        rationale = []
        if preference:
            strategy = preference
            rationale.append(f"Strategy '{preference}' requested explicitly")
        else:
            if days_overdue <= 15:
                strategy = "gentle"
            elif days_overdue <= 45:
                strategy = "standard"
            elif days_overdue <= 90 or outstanding < self.legal_threshold:
                strategy = "aggressive"
            else:
                strategy = "legal"
            rationale.append(f"{days_overdue} days overdue suggests a {strategy} approach")

            if strategy in STRATEGY_ORDER:
                index = STRATEGY_ORDER.index(strategy)
                if behavior.collection_difficulty == "easy" and index > 0:
                    strategy = STRATEGY_ORDER[index - 1]
                    rationale.append("Reliable payment history; softened to " + strategy)
                elif behavior.collection_difficulty == "difficult" and index < len(STRATEGY_ORDER) - 1:
                    strategy = STRATEGY_ORDER[index + 1]
                    rationale.append("Difficult collection history; escalated to " + strategy)

        channels = list(STRATEGY_CHANNELS[strategy])
        if behavior.preferred_channel in channels:
            channels.remove(behavior.preferred_channel)
        channels.insert(0, behavior.preferred_channel)

        incentives = []
        if days_overdue < 10 and strategy in ("gentle", "standard"):
            incentives.append("1% discount on next invoice if paid within 5 days")
        if outstanding > 10000:
            incentives.append("Payment plan available on request")

        return CollectionStrategy(
            strategy_type=strategy,
            communication_channels=channels,
            days_overdue=days_overdue,
            rationale=rationale,
            payment_incentives=incentives,
        )

    def build_schedule(self, strategy: CollectionStrategy, start: date) -> AutomationSchedule:
        """
        Lay out attempts from ``start`` at the strategy's interval.

        Attempts fall at the start of business hours and skip excluded
        weekdays. Tone steps up once in the second half of the schedule.
        """
        kind = strategy.strategy_type
        max_attempts = 8 if kind == "aggressive" else 5
        interval = STRATEGY_INTERVAL_DAYS[kind]
        excluded = [6]
        base_tone = TONE_ORDER.index(STRATEGY_TONE[kind])

        attempts = []
        day = start
        for n in range(max_attempts):
            while day.weekday() in excluded:
                day += timedelta(days=1)
            tone = TONE_ORDER[min(len(TONE_ORDER) - 1, base_tone + (1 if n >= max_attempts // 2 else 0))]
            attempts.append(ScheduledAttempt(
                attempt_number=n + 1,
                channel=strategy.communication_channels[n % len(strategy.communication_channels)],
                scheduled_at=datetime.combine(day, time(self.business_hours[0]), tzinfo=UTC),
                tone=tone,
                template_id=TONE_TEMPLATE[tone],
            ))
            day += timedelta(days=interval)

        steps = [
            CollectionEscalationStep(
                step=1,
                trigger_condition="no_response_3_days",
                days_since_last_action=3,
                action_type="escalate_tone",
                notification_recipients=["collections"],
            ),
            CollectionEscalationStep(
                step=2,
                trigger_condition="attempts_exhausted",
                days_since_last_action=interval,
                action_type="legal_referral" if kind in ("aggressive", "legal") else "assign_collector",
                notification_recipients=["collections_manager"],
                approval_required=kind in ("aggressive", "legal"),
            ),
        ]

        return AutomationSchedule(
            max_attempts=max_attempts,
            interval_days=interval,
            attempts=attempts,
            escalation_steps=steps,
            business_hours=self.business_hours,
            excluded_weekdays=excluded,
        )

    # Automations

    def create_automation(
        self,
        invoice: Invoice,
        customer: Customer,
        strategy_preference: Optional[str] = None,
    ) -> CollectionAutomation:
        """
        Start a collection automation for an overdue invoice.

        Raises:
            ValidationError: Invoice has no due date, nothing outstanding,
                is already settled, or belongs to another customer
        """
        if invoice.customer_id != customer.id:
            raise ValidationError(f"Invoice {invoice.invoice_number} does not belong to customer {customer.id}")
        if invoice.due_date is None:
            raise ValidationError(f"Invoice {invoice.invoice_number} has no due date")
        if invoice.status in ("paid", "void"):
            raise ValidationError(f"Invoice {invoice.invoice_number} is {invoice.status}")
        if invoice.outstanding <= 0:
            raise ValidationError(f"Invoice {invoice.invoice_number} has no outstanding balance")
        if strategy_preference is not None and strategy_preference not in STRATEGY_CHANNELS:
            raise ValidationError(f"Unknown strategy: {strategy_preference}")

        now = self.clock()
        today = now.date()
        days_overdue = max(0, (today - invoice.due_date).days)
        behavior = self.analyze_customer_behavior(customer)
        strategy = self.select_strategy(days_overdue, invoice.outstanding, behavior, strategy_preference)

        # First attempt the day after the due date, or today if already past it
        start = max(today, invoice.due_date + timedelta(days=1))
        schedule = self.build_schedule(strategy, start)

        automation = CollectionAutomation(
            id=str(uuid.uuid4()),
            invoice_id=invoice.id,
            customer_id=customer.id,
            invoice_number=invoice.invoice_number,
            customer_name=customer.name,
            customer_email=customer.email,
            currency=invoice.currency,
            created_at=now,
            updated_at=now,
            due_date=invoice.due_date,
            schedule=schedule,
            strategy=strategy,
            behavior=behavior,
        )
        automation.performance_metrics.amount_targeted = invoice.outstanding

        with self._lock:
            self._automations[automation.id] = automation

        logger.info(
            "Collection automation created",
            automation_id=automation.id,
            invoice_number=invoice.invoice_number,
            strategy=strategy.strategy_type,
            days_overdue=days_overdue,
            attempts=len(schedule.attempts),
        )
        return automation.model_copy(deep=True)

    def get_automation(self, automation_id: str) -> CollectionAutomation:
        with self._lock:
            automation = self._automations.get(automation_id)
            if automation is None:
                raise NotFoundError(f"Automation {automation_id} not found")
            return automation.model_copy(deep=True)

    def list_automations(self) -> List[CollectionAutomation]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._automations.values()]

    def record_attempt(self, automation_id: str, attempt_number: int, responded: bool = False) -> CollectionAutomation:
        with self._lock:
            automation = self._active(automation_id)
            attempt = next((a for a in automation.schedule.attempts if a.attempt_number == attempt_number), None)
            if attempt is None:
                raise NotFoundError(f"Automation {automation_id} has no attempt {attempt_number}")
            if attempt.status != "scheduled":
                raise StateConflictError(f"Attempt {attempt_number} is already {attempt.status}")

            attempt.status = "responded" if responded else "sent"
            metrics = automation.performance_metrics
            metrics.attempts_made += 1
            if responded:
                metrics.responses += 1
            elif attempt.tone in ("urgent", "formal"):
                metrics.customer_satisfaction_impact = max(0.0, metrics.customer_satisfaction_impact - 0.25)

            sent = [a for a in automation.schedule.attempts if a.channel == attempt.channel and a.status != "scheduled"]
            answered = [a for a in sent if a.status == "responded"]
            metrics.response_rates[attempt.channel] = round(len(answered) / len(sent), 3)
            automation.updated_at = self.clock()

            logger.info(
                "Collection attempt recorded",
                automation_id=automation_id,
                attempt=attempt_number,
                channel=attempt.channel,
                responded=responded,
            )
            return automation.model_copy(deep=True)

    def record_payment(self, automation_id: str, amount: float, paid_on: Optional[date] = None) -> CollectionAutomation:
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")

        with self._lock:
            automation = self._active(automation_id)
            paid_on = paid_on or self.clock().date()
            metrics = automation.performance_metrics

            automation.payments.append(AutomationPayment(amount=amount, paid_on=paid_on))
            metrics.payments_received += 1
            metrics.total_amount_recovered = round(metrics.total_amount_recovered + amount, 2)
            if metrics.amount_targeted:
                metrics.recovery_rate = round(min(1.0, metrics.total_amount_recovered / metrics.amount_targeted), 4)

            reference = automation.due_date or automation.created_at.date()
            days = [max(0, (p.paid_on - reference).days) for p in automation.payments]
            metrics.average_days_to_payment = round(sum(days) / len(days), 1)

            if metrics.total_amount_recovered >= metrics.amount_targeted - 0.005:
                automation.status = "completed"
                for attempt in automation.schedule.attempts:
                    if attempt.status == "scheduled":
                        attempt.status = "skipped"

                responded = [a for a in automation.schedule.attempts if a.status == "responded"]
                self._recorded_payments.setdefault(automation.customer_id, []).append(PaymentRecord(
                    invoice_id=automation.invoice_id,
                    amount=metrics.total_amount_recovered,
                    days_to_pay=max(0, (paid_on - automation.created_at.date()).days),
                    days_late=max(0, (paid_on - reference).days),
                    channel=responded[-1].channel if responded else None,
                ))

            automation.updated_at = self.clock()
            logger.info(
                "Collection payment recorded",
                automation_id=automation_id,
                amount=amount,
                recovery_rate=metrics.recovery_rate,
                status=automation.status,
            )
            return automation.model_copy(deep=True)

    def _active(self, automation_id: str) -> CollectionAutomation:
        automation = self._automations.get(automation_id)
        if automation is None:
            raise NotFoundError(f"Automation {automation_id} not found")
        if automation.status != "active":
            raise StateConflictError(f"Automation {automation_id} is {automation.status}")
        return automation

    # Monitoring

    def monitor_automations(self, now: Optional[datetime] = None) -> MonitoringReport:
        now = now or self.clock()
        automations = self.list_automations()
        active = [a for a in automations if a.status == "active"]

        targeted = sum(a.performance_metrics.amount_targeted for a in automations)
        recovered = sum(a.performance_metrics.total_amount_recovered for a in automations)
        paying = [a for a in automations if a.payments]
        today = sum(p.amount for a in automations for p in a.payments if p.paid_on == now.date())
        pending = sum(
            1 for a in active for attempt in a.schedule.attempts
            if attempt.status == "scheduled" and attempt.scheduled_at <= now
        )

        alerts = []
        for a in active:
            alerts.extend(self._alerts_for(a))

        report = MonitoringReport(
            active_automations=len(active),
            success_rate=round(recovered / targeted, 4) if targeted else 0.0,
            pending_actions=pending,
            revenue_recovered_today=round(today, 2),
            total_recovered=round(recovered, 2),
            average_days_to_payment=(
                round(sum(a.performance_metrics.average_days_to_payment for a in paying) / len(paying), 1)
                if paying else 0.0
            ),
            customer_satisfaction_score=(
                round(sum(a.performance_metrics.customer_satisfaction_impact for a in active) / len(active), 2)
                if active else 8.0
            ),
            performance_alerts=alerts,
            recommendations=self._recommendations(active, alerts),
        )
        logger.info(
            "Collections monitored",
            active=report.active_automations,
            alerts=len(alerts),
            pending_actions=pending,
        )
        return report

    def _alerts_for(self, automation: CollectionAutomation) -> List[PerformanceAlert]:
        metrics = automation.performance_metrics
        alerts = []

        if metrics.attempts_made >= 3 and metrics.recovery_rate < self.min_recovery_rate:
            alerts.append(PerformanceAlert(
                type="performance_drop",
                message=(
                    f"Recovery rate {metrics.recovery_rate:.0%} after {metrics.attempts_made} attempts "
                    f"is below {self.min_recovery_rate:.0%}"
                ),
                automation_id=automation.id,
                severity="high",
                recommended_action="Review strategy or switch to a more direct channel",
            ))

        if metrics.attempts_made >= 2 and metrics.responses / metrics.attempts_made < self.min_response_rate:
            alerts.append(PerformanceAlert(
                type="low_response_rate",
                message=f"{metrics.responses} responses to {metrics.attempts_made} attempts",
                automation_id=automation.id,
                severity="medium",
                recommended_action="Try the customer's alternate channels or adjust send times",
            ))

        if all(a.status != "scheduled" for a in automation.schedule.attempts):
            alerts.append(PerformanceAlert(
                type="attempts_exhausted",
                message=f"All {automation.schedule.max_attempts} attempts used with balance outstanding",
                automation_id=automation.id,
                severity="critical" if automation.strategy.strategy_type == "legal" else "high",
                recommended_action="Escalate to a collector or legal referral",
            ))
        return alerts

    def _recommendations(
        self,
        active: List[CollectionAutomation],
        alerts: List[PerformanceAlert],
    ) -> List[ImprovementRecommendation]:
        kinds = Counter(alert.type for alert in alerts)
        recommendations = []

        if kinds["low_response_rate"]:
            rates: Dict[str, List[float]] = {}
            for a in active:
                for channel, rate in a.performance_metrics.response_rates.items():
                    rates.setdefault(channel, []).append(rate)
            averages = {c: sum(r) / len(r) for c, r in rates.items()}
            best = max(averages, key=averages.get) if averages else "phone"
            recommendations.append(ImprovementRecommendation(
                type="channel_shift",
                title=f"Shift outreach toward {best}",
                description=f"{kinds['low_response_rate']} automation(s) have low response rates; {best} responds best.",
                expected_improvement=15.0,
                confidence_level=0.7,
                action_items=[f"Move {best} earlier in the channel rotation", "Review send times"],
            ))

        if kinds["performance_drop"]:
            recommendations.append(ImprovementRecommendation(
                type="strategy_optimization",
                title="Escalate underperforming automations",
                description=f"{kinds['performance_drop']} automation(s) are recovering below target.",
                expected_improvement=20.0,
                confidence_level=0.75,
                action_items=["Offer payment plans on large balances", "Step strategy up one level"],
            ))

        gentle = [a for a in active if a.strategy.strategy_type == "gentle" and a.performance_metrics.attempts_made >= 3]
        if gentle:
            recommendations.append(ImprovementRecommendation(
                type="message_improvement",
                title="Refresh gentle reminder wording",
                description=f"{len(gentle)} gentle automation(s) have needed three or more reminders.",
                expected_improvement=10.0,
                confidence_level=0.6,
                action_items=["Add a clear payment link near the top", "Mention the early-payment incentive"],
            ))
        return recommendations

    # Messages and payment plans

    def generate_personalized_message(self, automation_id: str, attempt_number: int) -> PersonalizedMessage:
        automation = self.get_automation(automation_id)
        attempt = next((a for a in automation.schedule.attempts if a.attempt_number == attempt_number), None)
        if attempt is None:
            raise NotFoundError(f"Automation {automation_id} has no attempt {attempt_number}")
        template = self.templates.get(attempt.template_id)
        if template is None:
            raise NotFoundError(f"Template {attempt.template_id} not found")

        today = self.clock().date()
        days_overdue = max(0, (today - automation.due_date).days) if automation.due_date else 0
        amount = automation.performance_metrics.amount_targeted - automation.performance_metrics.total_amount_recovered

        if automation.behavior.payment_reliability_score > 8:
            greeting = "We appreciate your excellent payment history with us."
        else:
            greeting = "Thank you for being a valued customer."

        if amount > 10000:
            incentive = "If it helps, we can arrange a payment plan."
        elif days_overdue < 10:
            incentive = "Pay within 5 days and save 1% on your next invoice."
        else:
            incentive = ""

        if attempt_number >= 3:
            next_steps = "If we do not hear from you within 3 business days, this account will be escalated."
        else:
            next_steps = f"We will follow up again in {automation.schedule.interval_days} days if payment is not received."

        replacements = {
            "{{customer_name}}": automation.customer_name,
            "{{invoice_number}}": automation.invoice_number,
            "{{invoice_amount}}": f"{automation.currency} {amount:,.2f}",
            "{{due_date}}": automation.due_date.isoformat() if automation.due_date else "",
            "{{days_overdue}}": str(days_overdue),
            "{{payment_link}}": f"{settings.collections_payment_link_base}/{automation.invoice_id}",
            "{{personalized_greeting}}": greeting,
            "{{incentive_offer}}": incentive,
            "{{next_steps}}": next_steps,
        }
        subject, content = template.subject, template.content
        for placeholder, value in replacements.items():
            subject = subject.replace(placeholder, value)
            content = content.replace(placeholder, value)

        return PersonalizedMessage(
            automation_id=automation_id,
            attempt_number=attempt_number,
            channel=attempt.channel,
            subject=subject,
            content=content,
            recommended_send_time=attempt.scheduled_at,
        )

    def create_payment_plan(
        self,
        invoice: Invoice,
        customer: Customer,
        installments: int,
        first_payment_date: date,
        interest_rate: float = 0.0,
    ) -> PaymentPlan:
        """
        Split the outstanding balance into monthly installments.

        Interest is simple interest on the principal; cents left over
        from rounding go on the last installment.
        """
        if invoice.customer_id != customer.id:
            raise ValidationError(f"Invoice {invoice.invoice_number} does not belong to customer {customer.id}")
        if not 1 <= installments <= 36:
            raise ValidationError("installments must be between 1 and 36")
        if interest_rate < 0:
            raise ValidationError("interest_rate cannot be negative")
        principal = invoice.outstanding
        if principal <= 0:
            raise ValidationError(f"Invoice {invoice.invoice_number} has no outstanding balance")

        total = round(principal * (1 + interest_rate), 2)
        base = round(total / installments, 2)
        schedule = [
            Installment(installment_number=i + 1, amount=base, due_date=_add_months(first_payment_date, i))
            for i in range(installments)
        ]
        schedule[-1].amount = round(total - base * (installments - 1), 2)

        behavior = self.analyze_customer_behavior(customer)
        probability = 1 - behavior.default_probability - 0.02 * max(0, installments - 3)
        probability = round(max(0.1, min(0.95, probability)), 2)

        plan = PaymentPlan(
            plan_id=str(uuid.uuid4()),
            invoice_id=invoice.id,
            customer_id=customer.id,
            principal=principal,
            interest_rate=interest_rate,
            total_payable=total,
            installments=schedule,
            success_probability=probability,
            estimated_recovery_timeline=f"{installments} month{'s' if installments != 1 else ''}",
        )
        logger.info(
            "Payment plan created",
            plan_id=plan.plan_id,
            invoice_number=invoice.invoice_number,
            installments=installments,
            total_payable=total,
        )
        return plan
