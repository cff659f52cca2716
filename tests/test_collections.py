"""
Tests for the collections automation engine.

NOW is Wednesday 2025-06-04 10:00 UTC; invoices default to a due date of
2025-05-20 (15 days overdue).
"""

from datetime import date, datetime, UTC

import pytest

from invoice_workflows.core.errors import NotFoundError, StateConflictError, ValidationError
from invoice_workflows.models.collections import CustomerPaymentBehavior, PaymentRecord
from invoice_workflows.services.collections_automation import CollectionsAutomationEngine

from conftest import make_invoice, make_customer

DUE = date(2025, 5, 20)


@pytest.fixture
def engine(clock):
    return CollectionsAutomationEngine(clock=clock)


def overdue_invoice(amount=2000, **overrides):
    overrides.setdefault("due_date", DUE)
    return make_invoice(amount, **overrides)


def behavior(difficulty="moderate", channel="email"):
    return CustomerPaymentBehavior(customer_id="cust-1", collection_difficulty=difficulty, preferred_channel=channel)


class TestBehavior:
    def test_no_history_uses_risk_score(self, engine):
        assert engine.analyze_customer_behavior(make_customer()).collection_difficulty == "moderate"
        assert engine.analyze_customer_behavior(make_customer(risk_score=80)).collection_difficulty == "difficult"

    def test_reliable_payer(self, clock):
        history = [PaymentRecord(invoice_id=f"i{n}", amount=100, days_to_pay=20, channel="portal") for n in range(4)]
        engine = CollectionsAutomationEngine(payment_history=lambda customer_id: history, clock=clock)

        result = engine.analyze_customer_behavior(make_customer())
        assert result.invoices_analyzed == 4
        assert result.payment_reliability_score == 10.0
        assert result.collection_difficulty == "easy"
        assert result.preferred_channel == "portal"

    def test_chronically_late_payer(self, clock):
        history = [PaymentRecord(invoice_id=f"i{n}", amount=100, days_to_pay=50, days_late=20) for n in range(3)]
        engine = CollectionsAutomationEngine(payment_history=lambda customer_id: history, clock=clock)

        result = engine.analyze_customer_behavior(make_customer())
        assert result.payment_reliability_score == 0.0
        assert result.default_probability == 0.45
        assert result.collection_difficulty == "difficult"


class TestStrategy:
    @pytest.mark.parametrize("days, outstanding, expected", [
        (5, 1000, "gentle"),
        (15, 1000, "gentle"),
        (30, 1000, "standard"),
        (60, 1000, "aggressive"),
        (120, 100, "aggressive"),
        (120, 1000, "legal"),
    ])
    def test_bands(self, engine, days, outstanding, expected):
        assert engine.select_strategy(days, outstanding, behavior()).strategy_type == expected

    def test_difficulty_shifts_one_step(self, engine):
        assert engine.select_strategy(30, 1000, behavior("easy")).strategy_type == "gentle"
        assert engine.select_strategy(30, 1000, behavior("difficult")).strategy_type == "aggressive"
        assert engine.select_strategy(5, 1000, behavior("easy")).strategy_type == "gentle"
        assert engine.select_strategy(120, 1000, behavior("difficult")).strategy_type == "legal"

    def test_explicit_preference(self, engine):
        strategy = engine.select_strategy(5, 1000, behavior("difficult"), preference="legal")
        assert strategy.strategy_type == "legal"

    def test_preferred_channel_first(self, engine):
        strategy = engine.select_strategy(5, 1000, behavior(channel="sms"))
        assert strategy.communication_channels == ["sms", "email", "portal"]

    def test_incentives(self, engine):
        early = engine.select_strategy(5, 20000, behavior())
        assert len(early.payment_incentives) == 2
        assert engine.select_strategy(30, 1000, behavior()).payment_incentives == []


class TestSchedule:
    def test_gentle_schedule_skips_sunday(self, engine):
        strategy = engine.select_strategy(5, 1000, behavior())
        schedule = engine.build_schedule(strategy, date(2025, 6, 8))

        assert schedule.max_attempts == 5
        assert schedule.interval_days == 7
        assert schedule.attempts[0].scheduled_at == datetime(2025, 6, 9, 9, 0, tzinfo=UTC)
        assert all(a.scheduled_at.weekday() != 6 for a in schedule.attempts)
        assert [a.tone for a in schedule.attempts] == ["friendly", "friendly", "professional", "professional", "professional"]
        assert schedule.attempts[2].template_id == "standard_followup"

    def test_aggressive_schedule(self, engine):
        strategy = engine.select_strategy(60, 1000, behavior())
        schedule = engine.build_schedule(strategy, date(2025, 6, 4))

        assert len(schedule.attempts) == 8
        assert schedule.interval_days == 3
        assert schedule.attempts[-1].tone == "formal"
        assert schedule.escalation_steps[1].action_type == "legal_referral"
        assert schedule.escalation_steps[1].approval_required is True


class TestAutomationLifecycle:
    def test_create(self, engine):
        automation = engine.create_automation(overdue_invoice(), make_customer())

        assert automation.status == "active"
        assert automation.strategy.strategy_type == "gentle"
        assert automation.strategy.days_overdue == 15
        assert automation.performance_metrics.amount_targeted == 2000
        assert automation.schedule.attempts[0].scheduled_at.date() == date(2025, 6, 4)
        assert engine.get_automation(automation.id).id == automation.id

    def test_not_yet_due_starts_after_due_date(self, engine):
        automation = engine.create_automation(overdue_invoice(due_date=date(2025, 6, 10)), make_customer())

        assert automation.strategy.days_overdue == 0
        assert automation.schedule.attempts[0].scheduled_at.date() == date(2025, 6, 11)

    @pytest.mark.parametrize("invoice, customer", [
        (overdue_invoice(status="paid"), make_customer()),
        (overdue_invoice(due_date=None), make_customer()),
        (overdue_invoice(balance_due=0), make_customer()),
        (overdue_invoice(), make_customer(id="someone-else")),
    ])
    def test_invalid_invoices(self, engine, invoice, customer):
        with pytest.raises(ValidationError):
            engine.create_automation(invoice, customer)

    def test_unknown_strategy(self, engine):
        with pytest.raises(ValidationError):
            engine.create_automation(overdue_invoice(), make_customer(), strategy_preference="threatening")

    def test_unknown_automation(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_automation("missing")

    def test_record_attempts(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer()).id

        updated = engine.record_attempt(automation_id, 1, responded=True)
        assert updated.performance_metrics.attempts_made == 1
        assert updated.performance_metrics.responses == 1
        assert updated.performance_metrics.response_rates == {"email": 1.0}

        with pytest.raises(StateConflictError):
            engine.record_attempt(automation_id, 1)
        with pytest.raises(NotFoundError):
            engine.record_attempt(automation_id, 99)

    def test_payments_complete_automation(self, engine):
        customer = make_customer()
        automation_id = engine.create_automation(overdue_invoice(), customer).id

        partial = engine.record_payment(automation_id, 500)
        assert partial.status == "active"
        assert partial.performance_metrics.recovery_rate == 0.25
        assert partial.performance_metrics.average_days_to_payment == 15.0

        done = engine.record_payment(automation_id, 1500)
        assert done.status == "completed"
        assert done.performance_metrics.recovery_rate == 1.0
        assert all(a.status == "skipped" for a in done.schedule.attempts)

        with pytest.raises(StateConflictError):
            engine.record_attempt(automation_id, 2)

        # Settled invoice feeds back into the customer's profile
        assert engine.analyze_customer_behavior(customer).invoices_analyzed == 1

    def test_payment_must_be_positive(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer()).id
        with pytest.raises(ValidationError):
            engine.record_payment(automation_id, 0)


class TestMonitoring:
    def test_fresh_automation(self, engine):
        engine.create_automation(overdue_invoice(), make_customer())
        report = engine.monitor_automations()

        assert report.active_automations == 1
        assert report.pending_actions == 1
        assert report.success_rate == 0.0
        assert report.performance_alerts == []

    def test_unresponsive_customer_raises_alerts(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer()).id
        for n in (1, 2, 3):
            engine.record_attempt(automation_id, n)

        report = engine.monitor_automations()
        alert_types = {a.type for a in report.performance_alerts}
        assert alert_types == {"performance_drop", "low_response_rate"}
        assert {r.type for r in report.recommendations} == {
            "channel_shift", "strategy_optimization", "message_improvement",
        }

    def test_exhausted_attempts(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer(), strategy_preference="aggressive").id
        for n in range(1, 9):
            engine.record_attempt(automation_id, n)

        report = engine.monitor_automations()
        assert "attempts_exhausted" in {a.type for a in report.performance_alerts}
        assert report.customer_satisfaction_score == 6.0

    def test_recovered_today(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer()).id
        engine.record_payment(automation_id, 800)

        report = engine.monitor_automations()
        assert report.revenue_recovered_today == 800
        assert report.total_recovered == 800
        assert report.success_rate == 0.4


class TestMessages:
    def test_first_reminder(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer()).id
        message = engine.generate_personalized_message(automation_id, 1)

        assert message.subject == "Friendly Reminder: Invoice INV-1001 Payment Due"
        assert "Hi Contoso Ltd" in message.content
        assert "USD 2,000.00" in message.content
        assert "2025-05-20" in message.content
        assert "/inv-1" in message.content
        assert "{{" not in message.content

    def test_follow_up_mentions_escalation(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer()).id
        message = engine.generate_personalized_message(automation_id, 3)

        assert message.subject == "Payment Required: Invoice INV-1001 - 15 Days Overdue"
        assert "escalated" in message.content

    def test_unknown_attempt(self, engine):
        automation_id = engine.create_automation(overdue_invoice(), make_customer()).id
        with pytest.raises(NotFoundError):
            engine.generate_personalized_message(automation_id, 42)


class TestPaymentPlans:
    def test_remainder_on_last_installment(self, engine):
        plan = engine.create_payment_plan(make_invoice(1000), make_customer(), 3, date(2025, 1, 31))

        assert [i.amount for i in plan.installments] == [333.33, 333.33, 333.34]
        assert [i.due_date for i in plan.installments] == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31)]
        assert plan.total_payable == 1000
        assert plan.success_probability == 0.85

    def test_interest(self, engine):
        plan = engine.create_payment_plan(make_invoice(1000), make_customer(), 12, date(2025, 7, 1), interest_rate=0.06)

        assert plan.total_payable == 1060
        assert plan.installments[-1].amount == 88.37
        assert round(sum(i.amount for i in plan.installments), 2) == 1060
        assert plan.estimated_recovery_timeline == "12 months"
        assert plan.success_probability == 0.67

    @pytest.mark.parametrize("installments", [0, 37])
    def test_installment_bounds(self, engine, installments):
        with pytest.raises(ValidationError):
            engine.create_payment_plan(make_invoice(1000), make_customer(), installments, date(2025, 7, 1))
