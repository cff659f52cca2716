"""
Pytest configuration and shared fixtures.

Registers the integration marker (skipped unless --run-integration is
given) and provides invoice/customer builders, a frozen clock, a
fixed-score fraud analyzer and a recording notifier.
"""

from datetime import date, datetime, timedelta, UTC

import pytest

from invoice_workflows.models.invoice import Invoice, LineItem, Customer
from invoice_workflows.models.approval import FraudRiskBreakdown
from invoice_workflows.services.approval_engine import ApprovalWorkflowEngine
from invoice_workflows.services.storage import InMemoryApprovalRepository

# Wednesday, mid-morning
NOW = datetime(2025, 6, 4, 10, 0, tzinfo=UTC)


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real Azure resources"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring real Azure resources"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StubFraudAnalyzer:
    """Returns a fixed overall score regardless of input"""

    def __init__(self, score: float):
        self.score = score

    def analyze(self, invoice, customer, rules):
        return FraudRiskBreakdown(overall_score=self.score)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, target_roles, target_users, method, urgency, payload, event_type="ApprovalNotification"):
        notification_id = f"n-{len(self.sent) + 1}"
        self.sent.append({
            "id": notification_id,
            "target_roles": list(target_roles),
            "target_users": list(target_users),
            "method": method,
            "urgency": urgency,
            "payload": payload,
            "event_type": event_type,
        })
        return [notification_id]

    def of_type(self, event_type):
        return [n for n in self.sent if n["event_type"] == event_type]


def make_invoice(amount: float = 50.0, **overrides) -> Invoice:
    """Build an arithmetically consistent invoice for ``amount``"""
    data = {
        "id": "inv-1",
        "invoice_number": "INV-1001",
        "customer_id": "cust-1",
        "line_items": [LineItem(description="Consulting", quantity=1, unit_price=amount, amount=amount)],
        "subtotal": amount,
        "tax_amount": 0.0,
        "total": amount,
        "issue_date": date(2025, 5, 5),
        "due_date": date(2025, 6, 4),
        "status": "sent",
    }
    data.update(overrides)
    return Invoice(**data)


def make_customer(**overrides) -> Customer:
    data = {
        "id": "cust-1",
        "name": "Contoso Ltd",
        "email": "ap@contoso.example",
        "address": "1 Harbour St, Sydney",
        "risk_score": 10,
        "created_at": NOW - timedelta(days=730),
    }
    data.update(overrides)
    return Customer(**data)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_engine(clock, notifier):
    """Factory for an in-memory engine with a fixed fraud score"""

    def _make(score: float = 60.0, **kwargs) -> ApprovalWorkflowEngine:
        kwargs.setdefault("repository", InMemoryApprovalRepository())
        return ApprovalWorkflowEngine(
            fraud_analyzer=StubFraudAnalyzer(score),
            notifier=notifier,
            clock=clock,
            **kwargs,
        )

    return _make
