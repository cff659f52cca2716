"""
Tests for approval notifications.

Verifies that notification events are published to Azure Service Bus and
that approver assignments post an Adaptive Card to Teams when a webhook
is configured.
"""

import json

import httpx
import pytest
import respx
from unittest.mock import Mock

from invoice_workflows.services.events.notification_publisher import NotificationEvent, NotificationPublisher
from invoice_workflows.services.teams import build_approval_card, post_approval_card

WEBHOOK = "https://example.com/webhook"
PAYLOAD = {
    "request_id": "req-1",
    "invoice_number": "INV-1001",
    "customer_id": "cust-1",
    "total": 50000.0,
    "currency": "USD",
    "level": 1,
    "fraud_risk_score": 85.0,
    "compliance": "compliant",
}


@pytest.fixture
def mock_service_bus_sender():
    """Create a mock Service Bus sender matching Azure SDK interface"""
    return Mock()


@pytest.fixture
def publisher(mock_service_bus_sender):
    return NotificationPublisher(service_bus_sender=mock_service_bus_sender, api_base_url="http://api.test")


def test_notification_event_structure():
    event = NotificationEvent(
        notification_id="n-1",
        event_type="ApproverAssigned",
        target_roles=[],
        target_users=["alice"],
        method="email",
        urgency="high",
        payload=PAYLOAD,
    )

    data = json.loads(event.to_json())
    assert data["event_type"] == "ApproverAssigned"
    assert data["target_users"] == ["alice"]
    assert data["payload"]["invoice_number"] == "INV-1001"
    assert data["timestamp"] is not None


def test_notify_publishes_to_service_bus(publisher, mock_service_bus_sender):
    ids = publisher.notify(["finance_director"], [], "all", "critical", PAYLOAD, "HighRiskInvoice")

    assert len(ids) == 1
    assert mock_service_bus_sender.send_messages.called
    message = mock_service_bus_sender.send_messages.call_args[0][0]
    assert "HighRiskInvoice" in str(message)
    assert "INV-1001" in str(message)
    assert message.message_id == ids[0]


def test_each_notification_is_its_own_message(publisher, mock_service_bus_sender):
    first = publisher.notify([], ["alice"], "email", "high", PAYLOAD, "ApproverAssigned")
    second = publisher.notify([], ["sam"], "email", "low", PAYLOAD, "InvoiceApproved")

    sent = [c.args[0] for c in mock_service_bus_sender.send_messages.call_args_list]
    assert [m.message_id for m in sent] == first + second
    assert [m.subject for m in sent] == ["ApproverAssigned", "InvoiceApproved"]
    assert not hasattr(publisher, "published")


def test_notify_without_targets_sends_nothing(publisher, mock_service_bus_sender):
    assert publisher.notify([], [], "email", "low", PAYLOAD) == []
    assert not mock_service_bus_sender.send_messages.called


def test_disabled_mode_still_issues_ids():
    publisher = NotificationPublisher(service_bus_sender=None)
    ids = publisher.notify([], ["alice"], "email", "medium", PAYLOAD, "ApproverAssigned")

    assert len(ids) == 1


def test_send_failure_is_logged_not_raised(publisher, mock_service_bus_sender):
    mock_service_bus_sender.send_messages.side_effect = RuntimeError("namespace unreachable")

    ids = publisher.notify([], ["alice"], "email", "medium", PAYLOAD)
    assert len(ids) == 1


def test_card_contains_facts_and_links():
    card = build_approval_card(PAYLOAD, "http://api.test")
    content = card["attachments"][0]["content"]

    facts = {f["title"]: f["value"] for f in content["body"][1]["facts"]}
    assert facts["invoice_number"] == "INV-1001"
    assert facts["fraud_risk_score"] == "85.0"
    assert content["actions"][0]["url"] == "http://api.test/approvals/requests/req-1"


def test_card_skipped_without_webhook():
    assert post_approval_card(None, "http://api.test", PAYLOAD)["status"] == "skipped"


@respx.mock
def test_card_posted_to_webhook():
    route = respx.post(WEBHOOK).mock(return_value=httpx.Response(200))

    result = post_approval_card(WEBHOOK, "http://api.test", PAYLOAD)

    assert result == {"status": "sent", "http_status": 200}
    assert route.called
    body = json.loads(route.calls[0].request.content)
    assert body["attachments"][0]["contentType"] == "application/vnd.microsoft.card.adaptive"


@respx.mock
def test_card_delivery_failure():
    respx.post(WEBHOOK).mock(side_effect=httpx.ConnectError("refused"))
    assert post_approval_card(WEBHOOK, "http://api.test", PAYLOAD)["status"] == "failed"


@respx.mock
def test_approver_assignment_posts_card(mock_service_bus_sender):
    route = respx.post(WEBHOOK).mock(return_value=httpx.Response(200))
    publisher = NotificationPublisher(service_bus_sender=mock_service_bus_sender, teams_webhook_url=WEBHOOK)

    publisher.notify([], ["alice"], "email", "high", PAYLOAD, "ApproverAssigned")
    publisher.notify([], ["sam"], "email", "low", PAYLOAD, "InvoiceApproved")

    assert route.call_count == 1
