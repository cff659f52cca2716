"""
Azure Service Bus publishing for approval workflow notifications.

The approval engine calls ``notify`` after each committed state change
(approver assignment, rejection, escalation, final approval). Downstream
consumers fan the event out to email, SMS, push or in-app channels:
- Approvers receive assignment and escalation alerts
- Submitters are told about rejections and information requests
- Stakeholders receive high-risk and compliance alerts

Delivery is fire-and-forget: send failures are logged and never undo the
state change that triggered them.
"""

import json
import uuid
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, asdict, field

from loguru import logger

from ...core.config import settings
from ..teams import post_approval_card


@dataclass
class NotificationEvent:
    """
    Event published for one notification.

    Carries the routing targets and the payload the delivery service
    needs to render the message.
    """

    notification_id: str
    event_type: str
    target_roles: List[str]
    target_users: List[str]
    method: str
    urgency: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class NotificationPublisher:
    """
    Publishes notification events to Azure Service Bus (Queue or Topic).

    Usage:
        from azure.servicebus import ServiceBusClient
        client = ServiceBusClient.from_connection_string(conn_str)
        sender = client.get_queue_sender(queue_name="invoice-approval-events")
        publisher = NotificationPublisher(service_bus_sender=sender)

        # Disabled mode (no Service Bus configured): ids are still issued
        publisher = NotificationPublisher(service_bus_sender=None)
    """

    def __init__(
        self,
        service_bus_sender: Optional[object] = None,
        entity_name: str = "invoice-approval-events",
        teams_webhook_url: Optional[str] = None,
        api_base_url: Optional[str] = None,
    ):
        """
        Initialize notification publisher.

        Args:
            service_bus_sender: Azure Service Bus sender (ServiceBusSender) or None to disable
            entity_name: Service Bus queue or topic name
            teams_webhook_url: Optional Teams incoming webhook for approver cards
            api_base_url: Base URL used for action links in Teams cards
        """
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name
        self.teams_webhook_url = teams_webhook_url
        self.api_base_url = api_base_url or settings.api_base_url

    def notify(
        self,
        target_roles: List[str],
        target_users: List[str],
        method: str,
        urgency: str,
        payload: Dict[str, Any],
        event_type: str = "ApprovalNotification",
    ) -> List[str]:
        """
        Publish a notification and return its id.

        Returns:
            List with the notification id (empty if there is no target)
        """
        if not target_roles and not target_users:
            return []

        event = NotificationEvent(
            notification_id=str(uuid.uuid4()),
            event_type=event_type,
            target_roles=list(target_roles),
            target_users=list(target_users),
            method=method,
            urgency=urgency,
            payload=payload,
        )

        if self.service_bus_sender is not None:
            from azure.servicebus import ServiceBusMessage

            message = ServiceBusMessage(
                event.to_json(),
                content_type="application/json",
                subject=event_type,
                message_id=event.notification_id,
            )
            try:
                self.service_bus_sender.send_messages(message)
            except Exception as e:
                logger.error(
                    "Failed to publish notification",
                    notification_id=event.notification_id,
                    entity=self.entity_name,
                    error=str(e),
                )

        if self.teams_webhook_url and event_type == "ApproverAssigned":
            post_approval_card(self.teams_webhook_url, self.api_base_url, payload)

        logger.info(
            "Notification published",
            notification_id=event.notification_id,
            event_type=event_type,
            method=method,
            urgency=urgency,
            targets=len(target_roles) + len(target_users),
        )
        return [event.notification_id]


_default_publisher: Optional[NotificationPublisher] = None


def get_notification_publisher() -> NotificationPublisher:
    """
    Get the default notification publisher.

    Connects to Service Bus when SERVICE_BUS_CONNECTION_STRING is set,
    otherwise runs in disabled mode.
    """
    global _default_publisher
    if _default_publisher is None:
        sender = None
        if settings.service_bus_connection_string:
            from azure.servicebus import ServiceBusClient

            client = ServiceBusClient.from_connection_string(settings.service_bus_connection_string)
            sender = client.get_queue_sender(queue_name=settings.service_bus_entity)
        _default_publisher = NotificationPublisher(
            service_bus_sender=sender,
            entity_name=settings.service_bus_entity,
            teams_webhook_url=settings.teams_webhook_url,
        )
    return _default_publisher
