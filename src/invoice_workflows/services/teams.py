import copy
import httpx
from loguru import logger

# Approver notification: post an Adaptive Card to a Teams Incoming Webhook.
# Approve/Reject buttons link back to the approval actions endpoint.

ADAPTIVE_CARD_TEMPLATE = {
    "type": "message",
    "attachments": [{
        "contentType": "application/vnd.microsoft.card.adaptive",
        "content": {
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": [
                {"type": "TextBlock", "weight": "Bolder", "size": "Medium", "text": "Invoice Approval Required"},
                {"type": "FactSet", "facts": []}
            ],
            "actions": []
        }
    }]
}

CARD_FIELDS = ["invoice_number", "customer_id", "total", "currency", "level", "fraud_risk_score", "compliance"]


def build_approval_card(payload: dict, base_url: str) -> dict:
    card = copy.deepcopy(ADAPTIVE_CARD_TEMPLATE)
    facts = card["attachments"][0]["content"]["body"][1]["facts"]
    for k in CARD_FIELDS:
        if payload.get(k) is not None:
            facts.append({"title": k, "value": str(payload[k])})

    request_id = payload.get("request_id", "")
    card["attachments"][0]["content"]["actions"] = [
        {
            "type": "Action.OpenUrl",
            "title": "Review",
            "url": f"{base_url}/approvals/requests/{request_id}"
        },
        {
            "type": "Action.OpenUrl",
            "title": "Progress",
            "url": f"{base_url}/approvals/requests/{request_id}/progress"
        }
    ]
    return card


def post_approval_card(webhook_url: str, base_url: str, payload: dict, client: httpx.Client | None = None) -> dict:
    if not webhook_url:
        return {"status": "skipped", "reason": "TEAMS_WEBHOOK_URL not set"}

    card = build_approval_card(payload, base_url)
    try:
        if client is not None:
            r = client.post(webhook_url, json=card)
        else:
            with httpx.Client(timeout=10) as c:
                r = c.post(webhook_url, json=card)
    except httpx.HTTPError as e:
        logger.warning("Teams card delivery failed", error=str(e))
        return {"status": "failed", "error": str(e)}
    return {"status": "sent", "http_status": r.status_code}
