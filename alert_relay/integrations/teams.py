"""
Microsoft Teams sink — posts an Adaptive Card to a Power Automate webhook.

One webhook URL per destination. The sink is enabled as soon as either URL
is configured; a request routed to a destination without a URL fails for
that alert instead of silently dropping the notification.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from alert_relay.config import Settings
from alert_relay.integrations.base import Sink, SinkError
from alert_relay.models.alert import Alert
from alert_relay.models.dispatch import Destination, SinkContext, SinkName, SinkResult

logger = logging.getLogger(__name__)

_CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"
_CARD_VERSION = "1.4"
_OK_STATUSES = {200, 202}

# Adaptive Card text colors
_SEVERITY_COLORS: dict[str, str] = {
    "critical": "Attention",
    "high": "Attention",
    "medium": "Warning",
    "low": "Good",
}


def severity_color(severity: str) -> str:
    return _SEVERITY_COLORS.get(severity.strip().lower(), "Default")


def _fact_row(label: str, value: str) -> dict[str, Any]:
    return {
        "type": "ColumnSet",
        "columns": [
            {
                "type": "Column",
                "width": "auto",
                "items": [{"type": "TextBlock", "text": f"**{label}:**", "weight": "Bolder", "wrap": True}],
            },
            {
                "type": "Column",
                "width": "stretch",
                "items": [{"type": "TextBlock", "text": value, "wrap": True}],
            },
        ],
    }


def card_links(alert: Alert, context: SinkContext) -> list[tuple[str, str]]:
    links: list[tuple[str, str]] = []
    if task_url := context.link_for(SinkName.CLICKUP):
        links.append(("View ClickUp Task", task_url))
    if page_url := context.link_for(SinkName.SHAREPOINT):
        links.append(("View Documentation", page_url))
    if alert.callback_url:
        links.append(("View in Prisma Cloud", alert.callback_url))
    return links


def build_card(
    title: str,
    severity: str,
    facts: list[tuple[str, str]],
    links: list[tuple[str, str]],
) -> dict[str, Any]:
    """Build the Power Automate message envelope around one Adaptive Card."""
    body: list[dict[str, Any]] = [
        {
            "type": "TextBlock",
            "text": f"🔔 {title}",
            "size": "Large",
            "weight": "Bolder",
            "wrap": True,
        },
    ]
    if severity:
        body.append({
            "type": "TextBlock",
            "text": f"**Severity:** {severity.upper()}",
            "color": severity_color(severity),
            "size": "Medium",
            "weight": "Bolder",
            "wrap": True,
            "separator": True,
        })
    if facts:
        body.append({
            "type": "TextBlock",
            "text": "**Policy Violation Details**",
            "weight": "Bolder",
            "spacing": "Medium",
            "wrap": True,
        })
        body.extend(_fact_row(label, value) for label, value in facts)

    content: dict[str, Any] = {
        "$schema": _CARD_SCHEMA,
        "type": "AdaptiveCard",
        "version": _CARD_VERSION,
        "body": body,
    }
    if links:
        content["actions"] = [
            {"type": "Action.OpenUrl", "title": label, "url": url} for label, url in links
        ]

    return {
        "type": "message",
        "attachments": [
            {
                "contentType": "application/vnd.microsoft.card.adaptive",
                "contentUrl": None,
                "content": content,
            }
        ],
    }


class TeamsSink(Sink):
    name = SinkName.TEAMS
    action = "send Teams notification"

    def __init__(self, settings: Settings) -> None:
        self.webhook_urls: dict[Destination, Optional[str]] = {
            Destination.ALERTA: settings.teams_alerta_webhook_url,
            Destination.MANDATORY: settings.teams_mandatory_webhook_url,
        }
        self.timeout = settings.sink_timeout_seconds
        self.missing_settings = settings.missing_for_sink(self.name.value)

    def is_enabled(self) -> bool:
        return not self.missing_settings

    def _deliver(self, alert: Alert, context: SinkContext) -> SinkResult:
        url = self.webhook_urls.get(context.destination)
        if not url:
            raise SinkError(f"no Teams webhook configured for destination '{context.destination.value}'")

        facts = [
            ("Policy", alert.policy_name),
            ("Resource", alert.resource_name),
            ("Account", alert.account_name),
            ("Cloud", alert.cloud_type),
            ("Region", alert.resource_region),
            ("Alert Time", alert.formatted_time()),
        ]
        card = build_card(
            title="Prisma Cloud Security Alert",
            severity=alert.severity,
            facts=[(label, value) for label, value in facts if value],
            links=card_links(alert, context),
        )

        response = requests.post(url, json=card, timeout=self.timeout)
        if response.status_code not in _OK_STATUSES:
            raise SinkError(f"Teams webhook failed (status {response.status_code}): {response.text}")

        logger.info(
            "teams.notification_sent",
            extra={"alert_id": alert.id, "destination": context.destination.value},
        )
        return SinkResult.success(self.name, "sent")
