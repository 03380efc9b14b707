"""
ClickUp sink — creates one task per alert in the list chosen by the
request's destination. This is the primary sink: its task id is the
reference surfaced in the webhook response, and its task URL is handed to
the secondary sinks for cross-linking.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from alert_relay.config import Settings
from alert_relay.integrations.base import Sink, SinkError
from alert_relay.models.alert import Alert, DescriptionFormat
from alert_relay.models.dispatch import Destination, SinkContext, SinkName, SinkResult

logger = logging.getLogger(__name__)

_TASK_STATUS = "Open"


class ClickUpSink(Sink):
    name = SinkName.CLICKUP
    action = "create task"

    def __init__(self, settings: Settings) -> None:
        self.api_token = settings.clickup_api_token
        self.api_url = settings.clickup_api_url.rstrip("/")
        self.list_ids = {
            Destination.ALERTA: settings.clickup_alerta_list_id,
            Destination.MANDATORY: settings.clickup_mandatory_list_id,
        }
        self.assignees = settings.assignee_ids
        self.timeout = settings.sink_timeout_seconds
        self.missing_settings = settings.missing_for_sink(self.name.value)

    def is_enabled(self) -> bool:
        return not self.missing_settings

    def build_task(self, alert: Alert) -> dict[str, Any]:
        task: dict[str, Any] = {
            "name": alert.title(),
            "markdown_description": alert.description(DescriptionFormat.TABLE),
            "priority": alert.priority(),
            "status": _TASK_STATUS,
        }
        if self.assignees:
            task["assignees"] = list(self.assignees)
        return task

    def _deliver(self, alert: Alert, context: SinkContext) -> SinkResult:
        list_id = self.list_ids[context.destination]
        response = requests.post(
            f"{self.api_url}/list/{list_id}/task",
            json=self.build_task(alert),
            headers={"Authorization": self.api_token},
            timeout=self.timeout,
        )
        if response.status_code != 200:
            raise SinkError(f"ClickUp API error (status {response.status_code}): {response.text}")

        data = response.json()
        task_id = data.get("id") if isinstance(data, dict) else None
        if not task_id:
            raise SinkError(f"ClickUp response has no task id: {response.text}")

        logger.info(
            "clickup.task_created",
            extra={"task_id": task_id, "list_id": list_id, "alert_id": alert.id},
        )
        return SinkResult.success(self.name, str(task_id), url=data.get("url"))
