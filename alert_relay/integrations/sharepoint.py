"""
SharePoint sink — documents each alert as a published site page through
Microsoft Graph.

Authentication uses the client-credentials flow. The bearer token is cached
on the sink instance and shared by every request the process serves, so the
read-check-refresh sequence runs under a lock: concurrent requests that find
the token expired wait for a single refresh instead of racing to replace it.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Optional

import requests

from alert_relay.config import Settings
from alert_relay.integrations.base import Sink, SinkError
from alert_relay.models.alert import Alert
from alert_relay.models.dispatch import SinkContext, SinkName, SinkResult
from alert_relay.utils.templates import render_template

logger = logging.getLogger(__name__)

_GRAPH_SCOPE = "https://graph.microsoft.com/.default"
_TOKEN_EXPIRY_BUFFER_SECONDS = 300
_PAGE_NAME_MAX = 50

_BADGE_COLORS: dict[str, str] = {
    "critical": "#8B0000",
    "high": "#D32F2F",
    "medium": "#F57C00",
    "low": "#FBC02D",
}
_DEFAULT_BADGE_COLOR = "#757575"


def sanitize_page_name(title: str, now: Optional[datetime] = None) -> str:
    """Lowercase, dash-separated, [a-z0-9-] only, timestamped for uniqueness."""
    name = re.sub(r"[^a-z0-9-]", "", title.lower().replace(" ", "-"))[:_PAGE_NAME_MAX]
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M%S")
    return f"{name}-{stamp}.aspx"


def build_page_html(alert: Alert, context: SinkContext) -> str:
    severity = alert.severity.strip().lower()
    links = []
    if task_url := context.link_for(SinkName.CLICKUP):
        links.append(("View ClickUp Task", task_url))
    if alert.callback_url:
        links.append(("View in Prisma Cloud", alert.callback_url))

    return render_template(
        "sharepoint_page.html.jinja2",
        severity_color=_BADGE_COLORS.get(severity, _DEFAULT_BADGE_COLOR),
        severity_badge=alert.severity.upper() or "UNKNOWN",
        fields=alert.detail_fields(decorated=False),
        policy_description=alert.policy_description,
        policy_recommendation=alert.policy_recommendation,
        extras=sorted(alert.raw_extras.items()),
        links=links,
    )


class SharePointSink(Sink):
    name = SinkName.SHAREPOINT
    action = "create SharePoint page"

    def __init__(self, settings: Settings) -> None:
        self.tenant_id = settings.azure_tenant_id
        self.client_id = settings.azure_client_id
        self.client_secret = settings.azure_client_secret
        self.site_id = settings.sharepoint_site_id
        self.graph_url = settings.graph_api_url.rstrip("/")
        self.login_url = settings.graph_login_url.rstrip("/")
        self.timeout = settings.sink_timeout_seconds

        self._token: Optional[str] = None
        self._token_expires_at = 0.0     # time.monotonic() deadline
        self._token_lock = threading.Lock()
        self.missing_settings = settings.missing_for_sink(self.name.value)

    def is_enabled(self) -> bool:
        return not self.missing_settings

    # ------------------------------------------------------------------
    # Token cache
    # ------------------------------------------------------------------

    def access_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            token, expires_in = self._request_token()
            self._token = token
            self._token_expires_at = time.monotonic() + max(expires_in - _TOKEN_EXPIRY_BUFFER_SECONDS, 0)
            logger.info("sharepoint.token_refreshed", extra={"expires_in": expires_in})
            return token

    def _request_token(self) -> tuple[str, int]:
        response = requests.post(
            f"{self.login_url}/{self.tenant_id}/oauth2/v2.0/token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": _GRAPH_SCOPE,
                "grant_type": "client_credentials",
            },
            timeout=self.timeout,
        )
        if response.status_code != 200:
            raise SinkError(f"token request failed (status {response.status_code}): {response.text}")

        data = response.json()
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise SinkError("token response has no access_token")
        try:
            expires_in = int(data.get("expires_in", 0))
        except (TypeError, ValueError) as e:
            raise SinkError(f"token response has an unusable expires_in: {data.get('expires_in')!r}") from e
        return token, expires_in

    # ------------------------------------------------------------------
    # Page creation
    # ------------------------------------------------------------------

    def _deliver(self, alert: Alert, context: SinkContext) -> SinkResult:
        token = self.access_token()
        title = alert.title()
        page = {
            "@odata.type": "#microsoft.graph.sitePage",
            "name": sanitize_page_name(title),
            "title": title,
            "pageLayout": "article",
            "canvasLayout": {
                "horizontalSections": [
                    {
                        "layout": "oneColumn",
                        "columns": [
                            {
                                "width": 12,
                                "webparts": [
                                    {
                                        "@odata.type": "#microsoft.graph.textWebPart",
                                        "innerHtml": build_page_html(alert, context),
                                    }
                                ],
                            }
                        ],
                    }
                ]
            },
        }

        response = requests.post(
            f"{self.graph_url}/sites/{self.site_id}/pages",
            json=page,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.timeout,
        )
        if response.status_code not in (200, 201):
            raise SinkError(f"page creation failed (status {response.status_code}): {response.text}")

        data = response.json()
        page_id = data.get("id") if isinstance(data, dict) else None
        web_url = data.get("webUrl") if isinstance(data, dict) else None
        if not page_id or not web_url:
            raise SinkError(f"page response has no id/webUrl: {response.text}")

        self._publish(page_id, token)

        logger.info("sharepoint.page_created", extra={"page_id": page_id, "alert_id": alert.id})
        return SinkResult.success(self.name, web_url, url=web_url)

    def _publish(self, page_id: str, token: str) -> None:
        """Publish a created page. A failed publish leaves a draft and is only logged."""
        try:
            response = requests.post(
                f"{self.graph_url}/sites/{self.site_id}/pages/{page_id}/microsoft.graph.sitePage/publish",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("sharepoint.publish_failed", extra={"page_id": page_id, "error": str(e)})
            return

        if response.status_code not in (200, 204):
            logger.warning(
                "sharepoint.publish_failed",
                extra={"page_id": page_id, "status": response.status_code, "error": response.text},
            )
