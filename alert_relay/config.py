"""
Alert relay configuration.

Only the ClickUp credentials and the webhook API key are required at startup;
the app will refuse to start without them. Teams and SharePoint are
optional; each sink reports whether its own settings are complete and is
skipped silently when they are not.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Maps each sink name to the settings fields it requires.
# Teams is satisfied by either destination URL, so it is checked separately.
_SINK_REQUIRED_FIELDS: dict[str, list[str]] = {
    "clickup": [
        "clickup_api_token",
        "clickup_alerta_list_id",
        "clickup_mandatory_list_id",
    ],
    "teams": [],
    "sharepoint": [
        "azure_tenant_id",
        "azure_client_id",
        "azure_client_secret",
        "sharepoint_site_id",
    ],
}

_KNOWN_SINKS = set(_SINK_REQUIRED_FIELDS.keys())


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Required at startup; ValidationError raised immediately if missing
    # ------------------------------------------------------------------
    clickup_api_token: str
    clickup_alerta_list_id: str
    clickup_mandatory_list_id: str
    webhook_api_key: str

    # ------------------------------------------------------------------
    # Optional
    # ------------------------------------------------------------------

    # Comma separated ClickUp user ids, e.g. "101, 102"
    clickup_assignees: str = ""
    clickup_api_url: str = "https://api.clickup.com/api/v2"

    # Comma separated client IPs; empty disables the allowlist
    allowed_ips: str = ""

    # Azure AD / Microsoft Graph (SharePoint pages)
    azure_tenant_id: Optional[str] = None
    azure_client_id: Optional[str] = None
    azure_client_secret: Optional[str] = None
    sharepoint_site_id: Optional[str] = None
    graph_api_url: str = "https://graph.microsoft.com/v1.0"
    graph_login_url: str = "https://login.microsoftonline.com"

    # Microsoft Teams (Power Automate webhooks), one per destination
    teams_alerta_webhook_url: Optional[str] = None
    teams_mandatory_webhook_url: Optional[str] = None

    # App
    port: int = 8080
    log_level: str = "INFO"
    log_file: Optional[str] = None
    sink_timeout_seconds: float = 30.0

    @property
    def assignee_ids(self) -> list[int]:
        """ClickUp assignee ids; entries that are not integers are skipped."""
        ids: list[int] = []
        for item in _split_csv(self.clickup_assignees):
            try:
                ids.append(int(item))
            except ValueError:
                logger.warning("config.invalid_assignee", extra={"value": item})
        return ids

    @property
    def allowed_ip_list(self) -> list[str]:
        return _split_csv(self.allowed_ips)

    def missing_for_sink(self, sink_name: str) -> list[str]:
        """Return the settings fields *sink_name* needs that are not set.

        Raises:
            ValueError: If *sink_name* is not a recognised sink.
        """
        if sink_name not in _KNOWN_SINKS:
            raise ValueError(
                f"Unknown sink '{sink_name}'. "
                f"Known sinks: {', '.join(sorted(_KNOWN_SINKS))}"
            )

        if sink_name == "teams":
            if self.teams_alerta_webhook_url or self.teams_mandatory_webhook_url:
                return []
            return ["teams_alerta_webhook_url", "teams_mandatory_webhook_url"]

        return [
            field for field in _SINK_REQUIRED_FIELDS[sink_name]
            if not getattr(self, field, None)
        ]

    def validate_for_sink(self, sink_name: str) -> None:
        """Assert that all settings required by *sink_name* are present.

        Raises:
            ValueError: If *sink_name* is not a recognised sink.
            RuntimeError: If one or more required settings are absent.
        """
        missing = self.missing_for_sink(sink_name)
        if missing:
            missing_vars = ", ".join(m.upper() for m in missing)
            raise RuntimeError(
                f"Sink '{sink_name}' is not configured: "
                f"missing environment variables: {missing_vars}. "
                f"Set these in your .env file (see .env.example)."
            )

    def integration_status(self) -> dict[str, str]:
        """Summarize the optional sinks as enabled / partial / disabled."""
        status: dict[str, str] = {}
        for sink_name in ("teams", "sharepoint"):
            missing = self.missing_for_sink(sink_name)
            if not missing:
                status[sink_name] = "enabled"
            elif sink_name == "sharepoint" and len(missing) < len(_SINK_REQUIRED_FIELDS[sink_name]):
                status[sink_name] = "partial"
            else:
                status[sink_name] = "disabled"
        return status


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    In tests, clear the cache with get_settings.cache_clear() after
    patching environment variables, or instantiate Settings() directly
    with _env_file=None to avoid reading the .env file.
    """
    return Settings()
