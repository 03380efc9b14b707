"""
Alert model — canonical representation of one Prisma Cloud alert.

Alert is the only shape sinks ever see. The normalizer merges the flat and
nested webhook variants into it; every field is optional and every derived
view (priority, title, description) degrades to a generic rendering when
data is missing.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from alert_relay.utils.templates import render_template

GENERIC_TITLE = "[Prisma Cloud] Security Alert"

# ClickUp priority scale: 1 urgent → 4 low
_PRIORITY_BY_SEVERITY: dict[str, int] = {
    "critical": 1,
    "high": 1,
    "medium": 2,
    "low": 3,
}
_LOWEST_PRIORITY = 4

_SEVERITY_DECORATION: dict[str, tuple[str, str]] = {
    "critical": ("🔴", "Critical"),
    "high": ("🟠", "High"),
    "medium": ("🟡", "Medium"),
    "low": ("🟢", "Low"),
}


class DescriptionFormat(str, Enum):
    PLAIN = "plain"
    TABLE = "table"


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    severity: str = ""
    policy_name: str = ""
    policy_description: str = ""
    policy_recommendation: str = ""
    policy_type: str = ""
    policy_id: str = ""
    alert_rule_name: str = ""
    resource_id: str = ""
    resource_name: str = ""
    resource_type: str = ""
    resource_region: str = ""
    resource_cloud_service: str = ""
    account_name: str = ""
    cloud_type: str = ""
    status: str = ""
    callback_url: str = ""
    message: str = ""                  # only used to spot connectivity tests
    alert_time: Optional[datetime] = None
    raw_extras: dict[str, Any] = Field(default_factory=dict)   # opaque fragments preserved verbatim

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def priority(self) -> int:
        return _PRIORITY_BY_SEVERITY.get(self.severity.strip().lower(), _LOWEST_PRIORITY)

    def title(self) -> str:
        if self.policy_name:
            return f"[{self.severity.upper()}] - {self.policy_name}"
        return GENERIC_TITLE

    def severity_label(self, decorated: bool = True) -> str:
        """Severity as shown to humans, e.g. "🔴 Critical".

        Unknown severities come back as the raw text with no decoration.
        """
        known = _SEVERITY_DECORATION.get(self.severity.strip().lower())
        if known is None:
            return self.severity
        emoji, label = known
        return f"{emoji} {label}" if decorated else label

    def formatted_time(self) -> str:
        if self.alert_time is None:
            return ""
        return self.alert_time.strftime("%Y-%m-%d %H:%M:%S %Z").strip()

    def summary_fields(self) -> list[tuple[str, str]]:
        """The short field list used by the plain description and chat cards."""
        fields = [
            ("Policy", self.policy_name),
            ("Description", self.policy_description),
            ("Severity", self.severity),
            ("Resource", self.resource_name),
            ("Resource Type", self.resource_type),
            ("Account", self.account_name),
            ("Cloud", self.cloud_type),
            ("Region", self.resource_region),
            ("Alert ID", self.id),
        ]
        return [(label, value) for label, value in fields if value]

    def detail_fields(self, decorated: bool = True) -> list[tuple[str, str]]:
        """Every populated scalar field, in display order."""
        fields = [
            ("Severity", self.severity_label(decorated)),
            ("Policy", self.policy_name),
            ("Policy Type", self.policy_type),
            ("Policy ID", self.policy_id),
            ("Alert Rule", self.alert_rule_name),
            ("Resource", self.resource_name),
            ("Resource ID", self.resource_id),
            ("Resource Type", self.resource_type),
            ("Cloud Service", self.resource_cloud_service),
            ("Region", self.resource_region),
            ("Account", self.account_name),
            ("Cloud", self.cloud_type),
            ("Status", self.status),
            ("Alert ID", self.id),
            ("Alert Time", self.formatted_time()),
        ]
        return [(label, value) for label, value in fields if value]

    def description(self, fmt: DescriptionFormat = DescriptionFormat.TABLE) -> str:
        if fmt == DescriptionFormat.PLAIN:
            return render_template(
                "description_plain.md.jinja2",
                fields=self.summary_fields(),
                callback_url=self.callback_url,
            )
        return render_template(
            "description_table.md.jinja2",
            title=self.title(),
            fields=self.detail_fields(),
            policy_description=self.policy_description,
            policy_recommendation=self.policy_recommendation,
            extras=sorted(self.raw_extras.items()),
            callback_url=self.callback_url,
        )
