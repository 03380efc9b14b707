"""
Dispatch models — typed contracts between the normalizer, the sinks and
the HTTP boundary.

Internal model hierarchy:
  SinkContext / SinkResult — one sink call for one alert
  BatchResult              — everything one webhook request produced
  WebhookOutcome           — terminal state of the request (rejected,
                             test acknowledged, completed)

External API models:
  WebhookResponse          — produced by BatchResult.to_response()
  AcknowledgementResponse  — returned instead when the batch was a test

Import hierarchy (no circular dependencies):
  alert.py     <- utils/templates.py
  dispatch.py  <- alert.py
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from alert_relay.models.alert import Alert


class Destination(str, Enum):
    """Routing hint taken from the X-Type header."""

    ALERTA = "alerta"
    MANDATORY = "mandatory"


class SinkName(str, Enum):
    CLICKUP = "clickup"
    TEAMS = "teams"
    SHAREPOINT = "sharepoint"


class OutcomeKind(str, Enum):
    REJECTED = "rejected"
    TEST_ACKNOWLEDGED = "test_acknowledged"
    COMPLETED = "completed"


# ---------------------------------------------------------------------------
# One sink call
# ---------------------------------------------------------------------------

class SinkContext(BaseModel):
    """Routing data a sink needs that the alert itself does not carry."""

    destination: Destination = Destination.ALERTA
    upstream: dict[SinkName, str] = Field(default_factory=dict)   # sink → URL produced earlier in this dispatch

    def link_for(self, sink: SinkName) -> Optional[str]:
        return self.upstream.get(sink) or None


class SinkResult(BaseModel):
    sink: SinkName
    reference: Optional[str] = None   # task id, page URL, "sent"
    url: Optional[str] = None         # link later sinks may embed
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, sink: SinkName, reference: str, url: Optional[str] = None) -> SinkResult:
        return cls(sink=sink, reference=reference, url=url)

    @classmethod
    def failure(cls, sink: SinkName, error: str) -> SinkResult:
        return cls(sink=sink, error=error)


# ---------------------------------------------------------------------------
# Normalizer / coordinator I/O
# ---------------------------------------------------------------------------

class NormalizeInput(BaseModel):
    body: bytes


class NormalizeOutput(BaseModel):
    alerts: list[Alert]
    parse_warnings: list[str] = Field(default_factory=list)


class DispatchInput(BaseModel):
    alerts: list[Alert]
    destination: Destination = Destination.ALERTA


class BatchResult(BaseModel):
    """Aggregated outcome of one webhook request."""

    received_count: int = Field(default=0, ge=0)
    sink_references: list[str] = Field(default_factory=list)        # primary sink, one per success
    per_alert_errors: list[str] = Field(default_factory=list)       # ordered by alert, then by sink
    secondary_references: dict[SinkName, list[str]] = Field(default_factory=dict)
    is_test_batch: bool = False

    @property
    def status(self) -> str:
        return "success" if not self.per_alert_errors else "partial_success"

    def to_response(self) -> WebhookResponse:
        """Produce the external JSON shape for a completed batch."""
        teams = self.secondary_references.get(SinkName.TEAMS, [])
        pages = self.secondary_references.get(SinkName.SHAREPOINT, [])
        return WebhookResponse(
            received=self.received_count,
            tasks_created=len(self.sink_references),
            task_ids=list(self.sink_references),
            errors=list(self.per_alert_errors) or None,
            status=self.status,
            teams_notifications_sent=len(teams) or None,
            sharepoint_pages_created=len(pages) or None,
            sharepoint_urls=list(pages) or None,
        )


class DispatchOutput(BaseModel):
    batch: BatchResult


class WebhookOutcome(BaseModel):
    kind: OutcomeKind
    batch: Optional[BatchResult] = None
    error: Optional[str] = None        # set when kind == REJECTED


# ---------------------------------------------------------------------------
# External API
# ---------------------------------------------------------------------------

class WebhookResponse(BaseModel):
    """Body returned by POST /webhook. Serialize with exclude_none=True."""

    received: int
    tasks_created: int
    task_ids: list[str] = Field(default_factory=list)
    errors: Optional[list[str]] = None
    status: str
    teams_notifications_sent: Optional[int] = None
    sharepoint_pages_created: Optional[int] = None
    sharepoint_urls: Optional[list[str]] = None


class AcknowledgementResponse(BaseModel):
    """Body returned when the batch was a connectivity test."""

    message: str = "Test webhook received"
