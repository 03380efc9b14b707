"""
Dispatch coordinator — webhook body → normalized alerts → sink fan-out →
one aggregated BatchResult.

Per request:
  Received → Normalizing → Rejected            (malformed or empty body)
                         → Classifying → TestShortCircuit
                                       → Dispatching → Completed

Once dispatching begins the request always completes. Every sink call is
best-effort: a failure is captured in BatchResult.per_alert_errors and the
remaining sinks and alerts still run. A disabled sink is skipped without an
error.

Entry points:
  def process_webhook(body, destination, sinks) -> WebhookOutcome
  def run(input: DispatchInput, sinks: SinkSet) -> DispatchOutput
"""

from __future__ import annotations

import logging

from alert_relay.agents import normalize
from alert_relay.integrations.base import SinkSet
from alert_relay.models.alert import Alert
from alert_relay.models.dispatch import (
    BatchResult,
    Destination,
    DispatchInput,
    DispatchOutput,
    NormalizeInput,
    OutcomeKind,
    SinkContext,
    WebhookOutcome,
)

logger = logging.getLogger(__name__)

TEST_MESSAGE_PREFIX = "This is a test message from Prisma Cloud initiated"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def is_test_alert(alert: Alert) -> bool:
    return alert.message.startswith(TEST_MESSAGE_PREFIX)


def is_test_batch(alerts: list[Alert]) -> bool:
    """One test alert marks the whole batch as a connectivity test.

    Kept as-is from the production behavior: the non-test alerts in the same
    batch are not dispatched either.
    """
    return any(is_test_alert(alert) for alert in alerts)


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------

def _dispatch_alert(
    alert: Alert,
    index: int,
    sinks: SinkSet,
    destination: Destination,
    batch: BatchResult,
) -> None:
    """Run every enabled sink for one alert; capture per-sink errors without failing the batch."""
    context = SinkContext(destination=destination)

    for sink in sinks:
        if not sink.is_enabled():
            logger.debug("dispatch.sink_disabled", extra={"sink": sink.name.value, "alert_index": index})
            continue

        result = sink.submit(alert, context)

        if not result.ok:
            batch.per_alert_errors.append(f"Failed to {sink.action} for alert {index}: {result.error}")
            continue

        if sink is sinks.primary:
            batch.sink_references.append(result.reference)
        else:
            batch.secondary_references.setdefault(sink.name, []).append(result.reference)

        if result.url:
            context.upstream[sink.name] = result.url


def run(input: DispatchInput, sinks: SinkSet) -> DispatchOutput:
    """Dispatch already-classified alerts to every sink, in order.

    Args:
        input: DispatchInput with the alerts and the routing destination.
        sinks: The configured primary and secondary sinks.

    Returns:
        DispatchOutput whose BatchResult aggregates references and errors.
    """
    batch = BatchResult(received_count=len(input.alerts))

    for index, alert in enumerate(input.alerts, start=1):
        logger.info(
            "dispatch.alert_start",
            extra={"alert_index": index, "policy": alert.policy_name, "severity": alert.severity},
        )
        _dispatch_alert(alert, index, sinks, input.destination, batch)

    logger.info(
        "dispatch.complete",
        extra={
            "received": batch.received_count,
            "tasks_created": len(batch.sink_references),
            "error_count": len(batch.per_alert_errors),
            "status": batch.status,
        },
    )
    return DispatchOutput(batch=batch)


def process_webhook(body: bytes, destination: Destination, sinks: SinkSet) -> WebhookOutcome:
    """Normalize, classify and dispatch one inbound webhook body."""
    try:
        normalized = normalize.run(NormalizeInput(body=body))
    except normalize.PayloadError as e:
        logger.info("dispatch.rejected", extra={"reason": type(e).__name__, "detail": str(e)})
        message = "No alerts in payload" if isinstance(e, normalize.EmptyPayload) else "Invalid request payload"
        return WebhookOutcome(kind=OutcomeKind.REJECTED, error=message)

    alerts = normalized.alerts
    if is_test_batch(alerts):
        logger.info("dispatch.test_batch", extra={"received": len(alerts)})
        return WebhookOutcome(
            kind=OutcomeKind.TEST_ACKNOWLEDGED,
            batch=BatchResult(received_count=len(alerts), is_test_batch=True),
        )

    output = run(DispatchInput(alerts=alerts, destination=destination), sinks)
    return WebhookOutcome(kind=OutcomeKind.COMPLETED, batch=output.batch)
