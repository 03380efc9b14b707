"""
Normalizer — raw webhook body → ordered list of canonical Alerts.

Prisma Cloud has sent two incompatible shapes over time:
  - flat    (severity, policyName, resourceName, accountName, resourceRegion,
             alertTime as top-level scalars)
  - nested  (policy.*, resource.*, account.* sub-objects, top-level region,
             alertTs in epoch milliseconds)

Real payloads mix both, so the merge is done field by field: the nested value
wins when it is present and non-empty, otherwise the flat value is used.

Entry point: def run(input: NormalizeInput) -> NormalizeOutput

No network I/O happens here — the normalizer is pure.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import TypeAdapter

from alert_relay.models.alert import Alert
from alert_relay.models.dispatch import NormalizeInput, NormalizeOutput

logger = logging.getLogger(__name__)

_BATCH_ADAPTER = TypeAdapter(list[dict[str, Any]])
_SINGLE_ADAPTER = TypeAdapter(dict[str, Any])
_DATETIME_ADAPTER = TypeAdapter(datetime)

_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


class PayloadError(ValueError):
    """The request body cannot be turned into a batch of alerts."""


class MalformedPayload(PayloadError):
    """Body is not a JSON object or an array of JSON objects."""


class EmptyPayload(PayloadError):
    """Body is a valid, empty array — nothing to dispatch."""


# ---------------------------------------------------------------------------
# Field sources: canonical field → (nested paths, flat keys)
# Nested paths are tried in order before any flat key.
# ---------------------------------------------------------------------------

_FIELD_SOURCES: dict[str, tuple[tuple[tuple[str, ...], ...], tuple[str, ...]]] = {
    "id": ((), ("alertId", "id")),
    "severity": ((("policy", "severity"),), ("severity",)),
    "policy_name": ((("policy", "name"),), ("policyName",)),
    "policy_description": ((("policy", "description"),), ("policyDescription",)),
    "policy_recommendation": ((("policy", "recommendation"),), ("policyRecommendation", "recommendation")),
    "policy_type": ((("policy", "policyType"),), ("policyType",)),
    "policy_id": ((("policy", "policyId"), ("policy", "id")), ("policyId",)),
    "alert_rule_name": ((), ("alertRuleName",)),
    "resource_id": ((("resource", "id"), ("resource", "resourceId")), ("resourceId",)),
    "resource_name": ((("resource", "resourceName"), ("resource", "name")), ("resourceName",)),
    "resource_type": ((("resource", "resourceType"),), ("resourceType",)),
    "resource_region": ((("region",), ("resource", "region")), ("resourceRegion",)),
    "resource_cloud_service": ((("resource", "cloudServiceName"),), ("resourceCloudService", "cloudServiceName")),
    "account_name": ((("account", "name"), ("resource", "accountName")), ("accountName",)),
    "cloud_type": ((("account", "cloudType"), ("resource", "cloudType")), ("cloudType",)),
    "status": ((("status",),), ("alertStatus",)),
    "callback_url": ((), ("callbackUrl",)),
    "message": ((), ("message",)),
}

_TIME_SOURCES: tuple[str, ...] = ("alertTs", "alertTime")   # nested shape first

# Top-level keys consumed by the canonical mapping; everything else is an extra.
# The raw resource object is deliberately not listed so it survives in raw_extras.
_CONSUMED_KEYS: frozenset[str] = frozenset(
    {path[0] for nested, _ in _FIELD_SOURCES.values() for path in nested if path[0] != "resource"}
    | {key for _, flat in _FIELD_SOURCES.values() for key in flat}
    | set(_TIME_SOURCES)
    | {"sender", "sentTs"}
)


# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    """Coerce a JSON scalar to text; objects, arrays and null become ""."""
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def prefer_nested(nested: Any, flat: Any) -> str:
    """The per-field merge rule: nested wins when non-empty, else flat, else ""."""
    return _text(nested) or _text(flat)


def _dig(raw: dict[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = raw
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _first(values: list[Any]) -> Any:
    for value in values:
        if _text(value):
            return value
    return None


def _resolve_field(raw: dict[str, Any], field: str) -> str:
    nested_paths, flat_keys = _FIELD_SOURCES[field]
    nested = _first([_dig(raw, path) for path in nested_paths])
    flat = _first([raw.get(key) for key in flat_keys])
    return prefer_nested(nested, flat)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


def _collect_extras(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value
        for key, value in raw.items()
        if key not in _CONSUMED_KEYS and not _is_empty(value)
    }


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def parse_alert_time(value: Any) -> Optional[datetime]:
    """Accept epoch milliseconds (int or numeric string) or ISO-8601.

    Returns a timezone-aware UTC datetime, or None when *value* is absent or
    cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)

    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return _from_epoch_ms(float(text))
    except ValueError:
        pass

    # RFC 3339 allows nanoseconds; datetime stops at microseconds
    text = _EXCESS_FRACTION.sub(r"\1", text)
    try:
        parsed = _DATETIME_ADAPTER.validate_python(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _from_epoch_ms(ms: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _resolve_time(raw: dict[str, Any], index: int, warnings: list[str]) -> Optional[datetime]:
    for key in _TIME_SOURCES:
        value = raw.get(key)
        if _is_empty(value):
            continue
        parsed = parse_alert_time(value)
        if parsed is not None:
            return parsed
        warnings.append(f"Alert {index}: couldn't parse {key} '{value}' — treated as absent")
    return None


# ---------------------------------------------------------------------------
# Shape detection
# ---------------------------------------------------------------------------

def _decode(body: bytes) -> list[dict[str, Any]]:
    """Array of objects first, then a single object wrapped in a list."""
    try:
        return _BATCH_ADAPTER.validate_json(body)
    except ValueError:
        pass

    try:
        return [_SINGLE_ADAPTER.validate_json(body)]
    except ValueError as e:
        raise MalformedPayload(f"Body is neither an alert object nor an array of alerts: {e}") from e


def to_alert(raw: dict[str, Any], index: int = 1, warnings: Optional[list[str]] = None) -> Alert:
    """Reduce one decoded alert object to the canonical Alert."""
    if warnings is None:
        warnings = []

    values = {field: _resolve_field(raw, field) for field in _FIELD_SOURCES}
    values["severity"] = values["severity"].lower()

    return Alert(
        **values,
        alert_time=_resolve_time(raw, index, warnings),
        raw_extras=_collect_extras(raw),
    )


def run(input: NormalizeInput) -> NormalizeOutput:
    """Normalize a webhook body into canonical alerts.

    Args:
        input: NormalizeInput carrying the raw request body.

    Returns:
        NormalizeOutput with the alerts in payload order and any non-fatal
        parse warnings.

    Raises:
        MalformedPayload: If the body is not valid JSON in either shape.
        EmptyPayload: If the body is an empty array.
    """
    raw_alerts = _decode(input.body)
    if not raw_alerts:
        raise EmptyPayload("No alerts in payload")

    warnings: list[str] = []
    alerts = [to_alert(raw, i, warnings) for i, raw in enumerate(raw_alerts, start=1)]

    logger.info(
        "normalizer.complete",
        extra={"alert_count": len(alerts), "warning_count": len(warnings)},
    )
    for warning in warnings:
        logger.warning("normalizer.warning", extra={"detail": warning})

    return NormalizeOutput(alerts=alerts, parse_warnings=warnings)
