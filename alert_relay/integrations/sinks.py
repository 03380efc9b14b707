"""Sink wiring: ClickUp first, then SharePoint, then Teams.

SharePoint runs before Teams so the card can link to the page created for
the same alert.
"""

from __future__ import annotations

import logging

from alert_relay.config import Settings
from alert_relay.integrations.base import SinkSet
from alert_relay.integrations.clickup import ClickUpSink
from alert_relay.integrations.sharepoint import SharePointSink
from alert_relay.integrations.teams import TeamsSink

logger = logging.getLogger(__name__)


def build_sink_set(settings: Settings) -> SinkSet:
    sinks = SinkSet(
        primary=ClickUpSink(settings),
        secondaries=[SharePointSink(settings), TeamsSink(settings)],
    )
    for sink in sinks:
        if sink.is_enabled():
            continue
        try:
            settings.validate_for_sink(sink.name.value)
        except RuntimeError as e:
            logger.info("sinks.disabled", extra={"sink": sink.name.value, "detail": str(e)})

    logger.info(
        "sinks.configured",
        extra={"enabled": [sink.name.value for sink in sinks if sink.is_enabled()]},
    )
    return sinks
