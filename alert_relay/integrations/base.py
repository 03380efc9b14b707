"""
Sink contract — the one capability every downstream integration exposes.

The coordinator only ever calls is_enabled() and submit(). Concrete sinks
implement _deliver() and are free to raise SinkError, requests exceptions,
ValueError (bad JSON in a response) or TypeError / KeyError (a response of
the wrong shape); submit() turns all of those into a failed SinkResult so
one sink can never abort its siblings.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import requests

from alert_relay.models.alert import Alert
from alert_relay.models.dispatch import SinkContext, SinkName, SinkResult

logger = logging.getLogger(__name__)


class SinkError(RuntimeError):
    """A downstream call failed: non-success status or unusable response."""


class Sink(ABC):
    name: SinkName
    action: str = "deliver alert"   # used in error messages, e.g. "send Teams notification"

    @abstractmethod
    def is_enabled(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def _deliver(self, alert: Alert, context: SinkContext) -> SinkResult:
        raise NotImplementedError

    def submit(self, alert: Alert, context: SinkContext) -> SinkResult:
        """Attempt one delivery; failures come back as a SinkResult, never raised."""
        try:
            return self._deliver(alert, context)
        except (SinkError, requests.RequestException, ValueError, TypeError, KeyError) as e:
            logger.warning(
                "sink.failed",
                extra={"sink": self.name.value, "alert_id": alert.id, "error": str(e)},
            )
            return SinkResult.failure(self.name, str(e))


@dataclass
class SinkSet:
    """The closed, ordered set of sinks fixed at configuration time."""

    primary: Sink
    secondaries: list[Sink] = field(default_factory=list)

    def __iter__(self):
        yield self.primary
        yield from self.secondaries
