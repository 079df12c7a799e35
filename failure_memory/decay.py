"""Exponential time-decay aggregation of failure archetypes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

import numpy as np

from failure_memory.events import DOMINANT_CHANGED, EventBus
from failure_memory.history import HistoryLedger
from failure_memory.schema import FailureEvent, HistoryEntry, as_utc
from failure_memory.state import EngineState

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400.0


def days_since(timestamp: datetime, now: datetime) -> float:
    """Fractional days between ``timestamp`` and ``now``, clamped at zero."""

    delta = (as_utc(now) - as_utc(timestamp)).total_seconds() / _SECONDS_PER_DAY
    return max(0.0, delta)


def decay_weight(timestamp: datetime, now: datetime, decay_factor: float = 0.95) -> float:
    """Weight of one event: 1.0 when fresh, shrinking by ``decay_factor`` per day."""

    return float(decay_factor ** days_since(timestamp, now))


def recompute(
    events: Iterable[FailureEvent],
    now: datetime,
    decay_factor: float = 0.95,
    window_days: int = 30,
) -> tuple[dict[str, float], Optional[str]]:
    """Compute decayed per-archetype scores and the dominant archetype.

    Events older than ``window_days`` are dropped, not just down-weighted.
    Scores keep first-seen order and the first archetype reaching the maximum
    wins ties. Returns ``({}, None)`` when nothing is in the window.
    """

    windowed: list[FailureEvent] = []
    ages: list[float] = []
    for event in events:
        try:
            age = days_since(event.timestamp, now)
            archetypes = list(event.archetypes)
        except (AttributeError, TypeError, ValueError):
            logger.warning("Skipping malformed event %r during aggregation", getattr(event, "loss_id", event))
            continue
        if age > window_days or not archetypes:
            continue
        windowed.append(event)
        ages.append(age)

    if not windowed:
        return {}, None

    weights = np.power(decay_factor, np.asarray(ages, dtype=float))

    scores: dict[str, float] = {}
    for event, weight in zip(windowed, weights):
        for archetype in event.archetypes:
            scores[archetype] = scores.get(archetype, 0.0) + float(weight)

    dominant = max(scores, key=scores.__getitem__)
    return scores, dominant


class DecayAggregator:
    """Owns the stored dominant category and its change side effects.

    A recompute is requested with ``request()`` and committed with
    ``commit()``; when a newer request was issued in between, the older
    result is discarded.
    """

    def __init__(self, state: EngineState, ledger: HistoryLedger, bus: EventBus, decay_factor: float = 0.95, window_days: int = 30) -> None:
        self.state = state
        self.ledger = ledger
        self.bus = bus
        self.decay_factor = decay_factor
        self.window_days = window_days
        self._generation = 0
        self.last_scores: dict[str, float] = {}

    @property
    def dominant(self) -> str:
        return self.state.dominant_category

    def request(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def compute(self, events: Iterable[FailureEvent], now: datetime) -> tuple[dict[str, float], Optional[str]]:
        return recompute(events, now, self.decay_factor, self.window_days)

    def commit(self, generation: int, scores: dict[str, float], dominant: Optional[str], today: str) -> bool:
        """Store a result unless it was superseded. Returns whether it was applied."""

        if not self.is_current(generation):
            logger.debug("Discarding stale recompute %s (current %s)", generation, self._generation)
            return False

        self.last_scores = dict(scores)
        new = dominant or ""
        old = self.state.dominant_category
        if new == old:
            return True

        # an empty window clears the dominant without recording a transition
        if old and new:
            self.ledger.append(HistoryEntry(date=today, category=old))
        self.state.dominant_category = new
        logger.info("Dominant category changed from %r to %r", old, new)
        self.bus.publish(DOMINANT_CHANGED, {"old": old, "new": new})
        return True
