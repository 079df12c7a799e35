"""Co-occurrence statistics over the full event set."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from failure_memory.config import EngineConfig
from failure_memory.schema import CATEGORIES, FailureEvent

Predicate = Callable[[FailureEvent], bool]

REVIEW_KEYWORDS = ("revise", "review", "summarize", "practice", "recall")


@dataclass(frozen=True)
class Correlation:
    first: str
    second: str
    matched: int
    total: int
    pct: float
    threshold: float

    @property
    def details(self) -> str:
        return f"{self.matched}/{self.total} ({self.pct:.2f}%) of '{self.first}' events were '{self.second}'"


def _mask(events: Sequence[FailureEvent], predicate: Predicate) -> np.ndarray:
    return np.fromiter((bool(predicate(event)) for event in events), dtype=bool, count=len(events))


def correlate(events: Sequence[FailureEvent], first: Predicate, second: Predicate) -> tuple[float, int, int] | None:
    """Return ``(pct, matched, total)`` for ``P(second | first)`` in percent.

    ``None`` when no event satisfies ``first``. A single matching event is
    enough to report 100%.
    """

    events = list(events)
    if not events:
        return None
    first_mask = _mask(events, first)
    total = int(np.count_nonzero(first_mask))
    if total == 0:
        return None
    matched = int(np.count_nonzero(first_mask & _mask(events, second)))
    return matched / total * 100.0, matched, total


def _distinct(values) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def analyze(events: Sequence[FailureEvent], config: EngineConfig | None = None) -> list[Correlation]:
    """Evaluate the standard dimension pairings and keep those above threshold."""

    config = config or EngineConfig()
    events = list(events)
    high = config.impact_high_threshold
    high_label = f"impact>={high}"
    generic = config.correlation_threshold_generic
    paired = config.correlation_threshold_paired

    candidates: list[tuple[str, Predicate, str, Predicate, float]] = []

    archetypes = _distinct(a for e in events for a in e.archetypes)
    energies = _distinct(e.energy_level for e in events)
    for archetype in archetypes:
        for energy in energies:
            candidates.append(
                (archetype, lambda e, a=archetype: a in e.archetypes, energy, lambda e, v=energy: e.energy_level == v, generic)
            )

    emotions = _distinct(e.emotional_state for e in events)
    for emotion in emotions:
        candidates.append(
            (emotion, lambda e, v=emotion: e.emotional_state == v, high_label, lambda e: e.impact >= high, generic)
        )

    for category in CATEGORIES:
        candidates.append(
            (category, lambda e, c=category: e.category == c, high_label, lambda e: e.impact >= high, generic)
        )

    for emotion in emotions:
        candidates.append(
            (high_label, lambda e: e.impact >= high, emotion, lambda e, v=emotion: e.emotional_state == v, generic)
        )

    tags = _distinct(t for e in events for t in e.tags)
    for tag in tags:
        for category in CATEGORIES:
            candidates.append(
                (tag, lambda e, t=tag: t in e.tags, category, lambda e, c=category: e.category == c, paired)
            )

    found = []
    for first_label, first, second_label, second, threshold in candidates:
        result = correlate(events, first, second)
        if result is None:
            continue
        pct, matched, total = result
        if pct > threshold:
            found.append(Correlation(first_label, second_label, matched, total, pct, threshold))
    return found


def _strip_link(value: str) -> str:
    return value.replace("[[", "").replace("]]", "").strip()


def process_failure_patterns(events: Sequence[FailureEvent]) -> list[dict]:
    """Flag recurring process failures around linked tests and review work."""

    process = [e for e in events if e.category == "Process Failure"]
    patterns: list[dict] = []

    by_test: dict[str, list[FailureEvent]] = defaultdict(list)
    for event in process:
        if event.linked_test_ref:
            by_test[_strip_link(event.linked_test_ref)].append(event)

    for test, logs in by_test.items():
        if len(logs) < 2:
            continue
        archetypes = _distinct(a for e in logs for a in e.archetypes)
        if len(archetypes) > 1:
            patterns.append({"kind": "post-test-mixed", "key": test, "count": len(logs), "archetypes": archetypes})
        elif len(logs) >= 3:
            patterns.append({"kind": "post-test-frequent", "key": test, "count": len(logs), "archetypes": archetypes})

    by_keyword: dict[str, list[FailureEvent]] = defaultdict(list)
    for event in process:
        text = event.source_ref.lower()
        keyword = next((k for k in REVIEW_KEYWORDS if k in text), None)
        if keyword:
            by_keyword[keyword].append(event)

    for keyword, logs in by_keyword.items():
        if len(logs) < 3:
            continue
        topics = _distinct(_strip_link(t) for e in logs for t in e.topics)
        if len(topics) > 2:
            patterns.append({"kind": "review-workflow", "key": keyword, "count": len(logs), "topics": topics})

    return patterns
