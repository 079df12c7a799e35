"""Failure count metrics."""

from __future__ import annotations

from collections import Counter
from datetime import datetime

from failure_memory.schema import FailureEvent, as_utc


def events_between(events: list[FailureEvent], start: datetime, end: datetime) -> list[FailureEvent]:
    """Events with ``start <= timestamp < end``."""

    start, end = as_utc(start), as_utc(end)
    return [event for event in events if start <= event.timestamp < end]


def archetype_counts(events: list[FailureEvent]) -> Counter:
    counts: Counter = Counter()
    for event in events:
        counts.update(event.archetypes)
    return counts


def top_archetypes(events: list[FailureEvent], n: int = 3) -> list[tuple[str, int]]:
    return archetype_counts(events).most_common(n)


def compute_metrics(events: list[FailureEvent], impact_high_threshold: int = 4) -> dict:
    """Compute totals, per-archetype/category counts and impact rates."""

    if not events:
        return {
            "total_events": 0,
            "archetype_counts": {},
            "category_counts": {},
            "mean_impact": 0.0,
            "high_impact_rate": 0.0,
        }

    high = sum(1 for event in events if event.impact >= impact_high_threshold)
    return {
        "total_events": len(events),
        "archetype_counts": dict(archetype_counts(events)),
        "category_counts": dict(Counter(event.category for event in events)),
        "mean_impact": sum(event.impact for event in events) / len(events),
        "high_impact_rate": high / len(events),
    }
