"""CSV adapter for failure events."""

from __future__ import annotations

import csv

from failure_memory.schema import FailureEvent, build_event

_REQUIRED_FIELDS = ("loss_id", "source_ref", "category", "archetypes", "mitigation_principle", "cause_chain", "timestamp")
_LIST_FIELDS = ("archetypes", "cause_chain", "topics", "tags")
_OPTIONAL_FIELDS = (
    "energy_level",
    "emotional_state",
    "counter_factual",
    "evidence_ref",
    "linked_test_ref",
    "origin",
    "source_task_ref",
    "realization_point",
)


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(";") if part.strip()]


def _parse_row(row: dict, row_number: int) -> FailureEvent:
    missing = [field for field in _REQUIRED_FIELDS if not (row.get(field) or "").strip()]
    if missing:
        raise ValueError(f"Row {row_number}: missing required fields {missing}")

    values = {field: _split(row.get(field)) for field in _LIST_FIELDS}
    values.update({field: row.get(field) or None for field in _OPTIONAL_FIELDS})
    try:
        return build_event(
            loss_id=row["loss_id"],
            source_ref=row["source_ref"],
            category=row["category"],
            impact=row.get("impact") or 1,
            mitigation_principle=row["mitigation_principle"],
            timestamp=row["timestamp"],
            **values,
        )
    except ValueError as exc:
        raise ValueError(f"Row {row_number}: {exc}") from exc


def parse(file_path: str) -> list[FailureEvent]:
    """Parse CSV file into a list of failure events.

    List columns (archetypes, cause_chain, topics, tags) are ``;``-separated.
    """

    with open(file_path, newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            return []

        events: list[FailureEvent] = []
        for row_number, row in enumerate(reader, start=2):
            events.append(_parse_row(row, row_number))
        return events
