"""JSON adapter for failure events."""

from __future__ import annotations

import json

from failure_memory.schema import FailureEvent, build_event

_REQUIRED_FIELDS = ("loss_id", "source_ref", "category", "archetypes", "mitigation_principle", "cause_chain", "timestamp")
_OPTIONAL_FIELDS = (
    "topics",
    "tags",
    "energy_level",
    "emotional_state",
    "counter_factual",
    "evidence_ref",
    "linked_test_ref",
    "realization_point",
)


def _parse_item(item: dict, index: int) -> FailureEvent:
    if not isinstance(item, dict):
        raise ValueError(f"Item {index}: expected an object")

    missing = [field for field in _REQUIRED_FIELDS if not item.get(field)]
    if missing:
        raise ValueError(f"Item {index}: missing required fields {missing}")

    provenance = item.get("provenance") or {}
    if not isinstance(provenance, dict):
        raise ValueError(f"Item {index}: provenance must be an object")

    try:
        return build_event(
            loss_id=item["loss_id"],
            source_ref=item["source_ref"],
            category=item["category"],
            archetypes=item["archetypes"],
            impact=item.get("impact", 1),
            mitigation_principle=item["mitigation_principle"],
            cause_chain=item["cause_chain"],
            timestamp=item["timestamp"],
            origin=provenance.get("origin", "manual"),
            source_task_ref=provenance.get("source_task_ref"),
            **{field: item.get(field) for field in _OPTIONAL_FIELDS},
        )
    except ValueError as exc:
        raise ValueError(f"Item {index}: {exc}") from exc


def parse(file_path: str) -> list[FailureEvent]:
    """Parse JSON file into failure events."""

    with open(file_path, encoding="utf-8") as handle:
        payload = json.load(handle)

    if not isinstance(payload, list):
        raise ValueError("JSON payload must be a list of objects")

    return [_parse_item(item, i) for i, item in enumerate(payload, start=1)]
