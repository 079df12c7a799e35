"""Core data schema for failure events and engine-owned records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

CATEGORIES = ("Knowledge Gap", "Skill Gap", "Process Failure")
ORIGINS = ("manual", "proactive", "quick")

_MAX_CAUSES = 5


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO string, date or datetime into an aware UTC datetime."""

    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    raise ValueError(f"malformed timestamp {value!r}")


@dataclass(frozen=True)
class Provenance:
    origin: str = "manual"
    source_task_ref: Optional[str] = None


@dataclass(frozen=True)
class FailureEvent:
    """A finalized failure or risk record. Immutable once built."""

    loss_id: str
    source_ref: str
    category: str
    archetypes: tuple[str, ...]
    impact: int
    mitigation_principle: str
    cause_chain: tuple[str, ...]
    timestamp: datetime
    topics: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    energy_level: Optional[str] = None
    emotional_state: Optional[str] = None
    counter_factual: Optional[str] = None
    evidence_ref: Optional[str] = None
    linked_test_ref: Optional[str] = None
    provenance: Provenance = field(default_factory=Provenance)
    realization_point: Optional[str] = None


@dataclass
class PendingDeferral:
    """Partial event context queued by "log later" until it is resolved."""

    source_ref: str
    timestamp: str
    initial_category: Optional[str] = None
    initial_archetypes: list[str] = field(default_factory=list)
    initial_energy: Optional[str] = None
    initial_topics: list[str] = field(default_factory=list)
    source_task_ref: Optional[str] = None
    proactive: bool = False
    realization_point: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "sourceRef": self.source_ref,
            "timestamp": self.timestamp,
            "initialCategory": self.initial_category,
            "initialArchetypes": list(self.initial_archetypes),
            "initialEnergy": self.initial_energy,
            "initialTopics": list(self.initial_topics),
            "sourceTaskRef": self.source_task_ref,
            "proactive": self.proactive,
            "realizationPoint": self.realization_point,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "PendingDeferral":
        return cls(
            source_ref=str(payload.get("sourceRef", "")),
            timestamp=str(payload.get("timestamp", "")),
            initial_category=payload.get("initialCategory"),
            initial_archetypes=list(payload.get("initialArchetypes") or []),
            initial_energy=payload.get("initialEnergy"),
            initial_topics=list(payload.get("initialTopics") or []),
            source_task_ref=payload.get("sourceTaskRef"),
            proactive=bool(payload.get("proactive", False)),
            realization_point=payload.get("realizationPoint"),
        )

    def to_draft(self) -> dict:
        """Seed a draft for ``prepare_event`` from this pending context."""

        return {
            "source_ref": self.source_ref,
            "category": self.initial_category,
            "archetypes": list(self.initial_archetypes),
            "energy_level": self.initial_energy,
            "topics": list(self.initial_topics),
            "origin": "proactive" if self.proactive else "manual",
            "source_task_ref": self.source_task_ref,
            "realization_point": self.realization_point,
        }


@dataclass(frozen=True)
class HistoryEntry:
    """``category`` was the dominant category until it was replaced on ``date``."""

    date: str
    category: str


def _clean_list(value: Any, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{name} must be a list of strings")
    return tuple(str(item).strip() for item in value if str(item).strip())


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_event(
    *,
    loss_id: str,
    source_ref: str,
    category: str,
    archetypes: Any,
    impact: Any,
    mitigation_principle: str,
    cause_chain: Any,
    timestamp: Any,
    topics: Any = None,
    tags: Any = None,
    energy_level: Any = None,
    emotional_state: Any = None,
    counter_factual: Any = None,
    evidence_ref: Any = None,
    linked_test_ref: Any = None,
    origin: Any = "manual",
    source_task_ref: Any = None,
    realization_point: Any = None,
) -> FailureEvent:
    """Validate raw field values and build a ``FailureEvent``.

    Raises ``ValueError`` naming the first offending field. This is the only
    way events enter the engine, so everything downstream may assume the
    invariants hold.
    """

    loss_id = str(loss_id or "").strip()
    if not loss_id:
        raise ValueError("loss_id is required")

    source_ref = str(source_ref or "").strip()
    if not source_ref:
        raise ValueError("source_ref is required")

    category = str(category or "").strip()
    if category not in CATEGORIES:
        raise ValueError(f"invalid category {category!r}")

    archetype_values = _clean_list(archetypes, "archetypes")
    if not archetype_values:
        raise ValueError("archetypes must not be empty")

    try:
        impact_value = int(impact)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid impact {impact!r}") from exc
    if not 1 <= impact_value <= 5:
        raise ValueError(f"impact must be between 1 and 5, got {impact_value}")

    principle = str(mitigation_principle or "").strip()
    if not principle:
        raise ValueError("mitigation_principle is required")

    causes = _clean_list(cause_chain, "cause_chain")
    if not 1 <= len(causes) <= _MAX_CAUSES:
        raise ValueError(f"cause_chain must hold 1 to {_MAX_CAUSES} entries")

    origin_value = str(origin or "manual").strip()
    if origin_value not in ORIGINS:
        raise ValueError(f"invalid origin {origin_value!r}")

    return FailureEvent(
        loss_id=loss_id,
        source_ref=source_ref,
        category=category,
        archetypes=tuple(dict.fromkeys(archetype_values)),
        impact=impact_value,
        mitigation_principle=principle,
        cause_chain=causes,
        timestamp=parse_timestamp(timestamp),
        topics=_clean_list(topics, "topics"),
        tags=_clean_list(tags, "tags"),
        energy_level=_optional_text(energy_level),
        emotional_state=_optional_text(emotional_state),
        counter_factual=_optional_text(counter_factual),
        evidence_ref=_optional_text(evidence_ref),
        linked_test_ref=_optional_text(linked_test_ref),
        provenance=Provenance(origin=origin_value, source_task_ref=_optional_text(source_task_ref)),
        realization_point=_optional_text(realization_point),
    )


def generate_loss_id(now: datetime) -> str:
    stamp = as_utc(now).strftime("%Y%m%d_%H%M%S")
    return f"loss_{stamp}_{uuid.uuid4().hex[:6]}"


def prepare_event(draft: dict, now: datetime) -> FailureEvent:
    """Finalize a partial draft into a validated event stamped at ``now``."""

    return build_event(
        loss_id=draft.get("loss_id") or generate_loss_id(now),
        source_ref=draft.get("source_ref", ""),
        category=draft.get("category") or "Knowledge Gap",
        archetypes=draft.get("archetypes"),
        impact=draft.get("impact", 1),
        mitigation_principle=draft.get("mitigation_principle", ""),
        cause_chain=draft.get("cause_chain"),
        timestamp=draft.get("timestamp") or now,
        topics=draft.get("topics"),
        tags=draft.get("tags"),
        energy_level=draft.get("energy_level"),
        emotional_state=draft.get("emotional_state"),
        counter_factual=draft.get("counter_factual"),
        evidence_ref=draft.get("evidence_ref"),
        linked_test_ref=draft.get("linked_test_ref"),
        origin=draft.get("origin") or "manual",
        source_task_ref=draft.get("source_task_ref"),
        realization_point=draft.get("realization_point"),
    )


def event_to_frontmatter(event: FailureEvent) -> dict:
    """Serialize an event into the metadata mapping stored on its note."""

    meta: dict[str, Any] = {
        "lossId": event.loss_id,
        "sourceTask": event.source_ref,
        "failureType": event.category,
        "failureArchetypes": list(event.archetypes),
        "impact": event.impact,
        "syllabusTopics": list(event.topics),
        "syllabusPapers": list(event.tags),
        "rootCauseChain": list(event.cause_chain),
        "ariadnesThread": event.mitigation_principle,
        "timestamp": event.timestamp.isoformat(),
        "provenance": {"origin": event.provenance.origin},
    }
    if event.provenance.source_task_ref:
        meta["provenance"]["sourceTaskId"] = event.provenance.source_task_ref
    optional = {
        "aura": event.energy_level,
        "emotionalState": event.emotional_state,
        "counterFactual": event.counter_factual,
        "evidenceLink": event.evidence_ref,
        "linkedMockTest": event.linked_test_ref,
        "failureRealizationPoint": event.realization_point,
    }
    meta.update({key: value for key, value in optional.items() if value is not None})
    return meta


def event_from_frontmatter(meta: dict) -> FailureEvent:
    """Deserialize note metadata written by ``event_to_frontmatter``."""

    if not isinstance(meta, dict):
        raise ValueError("metadata must be a mapping")
    provenance = meta.get("provenance") or {}
    if not isinstance(provenance, dict):
        raise ValueError("provenance must be a mapping")
    return build_event(
        loss_id=meta.get("lossId", ""),
        source_ref=meta.get("sourceTask", ""),
        category=meta.get("failureType", ""),
        archetypes=meta.get("failureArchetypes"),
        impact=meta.get("impact", 1),
        mitigation_principle=meta.get("ariadnesThread", ""),
        cause_chain=meta.get("rootCauseChain"),
        timestamp=meta.get("timestamp"),
        topics=meta.get("syllabusTopics"),
        tags=meta.get("syllabusPapers"),
        energy_level=meta.get("aura"),
        emotional_state=meta.get("emotionalState"),
        counter_factual=meta.get("counterFactual"),
        evidence_ref=meta.get("evidenceLink"),
        linked_test_ref=meta.get("linkedMockTest"),
        origin=provenance.get("origin", "manual"),
        source_task_ref=provenance.get("sourceTaskId"),
        realization_point=meta.get("failureRealizationPoint"),
    )
