"""Engine-owned derived state and its best-effort persistence."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from failure_memory.schema import HistoryEntry, PendingDeferral

logger = logging.getLogger(__name__)


@dataclass
class EngineState:
    """Everything the engine owns exclusively.

    Passed by reference into each component; nothing else keeps a copy.
    """

    dominant_category: str = ""
    history: list[HistoryEntry] = field(default_factory=list)
    deferral_counters: dict[str, int] = field(default_factory=dict)
    pending_queue: list[PendingDeferral] = field(default_factory=list)
    dominant_streak: int = 0
    last_dominant_hit: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "dominantCategory": self.dominant_category,
            "history": [{"date": e.date, "category": e.category} for e in self.history],
            "deferralCounters": dict(self.deferral_counters),
            "pendingQueue": [p.to_dict() for p in self.pending_queue],
            "dominantStreak": self.dominant_streak,
            "lastDominantHit": self.last_dominant_hit,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "EngineState":
        counters = {}
        for ref, value in (payload.get("deferralCounters") or {}).items():
            counters[str(ref)] = max(0, int(value))
        return cls(
            dominant_category=str(payload.get("dominantCategory") or ""),
            history=[
                HistoryEntry(date=str(item["date"]), category=str(item["category"]))
                for item in payload.get("history") or []
            ],
            deferral_counters=counters,
            pending_queue=[PendingDeferral.from_dict(item) for item in payload.get("pendingQueue") or []],
            dominant_streak=int(payload.get("dominantStreak") or 0),
            last_dominant_hit=payload.get("lastDominantHit"),
        )


class StateStore:
    """JSON file holding the persisted ``EngineState``."""

    def __init__(self, file_path: str | Path) -> None:
        self.path = Path(file_path)

    def load(self) -> EngineState:
        if not self.path.exists():
            return EngineState()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            return EngineState.from_dict(payload)
        except (OSError, ValueError, KeyError, TypeError, AttributeError):
            logger.warning("Unreadable engine state at %s, starting fresh", self.path, exc_info=True)
            return EngineState()

    def save(self, state: EngineState) -> bool:
        """Write ``state``; failures are logged and left to the next save."""

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(state.to_dict(), indent=2), encoding="utf-8")
        except OSError:
            logger.warning("Could not persist engine state to %s", self.path, exc_info=True)
            return False
        return True
