"""Per-task deferral counting and escalation thresholds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from failure_memory.config import EngineConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeferralOutcome:
    """Result of one deferral: the new count and whether it escalated."""

    ref: str
    count: int
    threshold: int
    escalated: bool
    synthesis: bool = False


class DeferralCounter:
    """Idle(0) -> Deferred(n) -> Escalated(n >= threshold), back to Idle on reset.

    Counts live in the ``counters`` mapping owned by ``EngineState``;
    ``on_change`` is called after every mutation so the caller can persist.
    Escalation is reported on every call past the threshold; deciding whether
    to prompt again is left to the caller.
    """

    def __init__(
        self,
        counters: dict[str, int],
        config: EngineConfig | None = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.counters = counters
        self.config = config or EngineConfig()
        self.on_change = on_change

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def is_synthesis(self, text: str | None) -> bool:
        return bool(text) and self.config.synthesis_marker in text

    def threshold(self, ref: str, text: str | None = None) -> int:
        if self.is_synthesis(text if text is not None else ref):
            return self.config.deferral_threshold_special
        return self.config.deferral_threshold_generic

    def get(self, ref: str) -> int:
        return self.counters.get(ref, 0)

    def increment(self, ref: str) -> int:
        count = self.counters.get(ref, 0) + 1
        self.counters[ref] = count
        self._changed()
        return count

    def reset(self, ref: str) -> None:
        self.counters[ref] = 0
        self._changed()

    def reset_all(self) -> None:
        self.counters.clear()
        self._changed()

    def is_escalated(self, ref: str, text: str | None = None) -> bool:
        return self.get(ref) >= self.threshold(ref, text)

    def defer(self, ref: str, text: str | None = None) -> DeferralOutcome:
        count = self.increment(ref)
        threshold = self.threshold(ref, text)
        escalated = count >= threshold
        if escalated:
            logger.info("Task %s deferred %s times (threshold %s), escalating", ref, count, threshold)
        return DeferralOutcome(
            ref=ref,
            count=count,
            threshold=threshold,
            escalated=escalated,
            synthesis=self.is_synthesis(text if text is not None else ref),
        )
