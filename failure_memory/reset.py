"""Weekly and monthly periodic state handling."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from failure_memory import frontmatter
from failure_memory.adapters.vault_adapter import DocumentRepository
from failure_memory.config import EngineConfig
from failure_memory.escalation import DeferralCounter
from failure_memory.history import HistoryLedger
from failure_memory.metrics import archetype_counts, events_between
from failure_memory.schema import FailureEvent, as_utc
from failure_memory.state import EngineState

logger = logging.getLogger(__name__)


@dataclass
class MonthlyReport:
    """Read-only aggregate of one calendar month of events."""

    period: str
    start: datetime
    end: datetime
    path: str
    total_events: int = 0
    archetype_counts: dict[str, int] = field(default_factory=dict)
    top_archetypes: list[tuple[str, int]] = field(default_factory=list)
    dominant_category: str = ""


def render_marker(report: MonthlyReport) -> str:
    """Structured marker document for a monthly report."""

    meta = {
        "type": "monthly-review",
        "month": report.period,
        "totalFailures": report.total_events,
        "dominantCategory": report.dominant_category or None,
        "topArchetypes": [{"archetype": name, "count": count} for name, count in report.top_archetypes],
        "tags": ["ritual/monthly"],
    }
    return frontmatter.join(meta, "")


def previous_month(now: datetime) -> tuple[datetime, datetime]:
    first_of_month = as_utc(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start = (first_of_month - timedelta(days=1)).replace(day=1)
    return start, first_of_month


class ResetController:
    def __init__(
        self,
        state: EngineState,
        ledger: HistoryLedger,
        counter: DeferralCounter,
        repository: DocumentRepository,
        config: EngineConfig | None = None,
    ) -> None:
        self.state = state
        self.ledger = ledger
        self.counter = counter
        self.repository = repository
        self.config = config or EngineConfig()

    def weekly(self, summarize: Optional[Callable[[EngineState], None]] = None) -> None:
        """Clear pending deferrals, all counters and the history ledger.

        ``summarize`` receives a copy of the state before anything is cleared.
        """

        if summarize is not None:
            try:
                summarize(EngineState.from_dict(self.state.to_dict()))
            except Exception:  # noqa: BLE001
                logger.exception("Weekly summary failed; resetting anyway")

        self.state.pending_queue.clear()
        self.counter.reset_all()
        self.ledger.clear()
        logger.info("Weekly reset complete")

    def monthly_path(self, period: str) -> str:
        return f"{self.config.monthly_review_folder}/Monthly Review - {period}.md"

    def monthly(
        self,
        events: list[FailureEvent],
        now: datetime,
        generator: Optional[Callable[[MonthlyReport], str]] = None,
    ) -> MonthlyReport | None:
        """Produce last month's report once, during the first days of a month."""

        now = as_utc(now)
        if now.day > self.config.monthly_grace_days:
            return None

        start, end = previous_month(now)
        period = start.strftime("%B %Y")
        path = self.monthly_path(period)
        if self.repository.exists(path):
            logger.debug("Monthly report for %s already exists", period)
            return None

        in_period = events_between(events, start, end)
        counts = archetype_counts(in_period)
        report = MonthlyReport(
            period=period,
            start=start,
            end=end,
            path=path,
            total_events=len(in_period),
            archetype_counts=dict(counts),
            top_archetypes=counts.most_common(self.config.monthly_top_n),
            dominant_category=self.state.dominant_category,
        )

        self.repository.create(path, (generator or render_marker)(report))
        logger.info("Monthly report for %s written to %s", period, path)
        return report
