"""Failure memory engine: wires the aggregation, counting and tagging components."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterator, Optional

from failure_memory import frontmatter
from failure_memory.adapters.vault_adapter import DocumentRepository
from failure_memory.config import EngineConfig
from failure_memory.correlation import Correlation, analyze, process_failure_patterns
from failure_memory.decay import DecayAggregator
from failure_memory.escalation import DeferralCounter, DeferralOutcome
from failure_memory.events import EVENT_LOGGED, TASK_ESCALATED, WEEKLY_RESET, EventBus
from failure_memory.history import HistoryLedger
from failure_memory.notifications import Notifier
from failure_memory.reset import MonthlyReport, ResetController
from failure_memory.schema import (
    FailureEvent,
    PendingDeferral,
    as_utc,
    event_from_frontmatter,
    event_to_frontmatter,
    prepare_event,
)
from failure_memory.state import EngineState, StateStore
from failure_memory.tagging import IdempotentTagger, TagResult, is_document_ref
from failure_memory.tasks import TaskList

logger = logging.getLogger(__name__)

HIGHLIGHT_TAG = "labyrinth/kintsugi-highlight"
BLOCKED_TAG = "#failure/dependency-blocked"
FUTURE_RISK_TAG = "#loss/future-risk"
ARCHIVED_STATUS = "archived"

_WIKILINK = re.compile(r"\[\[([^\]|#]+)(?:[|#][^\]]*)?\]\]")
_RESETTING_ORIGINS = ("manual", "quick")


@dataclass(frozen=True)
class StepResult:
    name: str
    ok: bool
    detail: str = ""
    failed_tags: int = 0


@dataclass
class LogOutcome:
    """What ``create_log`` did: the new note and every follow-up step."""

    event: FailureEvent
    note_path: str
    steps: list[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    @property
    def failed_tags(self) -> int:
        return sum(step.failed_tags for step in self.steps)


@dataclass(frozen=True)
class TaskDeferral:
    outcome: DeferralOutcome
    accepted: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _link_target(text: str) -> str | None:
    match = _WIKILINK.search(text)
    return match.group(1).strip() if match else None


class FailureMemoryEngine:
    """Owns ``EngineState`` and exposes every engine operation.

    ``repository`` is the document store (see ``VaultRepository``) and
    ``tasks`` the external task list. Each call runs to completion before
    returning; there is no background work.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        tasks: TaskList | None = None,
        config: EngineConfig | None = None,
        store: StateStore | None = None,
        state: EngineState | None = None,
        bus: EventBus | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.tasks = tasks if tasks is not None else TaskList()
        self.config = config or EngineConfig()
        self.store = store
        if state is None:
            state = store.load() if store is not None else EngineState()
        self.state = state
        self.bus = bus or EventBus()
        self.notifier = notifier or Notifier()
        self.clock = clock

        self.ledger = HistoryLedger(self.state.history, self.config.history_cap)
        self.counter = DeferralCounter(self.state.deferral_counters, self.config, on_change=self.save_state)
        self.tagger = IdempotentTagger(repository, self.tasks, self.config)
        self.aggregator = DecayAggregator(
            self.state, self.ledger, self.bus, self.config.decay_factor, self.config.window_days
        )
        self.resets = ResetController(self.state, self.ledger, self.counter, repository, self.config)

    # -- persistence -------------------------------------------------------

    def save_state(self) -> bool:
        if self.store is None:
            return True
        return self.store.save(self.state)

    # -- events ------------------------------------------------------------

    def _iter_notes(self) -> Iterator[tuple[str, FailureEvent]]:
        for ref in self.repository.list_by_path_prefix(self.config.loss_log_folder):
            try:
                event = event_from_frontmatter(self.repository.read_metadata(ref))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable failure note %s: %s", ref, exc)
                continue
            yield ref, event

    def load_events(self) -> list[FailureEvent]:
        return [event for _, event in self._iter_notes()]

    def _write_note(self, event: FailureEvent, failure_tag: str, now: datetime) -> str:
        meta = event_to_frontmatter(event)
        meta[self.config.failure_tag_field] = [failure_tag]
        body = failure_tag
        if event.provenance.origin == "proactive":
            meta["isFutureRisk"] = True
            body += f"\n\n{FUTURE_RISK_TAG}"

        path = f"{self.config.loss_log_folder}/{now:%Y-%m-%dT%H-%M-%S}-{event.loss_id}.md"
        return self.repository.create(path, frontmatter.join(meta, body + "\n"))

    def create_log(self, event: FailureEvent) -> LogOutcome:
        """Store a validated event and run its follow-up steps.

        Raises ``ValueError`` when ``event.loss_id`` is already stored. Writing
        the note is the only step whose failure propagates; every later step
        is attempted and reported on its own.
        """

        for ref, stored in self._iter_notes():
            if stored.loss_id == event.loss_id:
                raise ValueError(f"loss_id {event.loss_id!r} is already logged in {ref}")

        now = as_utc(self.clock())
        failure_tag = f"#failed-on-{now:%Y%m%d}"
        note_path = self._write_note(event, failure_tag, now)
        self.bus.publish(EVENT_LOGGED, {"event": event, "ref": note_path})

        outcome = LogOutcome(event=event, note_path=note_path)
        for name, step in self._post_log_steps(event, note_path, failure_tag, now):
            outcome.steps.append(self._run_step(name, step))

        if outcome.failed_tags:
            logger.warning("%s tag application(s) failed for %s", outcome.failed_tags, event.loss_id)
        self.save_state()
        kind = "Risk" if event.provenance.origin == "proactive" else "Failure"
        self.notifier.notify(f"{kind} logged.")
        return outcome

    def _run_step(self, name: str, step: Callable[[], Optional[list[TagResult]]]) -> StepResult:
        try:
            results = step() or []
        except Exception as exc:  # noqa: BLE001
            logger.exception("Step %s failed", name)
            return StepResult(name, ok=False, detail=str(exc))
        failed = [r for r in results if not r.ok]
        detail = "; ".join(f"{r.target}: {r.detail}" for r in failed)
        return StepResult(name, ok=not failed, detail=detail, failed_tags=len(failed))

    def _post_log_steps(self, event: FailureEvent, note_path: str, failure_tag: str, now: datetime):
        source = event.provenance.source_task_ref

        def tag_source():
            if source:
                return [self.tagger.apply_tag(source, failure_tag)]
            return None

        def highlight_source():
            if source and self.config.enable_source_highlight and is_document_ref(source):
                return [self.tagger.apply_tag(source, HIGHLIGHT_TAG, field=self.config.status_field)]
            return None

        def tag_blocked_dependency():
            if "#blocked" not in event.source_ref:
                return None
            results = [self.tagger.apply_tag(note_path, BLOCKED_TAG)]
            linked = _link_target(event.source_ref)
            if linked:
                ref = self.repository.find_by_basename(linked)
                if ref is None:
                    results.append(TagResult(linked, BLOCKED_TAG, "error", "linked note not found"))
                else:
                    results.append(self.tagger.apply_tag(ref, BLOCKED_TAG))
            return results

        def reset_deferral():
            if source and event.provenance.origin in _RESETTING_ORIGINS and not is_document_ref(source):
                self.counter.reset(source)

        def update_streak():
            self._update_streak(event, now)

        def recompute_dominant():
            self.recompute_dominant(now)

        return [
            ("tag-source", tag_source),
            ("highlight-source", highlight_source),
            ("tag-blocked-dependency", tag_blocked_dependency),
            ("reset-deferral", reset_deferral),
            ("update-streak", update_streak),
            ("recompute-dominant", recompute_dominant),
        ]

    def _update_streak(self, event: FailureEvent, now: datetime) -> None:
        dominant = self.state.dominant_category
        today = now.date()
        if dominant and dominant in event.archetypes:
            self.state.dominant_streak = 0
            self.state.last_dominant_hit = today.isoformat()
            self.notifier.notify(f"The dominant pattern ({dominant}) struck again. Streak reset.")
        elif self.state.last_dominant_hit:
            days = (today - date.fromisoformat(self.state.last_dominant_hit)).days
            self.state.dominant_streak = max(0, days)
            if days >= self.config.streak_milestone_days:
                self.notifier.notify(f"{days} days free of {dominant or 'the former dominant pattern'}.")

    # -- dominant category -------------------------------------------------

    def recompute_dominant(self, now: datetime | None = None) -> tuple[dict[str, float], Optional[str]] | None:
        """Rescan all events and update the dominant category.

        Returns ``None`` when a newer recompute superseded this one.
        """

        now = as_utc(now or self.clock())
        generation = self.aggregator.request()
        events = self.load_events()
        scores, dominant = self.aggregator.compute(events, now)
        if not self.aggregator.commit(generation, scores, dominant, today=now.date().isoformat()):
            return None
        self.save_state()
        return scores, dominant

    @property
    def dominant_category(self) -> str:
        return self.state.dominant_category

    def trend(self, window: int = 5) -> dict:
        return self.ledger.summary(window)

    # -- deferrals ---------------------------------------------------------

    def defer_task(self, task_id: str) -> TaskDeferral:
        """Count one more deferral and prompt for reflection once escalated."""

        text = self.tasks.text_of(task_id)
        outcome = self.counter.defer(task_id, text)
        if not outcome.escalated:
            return TaskDeferral(outcome)

        label = "synthesis task" if outcome.synthesis else "task"
        accepted = self.notifier.confirm(
            f"Deferral loop detected: this {label} was deferred {outcome.count} times. Log the obstacle?"
        )
        if accepted:
            self.add_pending(
                PendingDeferral(
                    source_ref=text or task_id,
                    timestamp=as_utc(self.clock()).isoformat(),
                    initial_category="Process Failure",
                    initial_archetypes=["overthinking" if outcome.synthesis else "procrastination"],
                    source_task_ref=task_id,
                )
            )
        self.bus.publish(TASK_ESCALATED, {"ref": task_id, "count": outcome.count, "accepted": accepted})
        return TaskDeferral(outcome, accepted)

    def resolve_task(self, task_id: str) -> None:
        self.counter.reset(task_id)

    # -- pending queue -----------------------------------------------------

    def add_pending(self, pending: PendingDeferral) -> None:
        self.state.pending_queue.append(pending)
        self.save_state()
        self.notifier.notify("Failure queued for later reflection.")

    def pending(self) -> list[PendingDeferral]:
        return list(self.state.pending_queue)

    def discard_pending(self, index: int) -> PendingDeferral:
        pending = self.state.pending_queue.pop(index)
        self.save_state()
        return pending

    def complete_pending(self, index: int, fields: dict) -> LogOutcome:
        """Finish a queued context into a logged event and drop it from the queue."""

        pending = self.state.pending_queue[index]
        draft = {**pending.to_draft(), **fields}
        event = prepare_event(draft, as_utc(self.clock()))
        outcome = self.create_log(event)
        self.state.pending_queue.remove(pending)
        self.save_state()
        return outcome

    # -- analysis ----------------------------------------------------------

    def correlations(self) -> list[Correlation]:
        return analyze(self.load_events(), self.config)

    def patterns(self) -> list[dict]:
        return process_failure_patterns(self.load_events())

    def daily_intent(self, rng: random.Random | None = None) -> str | None:
        principles = [e.mitigation_principle for e in self.load_events() if len(e.mitigation_principle) > 10]
        if not principles:
            return None
        return (rng or random.Random()).choice(principles)

    def archive_stale_principles(self, now: datetime | None = None) -> list[TagResult]:
        """Mark old principles on well-understood topics as archived."""

        now = as_utc(now or self.clock())
        cutoff = now - timedelta(days=self.config.principle_archive_days)

        latest: dict[tuple[str, str], tuple[datetime, str]] = {}
        for ref, event in self._iter_notes():
            for topic in event.topics:
                name = _link_target(topic) or topic
                topic_ref = self.repository.find_by_basename(name)
                if topic_ref is None:
                    continue
                key = (topic_ref, event.mitigation_principle)
                if key not in latest or event.timestamp > latest[key][0]:
                    latest[key] = (event.timestamp, ref)

        confident: dict[str, bool] = {}
        results = []
        for (topic_ref, _), (timestamp, note_ref) in latest.items():
            if topic_ref not in confident:
                confident[topic_ref] = self._topic_confident(topic_ref)
            if confident[topic_ref] and timestamp < cutoff:
                results.append(self.tagger.apply_tag(note_ref, ARCHIVED_STATUS, field=self.config.status_field))
        return results

    def _topic_confident(self, topic_ref: str) -> bool:
        try:
            value = self.repository.read_metadata(topic_ref).get("MyConfidence")
        except (OSError, ValueError):
            logger.warning("Unreadable topic note %s", topic_ref)
            return False
        return isinstance(value, (int, float)) and value >= self.config.principle_archive_confidence

    # -- periodic ----------------------------------------------------------

    def weekly_reset(self, summarize: Optional[Callable[[EngineState], None]] = None) -> None:
        self.resets.weekly(summarize)
        self.save_state()
        self.bus.publish(WEEKLY_RESET, None)

    def monthly_review(
        self, now: datetime | None = None, generator: Optional[Callable[[MonthlyReport], str]] = None
    ) -> MonthlyReport | None:
        return self.resets.monthly(self.load_events(), now or self.clock(), generator)
