import random
from datetime import datetime, timezone

import pytest

from failure_memory.adapters.vault_adapter import VaultRepository
from failure_memory.engine import ARCHIVED_STATUS, BLOCKED_TAG, HIGHLIGHT_TAG, FailureMemoryEngine
from failure_memory.events import DOMINANT_CHANGED, TASK_ESCALATED
from failure_memory.notifications import Notifier
from failure_memory.schema import HistoryEntry, prepare_event
from failure_memory.state import EngineState, StateStore
from failure_memory.tasks import TaskList

NOW = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)
FAILURE_TAG = "#failed-on-20250131"


class RecordingNotifier(Notifier):
    def __init__(self, answer=False):
        self.answer = answer
        self.messages = []
        self.prompts = []

    def notify(self, message):
        self.messages.append(message)

    def confirm(self, message):
        self.prompts.append(message)
        return self.answer


def make_engine(tmp_path, tasks=None, notifier=None, store=None, now=NOW):
    repository = VaultRepository(tmp_path / "vault")
    return FailureMemoryEngine(
        repository,
        tasks=TaskList(tasks or []),
        store=store,
        notifier=notifier or RecordingNotifier(),
        clock=lambda: now,
    )


def make_draft(loss_id, archetypes, when=NOW, **extra):
    draft = {
        "loss_id": loss_id,
        "source_ref": "Mock test 3",
        "category": "Skill Gap",
        "archetypes": archetypes,
        "impact": 3,
        "mitigation_principle": "Read the whole question before answering",
        "cause_chain": ["Skimmed the prompt"],
        "timestamp": when,
    }
    draft.update(extra)
    return draft


def log(engine, loss_id, archetypes, when=NOW, **extra):
    return engine.create_log(prepare_event(make_draft(loss_id, archetypes, when, **extra), NOW))


def test_create_log_tags_source_document(tmp_path):
    engine = make_engine(tmp_path)
    engine.repository.create("Projects/Essay.md", "---\ntitle: Essay\n---\nDraft\n")

    outcome = log(engine, "loss_a", ["overthinking"], source_task_ref="Projects/Essay.md")

    assert outcome.ok
    assert outcome.failed_tags == 0
    assert outcome.note_path.startswith("40 Reflections/Labyrinth/")
    meta = engine.repository.read_metadata("Projects/Essay.md")
    assert meta["failureTags"] == [FAILURE_TAG]
    assert meta["labyrinthStatus"] == [HIGHLIGHT_TAG]
    assert engine.notifier.messages[-1] == "Failure logged."


def test_logged_events_load_back(tmp_path):
    engine = make_engine(tmp_path)
    outcome = log(
        engine,
        "loss_b",
        ["silly-mistake", "distraction"],
        topics=["[[Optics]]"],
        tags=["#gs3"],
        energy_level="#aura-low",
        emotional_state="Frustrated",
    )

    assert engine.load_events() == [outcome.event]
    assert FAILURE_TAG in engine.repository.read_body(outcome.note_path)


def test_proactive_event_is_marked_as_risk(tmp_path):
    engine = make_engine(tmp_path)
    outcome = log(engine, "loss_p", ["procrastination"], origin="proactive")

    assert engine.repository.read_metadata(outcome.note_path)["isFutureRisk"] is True
    assert "#loss/future-risk" in engine.repository.read_body(outcome.note_path)
    assert engine.notifier.messages[-1] == "Risk logged."


def test_quick_task_log_resets_counter_and_tags_task(tmp_path):
    engine = make_engine(tmp_path, tasks=[{"id": "task-7", "text": "Write essay"}])
    engine.counter.increment("task-7")
    engine.counter.increment("task-7")

    outcome = log(engine, "loss_c", ["procrastination"], origin="quick", source_task_ref="task-7")

    assert outcome.ok
    assert engine.counter.get("task-7") == 0
    assert engine.tasks.text_of("task-7") == f"Write essay {FAILURE_TAG}"


def test_unresolvable_task_is_reported_but_log_is_kept(tmp_path):
    engine = make_engine(tmp_path)

    outcome = log(engine, "loss_d", ["overthinking"], source_task_ref="missing-task")

    assert not outcome.ok
    assert outcome.failed_tags == 1
    assert engine.repository.exists(outcome.note_path)
    assert engine.dominant_category == "overthinking"


def test_dominant_change_records_history(tmp_path):
    engine = make_engine(tmp_path)
    changes = []
    engine.bus.subscribe(DOMINANT_CHANGED, changes.append)

    log(engine, "loss_1", ["overthinking"], when=datetime(2025, 1, 30, tzinfo=timezone.utc))
    assert engine.dominant_category == "overthinking"
    assert engine.state.history == []

    log(engine, "loss_2", ["procrastination"])
    log(engine, "loss_3", ["procrastination"])

    assert engine.dominant_category == "procrastination"
    assert engine.state.history == [HistoryEntry("2025-01-31", "overthinking")]
    assert changes == [
        {"old": "", "new": "overthinking"},
        {"old": "overthinking", "new": "procrastination"},
    ]
    assert engine.trend()["total_changes"] == 1


def test_streak_resets_when_dominant_strikes(tmp_path):
    notifier = RecordingNotifier()
    engine = make_engine(tmp_path, notifier=notifier)
    engine.state.dominant_category = "overthinking"
    engine.state.last_dominant_hit = "2025-01-01"

    log(engine, "loss_s1", ["distraction"])
    assert engine.state.dominant_streak == 30
    assert any("30 days free of overthinking" in m for m in notifier.messages)

    engine.state.dominant_category = "overthinking"
    log(engine, "loss_s2", ["overthinking"])
    assert engine.state.dominant_streak == 0
    assert engine.state.last_dominant_hit == "2025-01-31"


def test_defer_task_escalates_and_queues_reflection(tmp_path):
    notifier = RecordingNotifier(answer=True)
    engine = make_engine(
        tmp_path,
        tasks=[{"id": "t1", "text": "Compare essays (Loom Type: Synthesis)"}],
        notifier=notifier,
    )
    escalations = []
    engine.bus.subscribe(TASK_ESCALATED, escalations.append)

    first = engine.defer_task("t1")
    second = engine.defer_task("t1")

    assert not first.outcome.escalated
    assert second.outcome.escalated
    assert second.accepted
    assert len(notifier.prompts) == 1
    pending = engine.pending()
    assert len(pending) == 1
    assert pending[0].initial_category == "Process Failure"
    assert pending[0].initial_archetypes == ["overthinking"]
    assert pending[0].source_task_ref == "t1"
    assert escalations == [{"ref": "t1", "count": 2, "accepted": True}]


def test_declined_escalation_queues_nothing(tmp_path):
    engine = make_engine(tmp_path, tasks=[{"id": "t2", "text": "Plain task"}])
    for _ in range(3):
        result = engine.defer_task("t2")

    assert result.outcome.escalated
    assert not result.accepted
    assert engine.pending() == []


def test_complete_pending_logs_and_dequeues(tmp_path):
    engine = make_engine(tmp_path, tasks=[{"id": "t3", "text": "Plain task"}], notifier=RecordingNotifier(True))
    for _ in range(3):
        engine.defer_task("t3")
    assert len(engine.pending()) == 1

    outcome = engine.complete_pending(
        0,
        {
            "loss_id": "loss_q",
            "impact": 2,
            "mitigation_principle": "Start with the smallest step",
            "cause_chain": ["Unclear first step"],
        },
    )

    assert engine.pending() == []
    assert outcome.event.archetypes == ("procrastination",)
    assert outcome.event.category == "Process Failure"
    assert engine.counter.get("t3") == 0
    assert FAILURE_TAG in engine.tasks.text_of("t3")


@pytest.mark.parametrize(
    "override",
    [
        {"archetypes": []},
        {"impact": 6},
        {"mitigation_principle": "  "},
        {"cause_chain": ["a", "b", "c", "d", "e", "f"]},
        {"category": "Bad Luck"},
        {"origin": "imported"},
    ],
)
def test_invalid_drafts_are_rejected(override):
    draft = make_draft("loss_x", ["overthinking"])
    draft.update(override)
    with pytest.raises(ValueError):
        prepare_event(draft, NOW)


def test_prepare_event_generates_loss_id():
    draft = make_draft("", ["overthinking"])
    event = prepare_event(draft, NOW)
    assert event.loss_id.startswith("loss_20250131_120000_")


def test_malformed_notes_are_skipped(tmp_path):
    engine = make_engine(tmp_path)
    log(engine, "loss_ok", ["overthinking"])
    engine.repository.create("40 Reflections/Labyrinth/broken.md", "---\nlossId: x\n---\n")
    engine.repository.create("40 Reflections/Labyrinth/bad-yaml.md", "---\n: [oops\n---\n")

    events = engine.load_events()
    assert [e.loss_id for e in events] == ["loss_ok"]


def test_state_persists_between_engines(tmp_path):
    store = StateStore(tmp_path / "state.json")
    engine = make_engine(tmp_path, tasks=[{"id": "t1", "text": "Plain"}], store=store)
    engine.defer_task("t1")
    log(engine, "loss_1", ["overthinking"])

    restored = store.load()
    assert restored.deferral_counters == {"t1": 1}
    assert restored.dominant_category == "overthinking"


def test_state_save_failure_is_not_fatal(tmp_path):
    (tmp_path / "blocker").write_text("not a directory")
    engine = make_engine(tmp_path, store=StateStore(tmp_path / "blocker" / "state.json"))

    outcome = log(engine, "loss_1", ["overthinking"])

    assert engine.repository.exists(outcome.note_path)
    assert engine.save_state() is False
    assert engine.dominant_category == "overthinking"


def test_unreadable_state_starts_fresh(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert StateStore(path).load() == EngineState()


def test_blocked_source_tags_note_and_linked_dependency(tmp_path):
    engine = make_engine(tmp_path)
    engine.repository.create("Notes/Prereq.md", "Prerequisite notes")

    outcome = log(engine, "loss_blk", ["procrastination"], source_ref="Essay waits on [[Prereq]] #blocked")

    assert outcome.ok
    assert BLOCKED_TAG in engine.repository.read_metadata(outcome.note_path)["failureTags"]
    assert engine.repository.read("Notes/Prereq.md").endswith(f"\n\n{BLOCKED_TAG}")


def test_stale_principles_on_confident_topics_are_archived(tmp_path):
    engine = make_engine(tmp_path)
    engine.repository.create("Topics/Optics.md", "---\nMyConfidence: 4\n---\n")
    engine.repository.create("Topics/Ethics.md", "---\nMyConfidence: 2\n---\n")
    old = datetime(2024, 12, 20, tzinfo=timezone.utc)
    archived = log(engine, "loss_old", ["silly-mistake"], when=old, topics=["[[Optics]]"])
    kept = log(engine, "loss_weak", ["silly-mistake"], when=old, topics=["[[Ethics]]"])

    first = engine.archive_stale_principles()
    second = engine.archive_stale_principles()

    assert [r.target for r in first] == [archived.note_path]
    assert first[0].changed
    assert not second[0].changed
    assert engine.repository.read_metadata(archived.note_path)["labyrinthStatus"] == [ARCHIVED_STATUS]
    assert "labyrinthStatus" not in engine.repository.read_metadata(kept.note_path)


def test_daily_intent_picks_a_principle(tmp_path):
    engine = make_engine(tmp_path)
    assert engine.daily_intent() is None

    log(engine, "loss_1", ["overthinking"])
    assert engine.daily_intent(random.Random(0)) == "Read the whole question before answering"


def test_weekly_reset_through_engine(tmp_path):
    engine = make_engine(tmp_path, tasks=[{"id": "t1", "text": "Plain"}])
    engine.defer_task("t1")
    engine.state.history.append(HistoryEntry("2025-01-01", "overthinking"))

    engine.weekly_reset()

    assert engine.counter.get("t1") == 0
    assert engine.trend()["total_changes"] == 0


def test_monthly_review_through_engine(tmp_path):
    engine = make_engine(tmp_path, now=datetime(2025, 2, 2, 8, tzinfo=timezone.utc))
    engine.create_log(
        prepare_event(make_draft("loss_jan", ["overthinking"], when=datetime(2025, 1, 15, tzinfo=timezone.utc)), NOW)
    )

    report = engine.monthly_review()

    assert report.period == "January 2025"
    assert report.total_events == 1
    assert engine.monthly_review() is None


def test_discard_pending_drops_the_entry(tmp_path):
    engine = make_engine(tmp_path, tasks=[{"id": "t4", "text": "Plain task"}], notifier=RecordingNotifier(True))
    for _ in range(3):
        engine.defer_task("t4")

    dropped = engine.discard_pending(0)

    assert dropped.source_ref == "Plain task"
    assert engine.pending() == []
    assert engine.counter.get("t4") == 3
    engine.resolve_task("t4")
    assert engine.counter.get("t4") == 0


def test_duplicate_loss_id_is_rejected(tmp_path):
    engine = make_engine(tmp_path)
    event = prepare_event(make_draft("loss_dup", ["overthinking"]), NOW)
    engine.create_log(event)

    later = make_engine(tmp_path, now=datetime(2025, 1, 31, 12, 5, tzinfo=timezone.utc))
    with pytest.raises(ValueError, match="loss_dup"):
        later.create_log(event)

    assert [e.loss_id for e in later.load_events()] == ["loss_dup"]
    scores, _ = later.recompute_dominant(NOW)
    assert scores == {"overthinking": pytest.approx(1.0)}
