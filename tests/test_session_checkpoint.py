"""
Tests for SessionCheckpointManager

Tests cover:
- Create/load/remove lifecycle
- Offset-keyed fragment reconstruction (order independence, duplicates)
- Acknowledgement tracking
- Evaluation linkage state machine
- Upgrade of checkpoints written by the browser client
"""

from itertools import permutations

import pytest

from offline_queue.models.session_checkpoint import EvaluationStatus, SessionSnapshot
from offline_queue.services.errors import (
    InvalidEvaluationTransition,
    SessionCheckpointExists,
    SessionCheckpointNotFound,
    StorageFailure,
    StorageQuotaExceeded,
    UnsupportedCheckpointVersion,
)
from offline_queue.services.session_checkpoint import SessionCheckpointManager
from offline_queue.services.storage import MemoryCheckpointStore, build_key


@pytest.fixture
def session(sessions):
    return sessions.create("s1", "u1", {"steps": ["q1", "q2", "q3"]})


class TestLifecycle:

    def test_create_and_load(self, sessions, clock):
        created = sessions.create("s1", "u1", SessionSnapshot(steps=["q1", "q2"], metadata={"jobId": "j1"}))
        loaded = sessions.load("s1", "u1")

        assert loaded == created
        assert loaded.version == 1
        assert loaded.steps_snapshot == ["q1", "q2"]
        assert loaded.current_step_index == 0
        assert loaded.evaluation.status == EvaluationStatus.unlinked
        assert loaded.created_at == clock()

    def test_create_twice_fails(self, sessions, session):
        with pytest.raises(SessionCheckpointExists):
            sessions.create("s1", "u1")

    def test_remove_then_recreate(self, sessions, session):
        sessions.remove("s1", "u1")
        assert sessions.load("s1", "u1") is None
        assert sessions.create("s1", "u1").steps_snapshot == []

    def test_load_missing(self, sessions):
        assert sessions.load("nope", "u1") is None

    def test_same_session_id_different_actor(self, sessions, session):
        assert sessions.load("s1", "u2") is None
        sessions.create("s1", "u2")
        assert len(sessions.list_sessions("u1")) == 1

    def test_step_progress(self, sessions, session):
        sessions.append_step_result("s1", "u1", {"q": "q1", "answer": "A"})
        sessions.append_step_result("s1", "u1", {"q": "q2", "answer": "B"})
        sessions.advance_step("s1", "u1", 2)

        loaded = sessions.load("s1", "u1")
        assert loaded.current_step_index == 2
        assert [r["answer"] for r in loaded.step_results] == ["A", "B"]

    def test_advance_step_rejects_negative(self, sessions, session):
        with pytest.raises(ValueError):
            sessions.advance_step("s1", "u1", -1)

    def test_list_sessions_most_recent_first(self, sessions, clock):
        sessions.create("old", "u1")
        clock.advance(60)
        sessions.create("new", "u1")

        assert [c.session_id for c in sessions.list_sessions("u1")] == ["new", "old"]


class TestIngestFragment:

    def test_out_of_order_reconstruction(self, sessions, session):
        """Concrete scenario: offset 10 then offset 0."""
        sessions.ingest_fragment("s1", "u1", "q1", 10, "world")
        sessions.ingest_fragment("s1", "u1", "q1", 0, "hello")

        assert sessions.load("s1", "u1").materialized_text["q1"] == "hello world"

    def test_duplicate_offset_is_noop(self, sessions, session):
        """Concrete scenario: second ingestion of offset 0 keeps the original text."""
        assert sessions.ingest_fragment("s1", "u1", "q1", 0, "hello") is True
        assert sessions.ingest_fragment("s1", "u1", "q1", 0, "goodbye") is False

        loaded = sessions.load("s1", "u1")
        assert loaded.materialized_text["q1"] == "hello"
        assert len(loaded.fragments("q1")) == 1

    def test_arrival_order_never_matters(self, clock):
        fragments = [(0, "the"), (4, "quick"), (10, "brown"), (16, "fox")]

        for order in permutations(fragments):
            sessions = SessionCheckpointManager(MemoryCheckpointStore(), clock=clock)
            sessions.create("s1", "u1")
            for offset, text in order:
                sessions.ingest_fragment("s1", "u1", "q1", offset, text)
            # resubmit the first arrival with different text
            sessions.ingest_fragment("s1", "u1", "q1", order[0][0], "DUPLICATE")

            loaded = sessions.load("s1", "u1")
            assert loaded.materialized_text["q1"] == "the quick brown fox"
            assert [f.offset for f in loaded.fragments("q1")] == [0, 4, 10, 16]

    def test_streams_are_independent(self, sessions, session):
        sessions.ingest_fragment("s1", "u1", "q1", 0, "first")
        sessions.ingest_fragment("s1", "u1", "q2", 0, "second")

        loaded = sessions.load("s1", "u1")
        assert loaded.materialized_text == {"q1": "first", "q2": "second"}

    def test_missing_session_raises(self, sessions):
        with pytest.raises(SessionCheckpointNotFound):
            sessions.ingest_fragment("nope", "u1", "q1", 0, "hello")

    def test_survives_reload(self, store, clock, session):
        """A fresh manager on the same store sees everything (page reload)."""
        SessionCheckpointManager(store, clock=clock).ingest_fragment("s1", "u1", "q1", 3, "again")

        reloaded = SessionCheckpointManager(store, clock=clock)
        assert reloaded.load("s1", "u1").materialized_text["q1"] == "again"


class TestOffsetsAndAcknowledgement:

    def test_last_offset(self, sessions, session):
        assert sessions.last_offset("s1", "u1", "q1") == -1

        sessions.ingest_fragment("s1", "u1", "q1", 20, "b")
        sessions.ingest_fragment("s1", "u1", "q1", 5, "a")
        assert sessions.last_offset("s1", "u1", "q1") == 20

    def test_last_offset_missing_session(self, sessions):
        assert sessions.last_offset("nope", "u1", "q1") == -1

    def test_unacknowledged_and_acknowledge(self, sessions, session):
        for offset, text in [(0, "a"), (5, "b"), (9, "c")]:
            sessions.ingest_fragment("s1", "u1", "q1", offset, text)

        assert sessions.acknowledge("s1", "u1", "q1", 5) is True
        assert sessions.acknowledge("s1", "u1", "q1", 5) is True

        pending = sessions.unacknowledged_fragments("s1", "u1", "q1")
        assert [f.offset for f in pending] == [0, 9]

    def test_acknowledge_missing_fragment_is_noop(self, sessions, session):
        assert sessions.acknowledge("s1", "u1", "q1", 99) is False
        assert sessions.load("s1", "u1").fragments_by_stream == {}

    def test_unacknowledged_missing_session(self, sessions):
        assert sessions.unacknowledged_fragments("nope", "u1", "q1") == []


class TestEvaluationLinkage:

    def test_link_then_succeed(self, sessions, session):
        sessions.link_evaluation_job("s1", "u1", "job-1")
        assert sessions.load("s1", "u1").evaluation.status == EvaluationStatus.pending

        sessions.update_evaluation_status("s1", "u1", "succeeded", {"score": 87})

        evaluation = sessions.load("s1", "u1").evaluation
        assert evaluation.status == EvaluationStatus.succeeded
        assert evaluation.job_id == "job-1"
        assert evaluation.result == {"score": 87}

    def test_pending_accepts_progress_updates(self, sessions, session):
        sessions.link_evaluation_job("s1", "u1", "job-1")
        sessions.update_evaluation_status("s1", "u1", EvaluationStatus.pending, {"progress": 50})
        assert sessions.load("s1", "u1").evaluation.result == {"progress": 50}

    def test_relink_same_job_is_noop(self, sessions, session):
        sessions.link_evaluation_job("s1", "u1", "job-1")
        sessions.link_evaluation_job("s1", "u1", "job-1")
        assert sessions.load("s1", "u1").evaluation.job_id == "job-1"

    def test_link_other_job_while_pending_fails(self, sessions, session):
        sessions.link_evaluation_job("s1", "u1", "job-1")
        with pytest.raises(InvalidEvaluationTransition):
            sessions.link_evaluation_job("s1", "u1", "job-2")

    def test_update_unlinked_fails(self, sessions, session):
        with pytest.raises(InvalidEvaluationTransition):
            sessions.update_evaluation_status("s1", "u1", "succeeded")

    def test_terminal_states_are_immutable(self, sessions, session):
        sessions.link_evaluation_job("s1", "u1", "job-1")
        sessions.update_evaluation_status("s1", "u1", "failed", {"error": "timeout"})

        with pytest.raises(InvalidEvaluationTransition):
            sessions.update_evaluation_status("s1", "u1", "succeeded")
        with pytest.raises(InvalidEvaluationTransition):
            sessions.link_evaluation_job("s1", "u1", "job-2")
        assert sessions.load("s1", "u1").evaluation.status == EvaluationStatus.failed

    def test_reset_allows_new_job(self, sessions, session):
        sessions.link_evaluation_job("s1", "u1", "job-1")
        sessions.update_evaluation_status("s1", "u1", "failed")
        sessions.reset_evaluation("s1", "u1")
        sessions.link_evaluation_job("s1", "u1", "job-2")

        assert sessions.load("s1", "u1").evaluation.job_id == "job-2"

    def test_unknown_status_rejected(self, sessions, session):
        sessions.link_evaluation_job("s1", "u1", "job-1")
        with pytest.raises(ValueError):
            sessions.update_evaluation_status("s1", "u1", "exploded")


class TestVersioning:

    def test_legacy_checkpoint_is_upgraded(self, sessions, store):
        store.set(build_key(sessions.namespace, "u1", "s1"), {
            "sessionId": "s1",
            "userId": "u1",
            "jobId": "job-posting-7",
            "interviewId": "iv-3",
            "currentQuestionIndex": 2,
            "status": "in_progress",
            "questions": ["q1", "q2", "q3"],
            "answers": [{"answer": "A"}],
            "transcriptChunks": {
                "q1": [
                    {"offset": 10, "text": "world", "timestamp": 1767268800000},
                    {"offset": 0, "text": "hello", "timestamp": 1767268799000, "acknowledged": True},
                ]
            },
            "transcripts": {"q1": "hello world"},
            "evaluationJobId": "eval-1",
            "evaluationStatus": "pending",
            "evaluationResult": None,
            "timestamp": 1767268800000,
            "version": 1,
        })

        checkpoint = sessions.load("s1", "u1")

        assert checkpoint.current_step_index == 2
        assert checkpoint.steps_snapshot == ["q1", "q2", "q3"]
        assert checkpoint.materialized_text["q1"] == "hello world"
        assert [f.acknowledged for f in checkpoint.fragments("q1")] == [True, False]
        assert checkpoint.evaluation.status == EvaluationStatus.pending
        assert checkpoint.evaluation.job_id == "eval-1"
        assert checkpoint.metadata == {"jobId": "job-posting-7", "interviewId": "iv-3", "status": "in_progress"}

        sessions.ingest_fragment("s1", "u1", "q1", 5, "there")
        assert sessions.load("s1", "u1").materialized_text["q1"] == "hello there world"

    def test_newer_version_rejected(self, sessions, session, store):
        key = build_key(sessions.namespace, "u1", "s1")
        raw = store.get(key)
        raw["version"] = 2
        store.set(key, raw)

        with pytest.raises(UnsupportedCheckpointVersion):
            sessions.load("s1", "u1")
        assert sessions.list_sessions("u1") == []

    def test_legacy_checkpoint_without_user_stays_under_its_key(self, sessions, store):
        """The storage key names the owner; upgraded writes go back to that key."""
        store.set(build_key(sessions.namespace, "u1", "s1"), {
            "sessionId": "s1",
            "questions": ["q1"],
            "timestamp": 1767268800000,
        })

        checkpoint = sessions.load("s1", "u1")
        assert checkpoint.actor_id == "u1"

        sessions.ingest_fragment("s1", "u1", "q1", 0, "hello")

        assert store.list_keys_with_prefix(sessions.namespace + ".") == [build_key(sessions.namespace, "u1", "s1")]
        assert sessions.load("s1", "u1").materialized_text["q1"] == "hello"

    def test_unreadable_version_rejected(self, sessions, session, store):
        key = build_key(sessions.namespace, "u1", "s1")
        raw = store.get(key)
        raw["version"] = "garbage"
        store.set(key, raw)

        with pytest.raises(UnsupportedCheckpointVersion):
            sessions.load("s1", "u1")
        assert sessions.list_sessions("u1") == []


class FlakyStore(MemoryCheckpointStore):
    """Memory store whose writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def set(self, key, value):
        if self.fail_writes:
            raise StorageFailure("disk unavailable")
        super().set(key, value)


class TestStorageErrors:
    """Medium errors always reach the caller and leave the last saved state intact."""

    def test_create_over_quota(self, clock):
        sessions = SessionCheckpointManager(MemoryCheckpointStore(quota_bytes=50), clock=clock)

        with pytest.raises(StorageQuotaExceeded):
            sessions.create("s1", "u1", {"steps": ["q1", "q2"]})
        assert sessions.load("s1", "u1") is None

    def test_ingest_over_quota_keeps_previous_fragments(self, clock):
        sessions = SessionCheckpointManager(MemoryCheckpointStore(quota_bytes=3000), clock=clock)
        sessions.create("s1", "u1")
        sessions.ingest_fragment("s1", "u1", "q1", 0, "hello")

        with pytest.raises(StorageQuotaExceeded):
            sessions.ingest_fragment("s1", "u1", "q1", 10, "x" * 5000)

        loaded = sessions.load("s1", "u1")
        assert loaded.materialized_text["q1"] == "hello"
        assert sessions.last_offset("s1", "u1", "q1") == 0

    def test_acknowledge_failure_propagates(self, clock):
        store = FlakyStore()
        sessions = SessionCheckpointManager(store, clock=clock)
        sessions.create("s1", "u1")
        sessions.ingest_fragment("s1", "u1", "q1", 0, "hello")

        store.fail_writes = True
        with pytest.raises(StorageFailure):
            sessions.acknowledge("s1", "u1", "q1", 0)
        store.fail_writes = False

        assert [f.offset for f in sessions.unacknowledged_fragments("s1", "u1", "q1")] == [0]

    def test_link_failure_leaves_evaluation_unlinked(self, clock):
        store = FlakyStore()
        sessions = SessionCheckpointManager(store, clock=clock)
        sessions.create("s1", "u1")

        store.fail_writes = True
        with pytest.raises(StorageFailure):
            sessions.link_evaluation_job("s1", "u1", "job-1")
        store.fail_writes = False

        assert sessions.load("s1", "u1").evaluation.status == EvaluationStatus.unlinked
