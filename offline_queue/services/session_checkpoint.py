"""
Session Checkpoint Manager
Save and resume one long-running session: step progress, transcript fragments, evaluation job

Every operation is a synchronous read-modify-write against the store, so an
interleaved caller never sees a half-applied update.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from offline_queue.config import settings
from offline_queue.models.session_checkpoint import (
    CHECKPOINT_VERSION,
    NO_OFFSET,
    TERMINAL_EVALUATION_STATUSES,
    EvaluationLinkage,
    EvaluationStatus,
    Fragment,
    SessionCheckpoint,
    SessionSnapshot,
)
from offline_queue.services.errors import (
    InvalidEvaluationTransition,
    SessionCheckpointExists,
    SessionCheckpointNotFound,
    UnsupportedCheckpointVersion,
)
from offline_queue.services.storage import ANONYMOUS_ACTOR, CheckpointStore, actor_prefix, build_key

logger = structlog.get_logger(__name__)


# Evaluation status strings written by older clients
LEGACY_EVALUATION_STATUS = {
    None: EvaluationStatus.unlinked,
    "pending": EvaluationStatus.pending,
    "processing": EvaluationStatus.pending,
    "queued": EvaluationStatus.pending,
    "completed": EvaluationStatus.succeeded,
    "succeeded": EvaluationStatus.succeeded,
    "done": EvaluationStatus.succeeded,
    "failed": EvaluationStatus.failed,
    "error": EvaluationStatus.failed,
}


def materialize(fragments: List[Fragment]) -> str:
    """Offset-sorted fragment text joined with single spaces."""
    return " ".join(f.text for f in sorted(fragments, key=lambda f: f.offset))


def _from_millis(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return fallback


def upgrade_legacy_checkpoint(raw: Dict[str, Any], now: datetime, actor_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Convert a camelCase checkpoint written by the browser client into the current shape.

    actor_id is the owner taken from the storage key the record was read
    from. It wins over userId, so the upgraded record is saved back under
    the same key.

    Legacy fields: sessionId, userId, currentQuestionIndex, questions,
    answers, transcriptChunks, evaluationJobId, evaluationStatus,
    evaluationResult, timestamp (epoch millis). Fields without a current
    counterpart (jobId, interviewId, status, ...) land in metadata.
    """
    saved_at = _from_millis(raw.get("timestamp"), now)

    fragments_by_stream = {}
    for stream_id, chunks in (raw.get("transcriptChunks") or {}).items():
        fragments = {}
        for chunk in chunks or []:
            offset = int(chunk["offset"])
            if offset in fragments:
                continue
            fragments[offset] = {
                "offset": offset,
                "text": chunk.get("text", ""),
                "received_at": _from_millis(chunk.get("timestamp"), saved_at).isoformat(),
                "acknowledged": bool(chunk.get("acknowledged", False)),
            }
        fragments_by_stream[stream_id] = [fragments[o] for o in sorted(fragments)]

    status = LEGACY_EVALUATION_STATUS.get(raw.get("evaluationStatus"), EvaluationStatus.pending)
    job_id = raw.get("evaluationJobId")
    if job_id is None:
        status = EvaluationStatus.unlinked

    consumed = {
        "sessionId", "userId", "currentQuestionIndex", "questions", "answers",
        "transcriptChunks", "transcripts", "evaluationJobId", "evaluationStatus",
        "evaluationResult", "timestamp", "version",
    }
    metadata = {k: v for k, v in raw.items() if k not in consumed}

    return {
        "version": CHECKPOINT_VERSION,
        "session_id": raw["sessionId"],
        "actor_id": actor_id or raw.get("userId") or ANONYMOUS_ACTOR,
        "current_step_index": raw.get("currentQuestionIndex") or 0,
        "steps_snapshot": raw.get("questions") or [],
        "step_results": raw.get("answers") or [],
        "fragments_by_stream": fragments_by_stream,
        "materialized_text": {
            stream_id: " ".join(f["text"] for f in fragments)
            for stream_id, fragments in fragments_by_stream.items()
        },
        "evaluation": {
            "status": status.value,
            "job_id": job_id,
            "result": raw.get("evaluationResult"),
            "updated_at": saved_at.isoformat(),
        },
        "metadata": metadata,
        "created_at": saved_at.isoformat(),
        "updated_at": saved_at.isoformat(),
    }


class SessionCheckpointManager:
    """
    Checkpoints under <session_namespace>.<actor_id>.<session_id>.

    A checkpoint is created once per session and removed only when its
    owner abandons or finalizes the session.
    """

    def __init__(
        self,
        store: CheckpointStore,
        namespace: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            store: Durable checkpoint store
            namespace: Key namespace. Defaults to settings.session_namespace
            clock: Returns the current aware datetime
        """
        self.store = store
        self.namespace = namespace or settings.session_namespace
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _key(self, session_id: str, actor_id: str) -> str:
        return build_key(self.namespace, actor_id, session_id)

    def _parse(self, raw: Dict[str, Any], actor_id: str) -> SessionCheckpoint:
        if "session_id" not in raw and "sessionId" in raw:
            logger.info("legacy_checkpoint_upgraded", session_id=raw.get("sessionId"), actor_id=actor_id)
            raw = upgrade_legacy_checkpoint(raw, self.clock(), actor_id=actor_id)

        try:
            version = int(raw.get("version", CHECKPOINT_VERSION))
        except (TypeError, ValueError):
            raise UnsupportedCheckpointVersion(
                f"Checkpoint {raw.get('session_id')} has unreadable version {raw.get('version')!r}"
            )
        if version > CHECKPOINT_VERSION:
            raise UnsupportedCheckpointVersion(
                f"Checkpoint {raw.get('session_id')} has version {version}, "
                f"this client understands up to {CHECKPOINT_VERSION}"
            )
        return SessionCheckpoint.model_validate(raw)

    def _save(self, checkpoint: SessionCheckpoint) -> None:
        checkpoint.updated_at = self.clock()
        self.store.set(
            self._key(checkpoint.session_id, checkpoint.actor_id),
            checkpoint.model_dump(mode="json")
        )

    def _require(self, session_id: str, actor_id: str) -> SessionCheckpoint:
        checkpoint = self.load(session_id, actor_id)
        if checkpoint is None:
            raise SessionCheckpointNotFound(
                f"No checkpoint for session {session_id} of actor {actor_id}"
            )
        return checkpoint

    def create(
        self,
        session_id: str,
        actor_id: str,
        initial_snapshot: Union[SessionSnapshot, dict, None] = None
    ) -> SessionCheckpoint:
        """
        Create the checkpoint for a new session.

        Raises:
            SessionCheckpointExists: Call remove() first to restart a session
            StorageFailure: The checkpoint could not be persisted
        """
        if self.store.get(self._key(session_id, actor_id)) is not None:
            raise SessionCheckpointExists(
                f"Checkpoint for session {session_id} of actor {actor_id} already exists"
            )

        if initial_snapshot is None:
            initial_snapshot = SessionSnapshot()
        elif not isinstance(initial_snapshot, SessionSnapshot):
            initial_snapshot = SessionSnapshot.model_validate(initial_snapshot)

        now = self.clock()
        checkpoint = SessionCheckpoint(
            session_id=session_id,
            actor_id=actor_id,
            current_step_index=initial_snapshot.current_step_index,
            steps_snapshot=initial_snapshot.steps,
            step_results=initial_snapshot.step_results,
            metadata=initial_snapshot.metadata,
            created_at=now,
            updated_at=now,
        )
        self._save(checkpoint)

        logger.info("session_checkpoint_created", session_id=session_id, actor_id=actor_id,
                    steps=len(checkpoint.steps_snapshot))
        return checkpoint

    def load(self, session_id: str, actor_id: str) -> Optional[SessionCheckpoint]:
        raw = self.store.get(self._key(session_id, actor_id))
        if raw is None:
            return None
        return self._parse(raw, actor_id)

    def remove(self, session_id: str, actor_id: str) -> None:
        """Delete the checkpoint (session abandoned or finalized)."""
        self.store.delete(self._key(session_id, actor_id))
        logger.info("session_checkpoint_removed", session_id=session_id, actor_id=actor_id)

    def list_sessions(self, actor_id: str) -> List[SessionCheckpoint]:
        """All resumable sessions of an actor, most recently updated first."""
        checkpoints = []
        for key in self.store.list_keys_with_prefix(actor_prefix(self.namespace, actor_id)):
            raw = self.store.get(key)
            if raw is None:
                continue
            try:
                checkpoints.append(self._parse(raw, actor_id))
            except (ValueError, KeyError, UnsupportedCheckpointVersion) as e:
                logger.warning("session_checkpoint_unreadable", key=key, error=str(e))

        checkpoints.sort(key=lambda c: c.updated_at, reverse=True)
        return checkpoints

    def advance_step(self, session_id: str, actor_id: str, step_index: int) -> SessionCheckpoint:
        """Record the step the session is now on."""
        if step_index < 0:
            raise ValueError(f"step_index must be >= 0, got {step_index}")

        checkpoint = self._require(session_id, actor_id)
        checkpoint.current_step_index = step_index
        self._save(checkpoint)
        return checkpoint

    def append_step_result(self, session_id: str, actor_id: str, result: Any) -> SessionCheckpoint:
        """Append one step result (e.g. an answer). Results are never rewritten."""
        checkpoint = self._require(session_id, actor_id)
        checkpoint.step_results.append(result)
        self._save(checkpoint)

        logger.debug("step_result_appended", session_id=session_id, actor_id=actor_id,
                     results=len(checkpoint.step_results))
        return checkpoint

    def ingest_fragment(
        self,
        session_id: str,
        actor_id: str,
        stream_id: str,
        offset: int,
        text: str
    ) -> bool:
        """
        Admit one transcript fragment.

        Idempotent on offset: a fragment already stored at this offset is
        kept and the call is a no-op. Otherwise the fragment is inserted,
        the stream re-sorted by offset and materialized_text recomputed, so
        the result depends only on the set of offsets, never arrival order.

        Returns:
            True if the fragment was admitted, False if the offset was already present

        Raises:
            SessionCheckpointNotFound: No checkpoint for this session
            StorageFailure: The update could not be persisted
        """
        checkpoint = self._require(session_id, actor_id)
        fragments = checkpoint.fragments_by_stream.setdefault(stream_id, [])

        if any(f.offset == offset for f in fragments):
            logger.debug("fragment_duplicate_ignored", session_id=session_id, stream_id=stream_id, offset=offset)
            return False

        fragments.append(Fragment(offset=offset, text=text, received_at=self.clock()))
        fragments.sort(key=lambda f: f.offset)
        checkpoint.materialized_text[stream_id] = materialize(fragments)
        self._save(checkpoint)

        logger.debug("fragment_ingested", session_id=session_id, stream_id=stream_id, offset=offset,
                     fragments=len(fragments))
        return True

    def last_offset(self, session_id: str, actor_id: str, stream_id: str) -> int:
        """Highest ingested offset of a stream, or -1 when nothing was ingested."""
        checkpoint = self.load(session_id, actor_id)
        if checkpoint is None:
            return NO_OFFSET

        fragments = checkpoint.fragments(stream_id)
        if not fragments:
            return NO_OFFSET
        return max(f.offset for f in fragments)

    def unacknowledged_fragments(self, session_id: str, actor_id: str, stream_id: str) -> List[Fragment]:
        """Fragments not yet confirmed by the remote side, in offset order."""
        checkpoint = self.load(session_id, actor_id)
        if checkpoint is None:
            return []
        return [f for f in checkpoint.fragments(stream_id) if not f.acknowledged]

    def acknowledge(self, session_id: str, actor_id: str, stream_id: str, offset: int) -> bool:
        """
        Mark a fragment as confirmed by the remote side.

        Returns:
            True if the fragment exists (already acknowledged counts), False if it is missing
        """
        checkpoint = self._require(session_id, actor_id)

        for fragment in checkpoint.fragments(stream_id):
            if fragment.offset == offset:
                if not fragment.acknowledged:
                    fragment.acknowledged = True
                    self._save(checkpoint)
                return True
        return False

    def link_evaluation_job(self, session_id: str, actor_id: str, job_id: str) -> SessionCheckpoint:
        """
        Record handoff to an asynchronous evaluation job (unlinked -> pending).

        Linking the job that is already pending is a no-op, so a resumed
        client can safely repeat the call.

        Raises:
            InvalidEvaluationTransition: A different job is linked, or evaluation already finished
        """
        checkpoint = self._require(session_id, actor_id)
        evaluation = checkpoint.evaluation

        if evaluation.status == EvaluationStatus.pending and evaluation.job_id == job_id:
            return checkpoint

        if evaluation.status != EvaluationStatus.unlinked:
            raise InvalidEvaluationTransition(
                f"Cannot link job {job_id}: session {session_id} evaluation is "
                f"{evaluation.status.value} (job {evaluation.job_id})"
            )

        checkpoint.evaluation = EvaluationLinkage(
            status=EvaluationStatus.pending, job_id=job_id, updated_at=self.clock()
        )
        self._save(checkpoint)

        logger.info("evaluation_job_linked", session_id=session_id, actor_id=actor_id, job_id=job_id)
        return checkpoint

    def update_evaluation_status(
        self,
        session_id: str,
        actor_id: str,
        status: Union[EvaluationStatus, str],
        result: Any = None
    ) -> SessionCheckpoint:
        """
        Record the latest status of the linked job.

        Only a pending evaluation accepts updates. succeeded and failed are
        terminal; reset_evaluation() is needed to start over.

        Raises:
            InvalidEvaluationTransition: Evaluation is not pending, or status is "unlinked"
        """
        status = EvaluationStatus(status)
        checkpoint = self._require(session_id, actor_id)
        evaluation = checkpoint.evaluation

        if evaluation.status != EvaluationStatus.pending:
            raise InvalidEvaluationTransition(
                f"Cannot set evaluation of session {session_id} to {status.value}: "
                f"current status is {evaluation.status.value}"
            )
        if status == EvaluationStatus.unlinked:
            raise InvalidEvaluationTransition("Use reset_evaluation() to unlink an evaluation job")

        evaluation.status = status
        if result is not None:
            evaluation.result = result
        evaluation.updated_at = self.clock()
        self._save(checkpoint)

        log = logger.warning if status == EvaluationStatus.failed else logger.info
        log("evaluation_status_updated", session_id=session_id, actor_id=actor_id,
            job_id=evaluation.job_id, status=status.value,
            terminal=status in TERMINAL_EVALUATION_STATUSES)
        return checkpoint

    def reset_evaluation(self, session_id: str, actor_id: str) -> SessionCheckpoint:
        """Explicitly drop the evaluation linkage so a new job can be linked."""
        checkpoint = self._require(session_id, actor_id)
        previous = checkpoint.evaluation
        checkpoint.evaluation = EvaluationLinkage(updated_at=self.clock())
        self._save(checkpoint)

        logger.info("evaluation_reset", session_id=session_id, actor_id=actor_id,
                    previous_job_id=previous.job_id, previous_status=previous.status.value)
        return checkpoint
