"""
Request Queue
Durable capture and replay of mutating calls that failed transiently

Flow:
1. Caller's transport call fails -> enqueue() classifies the failure
2. Network/5xx failures are stored as checkpoints, 4xx is raised back
3. replay()/drain_due() resend due checkpoints through a transport
4. Success deletes the checkpoint; failure bumps retry_count and backoff
5. The 5th failed replay (or a 4xx on replay) moves it to the dead-letter queue

Storage is the only ledger. There is no in-memory copy of the queue, so a
process restart picks up exactly what was persisted.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Union

import structlog
from pydantic import ValidationError as SchemaError

from offline_queue.config import settings
from offline_queue.models.queued_operation import (
    FailureInfo,
    QueuedOperation,
    RequestDescriptor,
)
from offline_queue.models.replay_outcome import (
    ReplayDeadLettered,
    ReplayOutcome,
    ReplaySkipped,
    ReplaySucceeded,
    ReplayWillRetry,
)
from offline_queue.services.dead_letter_queue import DeadLetterQueue
from offline_queue.services.errors import (
    ClassifiedFailure,
    ValidationError,
    classify_failure,
)
from offline_queue.services.idempotency import ensure_idempotency_key
from offline_queue.services.storage import CheckpointStore, actor_prefix, build_key

logger = structlog.get_logger(__name__)

Transport = Callable[[RequestDescriptor], Awaitable[Any]]


def calculate_backoff(
    retry_count: int,
    *,
    initial_ms: Optional[int] = None,
    max_ms: Optional[int] = None,
    jitter_ms: Optional[int] = None,
    rng: Optional[Callable[[], float]] = None
) -> float:
    """
    Capped exponential backoff with jitter.

    delay = min(initial * 2^retry_count, max) + uniform[0, jitter)

    Args:
        retry_count: Failed attempts so far (>= 0)
        initial_ms: Base delay. Defaults to settings.initial_backoff_ms (1000)
        max_ms: Cap before jitter. Defaults to settings.max_backoff_ms (30000)
        jitter_ms: Jitter width. Defaults to settings.backoff_jitter_ms (1000)
        rng: Source of uniform [0, 1) floats. Defaults to random.random

    Returns:
        Delay in milliseconds, always > 0
    """
    if retry_count < 0:
        raise ValueError(f"retry_count must be >= 0, got {retry_count}")

    initial = settings.initial_backoff_ms if initial_ms is None else initial_ms
    cap = settings.max_backoff_ms if max_ms is None else max_ms
    jitter = settings.backoff_jitter_ms if jitter_ms is None else jitter_ms
    rng = rng or random.random

    # 2**retry_count grows without bound, the cap keeps the float finite
    exponent = min(retry_count, 62)
    delay = min(initial * (2 ** exponent), cap)
    return delay + rng() * jitter


def failure_info_from(failure: ClassifiedFailure) -> FailureInfo:
    return FailureInfo(kind=failure.kind, message=failure.message, status=failure.status, code=failure.code)


class RequestQueue:
    """
    Durable retry queue for one store, scoped per actor by key prefix.

    Keys: <queue_namespace>.<actor_id>.<operation_id>. Re-enqueuing an
    operation id overwrites its checkpoint.

    Usage:
        queue = RequestQueue(create_store())
        try:
            await transport(request)
        except Exception as e:
            queue.enqueue(user_id, operation_id, request, e)  # raises ValidationError on 4xx

        # later, once connectivity is back
        outcomes = await queue.drain_due(user_id, transport)
    """

    def __init__(
        self,
        store: CheckpointStore,
        *,
        namespace: Optional[str] = None,
        dead_letters: Optional[DeadLetterQueue] = None,
        max_retries: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[Callable[[], float]] = None
    ):
        """
        Initialize request queue.

        Args:
            store: Durable checkpoint store (shared with other components)
            namespace: Key namespace. Defaults to settings.queue_namespace
            dead_letters: Dead-letter queue. Defaults to one on the same store
            max_retries: Retry ceiling. Defaults to settings.max_retries (5)
            clock: Returns the current aware datetime
            sleep: Coroutine used to wait for next_eligible_at
            rng: Jitter source for backoff
        """
        self.store = store
        self.namespace = namespace or settings.queue_namespace
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.dead_letters = dead_letters or DeadLetterQueue(store, clock=self.clock)
        self.max_retries = max_retries or settings.max_retries
        self.sleep = sleep or asyncio.sleep
        self.rng = rng or random.random

    def _key(self, actor_id: str, operation_id: str) -> str:
        return build_key(self.namespace, actor_id, operation_id)

    def _next_eligible_at(self, retry_count: int) -> datetime:
        delay_ms = calculate_backoff(retry_count, rng=self.rng)
        return self.clock() + timedelta(milliseconds=delay_ms)

    def _save(self, operation: QueuedOperation) -> None:
        self.store.set(
            self._key(operation.actor_id, operation.operation_id),
            operation.model_dump(mode="json")
        )

    def enqueue(
        self,
        actor_id: str,
        operation_id: str,
        request: Union[RequestDescriptor, dict],
        failure: BaseException
    ) -> QueuedOperation:
        """
        Capture a failed mutating call for later replay.

        Only network-class and 5xx failures are queued. The request gets an
        Idempotency-Key if it has none; an existing key is reused.

        Args:
            actor_id: Owning user/session
            operation_id: Unique within the actor; same id overwrites
            request: Request descriptor (or its dict form)
            failure: Exception raised by the transport

        Returns:
            The stored QueuedOperation

        Raises:
            ValidationError: Failure was a 4xx-class rejection (nothing stored)
            StorageFailure: The checkpoint could not be persisted
        """
        classified = classify_failure(failure)
        if isinstance(classified, ValidationError):
            logger.info(
                "operation_not_queued",
                actor_id=actor_id,
                operation_id=operation_id,
                status=classified.status,
                reason="validation",
            )
            raise classified

        if not isinstance(request, RequestDescriptor):
            request = RequestDescriptor.model_validate(request)

        key = self._key(actor_id, operation_id)
        created_at = self.clock()
        previous_key = None
        existing = self.store.get(key)
        if existing is not None:
            try:
                previous = QueuedOperation.model_validate(existing)
                created_at = previous.created_at
                previous_key = previous.request.idempotency_key
            except SchemaError as e:
                logger.warning("queued_operation_unreadable", key=key, error=str(e))

        # Same operation id is the same logical submission: never mint a second key
        request = ensure_idempotency_key(request, key=previous_key)

        operation = QueuedOperation(
            actor_id=actor_id,
            operation_id=operation_id,
            request=request,
            failure=failure_info_from(classified),
            retry_count=0,
            next_eligible_at=self._next_eligible_at(0),
            created_at=created_at,
        )
        self._save(operation)

        logger.info(
            "operation_queued",
            actor_id=actor_id,
            operation_id=operation_id,
            method=request.method,
            url=request.url,
            failure_kind=classified.kind,
            overwritten=existing is not None,
            next_eligible_at=operation.next_eligible_at.isoformat(),
        )
        return operation

    def restore(self, operation: QueuedOperation) -> QueuedOperation:
        """
        Put an operation back with a fresh retry budget, due immediately.

        Used for manual retry of dead letters. Keeps request (and its
        Idempotency-Key) and created_at.
        """
        restored = operation.model_copy(update={"retry_count": 0, "next_eligible_at": self.clock()})
        self._save(restored)
        logger.info("operation_restored", actor_id=operation.actor_id, operation_id=operation.operation_id)
        return restored

    def get(self, actor_id: str, operation_id: str) -> Optional[QueuedOperation]:
        raw = self.store.get(self._key(actor_id, operation_id))
        if raw is None:
            return None
        return QueuedOperation.model_validate(raw)

    def list_all(self, actor_id: str) -> List[QueuedOperation]:
        """
        Every queued operation of an actor, due or not, in no guaranteed order.

        Entries that no longer parse are logged and skipped.
        """
        operations = []
        for key in self.store.list_keys_with_prefix(actor_prefix(self.namespace, actor_id)):
            raw = self.store.get(key)
            if raw is None:
                continue
            try:
                operations.append(QueuedOperation.model_validate(raw))
            except SchemaError as e:
                logger.warning("queued_operation_unreadable", key=key, error=str(e))
        return operations

    def list_due(self, actor_id: str) -> List[QueuedOperation]:
        """Operations whose next_eligible_at has passed. No FIFO guarantee."""
        now = self.clock()
        return [op for op in self.list_all(actor_id) if op.is_due(now)]

    def remove(self, actor_id: str, operation_id: str) -> None:
        """Cancel a queued operation. Wins over any replay in flight."""
        self.store.delete(self._key(actor_id, operation_id))
        logger.info("operation_removed", actor_id=actor_id, operation_id=operation_id)

    def clear(self, actor_id: str) -> int:
        """
        Remove all queued operations of an actor.

        Returns:
            Number of checkpoints removed
        """
        keys = self.store.list_keys_with_prefix(actor_prefix(self.namespace, actor_id))
        for key in keys:
            self.store.delete(key)
        logger.info("queue_cleared", actor_id=actor_id, removed=len(keys))
        return len(keys)

    async def replay(self, operation: QueuedOperation, transport: Transport) -> ReplayOutcome:
        """
        Resend one queued operation.

        Waits until next_eligible_at, then re-reads the checkpoint: a
        checkpoint removed meanwhile is skipped and never written back.

        Args:
            operation: Operation snapshot (e.g. from list_due)
            transport: Coroutine function sending a RequestDescriptor

        Returns:
            ReplaySucceeded, ReplayWillRetry, ReplayDeadLettered or ReplaySkipped

        Raises:
            StorageFailure: The store rejected the update
        """
        actor_id = operation.actor_id
        operation_id = operation.operation_id
        log = logger.bind(actor_id=actor_id, operation_id=operation_id)

        # The stored next_eligible_at is authoritative; the caller's copy may be stale
        eligible_at = operation.next_eligible_at
        while True:
            wait_seconds = (eligible_at - self.clock()).total_seconds()
            if wait_seconds > 0:
                log.debug("replay_waiting", wait_seconds=round(wait_seconds, 3))
                await self.sleep(wait_seconds)

            current = self.get(actor_id, operation_id)
            if current is None:
                log.info("replay_skipped", reason="checkpoint_removed")
                return ReplaySkipped(actor_id=actor_id, operation_id=operation_id)
            if current.next_eligible_at <= self.clock():
                break
            eligible_at = current.next_eligible_at

        try:
            response = await transport(current.request)
        except Exception as e:
            return self._handle_replay_failure(current, e)

        self.store.delete(self._key(actor_id, operation_id))
        log.info("replay_succeeded", retry_count=current.retry_count)
        return ReplaySucceeded(actor_id=actor_id, operation_id=operation_id, response=response)

    def _handle_replay_failure(self, current: QueuedOperation, error: Exception) -> ReplayOutcome:
        actor_id = current.actor_id
        operation_id = current.operation_id
        key = self._key(actor_id, operation_id)

        if self.store.get(key) is None:
            logger.info("replay_skipped", actor_id=actor_id, operation_id=operation_id,
                        reason="checkpoint_removed_during_replay")
            return ReplaySkipped(actor_id=actor_id, operation_id=operation_id,
                                 reason="checkpoint_removed_during_replay")

        classified = classify_failure(error)
        failure = failure_info_from(classified)
        attempts = current.retry_count + 1

        if isinstance(classified, ValidationError) or attempts >= self.max_retries:
            reason = "validation" if isinstance(classified, ValidationError) else "retry_ceiling"
            failed = current.model_copy(update={"retry_count": attempts, "failure": failure})
            self.dead_letters.record(failed, reason)
            self.store.delete(key)
            return ReplayDeadLettered(
                actor_id=actor_id,
                operation_id=operation_id,
                retry_count=attempts,
                failure=failure,
                reason=reason,
            )

        updated = current.model_copy(update={
            "retry_count": attempts,
            "failure": failure,
            "next_eligible_at": self._next_eligible_at(attempts),
        })
        self._save(updated)

        logger.warning(
            "replay_failed",
            actor_id=actor_id,
            operation_id=operation_id,
            retry_count=attempts,
            failure_kind=classified.kind,
            error=classified.message,
            next_eligible_at=updated.next_eligible_at.isoformat(),
        )
        return ReplayWillRetry(
            actor_id=actor_id,
            operation_id=operation_id,
            retry_count=attempts,
            next_eligible_at=updated.next_eligible_at,
            failure=failure,
        )

    async def drain_due(self, actor_id: str, transport: Transport) -> List[ReplayOutcome]:
        """
        Replay every due operation of an actor, one at a time.

        Returns:
            One outcome per due operation
        """
        due = self.list_due(actor_id)
        logger.info("drain_started", actor_id=actor_id, due=len(due))

        outcomes = []
        for operation in due:
            outcomes.append(await self.replay(operation, transport))
        return outcomes
