"""
Dead-Letter Queue
Keeps operations that stopped retrying visible for inspection and manual retry
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError as SchemaError

from offline_queue.config import settings
from offline_queue.models.queued_operation import DeadLetterRecord, QueuedOperation
from offline_queue.services.storage import CheckpointStore, actor_prefix, build_key

logger = structlog.get_logger(__name__)


# Reasons an operation leaves the request queue without succeeding
DEAD_LETTER_REASONS = {
    "retry_ceiling": "Transient failures exhausted the retry budget",
    "validation": "Server rejected the request on replay (4xx)",
}


class DeadLetterQueue:
    """
    Dead-lettered operations under <dead_letter_namespace>.<actor_id>.<operation_id>.

    Nothing here is retried automatically. requeue is the manual-retry
    affordance; it hands the operation back to the request queue with a
    fresh retry budget and the same Idempotency-Key.
    """

    def __init__(
        self,
        store: CheckpointStore,
        namespace: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.namespace = namespace or settings.dead_letter_namespace
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _key(self, actor_id: str, operation_id: str) -> str:
        return build_key(self.namespace, actor_id, operation_id)

    def record(self, operation: QueuedOperation, reason: str) -> DeadLetterRecord:
        """
        Store a dead-lettered operation.

        Args:
            operation: Operation as it was when it failed for the last time
            reason: "retry_ceiling" or "validation"

        Returns:
            The stored DeadLetterRecord
        """
        if reason not in DEAD_LETTER_REASONS:
            raise ValueError(f"Unknown dead-letter reason: {reason}")

        record = DeadLetterRecord(operation=operation, reason=reason, dead_lettered_at=self.clock())
        self.store.set(
            self._key(operation.actor_id, operation.operation_id),
            record.model_dump(mode="json")
        )

        logger.error(
            "operation_dead_lettered",
            actor_id=operation.actor_id,
            operation_id=operation.operation_id,
            method=operation.request.method,
            url=operation.request.url,
            retry_count=operation.retry_count,
            reason=reason,
            failure_kind=operation.failure.kind,
            failure_message=operation.failure.message,
        )
        return record

    def get(self, actor_id: str, operation_id: str) -> Optional[DeadLetterRecord]:
        raw = self.store.get(self._key(actor_id, operation_id))
        if raw is None:
            return None
        return DeadLetterRecord.model_validate(raw)

    def list(self, actor_id: str) -> List[DeadLetterRecord]:
        """All dead letters of an actor, oldest first. Unreadable entries are skipped."""
        records = []
        for key in self.store.list_keys_with_prefix(actor_prefix(self.namespace, actor_id)):
            raw = self.store.get(key)
            if raw is None:
                continue
            try:
                records.append(DeadLetterRecord.model_validate(raw))
            except SchemaError as e:
                logger.warning("dead_letter_unreadable", key=key, error=str(e))

        records.sort(key=lambda r: r.dead_lettered_at)
        return records

    def discard(self, actor_id: str, operation_id: str) -> bool:
        """
        Drop a dead letter for good.

        Returns:
            True if a record existed
        """
        key = self._key(actor_id, operation_id)
        if self.store.get(key) is None:
            return False
        self.store.delete(key)
        logger.info("dead_letter_discarded", actor_id=actor_id, operation_id=operation_id)
        return True

    def requeue(self, actor_id: str, operation_id: str, request_queue) -> Optional[QueuedOperation]:
        """
        Manually retry a dead letter through the request queue.

        The operation becomes due immediately with retry_count=0. The
        dead-letter record is removed only after the queue write succeeded.

        Args:
            actor_id: Owning actor
            operation_id: Dead-lettered operation id
            request_queue: RequestQueue that takes the operation back

        Returns:
            The re-queued operation, or None if no such dead letter exists
        """
        record = self.get(actor_id, operation_id)
        if record is None:
            return None

        operation = request_queue.restore(record.operation)
        self.store.delete(self._key(actor_id, operation_id))

        logger.info(
            "dead_letter_requeued",
            actor_id=actor_id,
            operation_id=operation_id,
            previous_reason=record.reason,
        )
        return operation
