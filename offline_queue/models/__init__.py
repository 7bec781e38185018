"""
Models
"""

from offline_queue.models.queued_operation import (
    IDEMPOTENCY_HEADER,
    FailureKind,
    RequestDescriptor,
    FailureInfo,
    QueuedOperation,
    DeadLetterRecord,
)
from offline_queue.models.session_checkpoint import (
    CHECKPOINT_VERSION,
    NO_OFFSET,
    EvaluationStatus,
    Fragment,
    EvaluationLinkage,
    SessionSnapshot,
    SessionCheckpoint,
)

__all__ = [
    "IDEMPOTENCY_HEADER",
    "FailureKind",
    "RequestDescriptor",
    "FailureInfo",
    "QueuedOperation",
    "DeadLetterRecord",
    "CHECKPOINT_VERSION",
    "NO_OFFSET",
    "EvaluationStatus",
    "Fragment",
    "EvaluationLinkage",
    "SessionSnapshot",
    "SessionCheckpoint",
]
