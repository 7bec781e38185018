"""
Error Taxonomy
Normalized transport failures, their classification, and storage/session errors
"""

from typing import Optional, Any


NETWORK_ERROR_CODES = frozenset({
    "network",
    "connection_refused",
    "ECONNREFUSED",
    "ECONNRESET",
    "ERR_NETWORK",
    "ERR_CONNECTION_REFUSED",
})

TIMEOUT_ERROR_CODES = frozenset({
    "timeout",
    "ETIMEDOUT",
    "ECONNABORTED",
})


class OfflineQueueError(Exception):
    """Base class for all offline queue errors."""
    pass


class TransportError(OfflineQueueError):
    """
    Normalized failure raised by a transport collaborator.

    The queue never looks past this surface: whether a response arrived,
    the HTTP status if any, and a stable error code.
    """

    def __init__(
        self,
        message: str,
        *,
        response_received: bool = False,
        status: Optional[int] = None,
        code: Optional[str] = None,
        body: Any = None
    ):
        self.message = message
        self.response_received = response_received
        self.status = status
        self.code = code
        self.body = body
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"TransportError(message={self.message!r}, response_received={self.response_received}, "
            f"status={self.status}, code={self.code!r})"
        )


class ClassifiedFailure(OfflineQueueError):
    """A transport failure after classification into the retry taxonomy."""

    kind = "unknown"

    def __init__(self, message: str, *, status: Optional[int] = None, code: Optional[str] = None):
        self.message = message
        self.status = status
        self.code = code
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.kind != "validation"


class ValidationError(ClassifiedFailure):
    """4xx-equivalent rejection. Never queued, always surfaced to the caller."""
    kind = "validation"


class TransientNetworkError(ClassifiedFailure):
    """No response received (connection refused, reset, timeout). Queued."""
    kind = "network"


class TransientServerError(ClassifiedFailure):
    """5xx-equivalent response. Queued."""
    kind = "server"


class StorageFailure(OfflineQueueError):
    """The durable medium rejected an operation."""
    pass


class StorageQuotaExceeded(StorageFailure):
    """The durable medium is full."""
    pass


class DeadLettered(OfflineQueueError):
    """Operation exhausted its retry budget or was rejected on replay."""

    def __init__(self, actor_id: str, operation_id: str, retry_count: int, reason: str, message: str):
        self.actor_id = actor_id
        self.operation_id = operation_id
        self.retry_count = retry_count
        self.reason = reason
        super().__init__(
            f"Operation {operation_id} for actor {actor_id} dead-lettered "
            f"after {retry_count} retries ({reason}): {message}"
        )


class SessionCheckpointExists(OfflineQueueError):
    """A checkpoint for this (session, actor) already exists."""
    pass


class SessionCheckpointNotFound(OfflineQueueError):
    """No checkpoint stored for this (session, actor)."""
    pass


class InvalidEvaluationTransition(OfflineQueueError):
    """Evaluation linkage update not allowed from the current state."""
    pass


class UnsupportedCheckpointVersion(OfflineQueueError):
    """Persisted checkpoint was written by a newer schema."""
    pass


def classify_failure(error: BaseException) -> ClassifiedFailure:
    """
    Classify a transport failure into the retry taxonomy.

    Rules:
    - No response received, or a network/timeout error code -> TransientNetworkError
    - HTTP status >= 500 -> TransientServerError
    - Any other HTTP status -> ValidationError

    Exceptions that are not TransportError carry no response, so they are
    treated as network failures.

    Args:
        error: Exception raised by the transport

    Returns:
        ClassifiedFailure instance (not raised)
    """
    if isinstance(error, ClassifiedFailure):
        return error

    if not isinstance(error, TransportError):
        return TransientNetworkError(str(error) or type(error).__name__, code=type(error).__name__)

    code = error.code
    if not error.response_received or code in NETWORK_ERROR_CODES or code in TIMEOUT_ERROR_CODES:
        return TransientNetworkError(error.message, status=error.status, code=code)

    if error.status is not None and error.status >= 500:
        return TransientServerError(error.message, status=error.status, code=code)

    return ValidationError(error.message, status=error.status, code=code)


__all__ = [
    "OfflineQueueError",
    "TransportError",
    "ClassifiedFailure",
    "ValidationError",
    "TransientNetworkError",
    "TransientServerError",
    "StorageFailure",
    "StorageQuotaExceeded",
    "DeadLettered",
    "SessionCheckpointExists",
    "SessionCheckpointNotFound",
    "InvalidEvaluationTransition",
    "UnsupportedCheckpointVersion",
    "classify_failure",
]
