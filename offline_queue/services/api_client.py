"""
Resilient API Client
Sends requests through a transport and queues mutating calls that fail transiently
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import structlog

from offline_queue.models.queued_operation import QueuedOperation, RequestDescriptor
from offline_queue.services.errors import classify_failure
from offline_queue.services.idempotency import ensure_idempotency_key
from offline_queue.services.request_queue import RequestQueue, Transport

logger = structlog.get_logger(__name__)

MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


@dataclass
class SubmissionResult:
    """
    Outcome of ResilientApiClient.request.

    queued=True means the call failed transiently and will be replayed;
    callers show no error for it.
    """
    queued: bool
    response: Any = None
    operation: Optional[QueuedOperation] = None

    @property
    def operation_id(self) -> Optional[str]:
        return self.operation.operation_id if self.operation else None


class ResilientApiClient:
    """
    Front door for API calls.

    Mutating calls get an Idempotency-Key once, before the first attempt,
    and that key doubles as the queued operation id. Read-only calls are
    never queued.
    """

    def __init__(
        self,
        transport: Transport,
        queue: RequestQueue,
        mutating_methods: Tuple[str, ...] = MUTATING_METHODS
    ):
        self.transport = transport
        self.queue = queue
        self.mutating_methods = tuple(m.upper() for m in mutating_methods)

    def is_mutating(self, request: RequestDescriptor) -> bool:
        return request.method.upper() in self.mutating_methods

    async def request(self, actor_id: str, request: Union[RequestDescriptor, dict]) -> SubmissionResult:
        """
        Send a request, queueing it on transient failure if it mutates.

        Raises:
            ValidationError: Server rejected the request (4xx)
            TransientNetworkError, TransientServerError: Read-only call failed
            StorageFailure: Failed call could not be queued
        """
        if not isinstance(request, RequestDescriptor):
            request = RequestDescriptor.model_validate(request)

        mutating = self.is_mutating(request)
        if mutating:
            request = ensure_idempotency_key(request)

        try:
            response = await self.transport(request)
        except Exception as e:
            classified = classify_failure(e)
            if not mutating or not classified.is_transient:
                logger.info("request_failed", actor_id=actor_id, method=request.method, url=request.url,
                            failure_kind=classified.kind, status=classified.status)
                if classified is e:
                    raise
                raise classified from e

            operation = self.queue.enqueue(actor_id, request.idempotency_key, request, e)
            return SubmissionResult(queued=True, operation=operation)

        return SubmissionResult(queued=False, response=response)
