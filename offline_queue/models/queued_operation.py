"""
Queued Operation Models
Durable shape of a mutating request awaiting delivery
"""

from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime

from pydantic import BaseModel, Field


IDEMPOTENCY_HEADER = "Idempotency-Key"


class FailureKind(str, Enum):
    """Classification recorded for the last failure of a queued operation."""
    network = "network"
    server = "server"
    validation = "validation"


class RequestDescriptor(BaseModel):
    """
    Transport-agnostic request, persisted and later replayed verbatim.
    """
    method: str = Field(..., description="HTTP method, e.g. POST")
    url: str = Field(..., description="Endpoint path or absolute URL")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = Field(None, description="JSON-serializable request body")
    params: Dict[str, Any] = Field(default_factory=dict, description="Query parameters")

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def idempotency_key(self) -> Optional[str]:
        return self.header(IDEMPOTENCY_HEADER)


class FailureInfo(BaseModel):
    """Last-seen failure of a queued operation."""
    kind: FailureKind
    message: str
    status: Optional[int] = None
    code: Optional[str] = None

    class Config:
        use_enum_values = True


class QueuedOperation(BaseModel):
    """
    One mutating call awaiting durable delivery.

    Storage is the source of truth: each instance maps to exactly one entry
    under <queue_namespace>.<actor_id>.<operation_id>.
    """
    actor_id: str
    operation_id: str
    request: RequestDescriptor
    failure: FailureInfo
    retry_count: int = Field(default=0, ge=0)
    next_eligible_at: datetime
    created_at: datetime

    def is_due(self, now: datetime) -> bool:
        return self.next_eligible_at <= now


class DeadLetterRecord(BaseModel):
    """
    Operation that stopped retrying automatically.

    reason is "retry_ceiling" or "validation".
    """
    operation: QueuedOperation
    reason: str
    dead_lettered_at: datetime
