"""
Replay Outcomes
Result of replaying one queued operation through a transport
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from offline_queue.models.queued_operation import FailureInfo
from offline_queue.services.errors import DeadLettered


@dataclass(frozen=True)
class ReplaySucceeded:
    """Transport accepted the request; checkpoint deleted."""
    actor_id: str
    operation_id: str
    response: Any = None
    status: str = "succeeded"


@dataclass(frozen=True)
class ReplayWillRetry:
    """Transient failure below the ceiling; checkpoint updated."""
    actor_id: str
    operation_id: str
    retry_count: int
    next_eligible_at: datetime
    failure: FailureInfo
    status: str = "will_retry"


@dataclass(frozen=True)
class ReplayDeadLettered:
    """Terminal failure; checkpoint moved to the dead-letter namespace."""
    actor_id: str
    operation_id: str
    retry_count: int
    failure: FailureInfo
    reason: str
    status: str = "dead_lettered"

    @property
    def error(self) -> DeadLettered:
        return DeadLettered(
            self.actor_id, self.operation_id, self.retry_count, self.reason, self.failure.message
        )


@dataclass(frozen=True)
class ReplaySkipped:
    """Checkpoint no longer stored (removed while in flight); nothing sent or written."""
    actor_id: str
    operation_id: str
    reason: str = "checkpoint_removed"
    status: str = "skipped"


ReplayOutcome = Union[ReplaySucceeded, ReplayWillRetry, ReplayDeadLettered, ReplaySkipped]


def failure_of(outcome: ReplayOutcome) -> Optional[FailureInfo]:
    return getattr(outcome, "failure", None)
