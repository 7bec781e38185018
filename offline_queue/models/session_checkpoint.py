"""
Session Checkpoint Models
Persisted state of one long-running session (steps, answers, transcript fragments, evaluation job)
"""

from enum import Enum
from typing import Optional, Dict, List, Any
from datetime import datetime

from pydantic import BaseModel, Field


CHECKPOINT_VERSION = 1
NO_OFFSET = -1


class EvaluationStatus(str, Enum):
    """
    Evaluation linkage state machine:
    unlinked -> pending -> (succeeded | failed)
    """
    unlinked = "unlinked"
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


TERMINAL_EVALUATION_STATUSES = {EvaluationStatus.succeeded, EvaluationStatus.failed}


class Fragment(BaseModel):
    """One offset-tagged chunk of an incrementally delivered text stream."""
    offset: int
    text: str
    received_at: datetime
    acknowledged: bool = False


class EvaluationLinkage(BaseModel):
    """Handoff to an asynchronous, externally polled evaluation job."""
    status: EvaluationStatus = EvaluationStatus.unlinked
    job_id: Optional[str] = None
    result: Any = None
    updated_at: Optional[datetime] = None


class SessionSnapshot(BaseModel):
    """Initial state handed to SessionCheckpointManager.create."""
    steps: List[Any] = Field(default_factory=list, description="e.g. the question list")
    current_step_index: int = Field(default=0, ge=0)
    step_results: List[Any] = Field(default_factory=list, description="e.g. answers so far")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionCheckpoint(BaseModel):
    """
    One in-progress session, keyed by (session_id, actor_id).

    materialized_text is derived: for each stream it is the offset-sorted
    fragments joined with a single space.
    """
    version: int = CHECKPOINT_VERSION
    session_id: str
    actor_id: str
    current_step_index: int = Field(default=0, ge=0)
    steps_snapshot: List[Any] = Field(default_factory=list)
    step_results: List[Any] = Field(default_factory=list)
    fragments_by_stream: Dict[str, List[Fragment]] = Field(default_factory=dict)
    materialized_text: Dict[str, str] = Field(default_factory=dict)
    evaluation: EvaluationLinkage = Field(default_factory=EvaluationLinkage)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    def fragments(self, stream_id: str) -> List[Fragment]:
        return self.fragments_by_stream.get(stream_id, [])
