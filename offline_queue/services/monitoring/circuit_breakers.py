"""
Circuit Breakers for Reconnect Drains

Each drain pass gets its own breaker. Transient replay failures are fed
through it, and once it opens after consecutive failures the pass stops:
the connection evidently dropped again and the remaining operations wait
for the next "connectivity restored" signal.
"""

from typing import Optional

import pybreaker
import structlog

from offline_queue.config import settings
from offline_queue.models.replay_outcome import ReplayOutcome, failure_of

logger = structlog.get_logger(__name__)


class TransientReplayFailure(Exception):
    """Raised inside the breaker for replays that failed transiently."""


class DrainBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs breaker state changes for a drain pass."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state):
        logger.warning(
            "drain_breaker_state_change",
            circuit_breaker=cb.name,
            old_state=getattr(old_state, "name", None),
            new_state=getattr(new_state, "name", None),
            fail_count=cb.fail_counter,
        )


def create_drain_breaker(actor_id: str, fail_max: Optional[int] = None) -> pybreaker.CircuitBreaker:
    """
    Create the breaker for one drain pass.

    Args:
        actor_id: Actor being drained (used in the breaker name)
        fail_max: Consecutive transient failures before opening.
                  Defaults to settings.drain_max_consecutive_failures

    Returns:
        Closed CircuitBreaker
    """
    return pybreaker.CircuitBreaker(
        name=f"drain:{actor_id}",
        fail_max=fail_max or settings.drain_max_consecutive_failures,
        listeners=[DrainBreakerListener()],
    )


def is_transient_failure(outcome: ReplayOutcome) -> bool:
    """
    True for replays that failed on network or server errors.

    Covers will-retry outcomes and operations dead-lettered at the retry
    ceiling; a validation rejection means the server answered.
    """
    failure = failure_of(outcome)
    return failure is not None and failure.kind != "validation"


def _raise_if_transient(outcome: ReplayOutcome) -> None:
    if is_transient_failure(outcome):
        raise TransientReplayFailure(outcome.operation_id)


def record_replay_outcome(breaker: pybreaker.CircuitBreaker, outcome: ReplayOutcome) -> bool:
    """
    Feed one replay outcome through the breaker.

    Any non-transient outcome resets the consecutive-failure count.

    Returns:
        True once the breaker is open
    """
    try:
        breaker.call(_raise_if_transient, outcome)
    except (TransientReplayFailure, pybreaker.CircuitBreakerError):
        # Counted by the breaker
        pass
    return breaker.current_state == pybreaker.STATE_OPEN


# Re-export exception for caller handling
from pybreaker import CircuitBreakerError

__all__ = [
    "DrainBreakerListener",
    "TransientReplayFailure",
    "create_drain_breaker",
    "is_transient_failure",
    "record_replay_outcome",
    "CircuitBreakerError",
]
