"""
Monitoring Module
Exports for structured logging and drain circuit breakers
"""

from offline_queue.services.monitoring.logging import setup_logging, ActorJsonFormatter
from offline_queue.services.monitoring.circuit_breakers import (
    create_drain_breaker,
    record_replay_outcome,
    CircuitBreakerError,
)

__all__ = [
    "setup_logging",
    "ActorJsonFormatter",
    "create_drain_breaker",
    "record_replay_outcome",
    "CircuitBreakerError",
]
