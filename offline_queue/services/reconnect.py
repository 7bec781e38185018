"""
Reconnect Coordinator
Drains the request queue when connectivity comes back, one pass per actor at a time
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from offline_queue.config import settings
from offline_queue.models.replay_outcome import ReplayDeadLettered, ReplayOutcome
from offline_queue.services.connectivity import ConnectivitySignal
from offline_queue.services.monitoring.circuit_breakers import create_drain_breaker, record_replay_outcome
from offline_queue.services.request_queue import RequestQueue, Transport
from offline_queue.services.storage import ANONYMOUS_ACTOR

logger = structlog.get_logger(__name__)

ActorResolver = Callable[[], Optional[str]]
DeadLetterCallback = Callable[[ReplayDeadLettered], None]


@dataclass
class DrainReport:
    """Summary of one drain pass for one actor."""
    actor_id: str
    outcomes: List[ReplayOutcome] = field(default_factory=list)
    aborted: bool = False
    remaining: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "succeeded")

    @property
    def dead_lettered(self) -> List[ReplayDeadLettered]:
        return [o for o in self.outcomes if isinstance(o, ReplayDeadLettered)]


class ReconnectCoordinator:
    """
    Process-wide glue between connectivity signals and the request queue.

    - At most one drain pass per actor runs at a time; a trigger while a
      pass is in flight gets that same pass back instead of a new one.
    - A pass replays at most max_items due operations, pausing
      interval_ms between them.
    - A pass stops early once its circuit breaker opens after
      max_consecutive_failures transient failures in a row, leaving the
      rest queued for the next trigger.
    """

    def __init__(
        self,
        queue: RequestQueue,
        transport: Transport,
        *,
        actor_resolver: Optional[ActorResolver] = None,
        on_dead_letter: Optional[DeadLetterCallback] = None,
        max_items: Optional[int] = None,
        interval_ms: Optional[int] = None,
        max_consecutive_failures: Optional[int] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        """
        Args:
            queue: Request queue to drain
            transport: Transport used for replays
            actor_resolver: Returns the current actor id (e.g. the logged-in user), or None
            on_dead_letter: Called for every dead-lettered outcome (show a notice with manual retry)
            max_items: Replays per pass. Defaults to settings.drain_max_items
            interval_ms: Pause between replays. Defaults to settings.drain_interval_ms
            max_consecutive_failures: Abort threshold. Defaults to settings.drain_max_consecutive_failures
            sleep: Coroutine used for the pause between replays
        """
        self.queue = queue
        self.transport = transport
        self.actor_resolver = actor_resolver
        self.on_dead_letter = on_dead_letter
        self.max_items = max_items or settings.drain_max_items
        self.interval_ms = settings.drain_interval_ms if interval_ms is None else interval_ms
        self.max_consecutive_failures = max_consecutive_failures or settings.drain_max_consecutive_failures
        self.sleep = sleep or asyncio.sleep
        self._in_flight: Dict[str, asyncio.Task] = {}

    def is_draining(self, actor_id: str) -> bool:
        return actor_id in self._in_flight

    def attach(self, signal: ConnectivitySignal) -> Callable[[], None]:
        """
        Subscribe to a connectivity signal.

        Returns:
            Function that detaches the coordinator again
        """
        return signal.subscribe(self.on_connectivity_restored)

    def on_connectivity_restored(self) -> Optional[asyncio.Task]:
        """
        Signal listener: start (or join) a drain pass for the current actor.

        Must be called from a running event loop. Anonymous or unresolved
        actors have nothing to drain.
        """
        actor_id = self.actor_resolver() if self.actor_resolver else None
        if not actor_id or actor_id == ANONYMOUS_ACTOR:
            logger.debug("drain_skipped", reason="no_actor")
            return None
        return self.trigger(actor_id)

    def trigger(self, actor_id: str) -> asyncio.Task:
        """
        Start a drain pass for an actor, or return the one already running.
        """
        existing = self._in_flight.get(actor_id)
        if existing is not None and not existing.done():
            logger.info("drain_coalesced", actor_id=actor_id)
            return existing

        task = asyncio.get_running_loop().create_task(self._drain_pass(actor_id))
        self._in_flight[actor_id] = task

        def _forget(finished: asyncio.Task) -> None:
            if self._in_flight.get(actor_id) is finished:
                del self._in_flight[actor_id]
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("drain_pass_crashed", actor_id=actor_id, error=str(finished.exception()))

        task.add_done_callback(_forget)
        return task

    async def drain(self, actor_id: str) -> DrainReport:
        """Run (or join) a drain pass and wait for its report."""
        return await self.trigger(actor_id)

    async def _drain_pass(self, actor_id: str) -> DrainReport:
        # Each task runs in its own context copy, so this stays local to the pass
        structlog.contextvars.bind_contextvars(actor_id=actor_id)
        log = logger.bind(actor_id=actor_id)
        report = DrainReport(actor_id=actor_id)

        due = self.queue.list_due(actor_id)
        batch = due[:self.max_items]
        log.info("drain_pass_started", due=len(due), batch=len(batch))

        breaker = create_drain_breaker(actor_id, self.max_consecutive_failures)
        for index, operation in enumerate(batch):
            if index > 0 and self.interval_ms > 0:
                await self.sleep(self.interval_ms / 1000)

            outcome = await self.queue.replay(operation, self.transport)
            report.outcomes.append(outcome)

            if isinstance(outcome, ReplayDeadLettered):
                self._report_dead_letter(outcome)

            if record_replay_outcome(breaker, outcome):
                report.aborted = True
                log.warning("drain_pass_aborted", consecutive_failures=breaker.fail_counter,
                            replayed=len(report.outcomes))
                break

        report.remaining = len(self.queue.list_all(actor_id))
        log.info(
            "drain_pass_finished",
            replayed=len(report.outcomes),
            succeeded=report.succeeded,
            dead_lettered=len(report.dead_lettered),
            remaining=report.remaining,
            aborted=report.aborted,
        )
        return report

    def _report_dead_letter(self, outcome: ReplayDeadLettered) -> None:
        if self.on_dead_letter is None:
            return
        try:
            self.on_dead_letter(outcome)
        except Exception as e:
            logger.error("dead_letter_callback_failed", actor_id=outcome.actor_id,
                         operation_id=outcome.operation_id, error=str(e), exc_info=True)
