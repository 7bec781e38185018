"""
Offline Queue Runtime
Wires store, queues, session checkpoints, transport and reconnect handling together

One runtime per process; hand it (or its parts) to whatever needs them.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from offline_queue.config import Settings, settings as default_settings
from offline_queue.scheduler import start_health_poller, stop_scheduler
from offline_queue.services.api_client import ResilientApiClient
from offline_queue.services.connectivity import ConnectivitySignal, HealthCheckPoller
from offline_queue.services.dead_letter_queue import DeadLetterQueue
from offline_queue.services.reconnect import ActorResolver, DeadLetterCallback, ReconnectCoordinator
from offline_queue.services.request_queue import RequestQueue
from offline_queue.services.session_checkpoint import SessionCheckpointManager
from offline_queue.services.storage import CheckpointStore, create_store
from offline_queue.services.transport import HttpTransport

logger = structlog.get_logger(__name__)


@dataclass
class OfflineRuntime:
    store: CheckpointStore
    dead_letters: DeadLetterQueue
    queue: RequestQueue
    sessions: SessionCheckpointManager
    transport: HttpTransport
    client: ResilientApiClient
    signal: ConnectivitySignal
    coordinator: ReconnectCoordinator
    poller: HealthCheckPoller
    settings: Settings
    scheduler: Optional[AsyncIOScheduler] = None

    def start(self) -> AsyncIOScheduler:
        """Start periodic health probes. Call from inside the running event loop."""
        self.scheduler = start_health_poller(
            self.poller,
            interval_seconds=self.settings.health_check_interval_seconds,
            environment=self.settings.environment,
        )
        return self.scheduler

    async def stop(self) -> None:
        if self.scheduler is not None:
            stop_scheduler(self.scheduler)
            self.scheduler = None
        await self.transport.aclose()
        logger.info("runtime_stopped")


def create_runtime(
    actor_resolver: ActorResolver,
    settings: Optional[Settings] = None,
    store: Optional[CheckpointStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    on_dead_letter: Optional[DeadLetterCallback] = None
) -> OfflineRuntime:
    """
    Build the full component graph.

    Args:
        actor_resolver: Returns the current actor (logged-in user) id or None
        settings: Defaults to the module-level settings
        store: Checkpoint store. Defaults to create_store(settings)
        http_client: httpx client for transport and health probes
        on_dead_letter: Called for every dead-lettered replay

    Returns:
        OfflineRuntime (scheduler not started)
    """
    settings = settings or default_settings
    store = store or create_store(settings)

    http_client = http_client or httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=settings.transport_timeout_seconds,
        headers={"Content-Type": "application/json"},
    )

    dead_letters = DeadLetterQueue(store, namespace=settings.dead_letter_namespace)
    queue = RequestQueue(
        store,
        namespace=settings.queue_namespace,
        dead_letters=dead_letters,
        max_retries=settings.max_retries,
    )
    sessions = SessionCheckpointManager(store, namespace=settings.session_namespace)
    transport = HttpTransport(client=http_client)
    client = ResilientApiClient(transport, queue)

    signal = ConnectivitySignal()
    coordinator = ReconnectCoordinator(
        queue,
        transport,
        actor_resolver=actor_resolver,
        on_dead_letter=on_dead_letter,
        max_items=settings.drain_max_items,
        interval_ms=settings.drain_interval_ms,
        max_consecutive_failures=settings.drain_max_consecutive_failures,
    )
    coordinator.attach(signal)
    poller = HealthCheckPoller(http_client, signal, path=settings.health_check_path)

    logger.info("runtime_created", storage_backend=settings.storage_backend, environment=settings.environment)

    return OfflineRuntime(
        store=store,
        dead_letters=dead_letters,
        queue=queue,
        sessions=sessions,
        transport=transport,
        client=client,
        signal=signal,
        coordinator=coordinator,
        poller=poller,
        settings=settings,
    )
