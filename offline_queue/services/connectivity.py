"""
Connectivity Signal
Abstract "connection restored" notification plus a health-check driven source
"""

from typing import Callable, List, Optional

import httpx
import structlog

from offline_queue.services.health import ConnectionStatus, check_connection

logger = structlog.get_logger(__name__)

Listener = Callable[[], None]


class ConnectivitySignal:
    """
    Fan-out of connectivity changes.

    Sources (health poller, OS network notifications, a user clicking
    "retry") call notify_restored/notify_lost; subscribers are invoked on
    notify_restored only.
    """

    def __init__(self):
        self._listeners: List[Listener] = []
        self.online: Optional[bool] = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that unsubscribes it
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify_lost(self) -> None:
        if self.online is not False:
            logger.info("connectivity_lost")
        self.online = False

    def notify_restored(self) -> None:
        self.online = True
        logger.info("connectivity_restored", listeners=len(self._listeners))
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                # One broken listener must not starve the others
                logger.error("connectivity_listener_failed", error=str(e), exc_info=True)


class HealthCheckPoller:
    """
    Turns periodic health probes into connectivity signals.

    notify_restored fires on every offline -> online transition and on the
    first successful probe, which drains anything left from a previous run.
    """

    def __init__(self, client: httpx.AsyncClient, signal: ConnectivitySignal, path: Optional[str] = None):
        self.client = client
        self.signal = signal
        self.path = path

    async def poll(self) -> ConnectionStatus:
        status = await check_connection(self.client, path=self.path)

        if status.connected:
            if self.signal.online is not True:
                self.signal.notify_restored()
        else:
            self.signal.notify_lost()

        return status
