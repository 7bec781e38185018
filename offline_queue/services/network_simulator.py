"""
Network Simulator
Dev-mode transport wrapper injecting delays and failures to exercise retry logic

Usage:
    simulator = NetworkSimulator(HttpTransport())
    simulator.enable()
    simulator.set_failure_rate(0.5)
    simulator.set_delay(2000)
    simulator.set_failure_type("timeout")
    client = ResilientApiClient(simulator, queue)
"""

import asyncio
import random
import re
from typing import Any, Callable, List, Optional, Pattern, Union

import structlog

from offline_queue.models.queued_operation import RequestDescriptor
from offline_queue.services.errors import TransportError

logger = structlog.get_logger(__name__)

FAILURE_TYPES = ("network", "timeout", "server")

EndpointPattern = Union[str, Pattern]


class NetworkSimulator:
    """Transport wrapper; passes requests through untouched while disabled."""

    def __init__(self, transport: Callable, rng: Optional[Callable[[], float]] = None, sleep=None):
        self.transport = transport
        self.rng = rng or random.random
        self.sleep = sleep or asyncio.sleep
        self.enabled = False
        self.failure_rate = 0.0
        self.delay_ms = 0
        self.failure_type = "network"
        self.allowed_endpoints: Optional[List[EndpointPattern]] = None

    def enable(self) -> None:
        self.enabled = True
        logger.info("network_simulator_enabled", failure_rate=self.failure_rate,
                    delay_ms=self.delay_ms, failure_type=self.failure_type)

    def disable(self) -> None:
        self.enabled = False
        logger.info("network_simulator_disabled")

    def set_failure_rate(self, rate: float) -> None:
        """Probability of failure, clamped to [0, 1]."""
        self.failure_rate = max(0.0, min(1.0, rate))

    def set_delay(self, delay_ms: int) -> None:
        self.delay_ms = max(0, delay_ms)

    def set_failure_type(self, failure_type: str) -> None:
        if failure_type not in FAILURE_TYPES:
            raise ValueError(f"Unknown failure type: {failure_type}. Must be one of {FAILURE_TYPES}")
        self.failure_type = failure_type

    def set_allowed_endpoints(self, endpoints: Optional[List[EndpointPattern]]) -> None:
        """Restrict simulation to URLs containing a substring or matching a regex. None = all."""
        self.allowed_endpoints = endpoints

    def should_simulate(self, url: str) -> bool:
        if not self.enabled:
            return False
        if self.allowed_endpoints is None:
            return True
        for pattern in self.allowed_endpoints:
            if isinstance(pattern, str) and pattern in url:
                return True
            if isinstance(pattern, re.Pattern) and pattern.search(url):
                return True
        return False

    def create_error(self) -> TransportError:
        if self.failure_type == "timeout":
            return TransportError("timeout of 10000ms exceeded (simulated)", code="timeout")
        if self.failure_type == "server":
            return TransportError(
                "Request failed with status code 500 (simulated)",
                response_received=True,
                status=500,
                code="server_error",
                body={"message": "Internal Server Error (Simulated)"},
            )
        return TransportError("Network Error (simulated)", code="network")

    async def __call__(self, request: RequestDescriptor) -> Any:
        if self.should_simulate(request.url):
            if self.delay_ms > 0:
                await self.sleep(self.delay_ms / 1000)
            if self.rng() < self.failure_rate:
                logger.debug("network_failure_simulated", url=request.url, failure_type=self.failure_type)
                raise self.create_error()

        return await self.transport(request)
