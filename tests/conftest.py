"""Shared fixtures: fake clock and components wired to an in-memory store."""

from datetime import datetime, timedelta, timezone

import pytest

from offline_queue.models.queued_operation import RequestDescriptor
from offline_queue.services.dead_letter_queue import DeadLetterQueue
from offline_queue.services.errors import TransportError
from offline_queue.services.request_queue import RequestQueue
from offline_queue.services.session_checkpoint import SessionCheckpointManager
from offline_queue.services.storage import MemoryCheckpointStore


class FakeClock:
    """Callable clock whose sleep advances time instead of waiting."""

    def __init__(self, start: datetime):
        self.now = start
        self.sleeps = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


def network_error() -> TransportError:
    return TransportError("Network Error", code="network")


def server_error(status: int = 503) -> TransportError:
    return TransportError(f"Request failed with status code {status}", response_received=True,
                          status=status, code="server_error")


def client_error(status: int = 422) -> TransportError:
    return TransportError(f"Request failed with status code {status}", response_received=True,
                          status=status, code="client_error")


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryCheckpointStore()


@pytest.fixture
def dead_letters(store, clock):
    return DeadLetterQueue(store, clock=clock)


@pytest.fixture
def queue(store, dead_letters, clock):
    """Request queue with zero jitter, so backoff is exactly 1s, 2s, 4s, ..."""
    return RequestQueue(store, dead_letters=dead_letters, clock=clock, sleep=clock.sleep, rng=lambda: 0.0)


@pytest.fixture
def sessions(store, clock):
    return SessionCheckpointManager(store, clock=clock)


@pytest.fixture
def post_request():
    return RequestDescriptor(
        method="POST",
        url="/interviews/abc/answers",
        body={"questionId": "q1", "answer": "hello"},
    )
