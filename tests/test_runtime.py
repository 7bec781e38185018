"""
Tests for configuration, logging setup and the wired runtime.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import structlog

from offline_queue.config import Settings
from offline_queue.runtime import create_runtime
from offline_queue.scheduler import run_health_probe
from offline_queue.services.monitoring import ActorJsonFormatter, setup_logging
from offline_queue.services.storage import FileCheckpointStore, MemoryCheckpointStore, create_store


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.max_retries == 5
        assert settings.initial_backoff_ms == 1000
        assert settings.max_backoff_ms == 30000
        assert settings.queue_namespace == "offline_queue.requests"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MAX_RETRIES", "7")
        monkeypatch.setenv("STORAGE_BACKEND", "file")
        settings = Settings()
        assert settings.max_retries == 7
        assert settings.storage_backend == "file"

    def test_create_store_per_backend(self, tmp_path):
        assert isinstance(create_store(Settings(storage_backend="memory")), MemoryCheckpointStore)
        store = create_store(Settings(storage_backend="file", storage_path=str(tmp_path / "c.json")))
        assert isinstance(store, FileCheckpointStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_store(Settings(storage_backend="indexeddb"))

    def test_sqlite_requires_database_url(self):
        with pytest.raises(ValueError):
            create_store(Settings(storage_backend="sqlite", database_url=None))


class TestLogging:

    @pytest.fixture
    def handler(self):
        handler = setup_logging(logging.INFO)
        yield handler
        logging.getLogger().removeHandler(handler)
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()

    def test_handler_uses_actor_formatter(self, handler):
        assert isinstance(handler.formatter, ActorJsonFormatter)

    def test_actor_context_injected(self, handler):
        structlog.contextvars.bind_contextvars(actor_id="user-1")
        record = logging.LogRecord("offline_queue", logging.INFO, __file__, 1, "replay_succeeded", None, None)

        payload = json.loads(handler.format(record))

        assert payload["actor_id"] == "user-1"
        assert payload["service"] == "offline-queue"
        assert payload["message"] == "replay_succeeded"

    def test_missing_actor(self, handler):
        record = logging.LogRecord("offline_queue", logging.INFO, __file__, 1, "idle", None, None)
        assert json.loads(handler.format(record))["actor_id"] == "none"


class TestRuntime:

    def test_failed_submission_drains_on_reconnect(self):
        """End to end: a POST fails offline, connectivity returns, the POST is replayed once."""
        online = {"value": False}
        answers = []

        def handler(request):
            if not online["value"]:
                raise httpx.ConnectError("offline", request=request)
            if request.url.path == "/answers":
                answers.append(request.headers["Idempotency-Key"])
            return httpx.Response(200, json={})

        settings = Settings(environment="testing", drain_interval_ms=0)
        runtime = create_runtime(
            actor_resolver=lambda: "user-1",
            settings=settings,
            store=MemoryCheckpointStore(),
            http_client=httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(handler)),
        )

        async def scenario():
            result = await runtime.client.request("user-1", {"method": "POST", "url": "/answers", "body": {"a": 1}})
            assert result.queued

            # skip the backoff window
            later = datetime.now(timezone.utc) + timedelta(minutes=1)
            runtime.queue.clock = lambda: later

            online["value"] = True
            await run_health_probe(runtime.poller)
            await asyncio.sleep(0)
            reports = await asyncio.gather(*runtime.coordinator._in_flight.values())
            await runtime.stop()
            return result, reports

        result, reports = asyncio.run(scenario())

        assert answers == [result.operation_id]
        assert reports[0].succeeded == 1
        assert runtime.queue.list_all("user-1") == []
        assert runtime.signal.online is True

    def test_scheduler_skipped_in_testing(self):
        runtime = create_runtime(
            actor_resolver=lambda: None,
            settings=Settings(environment="testing"),
            store=MemoryCheckpointStore(),
            http_client=httpx.AsyncClient(base_url="http://api.test",
                                          transport=httpx.MockTransport(lambda r: httpx.Response(200))),
        )

        async def scenario():
            scheduler = runtime.start()
            running = scheduler.running
            await runtime.stop()
            return running

        assert asyncio.run(scenario()) is False
        assert runtime.scheduler is None
