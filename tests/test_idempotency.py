"""Tests for idempotency key generation."""

import re

from offline_queue.models.queued_operation import RequestDescriptor
from offline_queue.services.idempotency import ensure_idempotency_key, generate_idempotency_key


class TestGenerateIdempotencyKey:

    def test_format(self):
        key = generate_idempotency_key(now_ms=1767268800000)
        assert re.fullmatch(r"1767268800000-[a-z0-9]{13}", key)

    def test_unique_within_same_millisecond(self):
        keys = {generate_idempotency_key(now_ms=1) for _ in range(1000)}
        assert len(keys) == 1000


class TestEnsureIdempotencyKey:

    def test_adds_key_when_missing(self):
        request = RequestDescriptor(method="POST", url="/answers")
        keyed = ensure_idempotency_key(request)

        assert keyed.idempotency_key
        assert request.idempotency_key is None

    def test_keeps_existing_key(self):
        request = RequestDescriptor(method="POST", url="/answers", headers={"Idempotency-Key": "abc"})
        assert ensure_idempotency_key(request) is request

    def test_existing_key_any_casing(self):
        request = RequestDescriptor(method="POST", url="/answers", headers={"idempotency-key": "abc"})
        keyed = ensure_idempotency_key(request)

        assert keyed.idempotency_key == "abc"
        assert list(keyed.headers) == ["idempotency-key"]
