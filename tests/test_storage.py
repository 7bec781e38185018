"""Tests for the durable checkpoint stores."""

import json
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from offline_queue.database import init_db
from offline_queue.services.errors import StorageFailure, StorageQuotaExceeded
from offline_queue.services.storage import (
    FileCheckpointStore,
    MemoryCheckpointStore,
    SqlCheckpointStore,
    actor_prefix,
    build_key,
)


@pytest.fixture(params=["memory", "file", "sql"])
def any_store(request, tmp_path):
    """Every backend must honour the same contract."""
    if request.param == "memory":
        return MemoryCheckpointStore()
    if request.param == "file":
        return FileCheckpointStore(str(tmp_path / "checkpoints.json"))
    session_factory = init_db(f"sqlite:///{tmp_path / 'checkpoints.db'}")
    return SqlCheckpointStore(session_factory)


class TestStoreContract:
    """get/set/delete/list_keys_with_prefix across backends."""

    def test_get_missing_returns_none(self, any_store):
        assert any_store.get("ns.user.missing") is None

    def test_set_then_get(self, any_store):
        any_store.set("ns.user.op1", {"retry_count": 0, "tags": ["a"]})
        assert any_store.get("ns.user.op1") == {"retry_count": 0, "tags": ["a"]}

    def test_set_fully_overwrites(self, any_store):
        any_store.set("ns.user.op1", {"a": 1, "b": 2})
        any_store.set("ns.user.op1", {"a": 3})
        assert any_store.get("ns.user.op1") == {"a": 3}

    def test_delete(self, any_store):
        any_store.set("ns.user.op1", {"a": 1})
        any_store.delete("ns.user.op1")
        assert any_store.get("ns.user.op1") is None

    def test_delete_missing_is_noop(self, any_store):
        any_store.delete("ns.user.never-written")

    def test_list_keys_with_prefix(self, any_store):
        any_store.set("ns.alice.op1", 1)
        any_store.set("ns.alice.op2", 2)
        any_store.set("ns.bob.op1", 3)
        any_store.set("other.alice.op1", 4)

        assert sorted(any_store.list_keys_with_prefix("ns.alice.")) == ["ns.alice.op1", "ns.alice.op2"]

    def test_prefix_wildcards_are_literal(self, any_store):
        """SQL LIKE wildcards in a prefix must not widen the match."""
        any_store.set("ns.a_b.op1", 1)
        any_store.set("ns.axb.op1", 2)
        any_store.set("ns.a%b.op1", 3)

        assert any_store.list_keys_with_prefix("ns.a_b.") == ["ns.a_b.op1"]
        assert any_store.list_keys_with_prefix("ns.a%b.") == ["ns.a%b.op1"]


class TestMemoryStore:

    def test_returns_copies(self):
        store = MemoryCheckpointStore()
        value = {"items": [1]}
        store.set("k", value)
        value["items"].append(2)

        loaded = store.get("k")
        loaded["items"].append(3)
        assert store.get("k") == {"items": [1]}

    def test_quota_exceeded_raises(self):
        store = MemoryCheckpointStore(quota_bytes=40)
        store.set("k1", "x" * 10)

        with pytest.raises(StorageQuotaExceeded):
            store.set("k2", "y" * 50)
        assert store.get("k2") is None

    def test_quota_counts_overwrite_once(self):
        """Overwriting a key replaces its bytes instead of adding to them."""
        store = MemoryCheckpointStore(quota_bytes=30)
        store.set("k", "x" * 20)
        store.set("k", "y" * 20)
        assert store.get("k") == "y" * 20

    def test_unserializable_value_is_storage_failure(self):
        store = MemoryCheckpointStore()
        with pytest.raises(StorageFailure):
            store.set("k", {"bad": object()})


class TestFileStore:

    def test_survives_new_instance(self, tmp_path):
        path = str(tmp_path / "checkpoints.json")
        FileCheckpointStore(path).set("ns.user.op1", {"a": 1})

        assert FileCheckpointStore(path).get("ns.user.op1") == {"a": 1}

    def test_no_temp_file_left_behind(self, tmp_path):
        store = FileCheckpointStore(str(tmp_path / "checkpoints.json"))
        store.set("k", 1)
        assert [p.name for p in tmp_path.iterdir()] == ["checkpoints.json"]

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "checkpoints.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageFailure):
            FileCheckpointStore(str(path)).get("k")

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "checkpoints.json"
        FileCheckpointStore(str(path)).set("k", 1)
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": 1}


class TestSqlStore:

    def test_database_error_is_storage_failure(self):
        session = MagicMock()
        session.get.return_value = None
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
        store = SqlCheckpointStore(MagicMock(return_value=session))

        with pytest.raises(StorageFailure):
            store.set("k", {"a": 1})

        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestKeyLayout:

    def test_build_key(self):
        assert build_key("offline_queue.requests", "user-1", "op-9") == "offline_queue.requests.user-1.op-9"

    def test_empty_actor_is_anonymous(self):
        assert build_key("ns", None, "op") == "ns.anonymous.op"
        assert build_key("ns", "", "op") == "ns.anonymous.op"

    def test_dotted_actor_does_not_leak_into_other_prefix(self):
        """Actor 'a' must not see keys of actor 'a.b'."""
        key = build_key("ns", "a.b", "op")
        assert not key.startswith(actor_prefix("ns", "a"))
        assert key.startswith(actor_prefix("ns", "a.b"))

    def test_empty_item_id_rejected(self):
        with pytest.raises(ValueError):
            build_key("ns", "user", "")
