"""
Durable Checkpoint Storage

Memory, JSON-file and SQL implementations of one narrow store contract.
"""

from typing import Optional

from offline_queue.config import Settings, settings as default_settings

from .base import CheckpointStore, build_key, actor_prefix, escape_actor_id, ANONYMOUS_ACTOR
from .memory_store import MemoryCheckpointStore
from .file_store import FileCheckpointStore
from .sql_store import SqlCheckpointStore


def create_store(settings: Optional[Settings] = None) -> CheckpointStore:
    """
    Build the checkpoint store selected by settings.storage_backend.

    Raises:
        ValueError: Unknown backend, or sqlite backend without database_url
    """
    settings = settings or default_settings
    backend = settings.storage_backend

    if backend == "memory":
        return MemoryCheckpointStore()

    if backend == "file":
        return FileCheckpointStore(settings.storage_path)

    if backend == "sqlite":
        from offline_queue.database import init_db

        session_factory = init_db(settings.database_url)
        if session_factory is None:
            raise ValueError("storage_backend 'sqlite' requires DATABASE_URL")
        return SqlCheckpointStore(session_factory)

    raise ValueError(f"Unknown storage backend: {backend}. Must be 'memory', 'file' or 'sqlite'")


__all__ = [
    "CheckpointStore",
    "MemoryCheckpointStore",
    "FileCheckpointStore",
    "SqlCheckpointStore",
    "create_store",
    "build_key",
    "actor_prefix",
    "escape_actor_id",
    "ANONYMOUS_ACTOR",
]
