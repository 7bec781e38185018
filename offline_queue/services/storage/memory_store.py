"""
In-Memory Checkpoint Store
Values are held JSON-encoded, so callers only ever receive copies
"""

import json
from typing import Any, Dict, List, Optional

import structlog

from offline_queue.services.errors import StorageFailure, StorageQuotaExceeded

logger = structlog.get_logger(__name__)


class MemoryCheckpointStore:
    """
    Process-local store with optional byte quota.

    Behaves like browser local storage: string values, whole-value
    overwrite, and a quota error when the medium is full.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        """
        Args:
            quota_bytes: Total size limit for keys plus encoded values. None = unlimited.
        """
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def _used_bytes(self, exclude_key: Optional[str] = None) -> int:
        return sum(
            len(key.encode()) + len(value.encode())
            for key, value in self._data.items()
            if key != exclude_key
        )

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageFailure(f"Value for {key} is not JSON-serializable: {e}") from e

        if self.quota_bytes is not None:
            needed = self._used_bytes(exclude_key=key) + len(key.encode()) + len(encoded.encode())
            if needed > self.quota_bytes:
                logger.warning("storage_quota_exceeded", key=key, needed=needed, quota=self.quota_bytes)
                raise StorageQuotaExceeded(
                    f"Writing {key} needs {needed} bytes, quota is {self.quota_bytes}"
                )

        self._data[key] = encoded

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list_keys_with_prefix(self, prefix: str) -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)
