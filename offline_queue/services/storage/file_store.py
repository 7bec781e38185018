"""
File-Backed Checkpoint Store
All checkpoints in one JSON document, replaced atomically on every write
"""

import errno
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from offline_queue.services.errors import StorageFailure, StorageQuotaExceeded

logger = structlog.get_logger(__name__)

QUOTA_ERRNOS = {errno.ENOSPC, errno.EDQUOT} if hasattr(errno, "EDQUOT") else {errno.ENOSPC}


class FileCheckpointStore:
    """
    JSON document store that survives process restarts.

    Every operation reads the document from disk; there is no in-memory
    copy competing with the file. Writes go to a temp file first and are
    moved into place with os.replace, so a crash never leaves a
    half-written document.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StorageFailure(f"Checkpoint file {self.path} is corrupt: {e}") from e
        except OSError as e:
            raise StorageFailure(f"Cannot read checkpoint file {self.path}: {e}") from e

    def _write(self, data: Dict[str, Any]) -> None:
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except OSError as e:
            if e.errno in QUOTA_ERRNOS:
                logger.warning("storage_quota_exceeded", path=str(self.path), error=str(e))
                raise StorageQuotaExceeded(f"No space left for {self.path}: {e}") from e
            raise StorageFailure(f"Cannot write checkpoint file {self.path}: {e}") from e

    def get(self, key: str) -> Optional[Any]:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        try:
            self._write(data)
        except TypeError as e:
            raise StorageFailure(f"Value for {key} is not JSON-serializable: {e}") from e

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def list_keys_with_prefix(self, prefix: str) -> List[str]:
        return [key for key in self._read() if key.startswith(prefix)]
