"""
SQL Checkpoint Store
SQLAlchemy-backed implementation of the checkpoint store contract
"""

from typing import Any, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from offline_queue.models.checkpoint_entry import CheckpointEntry
from offline_queue.services.errors import StorageFailure

logger = structlog.get_logger(__name__)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlCheckpointStore:
    """
    Checkpoint store on a relational table (checkpoint_entries).

    Each call runs in its own short transaction. Database errors are
    rolled back and re-raised as StorageFailure, never swallowed.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker (not session - creates independent transactions)
        """
        self.session_factory = session_factory
        self.logger = logger.bind(service="sql_checkpoint_store")

    def get(self, key: str) -> Optional[Any]:
        session: Session = self.session_factory()
        try:
            entry = session.get(CheckpointEntry, key)
            return entry.value if entry else None
        except SQLAlchemyError as e:
            self.logger.error("checkpoint_get_failed", key=key, error=str(e))
            raise StorageFailure(f"Cannot read {key}: {e}") from e
        finally:
            session.close()

    def set(self, key: str, value: Any) -> None:
        session: Session = self.session_factory()
        try:
            entry = session.get(CheckpointEntry, key)
            if entry is None:
                session.add(CheckpointEntry(key=key, value=value))
            else:
                entry.value = value
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error("checkpoint_set_failed", key=key, error=str(e))
            raise StorageFailure(f"Cannot write {key}: {e}") from e
        finally:
            session.close()

    def delete(self, key: str) -> None:
        session: Session = self.session_factory()
        try:
            session.query(CheckpointEntry).filter(CheckpointEntry.key == key).delete(
                synchronize_session=False
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error("checkpoint_delete_failed", key=key, error=str(e))
            raise StorageFailure(f"Cannot delete {key}: {e}") from e
        finally:
            session.close()

    def list_keys_with_prefix(self, prefix: str) -> List[str]:
        session: Session = self.session_factory()
        try:
            rows = session.query(CheckpointEntry.key).filter(
                CheckpointEntry.key.like(f"{_escape_like(prefix)}%", escape="\\")
            ).all()
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error("checkpoint_list_failed", prefix=prefix, error=str(e))
            raise StorageFailure(f"Cannot list keys under {prefix}: {e}") from e
        finally:
            session.close()
