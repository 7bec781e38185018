"""
CheckpointEntry Model
Key-value row backing the SQL checkpoint store
"""

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from offline_queue.database import Base


class CheckpointEntry(Base):
    """
    One durable checkpoint value.

    Keys follow <namespace>.<actor_id>.<id>; prefix scans use LIKE on the
    primary key.
    """
    __tablename__ = "checkpoint_entries"

    key = Column(String(512), primary_key=True)
    value = Column(JSON, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<CheckpointEntry(key='{self.key}', updated_at={self.updated_at})>"
