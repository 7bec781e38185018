"""
Database Configuration and Session Management
Backs the SQL checkpoint store
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from offline_queue.config import settings
import logging

logger = logging.getLogger(__name__)

engine = None
SessionLocal = None


def init_db(database_url: Optional[str] = None) -> Optional[sessionmaker]:
    """
    Initialize database connection and create the checkpoint table.

    Args:
        database_url: SQLAlchemy URL. Defaults to settings.database_url.

    Returns:
        Configured sessionmaker, or None if no database is configured
    """
    global engine, SessionLocal

    url = database_url or settings.database_url
    if not url:
        logger.warning("DATABASE_URL not configured - sql checkpoint store disabled")
        return None

    logger.info("Connecting to checkpoint database...")
    engine = create_engine(url, pool_pre_ping=True)

    # Import models so their tables are registered on Base.metadata
    from offline_queue.models import checkpoint_entry  # noqa: F401

    Base.metadata.create_all(bind=engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Checkpoint database ready")
    return SessionLocal


# Base class for all models
Base = declarative_base()
