"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Environment
    environment: str = "development"

    # Durable checkpoint store
    storage_backend: str = "memory"  # memory | file | sqlite
    storage_path: str = ".offline_queue/checkpoints.json"
    database_url: Optional[str] = None  # used by the sqlite backend

    # Key namespaces (<namespace>.<actor_id>.<id>)
    queue_namespace: str = "offline_queue.requests"
    session_namespace: str = "offline_queue.sessions"
    dead_letter_namespace: str = "offline_queue.dead_letters"

    # Retry policy
    max_retries: int = 5  # ceiling, operation is dead-lettered on the 5th failed replay
    initial_backoff_ms: int = 1000
    max_backoff_ms: int = 30000
    backoff_jitter_ms: int = 1000

    # Reconnect drain
    drain_max_items: int = 50  # per pass, per actor
    drain_interval_ms: int = 250  # pause between replays within a pass
    drain_max_consecutive_failures: int = 3  # connection evidently lost again

    # Remote API
    api_base_url: str = "http://localhost:5000/api"
    transport_timeout_seconds: float = 10.0

    # Health check
    health_check_path: str = "/health"
    health_check_timeout_seconds: float = 3.0
    health_check_interval_seconds: int = 15

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
