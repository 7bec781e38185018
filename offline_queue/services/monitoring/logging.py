"""
Structured JSON Logging with Actor Context
structlog event logging rendered as JSON, plus a JSON formatter for stdlib loggers
"""

import logging
import os
import sys

import structlog
from pythonjsonlogger import jsonlogger


SERVICE_NAME = "offline-queue"


class ActorJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic actor context injection.

    Extends python-json-logger to add the actor_id bound through
    structlog.contextvars (bound by callers around a drain or a session).
    """

    def add_fields(self, log_record, record, message_dict):
        """
        Add custom fields to log record.

        Adds:
        - actor_id: From structlog contextvars or 'none' if not bound
        - service: Library name for multi-service environments
        - environment: Deployment environment (development/production)
        """
        super().add_fields(log_record, record, message_dict)

        context = structlog.contextvars.get_contextvars()
        log_record['actor_id'] = context.get('actor_id') or 'none'
        log_record['service'] = SERVICE_NAME
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def setup_logging(level: int = logging.INFO) -> logging.Handler:
    """
    Configure structured JSON logging to stdout.

    Sets up:
    - structlog with ISO timestamps, log level, contextvars and JSON rendering,
      routed through the stdlib logger so one handler sees everything
    - root logger with ActorJsonFormatter on a stdout StreamHandler

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)

    formatter = ActorJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    return handler
