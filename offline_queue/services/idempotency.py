"""
Idempotency Keys
Opaque tokens tagging one logical mutating submission across all its retries
"""

import secrets
import string
import time
from typing import Optional

import structlog

from offline_queue.models.queued_operation import IDEMPOTENCY_HEADER, RequestDescriptor

logger = structlog.get_logger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits


def generate_idempotency_key(now_ms: Optional[int] = None) -> str:
    """
    Generate an idempotency key.

    Format: {epoch_millis}-{13 random base36 chars}

    The time component plus random suffix gives negligible collision odds
    within one client's lifetime. The key exists for server-side
    deduplication, not security.

    Args:
        now_ms: Override for the time component (tests)

    Returns:
        Idempotency key string
    """
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(13))
    return f"{millis}-{suffix}"


def ensure_idempotency_key(request: RequestDescriptor, key: Optional[str] = None) -> RequestDescriptor:
    """
    Return the request with an Idempotency-Key header.

    An existing key (any header casing) is kept untouched, so retries of
    one submission always carry the key generated for its first attempt.

    Args:
        request: Request descriptor
        key: Key to attach when the request has none (a previously issued one).
             A fresh key is generated when omitted

    Returns:
        The same request if it already has a key, otherwise a copy with one added
    """
    if request.idempotency_key:
        return request

    if key is None:
        key = generate_idempotency_key()
        logger.debug("idempotency_key_generated", key=key, method=request.method, url=request.url)
    headers = dict(request.headers)
    headers[IDEMPOTENCY_HEADER] = key
    return request.model_copy(update={"headers": headers})
