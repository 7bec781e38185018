"""
Health Check
Probe backend reachability before draining queued requests
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from offline_queue.config import settings

logger = structlog.get_logger(__name__)


@dataclass
class ConnectionStatus:
    """Result of one health probe."""
    connected: bool
    error: Optional[str] = None
    is_network_error: bool = False
    status: Optional[int] = None


async def check_connection(
    client: httpx.AsyncClient,
    path: Optional[str] = None,
    timeout: Optional[float] = None
) -> ConnectionStatus:
    """
    Probe the health endpoint.

    Only a 2xx response counts as connected. A 4xx means the server is
    reachable but the endpoint is wrong (is_network_error False); no
    response or a 5xx is a network-class problem.

    Args:
        client: httpx client with base_url set to the API root
        path: Health endpoint. Defaults to settings.health_check_path
        timeout: Seconds. Defaults to settings.health_check_timeout_seconds

    Returns:
        ConnectionStatus
    """
    path = path or settings.health_check_path
    timeout = timeout or settings.health_check_timeout_seconds

    try:
        response = await client.get(path, timeout=timeout)
    except httpx.HTTPError as e:
        logger.debug("health_check_unreachable", path=path, error=str(e))
        return ConnectionStatus(connected=False, error=str(e) or type(e).__name__, is_network_error=True)

    if 200 <= response.status_code < 300:
        return ConnectionStatus(connected=True, status=response.status_code)

    return ConnectionStatus(
        connected=False,
        error=f"Health check returned status {response.status_code}",
        is_network_error=response.status_code >= 500,
        status=response.status_code,
    )
