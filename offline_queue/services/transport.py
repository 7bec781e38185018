"""
HTTP Transport
httpx-based transport collaborator raising normalized TransportError
"""

from typing import Optional, Dict

import httpx
import structlog

from offline_queue.config import settings
from offline_queue.models.queued_operation import RequestDescriptor
from offline_queue.services.errors import TransportError

logger = structlog.get_logger(__name__)


def _response_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpTransport:
    """
    Send RequestDescriptors to the remote API.

    Any failure leaves as TransportError with response_received, status and
    a stable code, which is all the queue inspects:
    - timeout            -> code "timeout", no response
    - connection refused -> code "connection_refused", no response
    - other I/O failure  -> code "network", no response
    - HTTP >= 500        -> code "server_error", response received
    - HTTP 4xx           -> code "client_error", response received
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            base_url: API root. Defaults to settings.api_base_url
            timeout: Seconds per request. Defaults to settings.transport_timeout_seconds
            headers: Default headers, merged under each request's own
            client: Pre-built client (tests use httpx.MockTransport)
        """
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.transport_timeout_seconds,
            headers={"Content-Type": "application/json", **(headers or {})},
        )

    async def __call__(self, request: RequestDescriptor) -> httpx.Response:
        try:
            response = await self.client.request(
                request.method.upper(),
                request.url,
                headers=request.headers,
                params=request.params or None,
                json=request.body,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", code="timeout") from e
        except httpx.ConnectError as e:
            raise TransportError(f"Unable to connect to server: {e}", code="connection_refused") from e
        except httpx.TransportError as e:
            raise TransportError(f"Network error: {e}", code="network") from e

        if response.status_code >= 400:
            code = "server_error" if response.status_code >= 500 else "client_error"
            logger.debug("transport_error_response", method=request.method, url=request.url,
                         status=response.status_code)
            raise TransportError(
                f"Request failed with status code {response.status_code}",
                response_received=True,
                status=response.status_code,
                code=code,
                body=_response_body(response),
            )

        return response

    async def aclose(self) -> None:
        await self.client.aclose()
