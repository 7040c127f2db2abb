"""
Live reachability probe for submitted URLs.

The URL is fetched with GET, the body is read and discarded, and the
connection is closed. Any failure is reported as UnreachableError.
"""

from typing import Optional

import httpx

from .audit_logger import AuditLogger, LoggingMixin
from .config import TimeoutConfig
from .exceptions import UnreachableError


CHUNK_SIZE = 64 * 1024


class ReachabilityProbe(LoggingMixin):
    """Checks that a URL answers with a non-error HTTP status."""

    _component = "ReachabilityProbe"

    def __init__(
        self,
        timeouts: Optional[TimeoutConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        simulation_mode: bool = False,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._timeouts = timeouts or TimeoutConfig()
        self._client = client
        self._owns_client = client is None
        self._simulation_mode = simulation_mode
        self._logger = logger

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._timeouts.read_seconds,
                    connect=self._timeouts.connect_seconds,
                ),
                follow_redirects=True,
            )
        return self._client

    async def probe(self, url: str) -> int:
        """
        Fetch url and drain the response body.

        Returns:
            The final HTTP status code

        Raises:
            UnreachableError: On connection errors, timeouts or status >= 400
        """
        if self._simulation_mode:
            self._log_debug("Simulated reachability probe", {"url": url})
            return 200

        try:
            async with self._get_client().stream("GET", url) as response:
                async for _ in response.aiter_bytes(CHUNK_SIZE):
                    pass
                status = response.status_code
        except httpx.TimeoutException as e:
            raise UnreachableError(
                code="timeout",
                message=f"Connection timed out: {e}",
                details={"url": url},
            )
        except Exception as e:
            raise UnreachableError(
                code="connection_failed",
                message=f"Connection failed: {e}",
                details={"url": url, "error_type": type(e).__name__},
            )

        if status >= 400:
            raise UnreachableError(
                code="http_error",
                message=f"URL answered with HTTP {status}",
                details={"url": url, "status": status},
            )
        return status

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
