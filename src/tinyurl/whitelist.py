"""
Domain whitelist with wildcard suffix patterns and conditional reload.

The whitelist is a newline separated list of domain patterns read from a
local file, a file: URL or an http(s): URL. A pattern starting with '.'
matches the domain itself and every subdomain; any other pattern must match
exactly. Blank lines and lines starting with '#' are ignored.

The current patterns are held in an immutable snapshot that is replaced in
one assignment, so readers see either the old or the new list.
"""

import asyncio
import os
import time
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx

from .audit_logger import AuditLogger, LoggingMixin
from .config import TimeoutConfig
from .exceptions import SourceUnavailableError


DEFAULT_RELOAD_INTERVAL = 10.0


@dataclass(frozen=True)
class WhitelistSnapshot:
    """Patterns from one successful load."""

    patterns: tuple[str, ...]
    source_mtime: float  # Modification time of the source when loaded (0 if unknown)
    loaded_at: float


def parse_patterns(text: str) -> tuple[str, ...]:
    """Parse whitelist text into lower-cased patterns."""
    patterns = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line.lower())
    return tuple(patterns)


def matches(patterns: tuple[str, ...], host: str) -> bool:
    """
    Check a host against whitelist patterns.

    '.example.com' matches 'example.com' and 'a.example.com' but not
    'notexample.com'; 'example.org' matches only 'example.org'.
    """
    candidate = host.strip().lower()
    for pattern in patterns:
        if pattern.startswith("."):
            if candidate.endswith(pattern) or candidate == pattern[1:]:
                return True
        elif candidate == pattern:
            return True
    return False


def _local_path(source: str) -> Optional[Path]:
    """Filesystem path for a plain path or file: URL, None for remote sources."""
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    if parsed.scheme in ("http", "https"):
        return None
    return Path(source)


class WhitelistMatcher(LoggingMixin):
    """
    Whitelist check with periodic conditional reload.

    Policy:
    - no load has ever succeeded: every host is accepted
    - the last successful load produced an empty list: every host is rejected
    - otherwise the host must match a pattern
    """

    _component = "WhitelistMatcher"

    def __init__(
        self,
        source: str,
        timeouts: Optional[TimeoutConfig] = None,
        reload_interval: float = DEFAULT_RELOAD_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            source: Path, file: URL or http(s): URL of the whitelist
            timeouts: Connect/read timeouts for remote sources
            reload_interval: Minimum seconds between reload attempts
            client: Optional shared HTTP client
            clock: Monotonic time source for the reload interval
            logger: Optional audit logger
        """
        self._source = source
        self._timeouts = timeouts or TimeoutConfig()
        self._reload_interval = reload_interval
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._logger = logger
        self._snapshot: Optional[WhitelistSnapshot] = None
        self._last_attempt: Optional[float] = None
        self._reload_lock = asyncio.Lock()

    @property
    def source(self) -> str:
        return self._source

    @property
    def snapshot(self) -> Optional[WhitelistSnapshot]:
        return self._snapshot

    @property
    def patterns(self) -> tuple[str, ...]:
        snapshot = self._snapshot
        return snapshot.patterns if snapshot else ()

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    async def load(self) -> bool:
        """
        Load the source if it changed since the last successful load.

        Returns:
            True if a new snapshot was published, False if unchanged

        Raises:
            SourceUnavailableError: If the source cannot be read
        """
        self._last_attempt = self._clock()
        current = self._snapshot
        known_mtime = current.source_mtime if current else None

        path = _local_path(self._source)
        if path is not None:
            fetched = await asyncio.to_thread(self._read_file, path, known_mtime)
        else:
            fetched = await self._fetch_remote(known_mtime)

        if fetched is None:
            self._log_debug("Whitelist not modified", {"source": self._source})
            return False

        text, mtime = fetched
        patterns = parse_patterns(text)
        self._snapshot = WhitelistSnapshot(
            patterns=patterns,
            source_mtime=mtime,
            loaded_at=time.time(),
        )
        self._log_info(
            f"Loaded {len(patterns)} domains",
            {"source": self._source, "count": len(patterns)},
        )
        return True

    async def reload_if_due(self) -> None:
        """
        Attempt a reload when the interval elapsed. Failures keep the
        current snapshot and are only logged. Callers arriving while a reload
        is running do not wait for it.
        """
        if self._last_attempt is not None and (
            self._last_attempt + self._reload_interval > self._clock()
        ):
            return
        if self._reload_lock.locked():
            return
        async with self._reload_lock:
            try:
                await self.load()
            except SourceUnavailableError as e:
                self._log_warn(
                    "Failed to reload whitelist, keeping previous list",
                    {"source": self._source, "error": e.message},
                )

    def is_allowed(self, host: str) -> bool:
        """Evaluate host against the current snapshot without reloading."""
        snapshot = self._snapshot
        if snapshot is None:
            return True
        if not snapshot.patterns:
            return False
        return matches(snapshot.patterns, host)

    async def check(self, host: str) -> bool:
        """Reload if due, then evaluate host."""
        await self.reload_if_due()
        return self.is_allowed(host)

    def _read_file(self, path: Path, known_mtime: Optional[float]) -> Optional[tuple[str, float]]:
        try:
            mtime = os.stat(path).st_mtime
            if known_mtime is not None and mtime <= known_mtime:
                return None
            return path.read_text(encoding="utf-8", errors="replace"), mtime
        except OSError as e:
            raise SourceUnavailableError(
                code="whitelist_unavailable",
                message=f"Cannot read whitelist: {e}",
                details={"source": self._source},
            )

    async def _fetch_remote(self, known_mtime: Optional[float]) -> Optional[tuple[str, float]]:
        headers = {}
        if known_mtime:
            headers["If-Modified-Since"] = formatdate(known_mtime, usegmt=True)
        client = self._get_client()
        try:
            response = await client.get(self._source, headers=headers)
        except httpx.HTTPError as e:
            raise SourceUnavailableError(
                code="whitelist_unavailable",
                message=f"Cannot fetch whitelist: {e}",
                details={"source": self._source},
            )

        if response.status_code == 304:
            return None
        if response.status_code != 200:
            raise SourceUnavailableError(
                code="whitelist_unavailable",
                message=f"Unexpected HTTP status: {response.status_code}",
                details={"source": self._source, "status": response.status_code},
            )

        mtime = _last_modified(response)
        # Without Last-Modified a remote list is only loaded once
        if known_mtime is not None and mtime <= known_mtime:
            return None
        return response.text, mtime

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

    async def close(self) -> None:
        """Close the HTTP client if this matcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _last_modified(response: httpx.Response) -> float:
    value = response.headers.get("Last-Modified")
    if not value:
        return 0.0
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return 0.0
