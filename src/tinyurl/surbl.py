"""
SURBL spam domain check.

A host is rolled up to the domain a registrant controls (taking multi-level
TLDs such as co.uk into account) and looked up as <domain>.<zone> in DNS.
Any answer in 127.0.0.0/8 means the domain is listed.

The multi-level TLD tables are downloaded from the SURBL site, cached on disk
in the storage directory and refreshed at most once per day with a
conditional GET.
"""

import asyncio
import os
import socket
import time
from email.utils import formatdate
from pathlib import Path
from typing import Callable, Optional

import httpx

from .audit_logger import AuditLogger, LoggingMixin
from .config import SurblConfig, TimeoutConfig
from .enums import SurblStatus
from .exceptions import InvalidInputError, SourceUnavailableError, UnreachableError
from .hosts import ip_literal


SIMULATED_LISTED_PREFIX = "listed-"

# Resolver errors that mean the name does not exist
_NOT_FOUND_ERRNOS = frozenset(
    code for code in (
        getattr(socket, "EAI_NONAME", None),
        getattr(socket, "EAI_NODATA", None),
    ) if code is not None
)


def parse_tld_list(text: str) -> frozenset[str]:
    """Parse a TLD table (one suffix per line, '#' comments)."""
    entries = set()
    for line in text.splitlines():
        line = line.strip().lower()
        if line and not line.startswith("#"):
            entries.add(line.strip("."))
    return frozenset(entries)


class TldTable(LoggingMixin):
    """
    One multi-level TLD table with an on-disk cache.

    The entries are a frozenset replaced in a single assignment; readers
    never see a partially loaded table.
    """

    _component = "TldTable"

    def __init__(
        self,
        name: str,
        url: str,
        cache_dir: Path,
        timeouts: Optional[TimeoutConfig] = None,
        refresh_interval: float = 24 * 60 * 60,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        simulation_mode: bool = False,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self.name = name
        self.url = url
        self._path = Path(cache_dir) / name
        self._timeouts = timeouts or TimeoutConfig()
        self._refresh_interval = refresh_interval
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._simulation_mode = simulation_mode
        self._logger = logger
        self._entries: frozenset[str] = frozenset()
        self._loaded_mtime: Optional[float] = None
        self._checked_at: Optional[float] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def entries(self) -> frozenset[str]:
        return self._entries

    def __contains__(self, suffix: str) -> bool:
        return suffix in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def refresh_if_due(self) -> None:
        """Refresh when the interval elapsed; concurrent callers do not wait."""
        now = self._clock()
        if self._checked_at is not None and self._checked_at + self._refresh_interval > now:
            return
        if self._refresh_lock.locked():
            return
        async with self._refresh_lock:
            await self.refresh()

    async def refresh(self) -> None:
        """
        Bring the table up to date.

        A disk copy younger than the refresh interval is used as is. Otherwise
        the remote table is fetched with If-Modified-Since; failures are
        logged and the previous entries stay in force.
        """
        self._checked_at = self._clock()
        mtime = self._disk_mtime()

        if self._simulation_mode:
            if mtime is not None:
                self._load_from_disk(mtime)
            return

        if mtime is not None and self._clock() - mtime < self._refresh_interval:
            self._load_from_disk(mtime)
            return

        try:
            await self._download(mtime)
        except SourceUnavailableError as e:
            self._log_warn(
                "Failed to refresh TLD table, keeping previous copy",
                {"table": self.name, "url": self.url, "error": e.message},
            )
            if mtime is not None:
                self._load_from_disk(mtime)

    def _disk_mtime(self) -> Optional[float]:
        try:
            return os.stat(self._path).st_mtime
        except OSError:
            return None

    def _load_from_disk(self, mtime: float) -> None:
        if self._loaded_mtime == mtime:
            return
        try:
            text = self._path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            self._log_warn("Cannot read cached TLD table", {"path": str(self._path), "error": str(e)})
            return
        self._entries = parse_tld_list(text)
        self._loaded_mtime = mtime
        self._log_info(
            f"Loaded {len(self._entries)} TLDs",
            {"table": self.name, "path": str(self._path)},
        )

    async def _download(self, mtime: Optional[float]) -> None:
        headers = {}
        if mtime is not None:
            headers["If-Modified-Since"] = formatdate(mtime, usegmt=True)

        try:
            response = await self._get_client().get(self.url, headers=headers)
        except httpx.HTTPError as e:
            raise SourceUnavailableError(
                code="tld_unavailable",
                message=f"Cannot fetch TLD table: {e}",
                details={"url": self.url},
            )

        if response.status_code == 304 and mtime is not None:
            # Still current: extend the freshness window of the disk copy
            try:
                os.utime(self._path, None)
            except OSError as e:
                self._log_warn("Cannot touch cached TLD table", {"path": str(self._path), "error": str(e)})
            self._load_from_disk(mtime)
            self._log_debug("TLD table not modified", {"table": self.name})
            return

        if response.status_code != 200:
            raise SourceUnavailableError(
                code="tld_unavailable",
                message=f"Unexpected HTTP status: {response.status_code}",
                details={"url": self.url, "status": response.status_code},
            )

        text = response.text
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(self._path.name + ".tmp")
            tmp_path.write_text(text, encoding="utf-8")
            os.replace(tmp_path, self._path)
            self._loaded_mtime = self._disk_mtime()
        except OSError as e:
            self._log_warn("Cannot cache TLD table", {"path": str(self._path), "error": str(e)})
            self._loaded_mtime = None

        self._entries = parse_tld_list(text)
        self._log_info(
            f"Downloaded {len(self._entries)} TLDs",
            {"table": self.name, "url": self.url},
        )

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
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def query_domain(
    host: str,
    two_level: frozenset[str] = frozenset(),
    three_level: frozenset[str] = frozenset(),
) -> str:
    """
    Roll a host up to the domain that is looked up in the SURBL zone.

    IPv4 literals become their four octets reversed. Otherwise the last two
    labels are used, extended to three when they form a known 2-level TLD and
    to four when those three form a known 3-level TLD.

    Raises:
        InvalidInputError: For IPv6 literals or hosts without labels
    """
    address = ip_literal(host)
    if address is not None:
        if address.version != 4:
            raise InvalidInputError(
                code="unsupported_address",
                message="IPv6 addresses are not supported",
                details={"host": host},
            )
        return ".".join(reversed(str(address).split(".")))

    labels = [label for label in host.lower().strip(".").split(".") if label]
    if not labels:
        raise InvalidInputError(
            code="empty_host",
            message="Host has no labels",
            details={"host": host},
        )

    level = 2
    candidate = ".".join(labels[-level:])
    while True:
        if level == 2 and candidate in two_level:
            level = 3
        elif level == 3 and candidate in three_level:
            level = 4
        else:
            break
        if level > len(labels):
            break
        candidate = ".".join(labels[-level:])
    return candidate


class SurblChecker(LoggingMixin):
    """DNS blocklist check against a SURBL zone."""

    _component = "SurblChecker"

    def __init__(
        self,
        config: Optional[SurblConfig] = None,
        two_level: Optional[TldTable] = None,
        three_level: Optional[TldTable] = None,
        cache_dir: Optional[Path] = None,
        timeouts: Optional[TimeoutConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        simulation_mode: bool = False,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            config: Zone and TLD table sources
            two_level: 2-level TLD table (built from config when omitted)
            three_level: 3-level TLD table (built from config when omitted)
            cache_dir: Directory holding the cached TLD tables
            timeouts: Timeouts for DNS lookups and table downloads
            client: Optional shared HTTP client for table downloads
            simulation_mode: Answer from the host name instead of DNS
            logger: Optional audit logger
        """
        self._config = config or SurblConfig()
        self._timeouts = timeouts or TimeoutConfig()
        self._simulation_mode = simulation_mode
        self._logger = logger
        cache_dir = Path(cache_dir) if cache_dir else Path.cwd()

        self._two_level = two_level or TldTable(
            "two-level-tlds",
            self._config.two_level_tlds_url,
            cache_dir,
            timeouts=self._timeouts,
            refresh_interval=self._config.refresh_interval_seconds,
            client=client,
            simulation_mode=simulation_mode,
            logger=logger,
        )
        self._three_level = three_level or TldTable(
            "three-level-tlds",
            self._config.three_level_tlds_url,
            cache_dir,
            timeouts=self._timeouts,
            refresh_interval=self._config.refresh_interval_seconds,
            client=client,
            simulation_mode=simulation_mode,
            logger=logger,
        )

    @property
    def zone(self) -> str:
        return self._config.zone

    @property
    def two_level(self) -> TldTable:
        return self._two_level

    @property
    def three_level(self) -> TldTable:
        return self._three_level

    def query_domain(self, host: str) -> str:
        return query_domain(host, self._two_level.entries, self._three_level.entries)

    async def check(self, host: str) -> SurblStatus:
        """
        Look up host in the SURBL zone.

        Returns:
            CLEAN, LISTED, or INVALID_INPUT for unsupported hosts

        Raises:
            UnreachableError: If the DNS lookup times out or fails
        """
        await self._two_level.refresh_if_due()
        await self._three_level.refresh_if_due()

        try:
            domain = self.query_domain(host)
        except InvalidInputError as e:
            self._log_info("Unsupported host for SURBL lookup", {"host": host, "reason": e.message})
            return SurblStatus.INVALID_INPUT

        if self._simulation_mode:
            status = self._simulate(domain)
            self._log_debug("Simulated SURBL lookup", {"domain": domain, "status": status.value})
            return status

        name = f"{domain}.{self._config.zone}"
        try:
            addresses = await self._resolve(name)
        except socket.gaierror as e:
            if e.errno in _NOT_FOUND_ERRNOS:
                return SurblStatus.CLEAN
            raise UnreachableError(
                code="surbl_lookup_failed",
                message=f"SURBL lookup failed: {e}",
                details={"host": host, "query": name},
            )
        except asyncio.TimeoutError:
            raise UnreachableError(
                code="surbl_timeout",
                message="SURBL lookup timed out",
                details={"host": host, "query": name},
            )
        except OSError as e:
            raise UnreachableError(
                code="surbl_lookup_failed",
                message=f"SURBL lookup failed: {e}",
                details={"host": host, "query": name},
            )

        if any(address.startswith("127.") for address in addresses):
            self._log_info("Domain listed by SURBL", {"host": host, "domain": domain})
            return SurblStatus.LISTED
        return SurblStatus.CLEAN

    async def _resolve(self, name: str) -> list[str]:
        """Resolve name to IPv4 addresses with the read timeout."""
        loop = asyncio.get_running_loop()
        infos = await asyncio.wait_for(
            loop.getaddrinfo(name, None, family=socket.AF_INET, type=socket.SOCK_STREAM),
            timeout=self._timeouts.read_seconds,
        )
        return [info[4][0] for info in infos]

    def _simulate(self, domain: str) -> SurblStatus:
        if domain.split(".")[0].startswith(SIMULATED_LISTED_PREFIX):
            return SurblStatus.LISTED
        return SurblStatus.CLEAN

    async def close(self) -> None:
        await self._two_level.close()
        await self._three_level.close()
