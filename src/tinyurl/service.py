"""
URL shortener service.

Owns every shared component (store, key deriver, reputation gate and its
checks) and exposes the operations used by the HTTP layer and the CLI.
One instance is built at startup with build_service().
"""

import hmac
from pathlib import Path
from typing import BinaryIO, Optional
from urllib.parse import urlparse

from .audit_logger import AuditLogger, LoggingMixin
from .config import SystemConfig
from .decision_cache import DecisionCache
from .dump_key import generate_dump_key, write_dump_key
from .enums import CheckType
from .exceptions import AccessDenied, InvalidInputError
from .gate import ReputationGate
from .key_deriver import KeyDeriver
from .models import SubmissionResult, UrlRecord, is_valid_key
from .persistence import Persistence, create_storage
from .reachability import ReachabilityProbe
from .surbl import SurblChecker
from .whitelist import WhitelistMatcher


MIN_URL_LENGTH = 12
ALLOWED_SCHEMES = ("http", "https")


def validate_url(url: Optional[str]) -> str:
    """
    Check that url is long enough and has an http(s) scheme and a host.

    Raises:
        InvalidInputError: If the URL is missing or malformed
    """
    if url is None or len(url) < MIN_URL_LENGTH:
        raise InvalidInputError(
            code="invalid_url",
            message="Invalid URL Parameter",
            details={"url": url},
        )
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        raise InvalidInputError(
            code="invalid_url",
            message=f"Malformed URL: {e}",
            details={"url": url},
        )
    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not hostname:
        raise InvalidInputError(
            code="invalid_url",
            message="URL must use http or https and name a host",
            details={"url": url},
        )
    return url


class ShortenerService(LoggingMixin):
    """Submission, lookup and export of short URLs."""

    _component = "TinyURL"

    def __init__(
        self,
        store: Persistence,
        gate: ReputationGate,
        deriver: Optional[KeyDeriver] = None,
        whitelist: Optional[WhitelistMatcher] = None,
        surbl: Optional[SurblChecker] = None,
        probe: Optional[ReachabilityProbe] = None,
        dump_key: Optional[str] = None,
        storage_dir: Optional[Path] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._gate = gate
        self._deriver = deriver or KeyDeriver(store, logger=logger)
        self._whitelist = whitelist
        self._surbl = surbl
        self._probe = probe
        self._dump_key = dump_key
        self._storage_dir = Path(storage_dir) if storage_dir else None
        self._logger = logger

    @property
    def store(self) -> Persistence:
        return self._store

    @property
    def gate(self) -> ReputationGate:
        return self._gate

    @property
    def dump_key(self) -> Optional[str]:
        return self._dump_key

    async def open(self) -> None:
        """Open the store, prepare the dump key and load the check sources."""
        if self._dump_key is None:
            self._dump_key = generate_dump_key()
            if self._storage_dir is not None:
                path = write_dump_key(self._storage_dir, self._dump_key)
                self._log_info("Generated random dump key", {"dump_key": self._dump_key, "path": str(path)})

        self._store.open()

        if self._whitelist is not None and self._gate.enabled(CheckType.WHITELIST):
            self._log_info("Whitelist source", {"source": self._whitelist.source})
            await self._whitelist.reload_if_due()
        if self._surbl is not None and self._gate.enabled(CheckType.SURBL):
            await self._surbl.two_level.refresh_if_due()
            await self._surbl.three_level.refresh_if_due()

    async def close(self) -> None:
        for component in (self._whitelist, self._surbl, self._probe):
            if component is not None:
                await component.close()
        self._store.close()

    async def __aenter__(self) -> "ShortenerService":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def submit(self, url: Optional[str]) -> SubmissionResult:
        """
        Shorten url.

        An already stored URL returns its key without running the gate or
        writing again. The key is committed with a conditional insert; when
        another submission claimed it while the gate ran, the key is derived
        again.

        Raises:
            InvalidInputError: For malformed or unsupported URLs
            ReputationDeniedError: If the host is rejected
            UnreachableError: If a check could not complete
            CollisionExhaustedError: If no key is available
        """
        validate_url(url)
        derived = self._deriver.derive_key(url)
        validated = False

        while True:
            if derived.existing:
                result = SubmissionResult(key=derived.key, url=url, collisions=derived.collisions, created=False)
                self._log_mapping(result)
                return result

            if not validated:
                await self._gate.validate(url)
                validated = True

            if self._store.put_if_absent(derived.key, url):
                break

            self._log_debug("Key claimed concurrently, deriving again", {"key": derived.key})
            derived = self._deriver.derive_key(url)

        result = SubmissionResult(key=derived.key, url=url, collisions=derived.collisions, created=True)
        self._log_mapping(result)
        return result

    def _log_mapping(self, result: SubmissionResult) -> None:
        data = {
            "url": result.url,
            "id": result.key,
            "collisions": result.collisions,
            "new": result.created,
        }
        if result.collisions > 0:
            self._log_warn("Mapping", data)
        else:
            self._log_info("Mapping", data)

    def resolve(self, key: str) -> Optional[UrlRecord]:
        """Return the record for key, or None for unknown or malformed keys."""
        if not is_valid_key(key):
            self._log_warn("Invalid key", {"key": key})
            return None
        record = self._store.get(key)
        if record is not None:
            self._log_info("Found", {"id": key, "url": record.url})
        return record

    def check_dump_token(self, token: str) -> None:
        """
        Raises:
            AccessDenied: If token does not match the dump key
        """
        expected = self._dump_key or ""
        if not expected or not hmac.compare_digest(
            (token or "").encode("utf-8"), expected.encode("utf-8")
        ):
            self._log_warn("Invalid dump key")
            raise AccessDenied(code="invalid_key", message="Invalid Key")

    def dump(self, stream: BinaryIO, token: str) -> int:
        """
        Export every mapping as CSV to stream.

        Raises:
            AccessDenied: If token does not match the dump key
        """
        self.check_dump_token(token)
        count = self._store.dump(stream)
        self._log_info("Dumped mappings", {"count": count})
        return count


def build_service(config: SystemConfig, logger: Optional[AuditLogger] = None) -> ShortenerService:
    """Build the service and every component from configuration."""
    storage_dir = Path(config.storage.directory)
    checks = config.checks

    store = create_storage(config.storage.backend, storage_dir, logger=logger)
    cache = DecisionCache(
        capacity=config.cache.capacity,
        ttl_seconds=config.cache.ttl_seconds,
    )

    whitelist = None
    if CheckType.WHITELIST in checks:
        whitelist = WhitelistMatcher(
            config.whitelist_source(),
            timeouts=config.timeouts,
            reload_interval=config.whitelist.reload_interval_seconds,
            logger=logger,
        )

    surbl = None
    if CheckType.SURBL in checks:
        surbl = SurblChecker(
            config.surbl,
            cache_dir=storage_dir,
            timeouts=config.timeouts,
            simulation_mode=config.simulation_mode,
            logger=logger,
        )

    probe = None
    if CheckType.CONNECTION in checks:
        probe = ReachabilityProbe(
            timeouts=config.timeouts,
            simulation_mode=config.simulation_mode,
            logger=logger,
        )

    gate = ReputationGate(
        checks,
        cache,
        whitelist=whitelist,
        surbl=surbl,
        probe=probe,
        logger=logger,
    )

    return ShortenerService(
        store,
        gate,
        deriver=KeyDeriver(store, logger=logger),
        whitelist=whitelist,
        surbl=surbl,
        probe=probe,
        dump_key=config.storage.dump_key,
        storage_dir=storage_dir,
        logger=logger,
    )
