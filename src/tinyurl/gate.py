"""
Reputation gate for submitted URLs.

Runs the enabled checks for a URL's host in order (whitelist, SURBL,
reachability), consulting and populating the decision cache:

    START -> CACHE_LOOKUP -> CACHED_DENY -> REJECT
                          -> CACHED_ALLOW -> [REACHABILITY_CHECK] -> ACCEPT
                          -> CACHE_MISS -> [WHITELIST_CHECK] -> [SURBL_CHECK]
                                        -> [REACHABILITY_CHECK] -> ACCEPT

Whitelist and SURBL rejections are cached. Reachability results are not.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlparse

from .audit_logger import AuditLogger, LoggingMixin
from .decision_cache import DecisionCache
from .enums import CheckType, Decision, GateState, SurblStatus
from .exceptions import (
    InvalidInputError,
    ReputationDeniedError,
    SpamDomainError,
    TinyURLError,
    WhitelistMissError,
)
from .hosts import canonical_host
from .reachability import ReachabilityProbe
from .surbl import SurblChecker
from .whitelist import WhitelistMatcher


@dataclass
class GateOutcome:
    """Accepted URL with the states the gate went through."""

    host: str
    decision: Decision
    path: list[GateState] = field(default_factory=list)
    from_cache: bool = False


class ReputationGate(LoggingMixin):
    """Decides whether a URL may be shortened."""

    _component = "ReputationGate"

    def __init__(
        self,
        checks: Iterable[CheckType],
        cache: DecisionCache,
        whitelist: Optional[WhitelistMatcher] = None,
        surbl: Optional[SurblChecker] = None,
        probe: Optional[ReachabilityProbe] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            checks: Enabled check flags
            cache: Decision cache shared by all submissions
            whitelist: Required when WHITELIST is enabled
            surbl: Required when SURBL is enabled
            probe: Required when CONNECTION is enabled
            logger: Optional audit logger
        """
        self._checks = frozenset(checks)
        self._cache = cache
        self._whitelist = whitelist
        self._surbl = surbl
        self._probe = probe
        self._logger = logger

        missing = [
            check.name for check, component in (
                (CheckType.WHITELIST, whitelist),
                (CheckType.SURBL, surbl),
                (CheckType.CONNECTION, probe),
            )
            if check in self._checks and component is None
        ]
        if missing:
            raise ValueError(f"No component for enabled checks: {', '.join(missing)}")

    @property
    def checks(self) -> frozenset[CheckType]:
        return self._checks

    @property
    def cache(self) -> DecisionCache:
        return self._cache

    def enabled(self, check: CheckType) -> bool:
        return check in self._checks

    async def validate(self, url: str) -> GateOutcome:
        """
        Run the gate for url.

        Returns:
            GateOutcome for an accepted URL

        Raises:
            InvalidInputError: If the URL has no usable host
            ReputationDeniedError: If the host is rejected (now or from cache)
            UnreachableError: If a lookup or the reachability probe fails
        """
        path = [GateState.START]

        if not self._checks:
            path.append(GateState.ACCEPT)
            return GateOutcome(host="", decision=Decision.ALLOW, path=path)

        host = canonical_host(urlparse(url).hostname or "")

        try:
            outcome = await self._run(url, host, path)
        except TinyURLError as e:
            path.append(GateState.REJECT)
            self._log_info(
                "URL rejected",
                {"host": host, "code": e.code, "path": [s.value for s in path]},
            )
            raise

        path.append(GateState.ACCEPT)
        self._log_debug("URL accepted", {"host": host, "path": [s.value for s in path]})
        return outcome

    async def _run(self, url: str, host: str, path: list[GateState]) -> GateOutcome:
        path.append(GateState.CACHE_LOOKUP)
        cached = self._cache.lookup(host)

        if cached is not None and not cached.is_allow:
            path.append(GateState.CACHED_DENY)
            raise ReputationDeniedError(
                code="cached_deny",
                message="Host was recently rejected",
                details={"host": host, "since": cached.established_at},
            )

        if cached is not None:
            path.append(GateState.CACHED_ALLOW)
            await self._check_reachability(url, path)
            return GateOutcome(host=host, decision=Decision.ALLOW, path=path, from_cache=True)

        path.append(GateState.CACHE_MISS)

        if self.enabled(CheckType.WHITELIST):
            path.append(GateState.WHITELIST_CHECK)
            if not await self._whitelist.check(host):
                self._cache.deny(host)
                raise WhitelistMissError(
                    code="not_whitelisted",
                    message="Host is not whitelisted",
                    details={"host": host},
                )

        if self.enabled(CheckType.SURBL):
            path.append(GateState.SURBL_CHECK)
            status = await self._surbl.check(host)
            if status is SurblStatus.LISTED:
                self._cache.deny(host)
                raise SpamDomainError(
                    code="spam_domain",
                    message="Host is listed as a spam domain",
                    details={"host": host},
                )
            if status is SurblStatus.INVALID_INPUT:
                raise InvalidInputError(
                    code="unsupported_address",
                    message="Unsupported host address",
                    details={"host": host},
                )

        await self._check_reachability(url, path)

        self._cache.allow(host)
        return GateOutcome(host=host, decision=Decision.ALLOW, path=path)

    async def _check_reachability(self, url: str, path: list[GateState]) -> None:
        if not self.enabled(CheckType.CONNECTION):
            return
        path.append(GateState.REACHABILITY_CHECK)
        await self._probe.probe(url)
