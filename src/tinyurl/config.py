"""
Configuration dataclasses for the URL shortener.

This module defines all configuration structures used throughout the system,
including network timeouts, the reputation checks, storage, the HTTP server
and logging.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .enums import CheckType


DEFAULT_CHECK_FLAGS = "WHITELIST,CONNECTION"

# Floors applied to user supplied durations (seconds)
MIN_TIMEOUT_SECONDS = 1.0
MIN_CACHE_TTL_SECONDS = 1.0


def parse_check_flags(
    value: str,
    unknown: Optional[list[str]] = None,
) -> frozenset[CheckType]:
    """
    Parse a comma separated list of check names.

    Args:
        value: Flags such as "WHITELIST,SURBL,CONNECTION" (case-insensitive)
        unknown: Optional list that receives names that are not valid flags

    Returns:
        Set of enabled CheckType values
    """
    flags = set()
    for token in (value or "").split(","):
        name = token.strip().upper()
        if not name:
            continue
        try:
            flags.add(CheckType[name])
        except KeyError:
            if unknown is not None:
                unknown.append(name)
    return frozenset(flags)


def format_check_flags(flags: Iterable[CheckType]) -> str:
    """Inverse of parse_check_flags, with a stable ordering."""
    return ",".join(sorted(flag.name for flag in flags))


@dataclass
class TimeoutConfig:
    """Connect/read timeouts shared by every network operation."""

    connect_seconds: float = 10.0
    read_seconds: float = 30.0

    def __post_init__(self) -> None:
        self.connect_seconds = max(float(self.connect_seconds), MIN_TIMEOUT_SECONDS)
        self.read_seconds = max(float(self.read_seconds), MIN_TIMEOUT_SECONDS)


@dataclass
class WhitelistConfig:
    """Whitelist source configuration."""

    source: Optional[str] = None  # path, file: or http(s): URL
    reload_interval_seconds: float = 10.0


@dataclass
class SurblConfig:
    """SURBL lookup and multi-level TLD table configuration."""

    zone: str = "multi.surbl.org"
    two_level_tlds_url: str = "http://www.surbl.org/static/two-level-tlds"
    three_level_tlds_url: str = "http://www.surbl.org/static/three-level-tlds"
    refresh_interval_seconds: float = 24 * 60 * 60


@dataclass
class CacheConfig:
    """Reputation decision cache configuration."""

    capacity: int = 128
    ttl_seconds: float = 60.0

    def __post_init__(self) -> None:
        self.ttl_seconds = max(float(self.ttl_seconds), MIN_CACHE_TTL_SECONDS)


@dataclass
class StorageConfig:
    """Persistence configuration."""

    directory: Path = field(default_factory=lambda: Path.home() / ".tinyurl" / "storage")
    backend: str = "sqlite"  # 'sqlite' or 'memory'
    dump_key: Optional[str] = None


@dataclass
class ServerConfig:
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    checks: frozenset[CheckType] = field(
        default_factory=lambda: parse_check_flags(DEFAULT_CHECK_FLAGS)
    )
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    whitelist: WhitelistConfig = field(default_factory=WhitelistConfig)
    surbl: SurblConfig = field(default_factory=SurblConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    simulation_mode: bool = False

    def whitelist_source(self) -> str:
        """Whitelist location, defaulting to whitelist.conf in the storage directory."""
        if self.whitelist.source:
            return self.whitelist.source
        return (Path(self.storage.directory) / "whitelist.conf").absolute().as_uri()
