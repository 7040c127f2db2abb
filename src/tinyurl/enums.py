"""
Enumeration types for the URL shortener.

These enums provide type-safe constants for check flags, reputation
outcomes, gate states and logging levels.
"""

from enum import Enum


class CheckType(Enum):
    """Reputation checks that can be enabled for submissions."""

    WHITELIST = "whitelist"
    SURBL = "surbl"
    CONNECTION = "connection"


class Decision(Enum):
    """Outcome of the reputation checks for a host."""

    ALLOW = "allow"
    DENY = "deny"


class SurblStatus(Enum):
    """Result of a SURBL lookup."""

    CLEAN = "clean"
    LISTED = "listed"
    INVALID_INPUT = "invalid_input"


class GateState(Enum):
    """States traversed by the reputation gate for a single URL."""

    START = "start"
    CACHE_LOOKUP = "cache_lookup"
    CACHED_ALLOW = "cached_allow"
    CACHED_DENY = "cached_deny"
    CACHE_MISS = "cache_miss"
    WHITELIST_CHECK = "whitelist_check"
    SURBL_CHECK = "surbl_check"
    REACHABILITY_CHECK = "reachability_check"
    ACCEPT = "accept"
    REJECT = "reject"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
