"""
Exception classes for the URL shortener.

All exceptions inherit from TinyURLError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class TinyURLError(Exception):
    """Base exception for all URL shortener errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(TinyURLError):
    """Raised for malformed URLs, too-short input or unsupported address families."""

    pass


class ReputationDeniedError(TinyURLError):
    """Raised when a host is rejected by a reputation check (cached negatively)."""

    pass


class WhitelistMissError(ReputationDeniedError):
    """Raised when a host is not present in the whitelist."""

    pass


class SpamDomainError(ReputationDeniedError):
    """Raised when a host is listed by the SURBL service."""

    pass


class UnreachableError(TinyURLError):
    """Raised when a URL cannot be reached or a lookup fails (never cached)."""

    pass


class CollisionExhaustedError(TinyURLError):
    """Raised when no free short key could be derived for a URL."""

    pass


class SourceUnavailableError(TinyURLError):
    """Raised when a whitelist or TLD source cannot be fetched."""

    pass


class StorageError(TinyURLError):
    """Raised when persistence operations fail (open, read, write)."""

    pass


class AccessDenied(TinyURLError):
    """Raised when an admin token does not match."""

    pass
