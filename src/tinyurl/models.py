"""
Data models for the URL shortener.

This module defines the records stored by the persistence layer, the
decisions held in the reputation cache and the result of a submission.
"""

from dataclasses import dataclass

from .enums import Decision


# Length of every derived short key
KEY_LENGTH = 6

# Characters allowed in a short key (URL-safe Base64 alphabet)
KEY_ALPHABET = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
)


@dataclass(frozen=True)
class UrlRecord:
    """A stored mapping from short key to URL."""

    key: str
    url: str
    created_at: int  # Unix epoch seconds (UTC)


@dataclass(frozen=True)
class ReputationDecision:
    """Cached accept/reject decision for a host."""

    host: str
    decision: Decision
    established_at: float  # Unix epoch seconds

    @property
    def is_allow(self) -> bool:
        return self.decision is Decision.ALLOW


@dataclass(frozen=True)
class DerivedKey:
    """Outcome of key derivation against the store."""

    key: str
    collisions: int
    existing: bool  # True when the key already maps to the same URL


@dataclass(frozen=True)
class SubmissionResult:
    """Result of a URL submission."""

    key: str
    url: str
    collisions: int
    created: bool  # False for an idempotent resubmission

    def to_response(self) -> dict:
        """Body returned to HTTP clients."""
        return {"id": self.key}


def is_valid_key(key: str) -> bool:
    """Check that a key only uses the short-key alphabet."""
    return bool(key) and all(c in KEY_ALPHABET for c in key)
