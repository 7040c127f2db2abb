"""
Short key derivation.

Keys are the first six characters of the URL-safe Base64 encoding of the
MD5 digest of the URL. When a key is already taken by a different URL the
derivation is retried with "<attempt>:<url>" for attempts 1 to 5.
"""

import base64
import hashlib
from typing import Optional

from .audit_logger import AuditLogger, LoggingMixin
from .exceptions import CollisionExhaustedError
from .models import KEY_LENGTH, DerivedKey
from .persistence import Persistence


MAX_COLLISIONS = 5


def hash_url(text: str) -> str:
    """
    Derive a short key from text.

    The text is encoded as ISO-8859-1 (unencodable characters become '?'),
    digested with MD5 and encoded as URL-safe Base64.

    Args:
        text: URL, or "<attempt>:<url>" for collision attempts

    Returns:
        Six character key
    """
    digest = hashlib.md5(text.encode("iso-8859-1", errors="replace")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")[:KEY_LENGTH]


def candidate_for(url: str, attempt: int) -> str:
    """Key for a given collision attempt (0 is the plain URL)."""
    if attempt == 0:
        return hash_url(url)
    return hash_url(f"{attempt}:{url}")


class KeyDeriver(LoggingMixin):
    """
    Derives a free (or idempotently reusable) key for a URL against a store.

    hashlib objects are created per call, so a single deriver can be shared
    by concurrent submissions without locking.
    """

    _component = "KeyDeriver"

    def __init__(
        self,
        store: Persistence,
        max_collisions: int = MAX_COLLISIONS,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._max_collisions = max_collisions
        self._logger = logger

    def derive_key(self, url: str) -> DerivedKey:
        """
        Find the key for a URL.

        Args:
            url: The URL being submitted

        Returns:
            DerivedKey; existing=True when the URL is already stored under the key

        Raises:
            CollisionExhaustedError: When every attempt maps to a different URL
        """
        collisions = 0
        key = candidate_for(url, 0)
        while True:
            record = self._store.get(key)
            if record is None:
                return DerivedKey(key=key, collisions=collisions, existing=False)
            if record.url == url:
                return DerivedKey(key=key, collisions=collisions, existing=True)

            collisions += 1
            if collisions > self._max_collisions:
                self._log_error(
                    "Too many collisions",
                    data={"url": url, "key": key, "collisions": collisions - 1},
                )
                raise CollisionExhaustedError(
                    code="collision_exhausted",
                    message="Unable to derive a free short key",
                    details={"url": url, "last_key": key, "attempts": self._max_collisions},
                )
            self._log_debug("Key collision", data={"key": key, "attempt": collisions})
            key = candidate_for(url, collisions)
