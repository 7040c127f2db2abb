"""
Host name helpers shared by the reputation checks.

Hosts are compared in canonical form: lower-case, without a trailing dot,
internationalized names IDNA-encoded.
"""

import ipaddress
from typing import Optional, Union

import idna

from .exceptions import InvalidInputError


def canonical_host(host: str) -> str:
    """
    Convert a host to canonical form (lowercase, IDNA if needed).

    Raises:
        InvalidInputError: If the host is empty or IDNA encoding fails
    """
    host_lower = (host or "").strip().lower().rstrip(".")
    if host_lower.startswith("[") and host_lower.endswith("]"):
        host_lower = host_lower[1:-1]

    if not host_lower:
        raise InvalidInputError(
            code="empty_host",
            message="URL has no host",
            details={"host": host},
        )

    if any(ord(c) > 127 for c in host_lower):
        try:
            return idna.encode(host_lower, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise InvalidInputError(
                code="idna_error",
                message=f"IDNA encoding failed: {e}",
                details={"host": host},
            )
    return host_lower


def ip_literal(host: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    """Return the address if host is a literal IP, else None."""
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None
