"""Client address extraction from proxy headers."""

from __future__ import annotations

import ipaddress
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

# Checked in order; x-forwarded-for contributes its left-most entry
CLIENT_IP_HEADERS = (
    "cf-connecting-ip",
    "x-real-ip",
    "x-forwarded-for",
    "x-client-ip",
)


def normalize_ip(value: str | None) -> str | None:
    """Return the canonical form of an IPv4/IPv6 address, or None if invalid."""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def extract_client_ip(headers: Mapping[str, str], peer_address: str | None = None) -> str | None:
    """Find the client address of a request.

    Args:
        headers: Request headers; names are matched case-insensitively.
        peer_address: Address of the TCP peer, used when no header is usable.

    Returns:
        The first valid address found, or None.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    for header in CLIENT_IP_HEADERS:
        raw = lowered.get(header)
        if not raw:
            continue
        candidate = raw.split(",")[0] if header == "x-forwarded-for" else raw
        address = normalize_ip(candidate)
        if address is not None:
            return address
        logger.debug("Ignoring invalid client address header: header=%s", header)
    return normalize_ip(peer_address)
