from __future__ import annotations

import ipaddress
from typing import Optional

from ..util.errors import MalformedDataError


def ipv4_to_int(text: Optional[str]) -> int:
    """
    Return the 32-bit unsigned integer value of a dotted-quad IPv4 address.
    IPv6, empty and unparsable input raise MalformedDataError.
    """
    raw = (text or "").strip()
    if not raw:
        raise MalformedDataError("empty IPv4 address")
    try:
        addr = ipaddress.ip_address(raw)
    except ValueError as e:
        raise MalformedDataError(f"invalid IPv4 address {raw!r}") from e
    if addr.version != 4:
        raise MalformedDataError(f"not an IPv4 address: {raw!r}")
    return int(addr)


def address_count(start: Optional[str], end: Optional[str]) -> Optional[int]:
    """
    Number of addresses in [start, end], or None when the range is unknown:
    either bound invalid, or end before start.
    """
    try:
        count = ipv4_to_int(end) - ipv4_to_int(start) + 1
    except MalformedDataError:
        return None
    if count <= 0:
        return None
    return count


def validate_range(start: Optional[str], end: Optional[str]) -> None:
    """Raise MalformedDataError describing why [start, end] is not a usable range."""
    lo = ipv4_to_int(start)
    hi = ipv4_to_int(end)
    if hi < lo:
        raise MalformedDataError(f"inverted address range {start} - {end}")


def utilization(in_use: Optional[int], start: Optional[str], end: Optional[str]) -> Optional[float]:
    """
    Percentage of the range in use, or None ("unknown") when the in-use count
    or the range size cannot be determined. Never negative or infinite.
    """
    if in_use is None or in_use < 0:
        return None
    total = address_count(start, end)
    if total is None:
        return None
    return in_use * 100.0 / total
