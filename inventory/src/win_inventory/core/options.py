from __future__ import annotations

import ipaddress
from typing import Any, Dict, Iterable, List, Tuple

from ..util.errors import MalformedDataError
from .model import OptionValue

IP_LIST = "ip_list"
INTEGER = "integer"
STRING = "string"
STRING_LIST = "string_list"
RAW = "raw"

# Well-known DHCPv4 option ids and the shape of their values.
OPTION_DECODE_TABLE: Dict[int, Tuple[str, str]] = {
    3: ("Router", IP_LIST),
    6: ("DNS Servers", IP_LIST),
    15: ("DNS Domain Name", STRING),
    42: ("NTP Servers", IP_LIST),
    44: ("WINS/NBNS Servers", IP_LIST),
    46: ("WINS/NBT Node Type", INTEGER),
    51: ("Lease", INTEGER),
    66: ("Boot Server Host Name", STRING),
    67: ("Bootfile Name", STRING),
    119: ("DNS Domain Search List", STRING_LIST),
    150: ("TFTP Server Address", IP_LIST),
    252: ("WPAD", STRING),
}


def _raw_items(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        items: Iterable[Any] = value
    else:
        items = [value]
    return tuple(str(v) for v in items if v is not None)


def _decodable_items(raw: Tuple[str, ...]) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw if item.strip())


def _decode_ip(item: str) -> str:
    try:
        addr = ipaddress.ip_address(item)
    except ValueError as e:
        raise MalformedDataError(f"invalid IPv4 address {item!r}") from e
    if addr.version != 4:
        raise MalformedDataError(f"not an IPv4 address: {item!r}")
    return str(addr)


def _decode_int(item: str) -> int:
    text = item.lower()
    try:
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError as e:
        raise MalformedDataError(f"invalid integer {item!r}") from e


def option_kind(option_id: int) -> str:
    entry = OPTION_DECODE_TABLE.get(option_id)
    return entry[1] if entry else RAW


def raw_option(value: Any) -> OptionValue:
    return OptionValue(kind=RAW, values=(), raw=_raw_items(value))


def decode_option(option_id: int, value: Any) -> OptionValue:
    """
    Decode an option value according to OPTION_DECODE_TABLE.

    Unknown option ids decode to the raw variant. A known id whose value does
    not match its declared shape raises MalformedDataError; callers decide
    whether to keep the raw variant alongside the failure.
    """
    raw = _raw_items(value)
    kind = option_kind(option_id)
    if kind == RAW:
        return OptionValue(kind=RAW, values=(), raw=raw)
    items = _decodable_items(raw)

    values: List[Any]
    if kind == IP_LIST:
        values = [_decode_ip(item) for item in items]
    elif kind == INTEGER:
        if len(items) != 1:
            raise MalformedDataError(f"option {option_id} expects one integer, got {len(items)} values")
        values = [_decode_int(items[0])]
    elif kind == STRING:
        if len(items) > 1:
            raise MalformedDataError(f"option {option_id} expects one string, got {len(items)} values")
        values = list(items)
    else:
        values = list(items)
    return OptionValue(kind=kind, values=tuple(values), raw=raw)
