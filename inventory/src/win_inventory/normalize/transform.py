from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..util.serialization import scalar_text
from .schema import (
    COLLECTION_FIELDS,
    DNS_RECORD_FIELDS,
    EXCLUSION_FIELDS,
    LEASE_FIELDS,
    RESERVATION_FIELDS,
    Row,
)

KEY_SEPARATOR = "|"


def text_or_none(value: Any) -> Optional[str]:
    """Flat text for value, or None when it is missing or blank."""
    text = scalar_text(value)
    if text is None:
        return None
    text = text.strip()
    return text or None


def flatten_attributes(raw: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    """
    Flatten one cmdlet output object into str -> text. Lists are joined with
    ';', nested objects rendered as key=value pairs, PowerShell dates turned
    into ISO-8601 and missing values kept as None.
    """
    return {str(k): text_or_none(v) for k, v in raw.items()}


def record_key(*parts: Any) -> str:
    return KEY_SEPARATOR.join("" if p is None else str(p) for p in parts)


def canonicalize_row(row: Mapping[str, Any], fields: Sequence[str]) -> Row:
    """
    Return a row holding exactly fields, in that order; absent fields are
    None so every emitted row is fully populated.
    """
    return {f: row.get(f) for f in fields}


def stable_json_dumps(obj: Any) -> str:
    """
    Dump JSON with sorted keys and compact separators for stable output.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def child_row(
    server: str,
    container_field: str,
    container_id: str,
    attributes: Mapping[str, Optional[str]],
    fields: Sequence[str],
    key_attrs: Sequence[str],
    collected_at: str,
) -> Row:
    """Row for a record owned by a scope or zone, keyed by its owner and key_attrs."""
    base: Dict[str, Any] = dict(attributes)
    base.update(
        {
            "server": server,
            container_field: container_id,
            "collectedAt": collected_at,
            "recordKey": record_key(server, container_id, *(attributes.get(a) for a in key_attrs)),
        }
    )
    return canonicalize_row(base, fields)


def lease_row(server: str, scope_id: str, attributes: Mapping[str, Optional[str]], collected_at: str) -> Row:
    return child_row(server, "scopeId", scope_id, attributes, LEASE_FIELDS, ("IPAddress", "ClientId"), collected_at)


def reservation_row(server: str, scope_id: str, attributes: Mapping[str, Optional[str]], collected_at: str) -> Row:
    return child_row(
        server, "scopeId", scope_id, attributes, RESERVATION_FIELDS, ("IPAddress", "ClientId"), collected_at
    )


def exclusion_row(server: str, scope_id: str, attributes: Mapping[str, Optional[str]], collected_at: str) -> Row:
    return child_row(
        server, "scopeId", scope_id, attributes, EXCLUSION_FIELDS, ("StartRange", "EndRange"), collected_at
    )


def dns_record_row(server: str, zone: str, attributes: Mapping[str, Optional[str]], collected_at: str) -> Row:
    return child_row(
        server, "zoneName", zone, attributes, DNS_RECORD_FIELDS, ("HostName", "RecordType", "RecordData"), collected_at
    )


def validate_rows(collection: str, rows: Iterable[Mapping[str, Any]]) -> List[str]:
    """Return problems found in rows for collection (missing or extra fields)."""
    fields = COLLECTION_FIELDS[collection]
    expected = set(fields)
    problems: List[str] = []
    for idx, row in enumerate(rows):
        keys = set(row.keys())
        missing = sorted(expected - keys)
        extra = sorted(keys - expected)
        if missing:
            problems.append(f"{collection}[{idx}] missing fields: {', '.join(missing)}")
        if extra:
            problems.append(f"{collection}[{idx}] unexpected fields: {', '.join(extra)}")
    return problems
