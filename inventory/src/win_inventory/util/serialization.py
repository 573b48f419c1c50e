from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .time import parse_ps_date

REDACTED_VALUE = "<redacted>"
SENSITIVE_KEY_SUBSTRINGS = (
    "password",
    "secret",
    "credential",
    "token",
    "sharedsecret",
)
LIST_SEPARATOR = ";"


def _is_sensitive_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    return any(token in lowered for token in SENSITIVE_KEY_SUBSTRINGS)


def sanitize_for_json(value: Any) -> Any:
    """
    Convert PowerShell JSON payloads and Python values to plain JSON types,
    rewriting /Date(ms)/ literals to ISO-8601 and redacting sensitive fields.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if isinstance(value, str):
        iso = parse_ps_date(value)
        return iso if iso is not None else value
    if isinstance(value, Mapping):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            if _is_sensitive_key(k):
                out[str(k)] = REDACTED_VALUE
            else:
                out[str(k)] = sanitize_for_json(v)
        return out
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_json(v) for v in value]
    return value


def scalar_text(value: Any) -> Optional[str]:
    """
    Render one attribute value as flat text for tabular rows.
    - None stays None (rendered as "unknown" by exporters)
    - lists are joined with ';'
    - nested objects are rendered as key=value pairs in key order
    """
    value = sanitize_for_json(value)
    if value is None:
        return None
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, list):
        parts = [scalar_text(v) for v in value]
        return LIST_SEPARATOR.join(p for p in parts if p is not None)
    if isinstance(value, dict):
        parts = [f"{k}={scalar_text(v) or ''}" for k, v in sorted(value.items())]
        return LIST_SEPARATOR.join(parts)
    return str(value)
