from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

# ConvertTo-Json renders DateTime values as "/Date(1700000000000)/" (optionally with a +hhmm offset)
_PS_DATE_RE = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")


def utc_now_iso(seconds: bool = True) -> str:
    """
    Return current UTC time in ISO-8601 format.
    - If seconds is True, use seconds precision (stable strings).
    - Else, use milliseconds precision.
    """
    if seconds:
        return datetime.now(timezone.utc).isoformat(timespec="seconds")
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def run_dir_stamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")


def parse_ps_date(value: str) -> Optional[str]:
    """
    Convert a PowerShell JSON date literal to ISO-8601 UTC with seconds precision.
    Returns None when value is not a PowerShell date literal.
    """
    m = _PS_DATE_RE.match(value.strip())
    if not m:
        return None
    millis = int(m.group(1))
    dt = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=millis)
    return dt.isoformat(timespec="seconds")
