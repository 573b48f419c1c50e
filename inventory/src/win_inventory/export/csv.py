from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence

UNKNOWN = "unknown"


def cell_text(value: Any) -> str:
    """Render a row value for tabular output; missing or blank values become 'unknown'."""
    if value is None:
        return UNKNOWN
    if isinstance(value, bool):
        return "True" if value else "False"
    text = str(value)
    return UNKNOWN if not text.strip() else text


def write_csv(rows: Iterable[Mapping[str, Any]], fields: Sequence[str], path: Path) -> int:
    """
    Write a CSV file with exactly fields as columns, in the given row order
    (rows arrive already ordered for emission). Returns the number of rows.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(list(fields))
        for rec in rows:
            row: List[str] = [cell_text(rec.get(field)) for field in fields]
            writer.writerow(row)
            count += 1
    return count
