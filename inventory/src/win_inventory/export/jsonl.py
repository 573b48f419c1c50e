from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Sequence

from ..normalize.transform import canonicalize_row, stable_json_dumps


def write_jsonl(rows: Iterable[Mapping[str, Any]], fields: Sequence[str], path: Path) -> int:
    """
    Write rows to a JSONL file with stable key ordering, preserving row order.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8") as f:
        for rec in rows:
            f.write(stable_json_dumps(canonicalize_row(rec, fields)))
            f.write("\n")
            count += 1
    return count


def iter_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            yield json.loads(line)
