from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from ..export.jsonl import iter_jsonl
from ..logging import get_logger
from ..util.errors import DiffError
from .hash import stable_record_hash

LOG = get_logger(__name__)


def _load_jsonl(path: Path) -> List[Dict[str, Any]]:
    if not path.is_file():
        raise DiffError(f"Inventory export not found: {path}")
    try:
        return [r for r in iter_jsonl(path) if isinstance(r, dict)]
    except json.JSONDecodeError as exc:
        raise DiffError(f"Invalid JSONL in {path}: {exc}") from exc


def _index_by_key(records: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Index rows by recordKey. Keys can legitimately repeat (one client with
    leases in two states), so later occurrences get a #n suffix in order.
    """
    by: Dict[str, Dict[str, Any]] = {}
    seen: Dict[str, int] = {}
    skipped = 0
    for r in records:
        key = str(r.get("recordKey") or "")
        if not key:
            skipped += 1
            continue
        n = seen.get(key, 0)
        seen[key] = n + 1
        by[key if n == 0 else f"{key}#{n + 1}"] = r
    if skipped:
        LOG.warning(
            "Skipped rows without recordKey",
            extra={"step": "diff", "phase": "load", "count": skipped},
        )
    return by


def compute_diff(
    prev_records: Iterable[Dict[str, Any]],
    curr_records: Iterable[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Compute diff between two sets of flattened rows.
    Returns a structure containing:
      - added/removed/changed/unchanged as lists of record keys
      - details mapping key->{prev_hash?, curr_hash?}
      - summary counts
    """
    prev_by = _index_by_key(prev_records)
    curr_by = _index_by_key(curr_records)

    added: List[str] = []
    removed: List[str] = []
    changed: List[str] = []
    unchanged: List[str] = []
    details: Dict[str, Dict[str, str]] = {}

    prev_keys = set(prev_by.keys())
    curr_keys = set(curr_by.keys())

    for key in sorted(prev_keys - curr_keys):
        removed.append(key)
        details[key] = {"prev_hash": stable_record_hash(prev_by[key])}

    for key in sorted(curr_keys - prev_keys):
        added.append(key)
        details[key] = {"curr_hash": stable_record_hash(curr_by[key])}

    for key in sorted(prev_keys & curr_keys):
        prev_h = stable_record_hash(prev_by[key])
        curr_h = stable_record_hash(curr_by[key])
        if prev_h != curr_h:
            changed.append(key)
        else:
            unchanged.append(key)
        details[key] = {"prev_hash": prev_h, "curr_hash": curr_h}

    summary = {
        "added": len(added),
        "removed": len(removed),
        "changed": len(changed),
        "unchanged": len(unchanged),
        "prev_total": len(prev_by),
        "curr_total": len(curr_by),
    }

    return {
        "added": added,
        "removed": removed,
        "changed": changed,
        "unchanged": unchanged,
        "details": details,
        "summary": summary,
    }


def diff_files(prev_path: Path, curr_path: Path) -> Dict[str, Any]:
    prev = _load_jsonl(prev_path)
    curr = _load_jsonl(curr_path)
    return compute_diff(prev, curr)


def write_diff(outdir: Path, diff_obj: Dict[str, Any]) -> Tuple[Path, Path]:
    """
    Write diff.json and diff_summary.json to outdir, returning their paths.
    """
    outdir.mkdir(parents=True, exist_ok=True)
    diff_path = outdir / "diff.json"
    summary_path = outdir / "diff_summary.json"
    diff_path.write_text(
        json.dumps(diff_obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False), encoding="utf-8"
    )
    summary_path.write_text(
        json.dumps(diff_obj.get("summary", {}), sort_keys=True, separators=(",", ":"), ensure_ascii=False),
        encoding="utf-8",
    )
    return diff_path, summary_path
