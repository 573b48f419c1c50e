from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..logging import get_logger
from ..normalize.transform import canonicalize_row

LOG = get_logger(__name__)


class ParquetNotAvailable(RuntimeError):
    pass


def _require_pyarrow():
    try:
        import pyarrow as pa  # type: ignore
        import pyarrow.parquet as pq  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ParquetNotAvailable(
            "pyarrow is required for Parquet export. Install with: pip install .[parquet]"
        ) from e
    return pa, pq


def _hash_key(key: str) -> str:
    if not key:
        return "unknown"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]


def _record_debug_label(row: Mapping[str, Any]) -> str:
    # Record keys contain host names and addresses; log a digest instead.
    server = str(row.get("server") or "unknown")
    return f"server={server} key_sha1={_hash_key(str(row.get('recordKey') or ''))}"


def _column_types(pa, fields: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> Any:
    """
    Pick one Arrow type per column: int64/bool/float64 only when every
    non-null value has that Python type, string otherwise.
    """
    columns = []
    for name in fields:
        seen = {type(r.get(name)) for r in rows if r.get(name) is not None}
        if seen == {bool}:
            typ = pa.bool_()
        elif seen == {int}:
            typ = pa.int64()
        elif seen and seen <= {int, float}:
            typ = pa.float64()
        else:
            typ = pa.string()
        columns.append(pa.field(name, typ, nullable=True))
    return pa.schema(columns)


def _coerce(row: Mapping[str, Any], schema: Any, pa) -> dict:
    out = {}
    for field in schema:
        value = row.get(field.name)
        if value is not None and field.type == pa.string() and not isinstance(value, str):
            value = str(value)
        out[field.name] = value
    return out


def write_parquet(
    rows: Iterable[Mapping[str, Any]],
    fields: Sequence[str],
    path: Path,
    *,
    batch_size: int = 1000,
) -> int:
    """
    Write a Parquet file with exactly fields as columns, preserving row order.
    The column schema is inferred from the first batch and fixed afterwards.
    """
    pa, pq = _require_pyarrow()
    path.parent.mkdir(parents=True, exist_ok=True)
    if batch_size < 1:
        batch_size = 1000

    writer: Optional[Any] = None
    schema: Optional[Any] = None
    batch: List[Mapping[str, Any]] = []
    batch_meta: List[Tuple[int, str]] = []
    index = 0

    def _flush() -> None:
        nonlocal writer, schema, batch, batch_meta
        if not batch:
            return
        if schema is None:
            schema = _column_types(pa, fields, batch)
        try:
            table = pa.Table.from_pylist([_coerce(r, schema, pa) for r in batch], schema=schema)
        except Exception as exc:
            LOG.error(
                "Parquet batch write failed; attempting to isolate invalid row",
                extra={"step": "export", "phase": "error", "artifact": "parquet", "error": str(exc)},
            )
            for row, (idx, label) in zip(batch, batch_meta):
                try:
                    pa.Table.from_pylist([_coerce(row, schema, pa)], schema=schema)
                except Exception as row_exc:
                    LOG.error(
                        "Parquet row failed schema coercion",
                        extra={
                            "step": "export",
                            "phase": "error",
                            "artifact": "parquet",
                            "record_index": idx,
                            "record_hint": label,
                            "error": str(row_exc),
                        },
                    )
                    raise
            raise
        if writer is None:
            writer = pq.ParquetWriter(path, schema)
        writer.write_table(table)
        batch = []
        batch_meta = []

    for rec in rows:
        index += 1
        row = canonicalize_row(rec, fields)
        batch.append(row)
        batch_meta.append((index, _record_debug_label(row)))
        if len(batch) >= batch_size:
            _flush()

    if batch:
        _flush()
    if writer is None:
        empty_schema = pa.schema([pa.field(name, pa.string(), nullable=True) for name in fields])
        pq.write_table(empty_schema.empty_table(), path)
    else:
        writer.close()
    return index
