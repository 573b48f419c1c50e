from __future__ import annotations

import csv

import pytest
from openpyxl import load_workbook

from win_inventory.export import parquet as parquet_mod
from win_inventory.export.csv import cell_text, write_csv
from win_inventory.export.html import render_html_report, write_html_report
from win_inventory.export.jsonl import iter_jsonl, write_jsonl
from win_inventory.export.xlsx import write_workbook

FIELDS = ["recordKey", "server", "scopeId", "inUse", "state"]
ROWS = [
    {"recordKey": "srv|10.0.0.0", "server": "srv", "scopeId": "10.0.0.0", "inUse": 19, "state": "Active"},
    {"recordKey": "srv|10.0.1.0", "server": "srv", "scopeId": "10.0.1.0", "inUse": None, "state": " "},
]


def test_cell_text_marks_missing_values_unknown() -> None:
    assert cell_text(None) == "unknown"
    assert cell_text("  ") == "unknown"
    assert cell_text(False) == "False"
    assert cell_text(0) == "0"


def test_write_csv_keeps_field_and_row_order(tmp_path) -> None:
    path = tmp_path / "inventory" / "scopes.csv"
    assert write_csv(ROWS, FIELDS, path) == 2
    with path.open(encoding="utf-8", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == FIELDS
    assert rows[1] == ["srv|10.0.0.0", "srv", "10.0.0.0", "19", "Active"]
    assert rows[2] == ["srv|10.0.1.0", "srv", "10.0.1.0", "unknown", "unknown"]


def test_write_jsonl_is_stable_and_canonical(tmp_path) -> None:
    path = tmp_path / "scopes.jsonl"
    extra = [dict(ROWS[0], ignored="x")]
    assert write_jsonl(extra, FIELDS, path) == 1
    line = path.read_text(encoding="utf-8").splitlines()[0]
    assert line == '{"inUse":19,"recordKey":"srv|10.0.0.0","scopeId":"10.0.0.0","server":"srv","state":"Active"}'
    assert list(iter_jsonl(path)) == [{k: ROWS[0][k] for k in FIELDS}]


def test_write_parquet_raises_when_pyarrow_missing(monkeypatch, tmp_path) -> None:
    def _raise():
        raise parquet_mod.ParquetNotAvailable("pyarrow is required for Parquet export.")

    monkeypatch.setattr(parquet_mod, "_require_pyarrow", _raise)
    with pytest.raises(parquet_mod.ParquetNotAvailable):
        parquet_mod.write_parquet(ROWS, FIELDS, tmp_path / "scopes.parquet")


def test_parquet_record_debug_label_hashes_key() -> None:
    label = parquet_mod._record_debug_label({"server": "srv", "recordKey": "srv|10.0.0.0"})
    assert label.startswith("server=srv key_sha1=")
    assert "10.0.0.0" not in label


def test_write_parquet_round_trip(tmp_path) -> None:
    pq = pytest.importorskip("pyarrow.parquet")
    path = tmp_path / "scopes.parquet"
    assert parquet_mod.write_parquet(ROWS, FIELDS, path, batch_size=1) == 2
    table = pq.read_table(path)
    assert table.column_names == FIELDS
    assert str(table.schema.field("inUse").type) == "int64"
    assert table.column("inUse").to_pylist() == [19, None]


def test_write_parquet_empty_collection(tmp_path) -> None:
    pq = pytest.importorskip("pyarrow.parquet")
    path = tmp_path / "empty.parquet"
    assert parquet_mod.write_parquet([], FIELDS, path) == 0
    assert pq.read_table(path).num_rows == 0


def test_write_workbook_sheets_and_summary(tmp_path) -> None:
    path = tmp_path / "report" / "inventory.xlsx"
    write_workbook(
        {"scopes": ROWS, "failures": []},
        {"scopes": FIELDS, "failures": ["recordKey", "server"]},
        path,
        summary=[("Status", "OK"), ("Risk points", 9), ("Risk tier", "Red")],
        tier="Red",
    )
    wb = load_workbook(path)
    assert wb.sheetnames == ["Summary", "Scopes", "Failures"]
    scopes = wb["Scopes"]
    assert [c.value for c in scopes[1]] == FIELDS
    assert scopes["D2"].value == 19
    assert scopes["D3"].value == "unknown"
    assert "tblScopes" in scopes.tables
    summary = wb["Summary"]
    assert summary["B3"].value == 9
    assert summary["B4"].value == "Red"
    assert summary["B4"].fill.start_color.rgb.endswith("FFC7CE")


def test_html_report_escapes_and_flags_rows() -> None:
    html = render_html_report(
        title="Windows DHCP Inventory",
        generated_at="2024-05-01T00:00:00+00:00",
        collections={
            "scopes": [
                {"recordKey": "a", "server": "srv<1>", "scopeId": "10.0.0.0", "riskPoints": 6},
                {"recordKey": "b", "server": "srv2", "scopeId": "10.0.1.0", "riskPoints": 0},
            ],
            "failures": [{"recordKey": "c", "server": "srv2", "message": None}],
        },
        fields_by_collection={
            "scopes": ["recordKey", "server", "scopeId", "riskPoints"],
            "failures": ["recordKey", "server", "message"],
        },
        summary=[("Status", "PARTIAL"), ("Risk tier", "Red")],
        tier="Red",
        failure_summary={"by_kind": {"Unreachable": 1}, "by_stage": {"scopes": 1}, "by_node": {"srv2": 1}},
    )
    assert "srv&lt;1&gt;" in html
    assert "srv<1>" not in html
    assert '<span class="tier tier-Red">Red</span>' in html
    assert html.count('<tr class="flagged">') == 2
    assert '<td class="unknown">unknown</td>' in html
    assert 'id="global-search"' in html
    assert '<option value="srv2">srv2</option>' in html
    assert "Unreachable: 1" in html


def test_write_html_report_creates_parent(tmp_path) -> None:
    path = tmp_path / "report" / "report.html"
    write_html_report(
        path,
        title="Windows DNS Inventory",
        generated_at="now",
        collections={"zones": []},
        fields_by_collection={"zones": ["recordKey", "server"]},
        summary=[("Status", "OK")],
    )
    text = path.read_text(encoding="utf-8")
    assert text.startswith("<!DOCTYPE html>")
    assert 'class="filter-flagged"' not in text
