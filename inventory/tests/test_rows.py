from __future__ import annotations

from win_inventory.core.aggregate import aggregate
from win_inventory.core.health import classify, scope_inputs
from win_inventory.core.traversal import traverse_dhcp
from win_inventory.normalize.rows import inventory_rows
from win_inventory.normalize.schema import COLLECTION_FIELDS, resolve_output_paths
from win_inventory.normalize.transform import (
    canonicalize_row,
    flatten_attributes,
    record_key,
    stable_json_dumps,
    validate_rows,
)

COLLECTED_AT = "2024-05-01T00:00:00+00:00"


def _rows(client, with_assessment: bool = True):
    inventory = aggregate(traverse_dhcp(client, ["dhcp-a", "dhcp-b"]))
    assessment = classify(scope_inputs(inventory)) if with_assessment else None
    return inventory_rows(inventory, COLLECTED_AT, assessment)


def test_every_row_matches_its_collection_schema(two_server_client) -> None:
    rows = _rows(two_server_client)
    assert set(rows) == set(COLLECTION_FIELDS)
    for name, collection in rows.items():
        assert validate_rows(name, collection) == []
        for row in collection:
            assert list(row) == COLLECTION_FIELDS[name]


def test_scope_rows_carry_usage_and_risk(two_server_client) -> None:
    scopes = {r["server"]: r for r in _rows(two_server_client)["scopes"]}
    a = scopes["dhcp-a"]
    assert a["recordKey"] == "dhcp-a|10.0.0.0"
    assert a["totalAddresses"] == 20
    assert a["utilizationPct"] == 95.0
    assert a["riskPoints"] == 6
    assert a["triggeredRules"] == "high-utilization;no-active-leases;no-reservations"
    assert a["description"] is None
    b = scopes["dhcp-b"]
    assert b["riskPoints"] == 3
    assert b["triggeredRules"] == "inactive-scope"
    assert b["utilizationPct"] == 5.0


def test_scope_rows_without_assessment_leave_risk_empty(two_server_client) -> None:
    scopes = _rows(two_server_client, with_assessment=False)["scopes"]
    assert {s["riskPoints"] for s in scopes} == {None}
    assert _rows(two_server_client, with_assessment=False)["findings"] == []


def test_child_rows_are_keyed_by_server_and_scope(two_server_client) -> None:
    rows = _rows(two_server_client)
    [lease_b] = [r for r in rows["leases"] if r["server"] == "dhcp-b"]
    assert lease_b["scopeId"] == "192.168.1.0"
    assert lease_b["recordKey"] == "dhcp-b|192.168.1.0|192.168.1.50|aa-bb-cc-00-01-50"
    assert lease_b["collectedAt"] == COLLECTED_AT
    [exclusion] = rows["exclusions"]
    assert exclusion["recordKey"] == "dhcp-a|10.0.0.0|10.0.0.1|10.0.0.2"


def test_option_rows_distinguish_server_and_scope_level(two_server_client) -> None:
    options = _rows(two_server_client)["options"]
    assert [(o["level"], o["optionId"]) for o in options] == [("server", 6), ("scope", 3), ("scope", 51)]
    assert options[0]["scopeId"] == ""
    assert options[0]["value"] == "10.0.0.53"
    assert options[2]["valueKind"] == "integer"
    assert options[2]["rawValue"] == "691200"


def test_findings_rows_cover_every_rule_per_scope(two_server_client) -> None:
    findings = _rows(two_server_client)["findings"]
    assert len(findings) == 10
    triggered = [(f["server"], f["rule"]) for f in findings if f["triggered"]]
    assert ("dhcp-b", "inactive-scope") in triggered


def test_flatten_attributes_joins_lists_and_drops_blanks() -> None:
    flat = flatten_attributes({"Value": ["10.0.0.1", "10.0.0.2"], "Name": "  ", "Flag": True, "When": "/Date(0)/"})
    assert flat == {"Value": "10.0.0.1;10.0.0.2", "Name": None, "Flag": "True", "When": "1970-01-01T00:00:00+00:00"}


def test_record_key_and_canonical_rows() -> None:
    assert record_key("srv", None, 3) == "srv||3"
    assert canonicalize_row({"b": 2, "z": 9}, ["a", "b"]) == {"a": None, "b": 2}
    assert stable_json_dumps({"b": 1, "a": "é"}) == '{"a":"é","b":1}'


def test_validate_rows_reports_missing_and_extra_fields() -> None:
    problems = validate_rows("servers", [{"recordKey": "x", "server": "x", "bogus": 1}])
    assert problems == [
        "servers[0] missing fields: collectedAt, reachability, role",
        "servers[0] unexpected fields: bogus",
    ]


def test_output_paths_layout(tmp_path) -> None:
    paths = resolve_output_paths(tmp_path)
    assert paths.csv("scopes") == tmp_path / "inventory" / "scopes.csv"
    assert paths.jsonl("leases") == tmp_path / "inventory" / "leases.jsonl"
    assert paths.report_html == tmp_path / "report" / "report.html"
    assert paths.run_summary_json == tmp_path / "run_summary.json"
    assert paths.diff_dir == tmp_path / "diff"
