from __future__ import annotations

import csv
import json

import pytest

import win_inventory.cli as cli
from win_inventory.cli import cmd_diff, cmd_dns, cmd_list_servers, cmd_run, main
from win_inventory.config import load_run_config
from win_inventory.export.parquet import ParquetNotAvailable
from win_inventory.normalize.schema import resolve_output_paths
from win_inventory.util.errors import DiscoveryError, UnreachableError


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch) -> None:
    # keep the root logger under pytest's control
    monkeypatch.setattr(cli, "setup_logging", lambda *_args, **_kwargs: None)
    for key in ("WIN_INV_SERVERS", "WIN_INV_SMTP_HOST", "WIN_INV_MAIL_TO", "WIN_INV_MAIL_FROM"):
        monkeypatch.delenv(key, raising=False)


def _summary(outdir) -> dict:
    return json.loads(resolve_output_paths(outdir).run_summary_json.read_text(encoding="utf-8"))


def _csv_rows(path) -> list:
    with path.open(encoding="utf-8", newline="") as f:
        return list(csv.DictReader(f))


def test_run_writes_all_artifacts_offline(tmp_path, two_server_client) -> None:
    command, cfg = load_run_config(
        argv=["run", "--outdir", str(tmp_path / "out"), "--servers", "dhcp-a,dhcp-b", "--no-progress"]
    )
    assert command == "run"
    assert cfg.outdir.parent == tmp_path / "out"

    assert cmd_run(cfg, two_server_client) == 0

    paths = resolve_output_paths(cfg.outdir)
    for name in ("servers", "scopes", "leases", "reservations", "options", "exclusions", "findings", "failures"):
        assert paths.csv(name).is_file()
        assert paths.jsonl(name).is_file()
        assert not paths.parquet(name).exists()
    assert not paths.csv("zones").exists()
    assert paths.report_html.is_file()
    assert paths.workbook_xlsx.is_file()
    assert paths.report_md.is_file()
    assert paths.debug_log.is_file()

    summary = _summary(cfg.outdir)
    assert summary["schema_version"] == "1"
    assert summary["role"] == "DHCP"
    assert summary["status"] == "OK"
    assert summary["servers_requested"] == 2
    assert summary["counts"]["scopes"] == 2
    assert summary["counts"]["failures"] == 0
    assert summary["risk_total"] == 9
    assert summary["risk_tier"] == "Red"
    assert summary["alert"] == "not-configured"

    scopes = _csv_rows(paths.csv("scopes"))
    assert [(s["server"], s["riskPoints"]) for s in scopes] == [("dhcp-a", "6"), ("dhcp-b", "3")]
    assert scopes[0]["description"] == "unknown"


def test_run_with_failures_is_partial(tmp_path, make_client, two_server_data) -> None:
    client = make_client(two_server_data, errors={("list_scopes", "dhcp-a"): UnreachableError("rpc down")})
    _, cfg = load_run_config(
        argv=["run", "--outdir", str(tmp_path), "--servers", "dhcp-a,dhcp-b", "--no-progress", "--formats", "csv"]
    )

    assert cmd_run(cfg, client) == 0

    summary = _summary(cfg.outdir)
    assert summary["status"] == "PARTIAL"
    assert summary["failures_by_kind"] == {"Unreachable": 1}
    assert summary["failures_by_stage"] == {"scopes": 1}
    assert summary["failures_by_node"] == {"dhcp-a": 1}
    assert summary["risk_total"] == 3
    assert summary["risk_tier"] == "Green"
    assert summary["alert"] == "skipped"

    paths = resolve_output_paths(cfg.outdir)
    [failure] = _csv_rows(paths.csv("failures"))
    assert (failure["server"], failure["stage"], failure["kind"]) == ("dhcp-a", "scopes", "Unreachable")
    assert not paths.jsonl("scopes").exists()
    assert not paths.report_html.exists()
    assert "| Unreachable | 1 |" in paths.report_md.read_text(encoding="utf-8")


def test_run_with_prev_writes_diff(tmp_path, make_client, two_server_data) -> None:
    _, first = load_run_config(
        argv=["run", "--outdir", str(tmp_path / "b"), "--servers", "dhcp-a,dhcp-b", "--no-progress"]
    )
    assert cmd_run(first, make_client(two_server_data)) == 0
    prev = resolve_output_paths(first.outdir).jsonl("scopes")

    changed = dict(two_server_data)
    changed[("list_scope_statistics", "dhcp-b")] = [{"ScopeId": "192.168.1.0", "InUse": 50, "Free": 50}]
    _, second = load_run_config(
        argv=[
            "run",
            "--outdir",
            str(tmp_path / "c"),
            "--servers",
            "dhcp-a,dhcp-b",
            "--no-progress",
            "--formats",
            "csv",
            "--prev",
            str(prev),
        ]
    )
    assert cmd_run(second, make_client(changed)) == 0

    paths = resolve_output_paths(second.outdir)
    assert paths.jsonl("scopes").is_file()
    diff_summary = json.loads((paths.diff_dir / "diff_summary.json").read_text(encoding="utf-8"))
    assert diff_summary == {
        "added": 0,
        "removed": 0,
        "changed": 1,
        "unchanged": 1,
        "prev_total": 2,
        "curr_total": 2,
    }
    assert "## Changes Since Previous Run" in paths.report_md.read_text(encoding="utf-8")


def test_run_continues_when_parquet_is_unavailable(tmp_path, two_server_client, monkeypatch) -> None:
    calls = []

    def _no_pyarrow(rows, fields, path, **kwargs):
        calls.append(path)
        raise ParquetNotAvailable("pyarrow is required for Parquet export.")

    monkeypatch.setattr(cli, "write_parquet", _no_pyarrow)
    _, cfg = load_run_config(
        argv=["run", "--outdir", str(tmp_path), "--servers", "dhcp-a", "--no-progress", "--formats", "csv", "--parquet"]
    )
    assert cmd_run(cfg, two_server_client) == 0
    # disabled after the first failure
    assert len(calls) == 1
    assert _summary(cfg.outdir)["status"] == "OK"


def test_dns_run(tmp_path, make_client) -> None:
    client = make_client(
        {
            ("list_zones", "dc1"): [{"ZoneName": "corp.example", "ZoneType": "Primary", "IsDsIntegrated": True}],
            ("list_records", "dc1", "corp.example"): [
                {"HostName": "@", "RecordType": "NS", "RecordData": "dc1.corp.example.", "TimeToLive": "01:00:00"},
                {"HostName": "www", "RecordType": "A", "RecordData": "10.0.0.80", "TimeToLive": "01:00:00"},
            ],
        }
    )
    command, cfg = load_run_config(argv=["dns", "--outdir", str(tmp_path), "--servers", "dc1", "--no-progress"])
    assert command == "dns"

    assert cmd_dns(cfg, client) == 0

    paths = resolve_output_paths(cfg.outdir)
    summary = _summary(cfg.outdir)
    assert summary["role"] == "DNS"
    assert summary["risk_tier"] is None
    assert summary["counts"]["zones"] == 1
    assert summary["counts"]["dns_records"] == 2
    assert not paths.csv("scopes").exists()
    records = _csv_rows(paths.csv("dns_records"))
    assert [r["HostName"] for r in records] == ["@", "www"]
    assert records[0]["recordKey"] == "dc1|corp.example|@|NS|dc1.corp.example."


def test_discovery_failure_fails_run_but_writes_summary(tmp_path, make_client) -> None:
    client = make_client(errors={("list_servers", "DHCP"): UnreachableError("no domain controller")})
    _, cfg = load_run_config(argv=["run", "--outdir", str(tmp_path), "--no-progress"])

    with pytest.raises(DiscoveryError):
        cmd_run(cfg, client)

    summary = _summary(cfg.outdir)
    assert summary["status"] == "FAILED"
    assert summary["servers_requested"] == 0
    assert "Fatal error" in resolve_output_paths(cfg.outdir).report_md.read_text(encoding="utf-8")


def test_main_exit_codes(tmp_path, make_client, two_server_data, monkeypatch) -> None:
    monkeypatch.setattr(cli, "make_role_client", lambda *_args, **_kwargs: make_client(two_server_data))
    with pytest.raises(SystemExit) as ok:
        main(["run", "--outdir", str(tmp_path / "ok"), "--no-progress", "--formats", "csv"])
    assert ok.value.code == 0

    failing = make_client(errors={("list_servers", "DHCP"): UnreachableError("no domain controller")})
    monkeypatch.setattr(cli, "make_role_client", lambda *_args, **_kwargs: failing)
    with pytest.raises(SystemExit) as discovery:
        main(["run", "--outdir", str(tmp_path / "fail"), "--no-progress"])
    assert discovery.value.code == 3

    with pytest.raises(SystemExit) as bad_config:
        main(["run", "--workers-server", "0"])
    assert bad_config.value.code == 2

    with pytest.raises(SystemExit) as bad_diff:
        main(["diff", "--outdir", str(tmp_path)])
    assert bad_diff.value.code == 2


def test_cmd_diff_prints_summary(tmp_path, capsys) -> None:
    prev = tmp_path / "prev.jsonl"
    curr = tmp_path / "curr.jsonl"
    prev.write_text('{"recordKey":"a","v":1}\n', encoding="utf-8")
    curr.write_text('{"recordKey":"a","v":1}\n{"recordKey":"b","v":1}\n', encoding="utf-8")
    _, cfg = load_run_config(argv=["diff", "--prev", str(prev), "--curr", str(curr), "--outdir", str(tmp_path)])

    assert cmd_diff(cfg) == 0

    printed = json.loads(capsys.readouterr().out)
    assert printed["added"] == 1
    assert printed["unchanged"] == 1
    assert (tmp_path / "diff.json").is_file()


def test_cmd_list_servers_prints_directory_servers(two_server_client, capsys) -> None:
    _, cfg = load_run_config(argv=["list-servers"])
    assert cmd_list_servers(cfg, two_server_client) == 0
    assert capsys.readouterr().out.splitlines() == ["dhcp-a", "dhcp-b"]
