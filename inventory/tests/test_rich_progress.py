from __future__ import annotations

import io

from rich.console import Console

from win_inventory.core.model import Role, ScopeNode, ScopeVisited, ServerNode, ServerVisited
from win_inventory.util.rich_progress import RunProgress, render_run_summary_table


def _console() -> Console:
    return Console(file=io.StringIO(), width=120, force_terminal=False)


def test_disabled_progress_is_a_no_op() -> None:
    console = _console()
    with RunProgress(enabled=False, console=console) as progress:
        progress.start_traversal(["dhcp-a"])
        progress.observe(ServerVisited(ServerNode("dhcp-a", Role.DHCP)))
        progress.start_export(3)
        progress.advance_export("csv")
    assert not progress.enabled
    assert console.file.getvalue() == ""


def test_enabled_progress_tracks_servers_and_scopes() -> None:
    with RunProgress(enabled=True, console=_console()) as progress:
        progress.start_traversal(["dhcp-a", "dhcp-b"], child_label="scopes")
        progress.observe(ServerVisited(ServerNode("dhcp-a", Role.DHCP)))
        progress.observe(ScopeVisited(ScopeNode("dhcp-a", "10.0.0.0")))
        progress.observe(ScopeVisited(ScopeNode("dhcp-a", "10.0.1.0")))
        assert progress._counts == {"scopes": 2, "failures": 0}
        task = progress._progress.tasks[0]
        assert task.completed == 1
        assert task.total == 2


def test_summary_table_renders_risk_and_status() -> None:
    console = _console()
    render_run_summary_table(
        enabled=True,
        status="PARTIAL",
        counts={"servers": 2, "scopes": 2, "leases": 0, "failures": 1},
        servers=["dhcp-a", "dhcp-b"],
        outdir="out/20240501T000000Z",
        risk_total=9,
        risk_tier="Red",
        alert="not-configured",
        console=console,
    )
    text = console.file.getvalue()
    assert "PARTIAL" in text
    assert "9 points (Red)" in text
    assert "not-configured" in text
    assert "Leases" not in text


def test_summary_table_lists_failures_by_kind() -> None:
    console = _console()
    render_run_summary_table(
        enabled=True,
        status="PARTIAL",
        counts={"servers": 2, "scopes": 1, "failures": 3},
        servers=["dhcp-a", "dhcp-b"],
        outdir="out",
        failures_by_kind={"AccessDenied": 1, "Unreachable": 2},
        console=console,
    )
    lines = console.file.getvalue().splitlines()
    assert any("AccessDenied" in line and "1" in line for line in lines)
    assert any("Unreachable" in line and "2" in line for line in lines)
