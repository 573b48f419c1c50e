from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from ..core.model import Event, FailureOccurred, ScopeVisited, ServerVisited, ZoneVisited

TIER_STYLES: Dict[str, str] = {
    "Green": "bold green",
    "Yellow": "bold yellow",
    "Red": "bold red",
}


def _format_counts(counts: Dict[str, int]) -> str:
    return ", ".join(f"{name}={count}" for name, count in counts.items() if count)


class RunProgress:
    """
    Live console progress for a traversal: one bar over the server list with
    running node and failure counts. A no-op when disabled.
    """

    def __init__(self, *, enabled: bool, console: Optional[Console] = None) -> None:
        self._enabled = bool(enabled)
        self._console = console or Console(stderr=True)
        self._progress: Optional[Progress] = None
        self._traverse_task: Optional[int] = None
        self._export_task: Optional[int] = None
        self._counts: Dict[str, int] = {}
        self._child_label = "scopes"
        self._started = False
        if self._enabled:
            self._progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("{task.fields[counts]}", justify="left"),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )

    def __enter__(self) -> RunProgress:
        if self._enabled and self._progress and not self._started:
            self._progress.start()
            self._started = True
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._enabled and self._progress and self._started:
            self._progress.stop()
            self._started = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_traversal(self, servers: Sequence[str], *, child_label: str = "scopes") -> None:
        if not self._enabled or not self._progress:
            return
        self._child_label = child_label
        self._counts = {child_label: 0, "failures": 0}
        self._traverse_task = self._progress.add_task("Servers", total=len(servers), counts="")

    def observe(self, event: Event) -> None:
        """Advance on each server visited; tally scopes/zones and failures."""
        if not self._enabled or not self._progress or self._traverse_task is None:
            return
        advance = 0
        if isinstance(event, ServerVisited):
            advance = 1
        elif isinstance(event, (ScopeVisited, ZoneVisited)):
            self._counts[self._child_label] += 1
        elif isinstance(event, FailureOccurred):
            self._counts["failures"] += 1
        else:
            return
        self._progress.update(self._traverse_task, advance=advance, counts=_format_counts(self._counts))

    def start_export(self, total: int) -> None:
        if not self._enabled or not self._progress:
            return
        self._export_task = self._progress.add_task("Export", total=total, counts="")

    def advance_export(self, artifact: str) -> None:
        if not self._enabled or not self._progress or self._export_task is None:
            return
        self._progress.update(self._export_task, advance=1, counts=artifact)


def render_run_summary_table(
    *,
    enabled: bool,
    status: str,
    counts: Dict[str, int],
    servers: Sequence[str],
    outdir: str,
    risk_total: Optional[int] = None,
    risk_tier: Optional[str] = None,
    alert: Optional[str] = None,
    failures_by_kind: Optional[Dict[str, int]] = None,
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Run Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", status)
    table.add_row("Servers", f"{len(servers)} ({', '.join(servers[:4])}{', ...' if len(servers) > 4 else ''})")
    for name, count in counts.items():
        if name == "failures":
            continue
        if count:
            table.add_row(name.replace("_", " ").capitalize(), str(count))
    failures = counts.get("failures", 0)
    table.add_row("Failures", f"[bold red]{failures}[/]" if failures else "0")
    for kind, count in (failures_by_kind or {}).items():
        table.add_row(f"  {kind}", str(count))
    if risk_tier is not None:
        style = TIER_STYLES.get(risk_tier, "white")
        table.add_row("Risk", f"{risk_total} points ([{style}]{risk_tier}[/])")
    if alert:
        table.add_row("Alert", alert)
    table.add_row("Output dir", outdir)
    (console or Console()).print(table)
