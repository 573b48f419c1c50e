from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import RunConfig, dump_config
from .core.aggregate import Inventory
from .core.health import RULES_BY_ID
from .core.model import RiskAssessment, ScopeKey
from .normalize.schema import COLLECTION_TITLES, resolve_output_paths
from .util.time import utc_now_iso


def _truncate(s: str, max_len: int = 240) -> str:
    s = (s or "").strip()
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def _top_n(d: Dict[str, int], n: int) -> List[Tuple[str, int]]:
    return sorted(((k, int(v)) for k, v in d.items()), key=lambda kv: (-kv[1], kv[0]))[:n]


def _md_cell(value: str) -> str:
    # Escape pipes and flatten newlines so a cell never splits a row.
    v = (value or "").replace("\n", "<br>").strip()
    v = v.replace("|", "\\|")
    return v


def _md_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[str]:
    hdr = [_md_cell(str(h)) for h in headers]
    out: List[str] = []
    out.append("| " + " | ".join(hdr) + " |")
    out.append("| " + " | ".join(["---"] * len(headers)) + " |")
    for r in rows:
        rr = [_md_cell(str(c)) for c in r]
        out.append("| " + " | ".join(rr) + " |")
    return out


def _scope_label(server: str, scope_id: str) -> str:
    return f"{server} / {scope_id}" if scope_id else f"{server} (server)"


def _scope_points(assessment: RiskAssessment) -> Dict[ScopeKey, int]:
    out: Dict[ScopeKey, int] = {}
    for f in assessment.triggered:
        key = ScopeKey(f.server, f.scope_id)
        out[key] = out.get(key, 0) + f.weight
    return out


def render_run_report_md(
    *,
    status: str,
    role: str,
    cfg_dict: Dict[str, Any],
    started_at: str,
    finished_at: str,
    inventory: Inventory,
    servers_requested: Sequence[str],
    assessment: Optional[RiskAssessment] = None,
    diff_summary: Optional[Dict[str, Any]] = None,
    alert_status: Optional[str] = None,
    fatal_error: Optional[str] = None,
) -> str:
    duration_note = ""
    try:
        duration = datetime.fromisoformat(finished_at) - datetime.fromisoformat(started_at)
        duration_note = f"Duration: {duration}"
    except ValueError:
        pass

    counts = inventory.counts()
    failures = inventory.failure_summary()
    reachable = sum(1 for s in inventory.servers if s.reachability.value == "reachable")

    lines: List[str] = []
    lines.append(f"# Windows {role} Inventory Report")
    lines.append("")
    lines.append(
        "This report summarizes what a read-only inventory run observed on the listed servers. "
        "Collection failures are reported per node and never hide the data that was collected."
    )
    lines.append("")

    glance: List[List[str]] = [
        ["Status", f"**{status}**"],
        ["Servers requested", str(len(servers_requested))],
        ["Servers reachable", f"{reachable}/{len(inventory.servers)}"],
    ]
    for name in ("scopes", "leases", "reservations", "options", "exclusions", "zones", "dns_records"):
        if counts.get(name):
            glance.append([COLLECTION_TITLES.get(name, name), str(counts[name])])
    glance.append(["Collection failures", str(len(inventory.failures))])
    if assessment is not None:
        glance.append(["Risk", f"{assessment.total} points ({assessment.tier.value})"])
    if alert_status:
        glance.append(["Alert", alert_status])

    lines.append("## At a Glance")
    lines.append("")
    lines.extend(_md_table(["Metric", "Value"], glance))
    lines.append("")

    if assessment is not None:
        lines.append("## Risk Assessment")
        lines.append(
            f"Evaluated **{assessment.scopes_evaluated}** scope(s); total **{assessment.total}** point(s), "
            f"tier **{assessment.tier.value}**."
        )
        lines.append("")
        rule_rows: List[List[str]] = []
        for rule_id, rule in RULES_BY_ID.items():
            hits = sum(1 for f in assessment.triggered if f.rule == rule_id)
            rule_rows.append([rule_id, rule.description, str(rule.weight), str(hits), str(hits * rule.weight)])
        lines.extend(_md_table(["Rule", "Description", "Weight", "Scopes", "Points"], rule_rows))
        lines.append("")

        lines.append("### Scopes by Risk")
        points = _scope_points(assessment)
        if points:
            by_label = {_scope_label(k.server, k.scope_id): v for k, v in points.items()}
            top = _top_n(by_label, 20)
            lines.extend(_md_table(["Scope", "Points"], [[k, str(v)] for k, v in top]))
            if len(by_label) > len(top):
                lines.append(f"(Truncated: {len(by_label) - len(top)} more scopes not shown.)")
        else:
            lines.append("- No health rule fired on any scope.")
        lines.append("")

        lines.append("### Triggered Findings")
        finding_rows = [[f.server, f.scope_id, f.rule, str(f.weight)] for f in assessment.triggered]
        if finding_rows:
            lines.extend(_md_table(["Server", "Scope", "Rule", "Weight"], finding_rows[:100]))
            if len(finding_rows) > 100:
                lines.append(f"(Truncated: {len(finding_rows) - 100} more findings not shown.)")
        else:
            lines.append("- None.")
        lines.append("")

    lines.append("## Collection Failures")
    if inventory.failures:
        lines.append("Each failure is scoped to the node it names; sibling scopes and servers were still traversed.")
        lines.append("")
        lines.extend(_md_table(["Kind", "Count"], [[k, str(v)] for k, v in failures["by_kind"].items()]))
        lines.append("")
        lines.extend(_md_table(["Stage", "Count"], [[k, str(v)] for k, v in failures["by_stage"].items()]))
        lines.append("")
        detail_rows = [
            [f.server, f.scope_id, f.stage, f.kind.value, _truncate(f.message, 160)] for f in inventory.failures
        ]
        lines.extend(_md_table(["Server", "Scope/Zone", "Stage", "Kind", "Message"], detail_rows[:50]))
        if len(detail_rows) > 50:
            lines.append(f"(Truncated: {len(detail_rows) - 50} more failures not shown; see failures.csv.)")
    else:
        lines.append("- No collection failures were recorded.")
    lines.append("")

    if diff_summary:
        lines.append("## Changes Since Previous Run")
        lines.extend(
            _md_table(
                ["Change", "Count"],
                [[k, str(diff_summary.get(k, 0))] for k in ("added", "removed", "changed", "unchanged")],
            )
        )
        lines.append("")

    lines.append("## Execution Metadata")
    lines.append(f"- Status: **{status}**")
    lines.append(f"- Started (UTC): {started_at}")
    lines.append(f"- Finished (UTC): {finished_at}")
    if duration_note:
        lines.append(f"- {duration_note}")
    if fatal_error:
        lines.append(f"- Fatal error: {_truncate(fatal_error, 300)}")
    lines.append("")

    lines.append("### Servers")
    server_rows = [[s.name, s.reachability.value] for s in inventory.servers]
    if server_rows:
        lines.extend(_md_table(["Server", "Reachability"], server_rows))
    else:
        lines.append("- No servers were visited.")
    lines.append("")

    lines.append("### Run Configuration")
    # Human-readable subset; run_summary.json carries the rest.
    lines.append(f"- Output dir: `{cfg_dict.get('outdir')}`")
    lines.append(f"- Formats: `{', '.join(cfg_dict.get('formats') or [])}`")
    lines.append(f"- Workers (servers): `{cfg_dict.get('workers_server')}`")
    lines.append(f"- PowerShell timeout (s): `{cfg_dict.get('timeout')}`")
    if role == "DHCP":
        lines.append(
            f"- Risk thresholds: Yellow >= `{cfg_dict.get('yellow_threshold')}`, "
            f"Red >= `{cfg_dict.get('red_threshold')}`"
        )
        lines.append(f"- Alert on: `{cfg_dict.get('alert_on')}`")
    if cfg_dict.get("prev"):
        lines.append(f"- Prev inventory: `{cfg_dict.get('prev')}`")
    lines.append("")
    return "\n".join(lines) + "\n"


def write_run_report_md(
    *,
    outdir: Path,
    status: str,
    role: str,
    cfg: RunConfig,
    inventory: Inventory,
    servers_requested: Sequence[str],
    assessment: Optional[RiskAssessment] = None,
    diff_summary: Optional[Dict[str, Any]] = None,
    alert_status: Optional[str] = None,
    fatal_error: Optional[str] = None,
    started_at: Optional[str] = None,
    finished_at: Optional[str] = None,
) -> Path:
    paths = resolve_output_paths(outdir)
    cfg_dict = dump_config(cfg)
    text = render_run_report_md(
        status=status,
        role=role,
        cfg_dict={**cfg_dict, "outdir": str(cfg_dict.get("outdir") or outdir)},
        started_at=started_at or utc_now_iso(),
        finished_at=finished_at or utc_now_iso(),
        inventory=inventory,
        servers_requested=list(servers_requested),
        assessment=assessment,
        diff_summary=dict(diff_summary) if diff_summary else None,
        alert_status=alert_status,
        fatal_error=fatal_error,
    )
    p = paths.report_md
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p
