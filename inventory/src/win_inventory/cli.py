from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .config import RunConfig, load_run_config
from .core.aggregate import Inventory, aggregate
from .core.health import RiskThresholds, classify, scope_inputs
from .core.model import Event, RiskAssessment
from .core.traversal import traverse_dhcp, traverse_dns
from .diff.diff import diff_files, write_diff
from .export.csv import write_csv
from .export.html import write_html_report
from .export.jsonl import write_jsonl
from .export.parquet import ParquetNotAvailable, write_parquet
from .export.xlsx import write_workbook
from .logging import LogConfig, add_run_log_file, get_logger, remove_run_log_file, setup_logging
from .normalize.rows import inventory_rows
from .normalize.schema import (
    COLLECTION_FIELDS,
    DHCP_COLLECTIONS,
    DNS_COLLECTIONS,
    OutputPaths,
    Row,
    resolve_output_paths,
)
from .normalize.transform import stable_json_dumps, validate_rows
from .notify.mail import MailSettings, maybe_alert
from .report import write_run_report_md
from .util.errors import ConfigError, ExportError, as_exit_code
from .util.rich_progress import RunProgress, render_run_summary_table
from .util.time import utc_now_iso
from .windows.client import RoleClient, make_role_client
from .windows.discovery import collect_servers

LOG = get_logger(__name__)

OUT_SCHEMA_VERSION = "1"

STATUS_OK = "OK"
STATUS_PARTIAL = "PARTIAL"
STATUS_FAILED = "FAILED"


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    timer_key: Optional[str] = None,
    **extra: Any,
) -> None:
    key = timer_key or step
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(key)
        elif phase in {"complete", "error", "warning", "skipped"}:
            duration_ms = timers.finish(key)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


def _mail_settings(cfg: RunConfig) -> Optional[MailSettings]:
    if not (cfg.smtp_host and cfg.mail_from and cfg.mail_to):
        return None
    return MailSettings(
        smtp_host=cfg.smtp_host,
        mail_from=cfg.mail_from,
        mail_to=tuple(cfg.mail_to),
        smtp_port=cfg.smtp_port,
        starttls=cfg.smtp_starttls,
        smtp_user=cfg.smtp_user,
    )


def _progress_enabled(cfg: RunConfig) -> bool:
    return cfg.progress and sys.stderr.isatty()


def _client_for(cfg: RunConfig, client: Optional[RoleClient]) -> RoleClient:
    return client if client is not None else make_role_client(cfg.powershell, cfg.timeout)


def _collect(
    cfg: RunConfig,
    client: RoleClient,
    servers: Sequence[str],
    traverse: Callable[..., Iterator[Event]],
    *,
    child_label: str,
    timers: _StepTimers,
) -> Inventory:
    _log_event(
        LOG,
        logging.INFO,
        "Traversal started",
        step="traverse",
        phase="start",
        timers=timers,
        server_count=len(servers),
        workers=cfg.workers_server,
    )
    events: List[Event] = []
    with RunProgress(enabled=_progress_enabled(cfg)) as progress:
        progress.start_traversal(servers, child_label=child_label)
        for event in traverse(client, servers, workers=cfg.workers_server):
            progress.observe(event)
            events.append(event)
    inventory = aggregate(events)
    _log_event(
        LOG,
        logging.INFO,
        "Traversal complete",
        step="traverse",
        phase="complete",
        timers=timers,
        events=len(events),
        failures=len(inventory.failures),
    )
    return inventory


def _summary_pairs(
    status: str,
    servers: Sequence[str],
    inventory: Inventory,
    collections: Sequence[str],
    assessment: Optional[RiskAssessment],
) -> List[Tuple[str, Any]]:
    counts = inventory.counts()
    pairs: List[Tuple[str, Any]] = [("Status", status), ("Servers", len(servers))]
    for name in collections:
        if name in counts and name not in {"servers", "failures"}:
            pairs.append((name.replace("_", " ").capitalize(), counts[name]))
    pairs.append(("Failures", counts["failures"]))
    if assessment is not None:
        pairs.append(("Risk points", assessment.total))
        pairs.append(("Risk tier", assessment.tier.value))
    return pairs


def _write_exports(
    cfg: RunConfig,
    paths: OutputPaths,
    rows: Dict[str, List[Row]],
    collections: Sequence[str],
    *,
    title: str,
    summary: List[Tuple[str, Any]],
    tier: Optional[str],
    failure_summary: Dict[str, Dict[str, int]],
    timers: _StepTimers,
) -> List[Path]:
    """Write every requested artifact for collections. Returns the paths written."""
    formats = set(cfg.formats)
    written: List[Path] = []
    problems: List[str] = []
    for name in collections:
        problems.extend(validate_rows(name, rows[name]))
    if problems:
        raise ExportError(f"Row schema validation failed: {'; '.join(problems[:5])}")

    _log_event(LOG, logging.INFO, "Export started", step="export", phase="start", timers=timers)
    parquet = cfg.parquet
    try:
        for name in collections:
            fields = COLLECTION_FIELDS[name]
            if "csv" in formats:
                write_csv(rows[name], fields, paths.csv(name))
                written.append(paths.csv(name))
            # scopes.jsonl is the diff input for --prev
            if "jsonl" in formats or (name == "scopes" and cfg.prev):
                write_jsonl(rows[name], fields, paths.jsonl(name))
                written.append(paths.jsonl(name))
            if parquet:
                try:
                    write_parquet(rows[name], fields, paths.parquet(name))
                    written.append(paths.parquet(name))
                except ParquetNotAvailable as e:
                    parquet = False
                    _log_event(
                        LOG,
                        logging.WARNING,
                        "Parquet export skipped",
                        step="export",
                        phase="warning",
                        artifact="parquet",
                        error=str(e),
                    )
        selected = {name: rows[name] for name in collections}
        if "xlsx" in formats:
            written.append(
                write_workbook(selected, COLLECTION_FIELDS, paths.workbook_xlsx, summary=summary, tier=tier)
            )
        if "html" in formats:
            written.append(
                write_html_report(
                    paths.report_html,
                    title=title,
                    generated_at=cfg.collected_at,
                    collections=selected,
                    fields_by_collection=COLLECTION_FIELDS,
                    summary=summary,
                    tier=tier,
                    failure_summary=failure_summary,
                )
            )
    except OSError as e:
        raise ExportError(f"Export failed: {e}") from e
    _log_event(
        LOG,
        logging.INFO,
        "Export complete",
        step="export",
        phase="complete",
        timers=timers,
        artifacts=len(written),
    )
    return written


def _write_run_summary(path: Path, summary: Dict[str, Any]) -> Path:
    summary = dict(summary)
    summary["schema_version"] = OUT_SCHEMA_VERSION
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(stable_json_dumps(summary), encoding="utf-8")
    return path


def _run_collection(
    cfg: RunConfig,
    client: Optional[RoleClient],
    *,
    role: str,
) -> int:
    """
    Shared pipeline for run (DHCP) and dns: resolve servers, traverse,
    aggregate, classify (DHCP only), export, diff, alert. run_summary.json
    and report.md are written even when the run fails.
    """
    is_dhcp = role == "DHCP"
    collections = DHCP_COLLECTIONS if is_dhcp else DNS_COLLECTIONS
    paths = resolve_output_paths(cfg.outdir)
    cfg.outdir.mkdir(parents=True, exist_ok=True)
    add_run_log_file(paths.debug_log)

    started_at = utc_now_iso()
    timers = _StepTimers()
    status = STATUS_OK
    fatal_error: Optional[str] = None
    servers: List[str] = []
    inventory = Inventory()
    assessment: Optional[RiskAssessment] = None
    diff_summary: Optional[Dict[str, Any]] = None
    alert_status: Optional[str] = None

    _log_event(
        LOG,
        logging.INFO,
        "Starting inventory run",
        step="run",
        phase="start",
        timers=timers,
        role=role,
        outdir=str(cfg.outdir),
    )
    try:
        role_client = _client_for(cfg, client)
        servers = collect_servers(role_client, role, cfg.servers, cfg.servers_file)
        if is_dhcp:
            inventory = _collect(cfg, role_client, servers, traverse_dhcp, child_label="scopes", timers=timers)
            assessment = classify(
                scope_inputs(inventory),
                RiskThresholds(yellow_min=cfg.yellow_threshold, red_min=cfg.red_threshold),
            )
            _log_event(
                LOG,
                logging.INFO,
                "Scope health classified",
                step="health",
                phase="complete",
                scopes=assessment.scopes_evaluated,
                total=assessment.total,
                tier=assessment.tier.value,
            )
        else:
            inventory = _collect(cfg, role_client, servers, traverse_dns, child_label="zones", timers=timers)
        if inventory.failures:
            status = STATUS_PARTIAL

        rows = inventory_rows(inventory, cfg.collected_at, assessment)
        tier = assessment.tier.value if assessment is not None else None
        _write_exports(
            cfg,
            paths,
            rows,
            collections,
            title=f"Windows {role} Inventory",
            summary=_summary_pairs(status, servers, inventory, collections, assessment),
            tier=tier,
            failure_summary=inventory.failure_summary(),
            timers=timers,
        )

        if cfg.prev and is_dhcp:
            _log_event(LOG, logging.INFO, "Diff started", step="diff", phase="start", timers=timers)
            try:
                diff_obj = diff_files(cfg.prev, paths.jsonl("scopes"))
                write_diff(paths.diff_dir, diff_obj)
                diff_summary = diff_obj["summary"]
                _log_event(LOG, logging.INFO, "Diff complete", step="diff", phase="complete", timers=timers)
            except Exception as e:
                _log_event(
                    LOG,
                    logging.WARNING,
                    "Diff failed",
                    step="diff",
                    phase="error",
                    timers=timers,
                    error=str(e),
                )

        if assessment is not None:
            alert_status = maybe_alert(
                _mail_settings(cfg),
                assessment,
                cfg.alert_on,
                servers=servers,
                failures=len(inventory.failures),
                outdir=str(cfg.outdir),
            )

        _log_event(
            LOG,
            logging.INFO,
            "Run complete",
            step="run",
            phase="complete",
            timers=timers,
            status=status,
            outdir=str(cfg.outdir),
        )
        return 0
    except Exception as e:
        status = STATUS_FAILED
        fatal_error = str(e)
        raise
    finally:
        finished_at = utc_now_iso()
        failure_summary = inventory.failure_summary()
        _write_run_summary(
            paths.run_summary_json,
            {
                "role": role,
                "status": status,
                "started_at": started_at,
                "finished_at": finished_at,
                "servers_requested": len(servers),
                "counts": inventory.counts(),
                "failures_by_kind": failure_summary["by_kind"],
                "failures_by_stage": failure_summary["by_stage"],
                "failures_by_node": failure_summary["by_node"],
                "risk_total": assessment.total if assessment is not None else None,
                "risk_tier": assessment.tier.value if assessment is not None else None,
                "alert": alert_status,
            },
        )
        write_run_report_md(
            outdir=cfg.outdir,
            status=status,
            role=role,
            cfg=cfg,
            inventory=inventory,
            servers_requested=servers,
            assessment=assessment,
            diff_summary=diff_summary,
            alert_status=alert_status,
            fatal_error=fatal_error,
            started_at=started_at,
            finished_at=finished_at,
        )
        render_run_summary_table(
            enabled=cfg.progress,
            status=status,
            counts=inventory.counts(),
            servers=servers,
            outdir=str(cfg.outdir),
            failures_by_kind=failure_summary["by_kind"],
            risk_total=assessment.total if assessment is not None else None,
            risk_tier=assessment.tier.value if assessment is not None else None,
            alert=alert_status,
        )
        remove_run_log_file(paths.debug_log)


def cmd_run(cfg: RunConfig, client: Optional[RoleClient] = None) -> int:
    return _run_collection(cfg, client, role="DHCP")


def cmd_dns(cfg: RunConfig, client: Optional[RoleClient] = None) -> int:
    return _run_collection(cfg, client, role="DNS")


def cmd_diff(cfg: RunConfig) -> int:
    prev = cfg.prev
    curr = cfg.curr
    if not prev or not curr:
        raise ConfigError("Both --prev and --curr must be provided for diff")
    timers = _StepTimers()
    _log_event(
        LOG,
        logging.INFO,
        "Diff started",
        step="diff",
        phase="start",
        timers=timers,
    )
    diff_obj = diff_files(Path(prev), Path(curr))
    write_diff(cfg.outdir, diff_obj)
    _log_event(
        LOG,
        logging.INFO,
        "Diff complete",
        step="diff",
        phase="complete",
        timers=timers,
        outdir=str(cfg.outdir),
        **diff_obj["summary"],
    )
    print(json.dumps(diff_obj["summary"], sort_keys=True))
    return 0


def cmd_list_servers(cfg: RunConfig, client: Optional[RoleClient] = None) -> int:
    servers = collect_servers(_client_for(cfg, client), cfg.role.upper(), cfg.servers, cfg.servers_file)
    for name in servers:
        print(name)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    try:
        try:
            command, cfg = load_run_config(argv=argv)
        except (ValueError, FileNotFoundError) as e:
            raise ConfigError(str(e)) from e
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "run":
            code = cmd_run(cfg)
        elif command == "dns":
            code = cmd_dns(cfg)
        elif command == "diff":
            code = cmd_diff(cfg)
        elif command == "list-servers":
            code = cmd_list_servers(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Piping list-servers into head closes stdout early.
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())  # no-op when already configured
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
