from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .util.time import run_dir_stamp, utc_now_iso

# --------
# Defaults
# --------
DEFAULT_OUTDIR = "out"
DEFAULT_WORKERS_SERVER = 4
DEFAULT_TIMEOUT = 120
DEFAULT_POWERSHELL = "powershell"
DEFAULT_YELLOW = 4
DEFAULT_RED = 8
DEFAULT_ALERT_ON = "Red"
DEFAULT_SMTP_PORT = 25
FORMAT_CHOICES = ("csv", "html", "xlsx", "jsonl")
ALERT_CHOICES = ("Yellow", "Red", "never")
ROLE_CHOICES = ("dhcp", "dns")

ALLOWED_CONFIG_KEYS = {
    "outdir",
    "servers",
    "servers_file",
    "role",
    "formats",
    "parquet",
    "prev",
    "curr",
    "log_level",
    "json_logs",
    "workers_server",
    "timeout",
    "powershell",
    "yellow_threshold",
    "red_threshold",
    "alert_on",
    "smtp_host",
    "smtp_port",
    "smtp_starttls",
    "smtp_user",
    "mail_from",
    "mail_to",
    "progress",
}
BOOL_CONFIG_KEYS = {"parquet", "json_logs", "smtp_starttls", "progress"}
INT_CONFIG_KEYS = {"workers_server", "timeout", "yellow_threshold", "red_threshold", "smtp_port"}
PATH_CONFIG_KEYS = {"outdir", "servers_file", "prev", "curr"}
STR_CONFIG_KEYS = {"role", "log_level", "powershell", "alert_on", "smtp_host", "smtp_user", "mail_from"}
LIST_CONFIG_KEYS = {"servers", "formats", "mail_to"}


@dataclass(frozen=True)
class RunConfig:
    # General
    outdir: Path
    servers: Optional[List[str]] = None
    servers_file: Optional[Path] = None
    role: str = "dhcp"
    formats: List[str] = field(default_factory=lambda: list(FORMAT_CHOICES))
    parquet: bool = False
    prev: Optional[Path] = None
    curr: Optional[Path] = None
    json_logs: bool = False
    log_level: str = "INFO"
    progress: bool = True

    # Role client
    workers_server: int = DEFAULT_WORKERS_SERVER
    timeout: int = DEFAULT_TIMEOUT
    powershell: str = DEFAULT_POWERSHELL

    # Health and alerting
    yellow_threshold: int = DEFAULT_YELLOW
    red_threshold: int = DEFAULT_RED
    alert_on: str = DEFAULT_ALERT_ON
    smtp_host: Optional[str] = None
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_starttls: bool = False
    smtp_user: Optional[str] = None
    mail_from: Optional[str] = None
    mail_to: Optional[List[str]] = None

    # Internal/derived
    collected_at: str = field(default_factory=utc_now_iso)


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        elif path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            # YAML is a superset of JSON
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    raw = _env_str(name)
    if raw is None:
        return None
    return _coerce_int(name, raw)


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be an integer")


def _coerce_list(key: str, value: Any) -> List[str]:
    """Accept a list of strings or a comma-separated string."""
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    raise ValueError(f"Config field '{key}' must be a list of strings or comma-separated string")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
        elif key in LIST_CONFIG_KEYS:
            normalized[key] = _coerce_list(key, value)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in PATH_CONFIG_KEYS:
            if isinstance(value, (str, Path)):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string path")
        elif key in STR_CONFIG_KEYS:
            if isinstance(value, str):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string")
        else:
            normalized[key] = value
    return _compact_dict(normalized)


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def _timestamp_dir(base: Optional[Union[str, Path]]) -> Path:
    return Path(base or DEFAULT_OUTDIR) / run_dir_stamp()


def _validate(merged: Dict[str, Any]) -> None:
    formats = merged.get("formats") or []
    bad = sorted(set(formats) - set(FORMAT_CHOICES))
    if bad:
        raise ValueError(f"Unknown output formats: {', '.join(bad)} (choose from {', '.join(FORMAT_CHOICES)})")
    if merged.get("alert_on") not in ALERT_CHOICES:
        raise ValueError(f"alert_on must be one of: {', '.join(ALERT_CHOICES)}")
    if merged.get("role") not in ROLE_CHOICES:
        raise ValueError(f"role must be one of: {', '.join(ROLE_CHOICES)}")
    if int(merged["workers_server"]) < 1:
        raise ValueError("workers_server must be >= 1")
    if int(merged["timeout"]) < 1:
        raise ValueError("timeout must be >= 1")
    yellow, red = int(merged["yellow_threshold"]), int(merged["red_threshold"])
    if not 0 < yellow < red:
        raise ValueError(f"Risk thresholds must satisfy 0 < yellow ({yellow}) < red ({red})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="win-inv", description="Windows DHCP/DNS role inventory")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # common flags builder
    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")

    def add_client(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--servers",
            default=None,
            help="Comma-separated server names (skips AD discovery)",
        )
        p.add_argument("--servers-file", type=Path, default=None, help="File with one server per line")
        p.add_argument("--timeout", type=int, default=None, help=f"Per-cmdlet timeout seconds (default {DEFAULT_TIMEOUT})")
        p.add_argument("--powershell", default=None, help=f"PowerShell executable (default {DEFAULT_POWERSHELL})")

    def add_collect(p: argparse.ArgumentParser) -> None:
        add_client(p)
        p.add_argument("--outdir", type=Path, default=None, help="Output base directory (out/TS)")
        p.add_argument(
            "--formats",
            default=None,
            help=f"Comma-separated output formats (default {','.join(FORMAT_CHOICES)})",
        )
        p.add_argument(
            "--parquet",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Also write Parquet (pyarrow)",
        )
        p.add_argument(
            "--workers-server",
            type=int,
            default=None,
            help=f"Max servers traversed in parallel (default {DEFAULT_WORKERS_SERVER})",
        )
        p.add_argument(
            "--progress",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Show live progress on the console",
        )

    # run
    p_run = subparsers.add_parser("run", help="Collect DHCP inventory and score scope health")
    add_common(p_run)
    add_collect(p_run)
    p_run.add_argument("--prev", type=Path, default=None, help="Previous scopes.jsonl for diff")
    p_run.add_argument("--yellow-threshold", type=int, default=None, help=f"Lowest Yellow total (default {DEFAULT_YELLOW})")
    p_run.add_argument("--red-threshold", type=int, default=None, help=f"Lowest Red total (default {DEFAULT_RED})")
    p_run.add_argument("--alert-on", default=None, choices=list(ALERT_CHOICES), help="Email when tier reaches this level")
    p_run.add_argument("--smtp-host", default=None, help="SMTP relay host")
    p_run.add_argument("--smtp-port", type=int, default=None, help=f"SMTP port (default {DEFAULT_SMTP_PORT})")
    p_run.add_argument(
        "--smtp-starttls",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Use STARTTLS",
    )
    p_run.add_argument("--smtp-user", default=None, help="SMTP login (password from WIN_INV_SMTP_PASSWORD)")
    p_run.add_argument("--mail-from", default=None, help="Alert sender address")
    p_run.add_argument("--mail-to", default=None, help="Comma-separated alert recipients")

    # dns
    p_dns = subparsers.add_parser("dns", help="Collect DNS zones and records")
    add_common(p_dns)
    add_collect(p_dns)

    # diff
    p_diff = subparsers.add_parser("diff", help="Diff two inventory JSONL files")
    add_common(p_diff)
    p_diff.add_argument("--prev", type=Path, required=False, help="Previous export (.jsonl)")
    p_diff.add_argument("--curr", type=Path, required=False, help="Current export (.jsonl)")
    p_diff.add_argument("--outdir", type=Path, default=None, help="Output dir for diff files")

    # list-servers
    p_ls = subparsers.add_parser("list-servers", help="List DHCP or DNS servers")
    add_common(p_ls)
    add_client(p_ls)
    p_ls.add_argument("--role", default=None, choices=list(ROLE_CHOICES), help="Server role (default dhcp)")
    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[List[str]] = None,
    subcommand: Optional[str] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is the subcommand selected: run|dns|diff|list-servers
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command if subcommand is None else subcommand

    # defaults
    base: Dict[str, Any] = {
        "outdir": None,
        "servers": None,
        "servers_file": None,
        "role": "dns" if command == "dns" else "dhcp",
        "formats": list(FORMAT_CHOICES),
        "parquet": False,
        "prev": None,
        "curr": None,
        "json_logs": False,
        "log_level": "INFO",
        "progress": True,
        "workers_server": DEFAULT_WORKERS_SERVER,
        "timeout": DEFAULT_TIMEOUT,
        "powershell": DEFAULT_POWERSHELL,
        "yellow_threshold": DEFAULT_YELLOW,
        "red_threshold": DEFAULT_RED,
        "alert_on": DEFAULT_ALERT_ON,
        "smtp_host": None,
        "smtp_port": DEFAULT_SMTP_PORT,
        "smtp_starttls": False,
        "smtp_user": None,
        "mail_from": None,
        "mail_to": None,
    }

    # config file
    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    # env
    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": _env_str("WIN_INV_OUTDIR"),
            "servers": _env_str("WIN_INV_SERVERS"),
            "servers_file": _env_str("WIN_INV_SERVERS_FILE"),
            "formats": _env_str("WIN_INV_FORMATS"),
            "parquet": _env_bool("WIN_INV_PARQUET"),
            "prev": _env_str("WIN_INV_PREV"),
            "curr": _env_str("WIN_INV_CURR"),
            "json_logs": _env_bool("WIN_INV_JSON_LOGS"),
            "log_level": _env_str("WIN_INV_LOG_LEVEL"),
            "progress": _env_bool("WIN_INV_PROGRESS"),
            "workers_server": _env_int("WIN_INV_WORKERS_SERVER"),
            "timeout": _env_int("WIN_INV_TIMEOUT"),
            "powershell": _env_str("WIN_INV_POWERSHELL"),
            "yellow_threshold": _env_int("WIN_INV_YELLOW_THRESHOLD"),
            "red_threshold": _env_int("WIN_INV_RED_THRESHOLD"),
            "alert_on": _env_str("WIN_INV_ALERT_ON"),
            "smtp_host": _env_str("WIN_INV_SMTP_HOST"),
            "smtp_port": _env_int("WIN_INV_SMTP_PORT"),
            "smtp_starttls": _env_bool("WIN_INV_SMTP_STARTTLS"),
            "smtp_user": _env_str("WIN_INV_SMTP_USER"),
            "mail_from": _env_str("WIN_INV_MAIL_FROM"),
            "mail_to": _env_str("WIN_INV_MAIL_TO"),
        }
    )

    # CLI
    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": getattr(ns, "outdir", None),
            "servers": getattr(ns, "servers", None),
            "servers_file": getattr(ns, "servers_file", None),
            "role": getattr(ns, "role", None),
            "formats": getattr(ns, "formats", None),
            "parquet": getattr(ns, "parquet", None),
            "prev": getattr(ns, "prev", None),
            "curr": getattr(ns, "curr", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_level": getattr(ns, "log_level", None),
            "progress": getattr(ns, "progress", None),
            "workers_server": getattr(ns, "workers_server", None),
            "timeout": getattr(ns, "timeout", None),
            "powershell": getattr(ns, "powershell", None),
            "yellow_threshold": getattr(ns, "yellow_threshold", None),
            "red_threshold": getattr(ns, "red_threshold", None),
            "alert_on": getattr(ns, "alert_on", None),
            "smtp_host": getattr(ns, "smtp_host", None),
            "smtp_port": getattr(ns, "smtp_port", None),
            "smtp_starttls": getattr(ns, "smtp_starttls", None),
            "smtp_user": getattr(ns, "smtp_user", None),
            "mail_from": getattr(ns, "mail_from", None),
            "mail_to": getattr(ns, "mail_to", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))
    for key in LIST_CONFIG_KEYS:
        if merged.get(key) is not None:
            merged[key] = _coerce_list(key, merged[key])
    if command == "dns":
        merged["role"] = "dns"
    merged["role"] = str(merged["role"]).lower()
    _validate(merged)

    # Normalize/construct types
    outdir_raw = merged.get("outdir")
    if command in {"run", "dns"}:
        outdir = _timestamp_dir(outdir_raw)
    else:
        outdir = Path(outdir_raw) if outdir_raw else Path.cwd()

    def _path(key: str) -> Optional[Path]:
        return Path(merged[key]) if merged.get(key) else None

    cfg = RunConfig(
        outdir=outdir,
        servers=merged.get("servers") or None,
        servers_file=_path("servers_file"),
        role=merged["role"],
        formats=list(merged.get("formats") or []),
        parquet=bool(merged["parquet"]),
        prev=_path("prev"),
        curr=_path("curr"),
        json_logs=bool(merged["json_logs"]),
        log_level=(merged.get("log_level") or "INFO").upper(),
        progress=bool(merged["progress"]),
        workers_server=int(merged["workers_server"]),
        timeout=int(merged["timeout"]),
        powershell=str(merged["powershell"]),
        yellow_threshold=int(merged["yellow_threshold"]),
        red_threshold=int(merged["red_threshold"]),
        alert_on=str(merged["alert_on"]),
        smtp_host=merged.get("smtp_host"),
        smtp_port=int(merged["smtp_port"]),
        smtp_starttls=bool(merged["smtp_starttls"]),
        smtp_user=merged.get("smtp_user"),
        mail_from=merged.get("mail_from"),
        mail_to=merged.get("mail_to") or None,
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "outdir": str(cfg.outdir),
        "servers": cfg.servers,
        "servers_file": str(cfg.servers_file) if cfg.servers_file else None,
        "role": cfg.role,
        "formats": list(cfg.formats),
        "parquet": cfg.parquet,
        "prev": str(cfg.prev) if cfg.prev else None,
        "curr": str(cfg.curr) if cfg.curr else None,
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
        "progress": cfg.progress,
        "workers_server": cfg.workers_server,
        "timeout": cfg.timeout,
        "powershell": cfg.powershell,
        "yellow_threshold": cfg.yellow_threshold,
        "red_threshold": cfg.red_threshold,
        "alert_on": cfg.alert_on,
        "smtp_host": cfg.smtp_host,
        "smtp_port": cfg.smtp_port,
        "smtp_starttls": cfg.smtp_starttls,
        "smtp_user": cfg.smtp_user,
        "mail_from": cfg.mail_from,
        "mail_to": cfg.mail_to,
        "collected_at": cfg.collected_at,
    }
