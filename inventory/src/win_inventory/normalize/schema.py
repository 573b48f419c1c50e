from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

Row = Dict[str, object]

SERVER_FIELDS: List[str] = [
    "recordKey",
    "server",
    "role",
    "reachability",
    "collectedAt",
]

SCOPE_FIELDS: List[str] = [
    "recordKey",
    "server",
    "scopeId",
    "name",
    "startRange",
    "endRange",
    "subnetMask",
    "leaseDuration",
    "state",
    "dnsUpdatePolicy",
    "totalAddresses",
    "inUse",
    "free",
    "utilizationPct",
    "riskPoints",
    "triggeredRules",
    "description",
    "collectedAt",
]

LEASE_FIELDS: List[str] = [
    "recordKey",
    "server",
    "scopeId",
    "IPAddress",
    "ClientId",
    "HostName",
    "AddressState",
    "LeaseExpiryTime",
    "ClientType",
    "Description",
    "collectedAt",
]

RESERVATION_FIELDS: List[str] = [
    "recordKey",
    "server",
    "scopeId",
    "IPAddress",
    "ClientId",
    "Name",
    "Type",
    "Description",
    "collectedAt",
]

OPTION_FIELDS: List[str] = [
    "recordKey",
    "server",
    "scopeId",
    "level",
    "optionId",
    "name",
    "valueKind",
    "value",
    "rawValue",
    "VendorClass",
    "UserClass",
    "PolicyName",
    "collectedAt",
]

EXCLUSION_FIELDS: List[str] = [
    "recordKey",
    "server",
    "scopeId",
    "StartRange",
    "EndRange",
    "collectedAt",
]

FAILURE_FIELDS: List[str] = [
    "recordKey",
    "server",
    "scopeId",
    "stage",
    "kind",
    "message",
    "collectedAt",
]

FINDING_FIELDS: List[str] = [
    "recordKey",
    "server",
    "scopeId",
    "rule",
    "weight",
    "triggered",
]

ZONE_FIELDS: List[str] = [
    "recordKey",
    "server",
    "zoneName",
    "zoneType",
    "isDsIntegrated",
    "isReverseLookupZone",
    "dynamicUpdate",
    "collectedAt",
]

DNS_RECORD_FIELDS: List[str] = [
    "recordKey",
    "server",
    "zoneName",
    "HostName",
    "RecordType",
    "RecordData",
    "TimeToLive",
    "Timestamp",
    "collectedAt",
]

COLLECTION_FIELDS: Dict[str, List[str]] = {
    "servers": SERVER_FIELDS,
    "scopes": SCOPE_FIELDS,
    "leases": LEASE_FIELDS,
    "reservations": RESERVATION_FIELDS,
    "options": OPTION_FIELDS,
    "exclusions": EXCLUSION_FIELDS,
    "failures": FAILURE_FIELDS,
    "findings": FINDING_FIELDS,
    "zones": ZONE_FIELDS,
    "dns_records": DNS_RECORD_FIELDS,
}

DHCP_COLLECTIONS: Tuple[str, ...] = (
    "servers",
    "scopes",
    "leases",
    "reservations",
    "options",
    "exclusions",
    "findings",
    "failures",
)

DNS_COLLECTIONS: Tuple[str, ...] = (
    "servers",
    "zones",
    "dns_records",
    "failures",
)

COLLECTION_TITLES: Dict[str, str] = {
    "servers": "Servers",
    "scopes": "Scopes",
    "leases": "Leases",
    "reservations": "Reservations",
    "options": "Options",
    "exclusions": "Exclusions",
    "failures": "Failures",
    "findings": "Health Findings",
    "zones": "Zones",
    "dns_records": "DNS Records",
}

RUN_SUMMARY_FIELDS: List[str] = [
    "schema_version",
    "role",
    "status",
    "started_at",
    "finished_at",
    "servers_requested",
    "counts",
    "failures_by_kind",
    "failures_by_stage",
    "risk_total",
    "risk_tier",
    "alert",
]


@dataclass(frozen=True)
class OutputPaths:
    root: Path
    inventory_dir: Path
    report_dir: Path
    diff_dir: Path
    logs_dir: Path
    report_html: Path
    report_md: Path
    workbook_xlsx: Path
    run_summary_json: Path
    debug_log: Path

    def csv(self, collection: str) -> Path:
        return self.inventory_dir / f"{collection}.csv"

    def jsonl(self, collection: str) -> Path:
        return self.inventory_dir / f"{collection}.jsonl"

    def parquet(self, collection: str) -> Path:
        return self.inventory_dir / f"{collection}.parquet"


def resolve_output_paths(outdir: Path) -> OutputPaths:
    root = outdir
    inventory_dir = root / "inventory"
    report_dir = root / "report"
    logs_dir = root / "logs"
    return OutputPaths(
        root=root,
        inventory_dir=inventory_dir,
        report_dir=report_dir,
        diff_dir=root / "diff",
        logs_dir=logs_dir,
        report_html=report_dir / "report.html",
        report_md=report_dir / "report.md",
        workbook_xlsx=report_dir / "inventory.xlsx",
        run_summary_json=root / "run_summary.json",
        debug_log=logs_dir / "debug.log",
    )
