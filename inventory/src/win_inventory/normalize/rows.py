from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional

from ..core.addressing import address_count, utilization
from ..core.aggregate import Inventory
from ..core.model import Failure, OptionRecord, RiskAssessment, ScopeKey, ScopeNode, ServerNode, ZoneNode
from .schema import (
    FAILURE_FIELDS,
    FINDING_FIELDS,
    OPTION_FIELDS,
    SCOPE_FIELDS,
    SERVER_FIELDS,
    ZONE_FIELDS,
    Row,
)
from .transform import (
    canonicalize_row,
    dns_record_row,
    exclusion_row,
    lease_row,
    record_key,
    reservation_row,
)


def server_row(server: ServerNode, collected_at: str) -> Row:
    return canonicalize_row(
        {
            "recordKey": record_key(server.name),
            "server": server.name,
            "role": server.role.value,
            "reachability": server.reachability.value,
            "collectedAt": collected_at,
        },
        SERVER_FIELDS,
    )


def scope_row(
    scope: ScopeNode,
    collected_at: str,
    risk_points: Optional[int] = None,
    triggered_rules: Optional[List[str]] = None,
) -> Row:
    pct = utilization(scope.in_use, scope.start, scope.end)
    return canonicalize_row(
        {
            "recordKey": record_key(scope.server, scope.scope_id),
            "server": scope.server,
            "scopeId": scope.scope_id,
            "name": scope.name,
            "startRange": scope.start,
            "endRange": scope.end,
            "subnetMask": scope.mask,
            "leaseDuration": scope.lease_duration,
            "state": scope.state,
            "dnsUpdatePolicy": scope.dns_update_policy,
            "totalAddresses": address_count(scope.start, scope.end),
            "inUse": scope.in_use,
            "free": scope.free,
            "utilizationPct": round(pct, 2) if pct is not None else None,
            "riskPoints": risk_points,
            "triggeredRules": ";".join(triggered_rules) if triggered_rules is not None else None,
            "description": scope.description,
            "collectedAt": collected_at,
        },
        SCOPE_FIELDS,
    )


def option_row(option: OptionRecord, collected_at: str) -> Row:
    attrs = option.attributes
    return canonicalize_row(
        {
            "recordKey": record_key(
                option.server,
                option.scope_id,
                option.option_id,
                attrs.get("VendorClass"),
                attrs.get("UserClass"),
                attrs.get("PolicyName"),
            ),
            "server": option.server,
            "scopeId": option.scope_id,
            "level": option.level,
            "optionId": option.option_id,
            "name": option.name,
            "valueKind": option.value.kind,
            "value": option.value.display(),
            "rawValue": ";".join(option.value.raw),
            "VendorClass": attrs.get("VendorClass"),
            "UserClass": attrs.get("UserClass"),
            "PolicyName": attrs.get("PolicyName"),
            "collectedAt": collected_at,
        },
        OPTION_FIELDS,
    )


def failure_row(failure: Failure, collected_at: str) -> Row:
    return canonicalize_row(
        {
            "recordKey": record_key(failure.server, failure.scope_id, failure.stage),
            "server": failure.server,
            "scopeId": failure.scope_id,
            "stage": failure.stage,
            "kind": failure.kind.value,
            "message": failure.message,
            "collectedAt": collected_at,
        },
        FAILURE_FIELDS,
    )


def zone_row(zone: ZoneNode, collected_at: str) -> Row:
    return canonicalize_row(
        {
            "recordKey": record_key(zone.server, zone.zone_name),
            "server": zone.server,
            "zoneName": zone.zone_name,
            "zoneType": zone.zone_type,
            "isDsIntegrated": zone.is_ds_integrated,
            "isReverseLookupZone": zone.is_reverse,
            "dynamicUpdate": zone.dynamic_update,
            "collectedAt": collected_at,
        },
        ZONE_FIELDS,
    )


def inventory_rows(
    inventory: Inventory,
    collected_at: str,
    assessment: Optional[RiskAssessment] = None,
) -> Dict[str, List[Row]]:
    """
    Flatten an Inventory (and optionally its RiskAssessment) into
    schema-stable rows per collection, ordered for emission.
    """
    inv = inventory.sorted_for_emission()

    points: Dict[ScopeKey, int] = defaultdict(int)
    rules: Dict[ScopeKey, List[str]] = defaultdict(list)
    finding_rows: List[Row] = []
    if assessment is not None:
        for f in assessment.findings:
            key = ScopeKey(f.server, f.scope_id)
            if f.triggered:
                points[key] += f.weight
                rules[key].append(f.rule)
            finding_rows.append(
                canonicalize_row(
                    {
                        "recordKey": record_key(f.server, f.scope_id, f.rule),
                        "server": f.server,
                        "scopeId": f.scope_id,
                        "rule": f.rule,
                        "weight": f.weight,
                        "triggered": f.triggered,
                    },
                    FINDING_FIELDS,
                )
            )

    scope_rows: List[Row] = []
    for scope in inv.scopes:
        if assessment is None:
            scope_rows.append(scope_row(scope, collected_at))
        else:
            scope_rows.append(scope_row(scope, collected_at, points[scope.key], rules[scope.key]))

    return {
        "servers": [server_row(s, collected_at) for s in inv.servers],
        "scopes": scope_rows,
        "leases": [lease_row(r.server, r.scope_id, r.attributes, collected_at) for r in inv.leases],
        "reservations": [
            reservation_row(r.server, r.scope_id, r.attributes, collected_at) for r in inv.reservations
        ],
        "options": [option_row(o, collected_at) for o in inv.options],
        "exclusions": [exclusion_row(r.server, r.scope_id, r.attributes, collected_at) for r in inv.exclusions],
        "findings": finding_rows,
        "failures": [failure_row(f, collected_at) for f in inv.failures],
        "zones": [zone_row(z, collected_at) for z in inv.zones],
        "dns_records": [dns_record_row(r.server, r.zone_name, r.attributes, collected_at) for r in inv.dns_records],
    }
