from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Mapping, Optional, Tuple, TypeVar

from ..logging import get_logger
from ..normalize.transform import flatten_attributes, text_or_none
from ..util.concurrency import parallel_map_ordered
from ..util.errors import FailureKind, MalformedDataError, failure_kind_for
from .addressing import ipv4_to_int, validate_range
from .model import (
    SERVER_LEVEL,
    Event,
    ExclusionFound,
    Failure,
    FailureOccurred,
    LeaseFound,
    OptionFound,
    Reachability,
    RecordFound,
    ReservationFound,
    Role,
    ScopeKey,
    ScopeNode,
    ScopeVisited,
    ServerNode,
    ServerVisited,
    ZoneNode,
    ZoneVisited,
    freeze,
)
from .options import decode_option, raw_option

LOG = get_logger(__name__)

T = TypeVar("T")

# Stage labels carried by FailureOccurred events.
STAGE_SCOPES = "scopes"
STAGE_SERVER_OPTIONS = "server-options"
STAGE_STATISTICS = "statistics"
STAGE_DNS_SETTINGS = "dns-settings"
STAGE_ADDRESS_RANGE = "address-range"
STAGE_LEASES = "leases"
STAGE_RESERVATIONS = "reservations"
STAGE_EXCLUSIONS = "exclusions"
STAGE_SCOPE_OPTIONS = "scope-options"
STAGE_ZONES = "zones"
STAGE_RECORDS = "records"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of one role client call: either value or (kind, message)."""

    value: Optional[T] = None
    kind: Optional[FailureKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None


def attempt(call: Callable[[], T]) -> Result[T]:
    """
    Run one role client call and capture its failure instead of raising.
    Every client call in the traversal goes through here; nothing is retried.
    """
    try:
        return Result(value=call())
    except Exception as e:
        return Result(kind=failure_kind_for(e), message=str(e) or e.__class__.__name__)


def _failure_event(result: Result[Any], server: str, stage: str, scope_id: str = "") -> FailureOccurred:
    failure = Failure(
        server=server,
        scope_id=scope_id,
        stage=stage,
        kind=result.kind or FailureKind.UNREACHABLE,
        message=result.message,
    )
    LOG.warning(
        "Collection step failed",
        extra={
            "step": "traversal",
            "phase": "warning",
            "server": server,
            "scope": scope_id or None,
            "stage": stage,
            "kind": failure.kind.value,
            "error": failure.message,
        },
    )
    return FailureOccurred(failure)


def normalize_server_names(names: Iterable[str]) -> List[str]:
    """
    Strip, drop blanks, deduplicate case-insensitively (first spelling wins)
    and sort so repeated runs visit servers in the same order.
    """
    unique: Dict[str, str] = {}
    for name in names:
        cleaned = str(name or "").strip()
        if not cleaned:
            continue
        unique.setdefault(cleaned.casefold(), cleaned)
    return sorted(unique.values(), key=lambda n: (n.casefold(), n))


def scope_sort_key(scope_id: str) -> Tuple[int, int, str]:
    try:
        return (0, ipv4_to_int(scope_id), scope_id)
    except MalformedDataError:
        return (1, 0, scope_id)


def _reachability(result: Result[Any]) -> Reachability:
    if result.ok:
        return Reachability.REACHABLE
    if result.kind == FailureKind.UNREACHABLE:
        return Reachability.UNREACHABLE
    return Reachability.UNKNOWN


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _scope_node(
    server: str,
    raw: Mapping[str, Any],
    stats: Optional[Mapping[str, Any]],
    dns_setting: Optional[Mapping[str, Any]],
) -> ScopeNode:
    return ScopeNode(
        server=server,
        scope_id=text_or_none(raw.get("ScopeId")) or "",
        name=text_or_none(raw.get("Name")),
        start=text_or_none(raw.get("StartRange")),
        end=text_or_none(raw.get("EndRange")),
        mask=text_or_none(raw.get("SubnetMask")),
        lease_duration=text_or_none(raw.get("LeaseDuration")),
        state=text_or_none(raw.get("State")),
        dns_update_policy=text_or_none(dns_setting.get("DynamicUpdates")) if dns_setting else None,
        in_use=_opt_int(stats.get("InUse")) if stats else None,
        free=_opt_int(stats.get("Free")) if stats else None,
        description=text_or_none(raw.get("Description")),
    )


def _option_events(key: ScopeKey, rows: Iterable[Mapping[str, Any]], stage: str) -> Iterator[Event]:
    for raw in rows:
        option_id = _opt_int(raw.get("OptionId"))
        attributes = freeze(flatten_attributes(raw))
        name = text_or_none(raw.get("Name"))
        if option_id is None:
            yield OptionFound(key, -1, name, raw_option(raw.get("Value")), attributes)
            yield _failure_event(
                Result(kind=FailureKind.MALFORMED_DATA, message=f"option without numeric OptionId: {name}"),
                key.server,
                stage,
                key.scope_id,
            )
            continue
        decoded = attempt(lambda: decode_option(option_id, raw.get("Value")))
        if decoded.ok:
            yield OptionFound(key, option_id, name, decoded.value, attributes)
        else:
            yield OptionFound(key, option_id, name, raw_option(raw.get("Value")), attributes)
            yield _failure_event(decoded, key.server, stage, key.scope_id)


def _walk_scope(client: Any, scope: ScopeNode) -> Iterator[Event]:
    server, scope_id = scope.server, scope.scope_id
    key = scope.key

    range_check = attempt(lambda: validate_range(scope.start, scope.end))
    if not range_check.ok:
        yield _failure_event(range_check, server, STAGE_ADDRESS_RANGE, scope_id)

    leases = attempt(lambda: client.list_leases(server, scope_id))
    if leases.ok:
        for raw in leases.value or []:
            yield LeaseFound(key, freeze(flatten_attributes(raw)))
    else:
        yield _failure_event(leases, server, STAGE_LEASES, scope_id)

    reservations = attempt(lambda: client.list_reservations(server, scope_id))
    if reservations.ok:
        for raw in reservations.value or []:
            yield ReservationFound(key, freeze(flatten_attributes(raw)))
    else:
        yield _failure_event(reservations, server, STAGE_RESERVATIONS, scope_id)

    exclusions = attempt(lambda: client.list_exclusions(server, scope_id))
    if exclusions.ok:
        for raw in exclusions.value or []:
            yield ExclusionFound(key, freeze(flatten_attributes(raw)))
    else:
        yield _failure_event(exclusions, server, STAGE_EXCLUSIONS, scope_id)

    options = attempt(lambda: client.list_options(server, scope_id))
    if options.ok:
        yield from _option_events(key, options.value or [], STAGE_SCOPE_OPTIONS)
    else:
        yield _failure_event(options, server, STAGE_SCOPE_OPTIONS, scope_id)


def walk_dhcp_server(client: Any, server: str) -> Iterator[Event]:
    """
    Visit one DHCP server: scope list, server options, statistics, then every
    scope with its DNS setting and child categories. A failed scope list or
    server option fetch stops the walk of this server; every other call is
    isolated.
    """
    scopes = attempt(lambda: client.list_scopes(server))
    yield ServerVisited(ServerNode(server, Role.DHCP, _reachability(scopes)))
    if not scopes.ok:
        yield _failure_event(scopes, server, STAGE_SCOPES)
        return

    server_options = attempt(lambda: client.list_server_options(server))
    if server_options.ok:
        yield from _option_events(ScopeKey(server, SERVER_LEVEL), server_options.value or [], STAGE_SERVER_OPTIONS)
    else:
        yield _failure_event(server_options, server, STAGE_SERVER_OPTIONS)
        return

    stats_by_scope: Dict[str, Mapping[str, Any]] = {}
    stats = attempt(lambda: client.list_scope_statistics(server))
    if stats.ok:
        for row in stats.value or []:
            sid = text_or_none(row.get("ScopeId"))
            if sid:
                stats_by_scope[sid] = row
    else:
        yield _failure_event(stats, server, STAGE_STATISTICS)

    descriptors = sorted(
        scopes.value or [],
        key=lambda r: scope_sort_key(text_or_none(r.get("ScopeId")) or ""),
    )
    for raw in descriptors:
        scope_id = text_or_none(raw.get("ScopeId"))
        if not scope_id:
            yield _failure_event(
                Result(kind=FailureKind.MALFORMED_DATA, message=f"scope without ScopeId: {raw.get('Name')!r}"),
                server,
                STAGE_SCOPES,
            )
            continue

        dns_setting = attempt(lambda: client.get_dns_setting(server, scope_id))
        dns_row = dns_setting.value[0] if dns_setting.ok and dns_setting.value else None
        scope = _scope_node(server, raw, stats_by_scope.get(scope_id), dns_row)
        yield ScopeVisited(scope)
        if not dns_setting.ok:
            yield _failure_event(dns_setting, server, STAGE_DNS_SETTINGS, scope_id)

        yield from _walk_scope(client, scope)


def walk_dns_server(client: Any, server: str) -> Iterator[Event]:
    zones = attempt(lambda: client.list_zones(server))
    yield ServerVisited(ServerNode(server, Role.DNS, _reachability(zones)))
    if not zones.ok:
        yield _failure_event(zones, server, STAGE_ZONES)
        return

    rows: List[Mapping[str, Any]] = []
    for raw in zones.value or []:
        if text_or_none(raw.get("ZoneName")):
            rows.append(raw)
            continue
        yield _failure_event(
            Result(kind=FailureKind.MALFORMED_DATA, message=f"zone without ZoneName: {raw.get('ZoneType')!r}"),
            server,
            STAGE_ZONES,
        )
    rows.sort(key=lambda z: (str(z.get("ZoneName")).casefold(), str(z.get("ZoneName"))))
    for raw in rows:
        zone = ZoneNode(
            server=server,
            zone_name=str(raw.get("ZoneName")),
            zone_type=text_or_none(raw.get("ZoneType")),
            is_ds_integrated=raw.get("IsDsIntegrated") if isinstance(raw.get("IsDsIntegrated"), bool) else None,
            is_reverse=raw.get("IsReverseLookupZone") if isinstance(raw.get("IsReverseLookupZone"), bool) else None,
            dynamic_update=text_or_none(raw.get("DynamicUpdate")),
        )
        yield ZoneVisited(zone)
        records = attempt(lambda: client.list_records(server, zone.zone_name))
        if records.ok:
            for rec in records.value or []:
                yield RecordFound(server, zone.zone_name, freeze(flatten_attributes(rec)))
        else:
            yield _failure_event(records, server, STAGE_RECORDS, zone.zone_name)


def _traverse(
    walk: Callable[[Any, str], Iterator[Event]],
    client: Any,
    servers: Iterable[str],
    workers: int,
) -> Iterator[Event]:
    names = normalize_server_names(servers)
    if workers <= 1:
        for name in names:
            yield from walk(client, name)
        return
    # One worker per server; per-server event lists are re-emitted in server order.
    for events in parallel_map_ordered(lambda name: list(walk(client, name)), names, max_workers=workers):
        yield from events


def traverse_dhcp(client: Any, servers: Iterable[str], *, workers: int = 1) -> Iterator[Event]:
    """
    Lazily walk Server -> Scope -> {leases, reservations, exclusions, options}.
    The sequence is finite and single-pass; iterate again to re-query.
    """
    return _traverse(walk_dhcp_server, client, servers, workers)


def traverse_dns(client: Any, servers: Iterable[str], *, workers: int = 1) -> Iterator[Event]:
    """Lazily walk Server -> Zone -> Records."""
    return _traverse(walk_dns_server, client, servers, workers)
