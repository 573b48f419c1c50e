from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Tuple

from .model import (
    DnsRecord,
    Event,
    ExclusionFound,
    ExclusionRecord,
    Failure,
    FailureOccurred,
    LeaseFound,
    LeaseRecord,
    OptionFound,
    OptionRecord,
    RecordFound,
    ReservationFound,
    ReservationRecord,
    ScopeNode,
    ScopeVisited,
    ServerNode,
    ServerVisited,
    ZoneNode,
    ZoneVisited,
)
from .traversal import scope_sort_key


@dataclass(frozen=True)
class Inventory:
    """Collections materialized from one traversal, in first-seen order."""

    servers: Tuple[ServerNode, ...] = ()
    scopes: Tuple[ScopeNode, ...] = ()
    leases: Tuple[LeaseRecord, ...] = ()
    reservations: Tuple[ReservationRecord, ...] = ()
    options: Tuple[OptionRecord, ...] = ()
    exclusions: Tuple[ExclusionRecord, ...] = ()
    zones: Tuple[ZoneNode, ...] = ()
    dns_records: Tuple[DnsRecord, ...] = ()
    failures: Tuple[Failure, ...] = ()

    def failure_summary(self) -> Dict[str, Dict[str, int]]:
        by_kind = Counter(f.kind.value for f in self.failures)
        by_stage = Counter(f.stage for f in self.failures)
        by_node = Counter(f.node for f in self.failures)
        return {
            "by_kind": dict(sorted(by_kind.items())),
            "by_stage": dict(sorted(by_stage.items())),
            "by_node": dict(sorted(by_node.items(), key=lambda kv: (-kv[1], kv[0]))),
        }

    def counts(self) -> Dict[str, int]:
        return {
            "servers": len(self.servers),
            "scopes": len(self.scopes),
            "leases": len(self.leases),
            "reservations": len(self.reservations),
            "options": len(self.options),
            "exclusions": len(self.exclusions),
            "zones": len(self.zones),
            "dns_records": len(self.dns_records),
            "failures": len(self.failures),
        }

    def sorted_for_emission(self) -> "Inventory":
        """
        Order every collection by server, then scope (numeric scope id), keeping
        first-seen order within a scope. Sorting is stable, so rows sharing a
        key keep their traversal order.
        """

        def _server(name: str) -> Tuple[str, str]:
            return (name.casefold(), name)

        def _scoped(server: str, scope_id: str) -> Tuple[Any, ...]:
            # server-level rows (empty scope id) first
            if not scope_id:
                return (*_server(server), 0, (0, 0, ""))
            return (*_server(server), 1, scope_sort_key(scope_id))

        return replace(
            self,
            servers=tuple(sorted(self.servers, key=lambda s: _server(s.name))),
            scopes=tuple(sorted(self.scopes, key=lambda s: _scoped(s.server, s.scope_id))),
            leases=tuple(sorted(self.leases, key=lambda r: _scoped(r.server, r.scope_id))),
            reservations=tuple(sorted(self.reservations, key=lambda r: _scoped(r.server, r.scope_id))),
            options=tuple(sorted(self.options, key=lambda r: _scoped(r.server, r.scope_id))),
            exclusions=tuple(sorted(self.exclusions, key=lambda r: _scoped(r.server, r.scope_id))),
            zones=tuple(sorted(self.zones, key=lambda z: (*_server(z.server), z.zone_name.casefold()))),
            dns_records=tuple(
                sorted(self.dns_records, key=lambda r: (*_server(r.server), r.zone_name.casefold()))
            ),
            failures=tuple(sorted(self.failures, key=lambda f: _scoped(f.server, f.scope_id))),
        )


@dataclass
class _Accumulator:
    servers: List[ServerNode] = field(default_factory=list)
    scopes: List[ScopeNode] = field(default_factory=list)
    leases: List[LeaseRecord] = field(default_factory=list)
    reservations: List[ReservationRecord] = field(default_factory=list)
    options: List[OptionRecord] = field(default_factory=list)
    exclusions: List[ExclusionRecord] = field(default_factory=list)
    zones: List[ZoneNode] = field(default_factory=list)
    dns_records: List[DnsRecord] = field(default_factory=list)
    failures: List[Failure] = field(default_factory=list)

    def add(self, event: Event) -> None:
        if isinstance(event, ServerVisited):
            self.servers.append(event.server)
        elif isinstance(event, ScopeVisited):
            self.scopes.append(event.scope)
        elif isinstance(event, LeaseFound):
            self.leases.append(LeaseRecord(event.scope.server, event.scope.scope_id, event.attributes))
        elif isinstance(event, ReservationFound):
            self.reservations.append(
                ReservationRecord(event.scope.server, event.scope.scope_id, event.attributes)
            )
        elif isinstance(event, ExclusionFound):
            self.exclusions.append(ExclusionRecord(event.scope.server, event.scope.scope_id, event.attributes))
        elif isinstance(event, OptionFound):
            self.options.append(
                OptionRecord(
                    server=event.scope.server,
                    scope_id=event.scope.scope_id,
                    option_id=event.option_id,
                    name=event.name,
                    value=event.value,
                    attributes=event.attributes,
                )
            )
        elif isinstance(event, ZoneVisited):
            self.zones.append(event.zone)
        elif isinstance(event, RecordFound):
            self.dns_records.append(DnsRecord(event.server, event.zone_name, event.attributes))
        elif isinstance(event, FailureOccurred):
            self.failures.append(event.failure)
        else:
            raise TypeError(f"Unknown traversal event: {type(event).__name__}")

    def freeze(self) -> Inventory:
        return Inventory(
            servers=tuple(self.servers),
            scopes=tuple(self.scopes),
            leases=tuple(self.leases),
            reservations=tuple(self.reservations),
            options=tuple(self.options),
            exclusions=tuple(self.exclusions),
            zones=tuple(self.zones),
            dns_records=tuple(self.dns_records),
            failures=tuple(self.failures),
        )


def aggregate(events: Iterable[Event]) -> Inventory:
    """
    Fold traversal events into an Inventory: one row per event, first-seen
    order, no deduplication. Child rows get their owning scope key here.
    """
    acc = _Accumulator()
    for event in events:
        acc.add(event)
    return acc.freeze()
