from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union

from ..util.errors import FailureKind

Attributes = Mapping[str, Optional[str]]

# Server-level options carry an empty scope id.
SERVER_LEVEL = ""


class Role(str, Enum):
    DHCP = "DHCP"
    DNS = "DNS"


class Reachability(str, Enum):
    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class Tier(str, Enum):
    GREEN = "Green"
    YELLOW = "Yellow"
    RED = "Red"


def freeze(attributes: Mapping[str, Any]) -> Attributes:
    """Read-only snapshot of a flat attribute mapping."""
    return MappingProxyType(dict(attributes))


@dataclass(frozen=True)
class ScopeKey:
    server: str
    scope_id: str


@dataclass(frozen=True)
class ServerNode:
    name: str
    role: Role
    reachability: Reachability = Reachability.UNKNOWN


@dataclass(frozen=True)
class ScopeNode:
    """
    One DHCP scope as enumerated on its server.

    in_use/free come from scope statistics and are None ("unknown") when
    statistics could not be collected; they are never defaulted to zero.
    """

    server: str
    scope_id: str
    name: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    mask: Optional[str] = None
    lease_duration: Optional[str] = None
    state: Optional[str] = None
    dns_update_policy: Optional[str] = None
    in_use: Optional[int] = None
    free: Optional[int] = None
    description: Optional[str] = None

    @property
    def key(self) -> ScopeKey:
        return ScopeKey(self.server, self.scope_id)

    @property
    def is_active(self) -> bool:
        return (self.state or "").strip().lower() == "active"


@dataclass(frozen=True)
class OptionValue:
    """
    Decoded DHCP option value.

    kind is one of ip_list, integer, string, string_list or raw; values holds
    the decoded items (empty for raw) and raw always keeps the source text.
    """

    kind: str
    values: Tuple[Any, ...]
    raw: Tuple[str, ...]

    def display(self) -> str:
        items = self.values if self.kind != "raw" else self.raw
        return ";".join(str(v) for v in items)


@dataclass(frozen=True)
class LeaseRecord:
    server: str
    scope_id: str
    attributes: Attributes = field(default_factory=lambda: freeze({}))

    @property
    def is_active(self) -> bool:
        # ActiveReservation and friends are not plain active leases
        return (self.attributes.get("AddressState") or "").strip().lower() == "active"


@dataclass(frozen=True)
class ReservationRecord:
    server: str
    scope_id: str
    attributes: Attributes = field(default_factory=lambda: freeze({}))


@dataclass(frozen=True)
class ExclusionRecord:
    server: str
    scope_id: str
    attributes: Attributes = field(default_factory=lambda: freeze({}))


@dataclass(frozen=True)
class OptionRecord:
    server: str
    scope_id: str
    option_id: int
    name: Optional[str]
    value: OptionValue
    attributes: Attributes = field(default_factory=lambda: freeze({}))

    @property
    def level(self) -> str:
        return "server" if self.scope_id == SERVER_LEVEL else "scope"


@dataclass(frozen=True)
class ZoneNode:
    server: str
    zone_name: str
    zone_type: Optional[str] = None
    is_ds_integrated: Optional[bool] = None
    is_reverse: Optional[bool] = None
    dynamic_update: Optional[str] = None


@dataclass(frozen=True)
class DnsRecord:
    server: str
    zone_name: str
    attributes: Attributes = field(default_factory=lambda: freeze({}))


@dataclass(frozen=True)
class Failure:
    server: str
    stage: str
    kind: FailureKind
    message: str
    scope_id: str = ""

    @property
    def node(self) -> str:
        return f"{self.server}/{self.scope_id}" if self.scope_id else self.server


@dataclass(frozen=True)
class HealthFinding:
    server: str
    scope_id: str
    rule: str
    weight: int
    triggered: bool


@dataclass(frozen=True)
class RiskAssessment:
    total: int
    tier: Tier
    findings: Tuple[HealthFinding, ...]
    scopes_evaluated: int

    @property
    def triggered(self) -> Tuple[HealthFinding, ...]:
        return tuple(f for f in self.findings if f.triggered)


# ---------------------------------------------------------------------------
# Traversal events
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ServerVisited:
    server: ServerNode


@dataclass(frozen=True)
class ScopeVisited:
    scope: ScopeNode


@dataclass(frozen=True)
class LeaseFound:
    scope: ScopeKey
    attributes: Attributes


@dataclass(frozen=True)
class ReservationFound:
    scope: ScopeKey
    attributes: Attributes


@dataclass(frozen=True)
class ExclusionFound:
    scope: ScopeKey
    attributes: Attributes


@dataclass(frozen=True)
class OptionFound:
    scope: ScopeKey
    option_id: int
    name: Optional[str]
    value: OptionValue
    attributes: Attributes


@dataclass(frozen=True)
class ZoneVisited:
    zone: ZoneNode


@dataclass(frozen=True)
class RecordFound:
    server: str
    zone_name: str
    attributes: Attributes


@dataclass(frozen=True)
class FailureOccurred:
    failure: Failure


Event = Union[
    ServerVisited,
    ScopeVisited,
    LeaseFound,
    ReservationFound,
    ExclusionFound,
    OptionFound,
    ZoneVisited,
    RecordFound,
    FailureOccurred,
]
