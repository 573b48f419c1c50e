from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .addressing import utilization
from .aggregate import Inventory
from .model import HealthFinding, RiskAssessment, ScopeKey, ScopeNode, Tier

HIGH_UTILIZATION_PCT = 90.0
DEFAULT_YELLOW_MIN = 4
DEFAULT_RED_MIN = 8


@dataclass(frozen=True)
class RiskThresholds:
    """Lowest totals for Yellow and Red; everything below yellow_min is Green."""

    yellow_min: int = DEFAULT_YELLOW_MIN
    red_min: int = DEFAULT_RED_MIN

    def __post_init__(self) -> None:
        if not 0 < self.yellow_min < self.red_min:
            raise ValueError(
                f"Risk thresholds must satisfy 0 < yellow ({self.yellow_min}) < red ({self.red_min})"
            )


@dataclass(frozen=True)
class ScopeHealthInput:
    """
    A scope plus the child counts the rules need. A count is None when that
    category could not be enumerated, in which case its rule is not evaluated.
    """

    scope: ScopeNode
    active_leases: Optional[int] = None
    reservations: Optional[int] = None


# A predicate returns None when its inputs are unknown.
Predicate = Callable[[ScopeHealthInput], Optional[bool]]


@dataclass(frozen=True)
class HealthRule:
    rule_id: str
    description: str
    weight: int
    predicate: Predicate


def _inactive(inp: ScopeHealthInput) -> Optional[bool]:
    return not inp.scope.is_active


def _high_utilization(inp: ScopeHealthInput) -> Optional[bool]:
    pct = utilization(inp.scope.in_use, inp.scope.start, inp.scope.end)
    if pct is None:
        return None
    return pct > HIGH_UTILIZATION_PCT


def _no_active_leases(inp: ScopeHealthInput) -> Optional[bool]:
    if inp.active_leases is None:
        return None
    return inp.active_leases == 0


def _no_reservations(inp: ScopeHealthInput) -> Optional[bool]:
    if inp.reservations is None:
        return None
    return inp.reservations == 0


def _dns_updates_disabled(inp: ScopeHealthInput) -> Optional[bool]:
    policy = inp.scope.dns_update_policy
    if policy is None:
        return None
    return policy.strip().lower() == "never"


HEALTH_RULES: Tuple[HealthRule, ...] = (
    HealthRule("inactive-scope", "Scope is not Active", 3, _inactive),
    HealthRule("high-utilization", f"More than {HIGH_UTILIZATION_PCT:g}% of addresses in use", 3, _high_utilization),
    HealthRule("no-active-leases", "No leases in Active state", 2, _no_active_leases),
    HealthRule("no-reservations", "No reservations defined", 1, _no_reservations),
    HealthRule("dynamic-dns-disabled", "Dynamic DNS updates set to Never", 2, _dns_updates_disabled),
)

RULES_BY_ID: Dict[str, HealthRule] = {r.rule_id: r for r in HEALTH_RULES}


def evaluate_scope(inp: ScopeHealthInput, rules: Sequence[HealthRule] = HEALTH_RULES) -> List[HealthFinding]:
    """One finding per rule; rules that cannot be evaluated are reported untriggered."""
    return [
        HealthFinding(
            server=inp.scope.server,
            scope_id=inp.scope.scope_id,
            rule=rule.rule_id,
            weight=rule.weight,
            triggered=rule.predicate(inp) is True,
        )
        for rule in rules
    ]


def tier_for(total: int, thresholds: RiskThresholds = RiskThresholds()) -> Tier:
    if total >= thresholds.red_min:
        return Tier.RED
    if total >= thresholds.yellow_min:
        return Tier.YELLOW
    return Tier.GREEN


def classify(
    inputs: Iterable[ScopeHealthInput],
    thresholds: RiskThresholds = RiskThresholds(),
    rules: Sequence[HealthRule] = HEALTH_RULES,
) -> RiskAssessment:
    """
    Evaluate every rule against every scope and sum the triggered weights.
    Pure and deterministic: findings follow input order, then rule order.
    """
    findings: List[HealthFinding] = []
    scopes = 0
    for inp in inputs:
        scopes += 1
        findings.extend(evaluate_scope(inp, rules))
    total = sum(f.weight for f in findings if f.triggered)
    return RiskAssessment(
        total=total,
        tier=tier_for(total, thresholds),
        findings=tuple(findings),
        scopes_evaluated=scopes,
    )


def scope_inputs(inventory: Inventory) -> List[ScopeHealthInput]:
    """
    Build classifier inputs for every enumerated scope. Lease and reservation
    counts are None for scopes whose category failed to enumerate.
    """
    failed: Dict[str, Set[ScopeKey]] = {"leases": set(), "reservations": set()}
    for failure in inventory.failures:
        if failure.stage in failed and failure.scope_id:
            failed[failure.stage].add(ScopeKey(failure.server, failure.scope_id))

    active: Dict[ScopeKey, int] = {}
    for lease in inventory.leases:
        key = ScopeKey(lease.server, lease.scope_id)
        active[key] = active.get(key, 0) + (1 if lease.is_active else 0)

    reserved: Dict[ScopeKey, int] = {}
    for res in inventory.reservations:
        key = ScopeKey(res.server, res.scope_id)
        reserved[key] = reserved.get(key, 0) + 1

    out: List[ScopeHealthInput] = []
    for scope in inventory.scopes:
        key = scope.key
        out.append(
            ScopeHealthInput(
                scope=scope,
                active_leases=None if key in failed["leases"] else active.get(key, 0),
                reservations=None if key in failed["reservations"] else reserved.get(key, 0),
            )
        )
    return out
