"""
Typed views and evaluation of routing, collision and approval rules.

Rule documents arrive from csos.rule_cache as plain YAML mappings. This
module turns them into frozen dataclasses and implements matching:

- routing: first rule (ascending priority) whose `when` matches wins
- collisions: every rule matching an existing active opportunity inside
  its window is reported; any `block` action blocks the new one
- approvals: most specific amount range wins
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from csos.utils.constants import DEFAULT_TASK_PRIORITY, DEFAULT_TASK_TYPE, TASK_DUE_DAYS

logger = logging.getLogger(__name__)

# ---------- Data Models ----------

@dataclass(frozen=True)
class RoutingAction:
    primary_owner_role: str
    secondary_owner_roles: Tuple[str, ...] = ()
    create_task: bool = False
    task_type: str = DEFAULT_TASK_TYPE
    task_priority: str = DEFAULT_TASK_PRIORITY

@dataclass(frozen=True)
class RoutingRule:
    id: str
    name: str
    priority: int
    when: Mapping[str, Any]
    then: RoutingAction
    notes: Optional[str] = None

@dataclass(frozen=True)
class CollisionAction:
    action: str                     # "block" | "warn"
    window_days: int
    allow_owner_override: bool = False
    notification_required: bool = False
    notification_roles: Tuple[str, ...] = ()

@dataclass(frozen=True)
class CollisionRule:
    id: str
    name: str
    priority: int
    when: Mapping[str, Any]
    then: CollisionAction
    notes: Optional[str] = None

@dataclass(frozen=True)
class ApprovalPolicy:
    approval_required: bool
    approver_roles: Tuple[str, ...] = ()
    approval_levels: int = 1
    auto_escalate_days: Optional[int] = None

@dataclass(frozen=True)
class ApprovalThreshold:
    id: str
    name: str
    when: Mapping[str, Any]
    then: ApprovalPolicy
    notes: Optional[str] = None

@dataclass(frozen=True)
class Collision:
    rule_id: str
    rule_name: str
    action: str
    blocking_opportunity_id: str
    blocking_opportunity_type: str
    window_days: int
    days_remaining: int
    can_override: bool
    message: str

@dataclass
class CollisionReport:
    collisions: List[Collision] = field(default_factory=list)
    blocked: bool = False

# ---------- Parsing ----------

def _entries(document: Any, section: str) -> List[Mapping[str, Any]]:
    """Pull the list under `section` from a rule document; tolerate empty files."""
    if not document:
        return []
    if not isinstance(document, Mapping):
        raise ValueError(f"Rule document must be a mapping with a '{section}' list")
    entries = document.get(section) or []
    if not isinstance(entries, list):
        raise ValueError(f"'{section}' must be a list")
    return entries

def _rule_id(raw: Mapping[str, Any]) -> str:
    return str(raw.get("id") or raw.get("name") or "unnamed")

def parse_routing_rules(document: Any) -> List[RoutingRule]:
    """Build RoutingRule objects from a routing_rules document ({rules: [...]})."""
    out: List[RoutingRule] = []
    for raw in _entries(document, "rules"):
        then = raw.get("then") or {}
        out.append(RoutingRule(
            id=_rule_id(raw),
            name=str(raw.get("name", _rule_id(raw))),
            priority=int(raw.get("priority", 0)),
            when=dict(raw.get("when") or {}),
            then=RoutingAction(
                primary_owner_role=str(then.get("primary_owner_role", "")),
                secondary_owner_roles=tuple(then.get("secondary_owner_roles") or ()),
                create_task=bool(then.get("create_task", False)),
                task_type=then.get("task_type") or DEFAULT_TASK_TYPE,
                task_priority=then.get("task_priority") or DEFAULT_TASK_PRIORITY,
            ),
            notes=raw.get("notes"),
        ))
    return out

def parse_collision_rules(document: Any) -> List[CollisionRule]:
    """Build CollisionRule objects from a collision_rules document ({rules: [...]})."""
    out: List[CollisionRule] = []
    for raw in _entries(document, "rules"):
        then = raw.get("then") or {}
        action = then.get("action", "warn")
        if action not in ("block", "warn"):
            raise ValueError(f"Collision rule {_rule_id(raw)}: action must be block or warn, got {action!r}")
        out.append(CollisionRule(
            id=_rule_id(raw),
            name=str(raw.get("name", _rule_id(raw))),
            priority=int(raw.get("priority", 0)),
            when=dict(raw.get("when") or {}),
            then=CollisionAction(
                action=action,
                window_days=int(then.get("window_days", 0)),
                allow_owner_override=bool(then.get("allow_owner_override", False)),
                notification_required=bool(then.get("notification_required", False)),
                notification_roles=tuple(then.get("notification_roles") or ()),
            ),
            notes=raw.get("notes"),
        ))
    return out

def parse_approval_thresholds(document: Any) -> List[ApprovalThreshold]:
    """Build ApprovalThreshold objects from an approval_thresholds document ({thresholds: [...]})."""
    out: List[ApprovalThreshold] = []
    for raw in _entries(document, "thresholds"):
        then = raw.get("then") or {}
        escalate = then.get("auto_escalate_days")
        out.append(ApprovalThreshold(
            id=_rule_id(raw),
            name=str(raw.get("name", _rule_id(raw))),
            when=dict(raw.get("when") or {}),
            then=ApprovalPolicy(
                approval_required=bool(then.get("approval_required", True)),
                approver_roles=tuple(then.get("approver_roles") or ()),
                approval_levels=int(then.get("approval_levels", 1)),
                auto_escalate_days=None if escalate is None else int(escalate),
            ),
            notes=raw.get("notes"),
        ))
    return out

# ---------- Matching ----------

_FLAG_CONDITIONS = (
    "constituent_is_corporate",
    "constituent_is_donor",
    "constituent_is_ticket_holder",
)

def evaluate_when(when: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    """
    Evaluate if a rule's `when` conditions match a context.

    An empty `when` matches everything (default/fallback rule). Amount bounds
    are inclusive and a missing amount counts as 0.
    """
    if not when:
        return True

    if when.get("opportunity_type") and when["opportunity_type"] != context.get("opportunity_type"):
        return False

    amount = context.get("amount") or 0
    if when.get("amount_min") is not None and amount < when["amount_min"]:
        return False
    if when.get("amount_max") is not None and amount > when["amount_max"]:
        return False

    if when.get("status") and when["status"] != context.get("status"):
        return False

    for flag in _FLAG_CONDITIONS:
        if when.get(flag) is not None and when[flag] != context.get(flag):
            return False

    return True

def find_matching_routing_rule(rules: Iterable[RoutingRule], context: Mapping[str, Any]) -> Optional[RoutingRule]:
    """Find first matching routing rule, lowest priority number first."""
    for rule in sorted(rules, key=lambda r: r.priority):
        if evaluate_when(rule.when, context):
            return rule
    return None

def _collision_applies(when: Mapping[str, Any], existing: Mapping[str, Any], incoming_type: str) -> bool:
    if when.get("blocking_opportunity_type") and when["blocking_opportunity_type"] != existing.get("type"):
        return False
    if when.get("blocking_opportunity_status") and when["blocking_opportunity_status"] != existing.get("status"):
        return False
    blocked_type = when.get("blocked_opportunity_type")
    if blocked_type and blocked_type not in ("any", incoming_type):
        return False
    amount = existing.get("amount") or 0
    if when.get("amount_min") is not None and amount < when["amount_min"]:
        return False
    if when.get("amount_max") is not None and amount > when["amount_max"]:
        return False
    return True

def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

def days_since(value: Any, now: datetime) -> int:
    """Whole days elapsed between a timestamp and now (floored)."""
    elapsed = now - _parse_timestamp(value)
    return math.floor(elapsed.total_seconds() / 86400)

def detect_collisions(
    existing_opportunities: Iterable[Mapping[str, Any]],
    incoming_type: str,
    rules: Iterable[CollisionRule],
    now: Optional[datetime] = None,
) -> CollisionReport:
    """
    Check an incoming opportunity type against a constituent's active opportunities.

    Args:
        existing_opportunities: Rows with id, type, amount, status, updated_at
        incoming_type: Opportunity type being created/routed
        rules: Collision rules
        now: Reference time (defaults to current UTC time)

    Returns:
        CollisionReport with every collision found and the blocked flag
    """
    now = now or datetime.now(timezone.utc)
    ordered = sorted(rules, key=lambda r: r.priority)
    report = CollisionReport()

    for existing in existing_opportunities:
        elapsed = days_since(existing["updated_at"], now)
        for rule in ordered:
            if not _collision_applies(rule.when, existing, incoming_type):
                continue
            if elapsed > rule.then.window_days:
                continue

            remaining = rule.then.window_days - elapsed
            label = "Blocked" if rule.then.action == "block" else "Warning"
            report.collisions.append(Collision(
                rule_id=rule.id,
                rule_name=rule.name,
                action=rule.then.action,
                blocking_opportunity_id=str(existing.get("id")),
                blocking_opportunity_type=str(existing.get("type")),
                window_days=rule.then.window_days,
                days_remaining=remaining,
                can_override=rule.then.allow_owner_override,
                message=rule.notes or f"{rule.name}: {label} - {remaining} days remaining",
            ))
            if rule.then.action == "block":
                report.blocked = True

    if report.collisions:
        logger.info(f"Detected {len(report.collisions)} collision(s), blocked={report.blocked}")
    return report

def _specificity(threshold: ApprovalThreshold) -> int:
    has_min = threshold.when.get("amount_min") is not None
    has_max = threshold.when.get("amount_max") is not None
    if has_min and has_max:
        return 0
    if has_min:
        return 1
    return 2

def find_matching_threshold(
    thresholds: Iterable[ApprovalThreshold],
    context: Mapping[str, Any],
) -> Optional[ApprovalThreshold]:
    """
    Find matching approval threshold.

    Thresholds with both amount bounds are tried first, then those with only
    a minimum, then the rest; document order breaks ties.
    """
    for threshold in sorted(thresholds, key=_specificity):
        if evaluate_when(threshold.when, context):
            return threshold
    return None

def has_approver_role(user_roles: Iterable[str], required_roles: Iterable[str]) -> bool:
    """Admin can always approve; otherwise any one required role suffices."""
    roles = set(user_roles)
    return "admin" in roles or any(role in roles for role in required_roles)

def task_due_date(priority: str, now: Optional[datetime] = None) -> datetime:
    """Due date for a routed task: 3/7/14 days out for high/medium/low."""
    now = now or datetime.now(timezone.utc)
    days = TASK_DUE_DAYS.get(priority, TASK_DUE_DAYS[DEFAULT_TASK_PRIORITY])
    return now + timedelta(days=days)

def routing_context(opportunity: Mapping[str, Any], constituent: Mapping[str, Any]) -> Dict[str, Any]:
    """Build the context routing rules are evaluated against."""
    return {
        "opportunity_type": opportunity.get("type"),
        "amount": opportunity.get("amount"),
        "status": opportunity.get("status"),
        "constituent_is_corporate": bool(constituent.get("is_corporate", False)),
        "constituent_is_donor": bool(constituent.get("is_donor", False)),
        "constituent_is_ticket_holder": bool(constituent.get("is_ticket_holder", False)),
    }
