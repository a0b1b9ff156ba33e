"""
Audit Logging

Writes an audit trail of role changes, routing decisions and proposal
decisions to the audit_log table. A failed audit write is logged and never
breaks the operation being audited.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from csos.backend import BackendClient
from csos.utils.error_handling import BackendError

logger = logging.getLogger(__name__)

AUDIT_TABLE = "audit_log"

AUDIT_ACTIONS = (
    "create",
    "update",
    "delete",
    "role_assign",
    "role_remove",
    "proposal_approve",
    "proposal_reject",
    "route_opportunity",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_audit(
    client: BackendClient,
    *,
    user_id: Optional[str],
    table_name: str,
    action: str,
    record_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Log an audit event to the audit_log table.

    Returns:
        True if the event was stored, False otherwise
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    try:
        client.insert(AUDIT_TABLE, {
            "user_id": user_id,
            "table_name": table_name,
            "record_id": record_id,
            "action": action,
            "old_values": old_values,
            "new_values": new_values,
            "metadata": metadata,
        })
        return True
    except BackendError as e:
        logger.error(f"Failed to log audit event {action} on {table_name}: {e}")
        return False


def log_role_change(client: BackendClient, *, admin_user_id: str, target_user_id: str,
                    role: str, action: str) -> bool:
    """Log a role assignment/removal."""
    return log_audit(
        client,
        user_id=admin_user_id,
        table_name="user_role",
        record_id=f"{target_user_id}:{role}",
        action=action,
        new_values={"role": role} if action == "role_assign" else None,
        old_values={"role": role} if action == "role_remove" else None,
        metadata={"target_user_id": target_user_id},
    )


def log_routing(client: BackendClient, *, user_id: Optional[str], opportunity_id: Optional[str],
                constituent_id: str, assigned_role: str, rule_applied: str,
                collisions: List[str]) -> bool:
    """Log opportunity routing decision."""
    return log_audit(
        client,
        user_id=user_id,
        table_name="opportunity",
        record_id=opportunity_id,
        action="route_opportunity",
        metadata={
            "constituent_id": constituent_id,
            "assigned_role": assigned_role,
            "rule_applied": rule_applied,
            "collision_detected": bool(collisions),
            "collision_rules": collisions,
            "timestamp": _now_iso(),
        },
    )


def log_proposal_event(client: BackendClient, *, user_id: str, proposal_id: str, action: str,
                       outcome: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
    """Log proposal approval lifecycle event (outcome: approved, partially_approved, ...)."""
    return log_audit(
        client,
        user_id=user_id,
        table_name="proposal",
        record_id=proposal_id,
        action=action,
        metadata={"outcome": outcome, **(metadata or {}), "timestamp": _now_iso()},
    )


def get_audit_trail(
    client: BackendClient,
    table_name: Optional[str] = None,
    record_id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Query audit log for a specific table/record/user, newest first.

    Raises:
        BackendError: If the query fails
    """
    filters = {}
    if table_name:
        filters["table_name"] = table_name
    if record_id:
        filters["record_id"] = record_id
    if user_id:
        filters["user_id"] = user_id
    try:
        return client.select(AUDIT_TABLE, filters, order="created_at.desc", limit=limit)
    except BackendError as e:
        raise BackendError(f"Failed to fetch audit trail: {e}", status_code=e.status_code) from e
