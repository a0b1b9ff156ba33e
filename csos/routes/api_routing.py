"""
API Routes for the Routing Engine

POST /routing_engine routes an opportunity to an owning team and checks it
for collisions with the constituent's other active opportunities.

Body: {opportunityId} to route an existing opportunity, or
      {constituentId, opportunityType, amount, status?} to create one.
      {override: true} proceeds past blocking collisions.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
import logging

from csos.audit import log_routing
from csos.backend import BackendClient, get_backend
from csos.rule_cache import RuleCache, get_rule_cache, load_collision_rules, load_routing_rules
from csos.rules import (
    RoutingRule,
    detect_collisions,
    find_matching_routing_rule,
    parse_collision_rules,
    parse_routing_rules,
    routing_context,
    task_due_date,
)
from csos.utils.auth import require_auth, require_role
from csos.utils.constants import ROUTING_ROLES
from csos.utils.error_handling import AuthenticationError, AuthorizationError, BackendError
from csos.utils.responses import auth_error_response, error_response, success_response

router = APIRouter(tags=["routing"])
logger = logging.getLogger(__name__)


class RoutingRequest(BaseModel):
    """Request model for routing an opportunity."""
    opportunityId: Optional[str] = None
    constituentId: Optional[str] = None
    opportunityType: Optional[str] = None
    amount: Optional[float] = None
    status: str = "active"
    override: bool = False


def _routing_summary(rule: RoutingRule) -> Dict[str, Any]:
    return {
        "matched_rule": rule.id,
        "primary_owner_role": rule.then.primary_owner_role,
        "secondary_owner_roles": list(rule.then.secondary_owner_roles),
    }


def create_task_work_item(
    backend: BackendClient,
    opportunity_id: str,
    constituent_id: str,
    rule: RoutingRule,
) -> Optional[str]:
    """Create a pending task for the assigned owner; returns its id or None."""
    try:
        row = backend.insert("task_work_item", {
            "type": rule.then.task_type,
            "constituent_id": constituent_id,
            "opportunity_id": opportunity_id,
            "assigned_role": rule.then.primary_owner_role,
            "assigned_user_id": None,
            "description": f"Routed via {rule.name}",
            "priority": rule.then.task_priority,
            "status": "pending",
            "due_at": task_due_date(rule.then.task_priority).isoformat(),
        })
    except BackendError as e:
        logger.error(f"Error creating task work item: {e}")
        return None
    return row.get("id")


@router.post("/routing_engine")
def routing_engine(
    body: RoutingRequest,
    request: Request,
    backend: BackendClient = Depends(get_backend),
    cache: RuleCache = Depends(get_rule_cache),
):
    """
    Route an opportunity and detect collisions.

    Returns:
        Routing decision (primary/secondary owners), collision report,
        created task ids; or blocked=true when a blocking collision exists
    """
    try:
        auth = require_auth(request, backend)
        require_role(auth.client, auth.user_id, ROUTING_ROLES)

        if body.opportunityId:
            opportunity = backend.select_one("opportunity", {"id": body.opportunityId})
            if not opportunity:
                return error_response("Opportunity not found", 404)
            constituent_id = opportunity["constituent_id"]
        else:
            if not body.constituentId or not body.opportunityType or body.amount is None:
                return error_response("Missing required fields: constituentId, opportunityType, amount", 400)
            constituent_id = body.constituentId
            opportunity = {
                "constituent_id": constituent_id,
                "type": body.opportunityType,
                "amount": body.amount,
                "status": body.status,
            }

        constituent = backend.select_one("constituent_master", {"id": constituent_id})
        if not constituent:
            return error_response("Constituent not found", 404)

        routing_rules = parse_routing_rules(load_routing_rules(cache))
        collision_rules = parse_collision_rules(load_collision_rules(cache))

        matched = find_matching_routing_rule(routing_rules, routing_context(opportunity, constituent))
        if matched is None:
            return error_response("No routing rule matched. Check routing_rules.yaml", 500)

        try:
            existing = backend.select(
                "opportunity",
                {"constituent_id": constituent_id, "status": "active"},
                columns="id,type,amount,status,updated_at",
            )
        except BackendError as e:
            logger.error(f"Error fetching existing opportunities: {e}")
            existing = []
        if body.opportunityId:
            existing = [opp for opp in existing if str(opp.get("id")) != str(body.opportunityId)]

        report = detect_collisions(existing, opportunity["type"], collision_rules)
        collisions = {"collisions": [asdict(c) for c in report.collisions], "blocked": report.blocked}

        if report.blocked and not body.override:
            return success_response({
                "routing": _routing_summary(matched),
                "collisions": collisions,
                "blocked": True,
                "message": "Opportunity creation blocked due to collision. Set override=true to bypass (if allowed).",
            })

        owners = {
            "primary_owner_role": matched.then.primary_owner_role,
            "secondary_owner_roles": list(matched.then.secondary_owner_roles),
        }
        if body.opportunityId:
            backend.update("opportunity", owners, {"id": body.opportunityId})
            opportunity_id = body.opportunityId
        else:
            created = backend.insert("opportunity", {**opportunity, **owners})
            opportunity_id = created.get("id")

        tasks_created: List[str] = []
        if matched.then.create_task and opportunity_id:
            task_id = create_task_work_item(backend, opportunity_id, constituent_id, matched)
            if task_id:
                tasks_created.append(task_id)

        log_routing(
            backend,
            user_id=auth.user_id,
            opportunity_id=opportunity_id,
            constituent_id=constituent_id,
            assigned_role=matched.then.primary_owner_role,
            rule_applied=matched.id,
            collisions=[c.rule_id for c in report.collisions],
        )
        logger.info(f"Routed opportunity {opportunity_id} to {matched.then.primary_owner_role} via {matched.id}")

        return success_response({
            "routing": {**_routing_summary(matched), "tasks_created": tasks_created},
            "collisions": collisions,
            "opportunity_id": opportunity_id,
            "message": (
                f"Routed to {matched.then.primary_owner_role}. "
                f"{len(report.collisions)} collision(s) detected."
            ),
        })

    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)
    except Exception as e:
        logger.error(f"Routing engine error: {e}")
        return error_response(str(e) or "Internal server error", 500)
