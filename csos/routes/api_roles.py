"""
API Routes for Role Management

GET  /role_list?userId=<uuid>  roles of one user (own roles always allowed)
GET  /role_list                all user-role mappings (admin/executive only)
POST /role_assign              assign or remove a role (admin/executive only)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
import logging

from csos.audit import log_role_change
from csos.backend import BackendClient, get_backend
from csos.utils.auth import ROLE_TABLE, get_user_roles, require_auth, require_role
from csos.utils.constants import PRIVILEGED_ROLES, VALID_ROLES
from csos.utils.error_handling import AuthenticationError, AuthorizationError, BackendError
from csos.utils.responses import auth_error_response, error_response, success_response

router = APIRouter(tags=["roles"])
logger = logging.getLogger(__name__)


class RoleAssignRequest(BaseModel):
    """Request model for role assignment."""
    targetUserId: Optional[str] = None
    role: Optional[str] = None
    action: Optional[str] = None


def group_role_assignments(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Group user_role rows by user, keeping row order.

    Returns:
        [{userId, roles, assignments: [{role, assignedBy, assignedAt}]}]
    """
    users: Dict[str, Dict[str, Any]] = {}
    for record in rows:
        entry = users.setdefault(record["user_id"], {
            "userId": record["user_id"],
            "roles": [],
            "assignments": [],
        })
        entry["roles"].append(record["role"])
        entry["assignments"].append({
            "role": record["role"],
            "assignedBy": record.get("assigned_by"),
            "assignedAt": record.get("assigned_at"),
        })
    return list(users.values())


@router.get("/role_list")
def role_list(
    request: Request,
    userId: Optional[str] = Query(None),
    backend: BackendClient = Depends(get_backend),
):
    """
    List roles for a specific user, or all user-role mappings.

    Returns:
        {success, data: {userId, roles}} or {success, data: {totalUsers, users}}
    """
    try:
        auth = require_auth(request, backend)

        if userId:
            if userId != auth.user_id:
                require_role(auth.client, auth.user_id, PRIVILEGED_ROLES)
            roles = get_user_roles(auth.client, userId)
            return success_response({"userId": userId, "roles": roles})

        require_role(auth.client, auth.user_id, PRIVILEGED_ROLES)
        try:
            rows = auth.client.select(
                ROLE_TABLE,
                columns="user_id,role,assigned_by,assigned_at",
                order="assigned_at.desc",
            )
        except BackendError as e:
            logger.error(f"Error fetching roles: {e}")
            return error_response(f"Failed to fetch roles: {e}", 500)

        users = group_role_assignments(rows)
        return success_response({"totalUsers": len(users), "users": users})

    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)
    except Exception as e:
        logger.error(f"Role list error: {e}")
        return error_response(str(e) or "Internal server error", 500)


@router.post("/role_assign")
def role_assign(
    body: RoleAssignRequest,
    request: Request,
    backend: BackendClient = Depends(get_backend),
):
    """Assign or remove a role from a user."""
    try:
        auth = require_auth(request, backend)
        require_role(auth.client, auth.user_id, PRIVILEGED_ROLES)

        if not body.targetUserId or not body.role or not body.action:
            return error_response("Missing required fields: targetUserId, role, action", 400)
        if body.role not in VALID_ROLES:
            return error_response(f"Invalid role. Valid roles: {', '.join(VALID_ROLES)}", 400)
        if body.action not in ("assign", "remove"):
            return error_response('Action must be "assign" or "remove"', 400)
        if body.action == "remove" and body.role == "admin" and body.targetUserId == auth.user_id:
            return error_response("Cannot remove your own admin role", 403)

        filters = {"user_id": body.targetUserId, "role": body.role}
        result = {"targetUserId": body.targetUserId, "role": body.role, "action": body.action}

        if body.action == "assign":
            if backend.select_one(ROLE_TABLE, filters):
                return error_response("User already has this role", 409)
            try:
                backend.insert(ROLE_TABLE, {
                    **filters,
                    "assigned_by": auth.user_id,
                    "assigned_at": datetime.now(timezone.utc).isoformat(),
                })
            except BackendError as e:
                logger.error(f"Error assigning role: {e}")
                return error_response(f"Failed to assign role: {e}", 500)
            log_role_change(backend, admin_user_id=auth.user_id, target_user_id=body.targetUserId,
                            role=body.role, action="role_assign")
            logger.info(f"{auth.user_id} assigned {body.role} to {body.targetUserId}")
            return success_response(result, f'Role "{body.role}" assigned to user successfully')

        try:
            backend.delete(ROLE_TABLE, filters)
        except BackendError as e:
            logger.error(f"Error removing role: {e}")
            return error_response(f"Failed to remove role: {e}", 500)
        log_role_change(backend, admin_user_id=auth.user_id, target_user_id=body.targetUserId,
                        role=body.role, action="role_remove")
        logger.info(f"{auth.user_id} removed {body.role} from {body.targetUserId}")
        return success_response(result, f'Role "{body.role}" removed from user successfully')

    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)
    except Exception as e:
        logger.error(f"Role assignment error: {e}")
        return error_response(str(e) or "Internal server error", 500)
