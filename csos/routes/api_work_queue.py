"""
API Routes for the Work Queue

GET  /work_queue   prioritized task list for a user, a role, or both
POST /work_queue   claim a task or update its status

Tasks are the task_work_item rows created by /routing_engine. A task
assigned to a role with no assigned_user_id is unclaimed.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
import logging

from csos.audit import log_audit
from csos.backend import BackendClient, get_backend
from csos.utils.auth import get_user_roles, require_auth
from csos.utils.constants import (
    DEFAULT_WORK_QUEUE_LIMIT,
    DEFAULT_WORK_QUEUE_STATUS,
    MAX_WORK_QUEUE_LIMIT,
    PRIVILEGED_ROLES,
    TASK_PRIORITY_RANK,
    TASK_STATUSES,
    TASK_TYPE_GROUPS,
    WORK_QUEUE_SCOPES,
)
from csos.utils.error_handling import AuthenticationError, AuthorizationError
from csos.utils.responses import auth_error_response, error_response, success_response

router = APIRouter(tags=["work_queue"])
logger = logging.getLogger(__name__)

TASK_TABLE = "task_work_item"


class WorkQueueActionRequest(BaseModel):
    """Request model for task actions."""
    action: Optional[str] = None
    taskId: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


# ---------- Queue shaping ----------

def sort_tasks(tasks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """High priority first, then earliest due date; undated tasks last."""
    return sorted(
        tasks,
        key=lambda t: (
            TASK_PRIORITY_RANK.get(t.get("priority"), len(TASK_PRIORITY_RANK)),
            t.get("due_at") is None,
            str(t.get("due_at") or ""),
        ),
    )


def group_tasks(tasks: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {name: [] for name in TASK_TYPE_GROUPS}
    grouped["other"] = []
    for task in tasks:
        grouped.get(task.get("type"), grouped["other"]).append(task)
    return grouped


def build_queue(tasks: List[Dict[str, Any]], page: int, limit: int) -> Dict[str, Any]:
    """
    Sort, paginate and group a task list.

    Returns:
        {tasks, grouped, pagination: {page, limit, total, total_pages}}
    """
    ordered = sort_tasks(tasks)
    offset = (page - 1) * limit
    page_tasks = ordered[offset:offset + limit]
    return {
        "tasks": page_tasks,
        "grouped": group_tasks(page_tasks),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": len(ordered),
            "total_pages": math.ceil(len(ordered) / limit),
        },
    }


def _status_filter(status: str) -> Dict[str, Any]:
    return {} if status == "all" else {"status": status}


def fetch_user_tasks(backend: BackendClient, user_id: str, status: str) -> List[Dict[str, Any]]:
    return backend.select(TASK_TABLE, {"assigned_user_id": user_id, **_status_filter(status)})


def fetch_role_tasks(backend: BackendClient, role: str, status: str) -> List[Dict[str, Any]]:
    """Unclaimed tasks assigned to a role."""
    return backend.select(TASK_TABLE, {"assigned_role": role, "assigned_user_id": None, **_status_filter(status)})


# ---------- Routes ----------

@router.get("/work_queue")
def work_queue(
    request: Request,
    assigned_to: str = Query("combined"),
    user_id: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    status: str = Query(DEFAULT_WORK_QUEUE_STATUS),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_WORK_QUEUE_LIMIT, ge=1, le=MAX_WORK_QUEUE_LIMIT),
    backend: BackendClient = Depends(get_backend),
):
    """
    Get the work queue.

    assigned_to=user      tasks claimed by user_id (default: the caller)
    assigned_to=role      unclaimed tasks for role
    assigned_to=combined  the caller's tasks plus unclaimed tasks for the caller's roles
    """
    try:
        auth = require_auth(request, backend)

        if assigned_to not in WORK_QUEUE_SCOPES:
            return error_response(f"assigned_to must be one of: {', '.join(WORK_QUEUE_SCOPES)}", 400)
        if status != "all" and status not in TASK_STATUSES:
            return error_response(f"Invalid status. Valid statuses: all, {', '.join(TASK_STATUSES)}", 400)

        caller_roles = get_user_roles(auth.client, auth.user_id)
        privileged = any(r in caller_roles for r in PRIVILEGED_ROLES)

        if assigned_to == "user":
            target = user_id or auth.user_id
            if target != auth.user_id and not privileged:
                raise AuthorizationError(f"Insufficient permissions. Required roles: {', '.join(PRIVILEGED_ROLES)}")
            queue = build_queue(fetch_user_tasks(backend, target, status), page, limit)

        elif assigned_to == "role":
            if not role:
                return error_response("Missing required parameter: role", 400)
            if role not in caller_roles and not privileged:
                raise AuthorizationError(
                    f"Insufficient permissions. Required roles: {', '.join((role,) + PRIVILEGED_ROLES)}"
                )
            queue = build_queue(fetch_role_tasks(backend, role, status), page, limit)

        else:
            tasks = {str(t["id"]): t for t in fetch_user_tasks(backend, auth.user_id, status)}
            for caller_role in caller_roles:
                for task in fetch_role_tasks(backend, caller_role, status):
                    tasks.setdefault(str(task["id"]), task)
            queue = build_queue(list(tasks.values()), page, limit)
            queue["claimed"] = [t for t in queue["tasks"] if t.get("assigned_user_id") == auth.user_id]
            queue["unclaimed"] = [t for t in queue["tasks"] if not t.get("assigned_user_id")]

        return success_response({"work_queue": queue, "assigned_to": assigned_to, "user_roles": caller_roles})

    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)
    except Exception as e:
        logger.error(f"Work queue error: {e}")
        return error_response(str(e) or "Internal server error", 500)


@router.post("/work_queue")
def work_queue_action(
    body: WorkQueueActionRequest,
    request: Request,
    backend: BackendClient = Depends(get_backend),
):
    """Claim a task ({action: "claim", taskId}) or update its status ({action: "update_status", taskId, status})."""
    try:
        auth = require_auth(request, backend)

        if body.action not in ("claim", "update_status"):
            return error_response(f"Invalid action: {body.action}", 400)
        if not body.taskId:
            return error_response("Missing required field: taskId", 400)

        task = backend.select_one(TASK_TABLE, {"id": body.taskId})
        if not task:
            return error_response("Task not found", 404)
        now = datetime.now(timezone.utc).isoformat()

        if body.action == "claim":
            if task.get("assigned_user_id"):
                return error_response("Task already claimed by another user", 409)
            roles = get_user_roles(auth.client, auth.user_id)
            allowed = (task.get("assigned_role"),) + PRIVILEGED_ROLES
            if not any(r in roles for r in allowed):
                raise AuthorizationError(f"Insufficient permissions. Required roles: {', '.join(filter(None, allowed))}")

            # Conditional on still being unclaimed
            claimed = backend.update(
                TASK_TABLE,
                {"assigned_user_id": auth.user_id, "updated_at": now},
                {"id": body.taskId, "assigned_user_id": None},
            )
            if not claimed:
                return error_response("Task already claimed by another user", 409)
            log_audit(backend, user_id=auth.user_id, table_name=TASK_TABLE, action="update",
                      record_id=body.taskId, new_values={"assigned_user_id": auth.user_id},
                      metadata={"event": "claim"})
            logger.info(f"Task {body.taskId} claimed by {auth.user_id}")
            return success_response({"task": claimed[0]}, "Task claimed successfully")

        if not body.status:
            return error_response("Missing required fields: taskId, status", 400)
        if body.status not in TASK_STATUSES:
            return error_response(f"Invalid status. Valid statuses: {', '.join(TASK_STATUSES)}", 400)
        if task.get("assigned_user_id") != auth.user_id:
            return error_response("You do not own this task", 403)

        updates: Dict[str, Any] = {"status": body.status, "updated_at": now}
        if body.notes:
            updates["notes"] = body.notes
        if body.status == "completed":
            updates["completed_at"] = now
        updated = backend.update(TASK_TABLE, updates, {"id": body.taskId})
        log_audit(backend, user_id=auth.user_id, table_name=TASK_TABLE, action="update",
                  record_id=body.taskId, old_values={"status": task.get("status")},
                  new_values={"status": body.status})
        return success_response({"task": updated[0] if updated else {**task, **updates}},
                                "Task status updated successfully")

    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)
    except Exception as e:
        logger.error(f"Work queue action error: {e}")
        return error_response(str(e) or "Internal server error", 500)
