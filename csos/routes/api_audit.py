"""
API Routes for the Audit Trail

GET /audit_trail?tableName=&recordId=&userId=&limit=  (admin/executive only)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
import logging

from csos.audit import get_audit_trail
from csos.backend import BackendClient, get_backend
from csos.utils.auth import require_auth, require_role
from csos.utils.constants import PRIVILEGED_ROLES
from csos.utils.error_handling import AuthenticationError, AuthorizationError, BackendError
from csos.utils.responses import auth_error_response, error_response, success_response

router = APIRouter(tags=["audit"])
logger = logging.getLogger(__name__)


@router.get("/audit_trail")
def audit_trail(
    request: Request,
    tableName: Optional[str] = Query(None),
    recordId: Optional[str] = Query(None),
    userId: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    backend: BackendClient = Depends(get_backend),
):
    try:
        auth = require_auth(request, backend)
        require_role(auth.client, auth.user_id, PRIVILEGED_ROLES)
        events = get_audit_trail(backend, table_name=tableName, record_id=recordId,
                                 user_id=userId, limit=limit)
    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)
    except BackendError as e:
        return error_response(str(e), 500)

    return success_response({"count": len(events), "events": events})
