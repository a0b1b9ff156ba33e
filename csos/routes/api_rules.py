"""
API Routes for Rule Cache Diagnostics

GET  /api/rules/cache        ages of cached rule documents
POST /api/rules/cache/clear  force every rule set to reload on next use
GET  /api/rules/{rule_set}   the current document for one rule set

All endpoints require the admin or executive role.
"""

from fastapi import APIRouter, Depends, Request
import logging

from csos.backend import BackendClient, get_backend
from csos.rule_cache import RuleCache, get_rule_cache
from csos.utils.auth import require_auth, require_role
from csos.utils.constants import PRIVILEGED_ROLES
from csos.utils.error_handling import AuthenticationError, AuthorizationError, RuleLoadError
from csos.utils.responses import auth_error_response, error_response, success_response

router = APIRouter(prefix="/api/rules", tags=["rules"])
logger = logging.getLogger(__name__)


@router.get("/cache")
def rule_cache_stats(
    request: Request,
    backend: BackendClient = Depends(get_backend),
    cache: RuleCache = Depends(get_rule_cache),
):
    try:
        auth = require_auth(request, backend)
        require_role(auth.client, auth.user_id, PRIVILEGED_ROLES)
    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)

    return success_response({"ttlSeconds": cache.ttl_seconds, "entries": cache.stats()})


@router.post("/cache/clear")
def rule_cache_clear(
    request: Request,
    backend: BackendClient = Depends(get_backend),
    cache: RuleCache = Depends(get_rule_cache),
):
    try:
        auth = require_auth(request, backend)
        require_role(auth.client, auth.user_id, PRIVILEGED_ROLES)
    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)

    cache.clear()
    logger.info(f"Rule cache cleared by {auth.user_id}")
    return success_response({"cleared": True}, "Rules cache cleared")


@router.get("/{rule_set}")
def get_rule_set(
    rule_set: str,
    request: Request,
    backend: BackendClient = Depends(get_backend),
    cache: RuleCache = Depends(get_rule_cache),
):
    """Return a rule document exactly as loaded (through the cache)."""
    try:
        auth = require_auth(request, backend)
        require_role(auth.client, auth.user_id, PRIVILEGED_ROLES)
    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)

    if rule_set not in cache.rule_files:
        return error_response(f"Unknown rule set '{rule_set}'", 404)
    try:
        return success_response({"ruleSet": rule_set, "document": cache.get(rule_set)})
    except RuleLoadError as e:
        logger.error(f"Could not load {rule_set}: {e}")
        return error_response(str(e), 500)
