"""
API Routes for Proposal Approval

POST /proposal_approve applies the approval thresholds to a proposal.

Body: {proposalId, action: "approve" | "reject", notes?}

The threshold is chosen from the proposal's opportunity (type and amount).
Two-level thresholds need approvals from two different users.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
import logging

from csos.audit import log_proposal_event
from csos.backend import BackendClient, get_backend
from csos.rule_cache import RuleCache, get_rule_cache, load_approval_thresholds
from csos.rules import ApprovalThreshold, find_matching_threshold, has_approver_role, parse_approval_thresholds
from csos.utils.auth import get_user_roles, require_auth
from csos.utils.constants import ACTIONABLE_PROPOSAL_STATUSES
from csos.utils.error_handling import AuthenticationError, AuthorizationError
from csos.utils.responses import auth_error_response, error_response, success_response

router = APIRouter(tags=["proposals"])
logger = logging.getLogger(__name__)


class ProposalApprovalRequest(BaseModel):
    """Request model for a proposal approval decision."""
    proposalId: Optional[str] = None
    action: Optional[str] = None
    notes: Optional[str] = None


def _threshold_payload(threshold: ApprovalThreshold) -> Dict[str, Any]:
    payload = asdict(threshold)
    payload["when"] = dict(threshold.when)
    return payload


def _decide(backend: BackendClient, proposal_id: str, status: str, user_id: str, notes: str) -> None:
    backend.update("proposal", {
        "status": status,
        "approved_by": user_id,
        "approved_at": datetime.now(timezone.utc).isoformat(),
        "approval_notes": notes,
    }, {"id": proposal_id})


@router.post("/proposal_approve")
def proposal_approve(
    body: ProposalApprovalRequest,
    request: Request,
    backend: BackendClient = Depends(get_backend),
    cache: RuleCache = Depends(get_rule_cache),
):
    """Approve or reject a proposal according to approval_thresholds.yaml."""
    try:
        auth = require_auth(request, backend)

        if not body.proposalId or not body.action:
            return error_response("Missing required fields: proposalId, action", 400)
        if body.action not in ("approve", "reject"):
            return error_response('Invalid action. Must be "approve" or "reject"', 400)

        proposal = backend.select_one("proposal", {"id": body.proposalId})
        if not proposal:
            return error_response("Proposal not found", 404)
        if proposal.get("status") not in ACTIONABLE_PROPOSAL_STATUSES:
            return error_response(f"Proposal cannot be {body.action}d from status '{proposal.get('status')}'", 400)

        opportunity_id = proposal.get("opportunity_id")
        opportunity = backend.select_one("opportunity", {"id": opportunity_id}) if opportunity_id else None
        if not opportunity:
            return error_response("Opportunity for proposal not found", 404)

        thresholds = parse_approval_thresholds(load_approval_thresholds(cache))
        context = {"opportunity_type": opportunity.get("type"), "amount": opportunity.get("amount") or 0}
        matched = find_matching_threshold(thresholds, context)
        if matched is None:
            return error_response("No approval threshold matched. Check approval_thresholds.yaml", 500)

        proposal_id = body.proposalId
        event = {"amount": proposal.get("amount"), "threshold": matched.id}

        if matched.then.approval_required:
            user_roles = get_user_roles(auth.client, auth.user_id)
            if not has_approver_role(user_roles, matched.then.approver_roles):
                raise AuthorizationError(
                    f"Insufficient permissions. Required roles: {', '.join(matched.then.approver_roles)}"
                )

        if body.action == "reject":
            _decide(backend, proposal_id, "rejected", auth.user_id, body.notes or "Rejected")
            log_proposal_event(backend, user_id=auth.user_id, proposal_id=proposal_id,
                               action="proposal_reject", outcome="rejected", metadata=event)
            return success_response({
                "proposal": {"id": proposal_id, "status": "rejected", "message": "Proposal rejected"},
                "threshold": _threshold_payload(matched),
            })

        if not matched.then.approval_required:
            _decide(backend, proposal_id, "approved", auth.user_id, body.notes or "Auto-approved (below threshold)")
            log_proposal_event(backend, user_id=auth.user_id, proposal_id=proposal_id,
                               action="proposal_approve", outcome="auto_approved", metadata=event)
            return success_response({
                "proposal": {
                    "id": proposal_id,
                    "status": "approved",
                    "message": "Proposal auto-approved (below approval threshold)",
                },
                "threshold": _threshold_payload(matched),
            })

        levels = matched.then.approval_levels
        if levels > 1:
            approvals = backend.select("proposal_approval", {"proposal_id": proposal_id})
            if any(row.get("approved_by") == auth.user_id for row in approvals):
                return error_response("You have already approved this proposal", 409)
            # Only distinct approvers count toward the required levels
            approvers = {row.get("approved_by") for row in approvals}
            backend.insert("proposal_approval", {
                "proposal_id": proposal_id,
                "approved_by": auth.user_id,
                "approved_at": datetime.now(timezone.utc).isoformat(),
                "notes": body.notes,
            })
            if len(approvers) + 1 < levels:
                backend.update("proposal", {"status": "pending_approval"}, {"id": proposal_id})
                log_proposal_event(backend, user_id=auth.user_id, proposal_id=proposal_id,
                                   action="proposal_approve", outcome="partially_approved", metadata=event)
                return success_response({
                    "proposal": {
                        "id": proposal_id,
                        "status": "pending_approval",
                        "message": (
                            f"Partially approved ({len(approvers) + 1}/{levels} approvals). "
                            "Awaiting additional approval."
                        ),
                    },
                    "threshold": _threshold_payload(matched),
                })

        _decide(backend, proposal_id, "approved", auth.user_id, body.notes or "Approved")
        log_proposal_event(backend, user_id=auth.user_id, proposal_id=proposal_id,
                           action="proposal_approve", outcome="approved", metadata=event)
        return success_response({
            "proposal": {"id": proposal_id, "status": "approved", "message": "Proposal approved and ready to send"},
            "threshold": _threshold_payload(matched),
        })

    except (AuthenticationError, AuthorizationError) as e:
        return auth_error_response(e)
    except Exception as e:
        logger.error(f"Proposal approval error: {e}")
        return error_response(str(e) or "Internal server error", 500)
