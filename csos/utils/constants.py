"""
Application Constants

This module contains all application-wide constants to avoid magic strings
and improve maintainability.
"""

from pathlib import Path

# Rule cache
DEFAULT_RULE_CACHE_TTL_SECONDS = 5 * 60
DEFAULT_RULES_BUCKET = "rules"
DEFAULT_LOCAL_RULES_DIR = str(Path(__file__).resolve().parents[1] / "rules_data")

# Logical rule-set name -> file name inside the rules bucket/directory
ROUTING_RULES = "routing_rules"
COLLISION_RULES = "collision_rules"
APPROVAL_THRESHOLDS = "approval_thresholds"
RULE_FILES = {
    ROUTING_RULES: "routing_rules.yaml",
    COLLISION_RULES: "collision_rules.yaml",
    APPROVAL_THRESHOLDS: "approval_thresholds.yaml",
}

# Roles
VALID_ROLES = (
    "executive",
    "major_gifts",
    "ticketing",
    "corporate",
    "marketing",
    "revenue_ops",
    "admin",
)
PRIVILEGED_ROLES = ("admin", "executive")
ROUTING_ROLES = ("admin", "executive", "revenue_ops", "major_gifts", "ticketing", "corporate")

# Task due dates (days from now) by priority
TASK_DUE_DAYS = {
    "high": 3,
    "medium": 7,
    "low": 14,
}
DEFAULT_TASK_TYPE = "follow_up"
DEFAULT_TASK_PRIORITY = "medium"

# Work queue
TASK_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}
TASK_STATUSES = ("pending", "open", "in_progress", "completed", "cancelled")
TASK_TYPE_GROUPS = ("renewal", "proposal_required", "cultivation", "follow_up", "review_required")
WORK_QUEUE_SCOPES = ("user", "role", "combined")
DEFAULT_WORK_QUEUE_STATUS = "pending"
DEFAULT_WORK_QUEUE_LIMIT = 50
MAX_WORK_QUEUE_LIMIT = 200

# Proposal statuses that still accept an approval decision
ACTIONABLE_PROPOSAL_STATUSES = ("draft", "pending_approval")

# HTTP
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10
