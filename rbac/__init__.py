"""
RBAC (Role-Based Access Control) Module

Row-level permission rules for the task tracker: a deny-by-default policy
table over profiles, role assignments, projects and tasks, plus the FastAPI
dependencies that turn a bearer token into an authenticated actor.
"""

from rbac.permissions import (
    ActorContext,
    Conflict,
    Forbidden,
    NotFound,
    Operation,
    Resource,
    Role,
    TaskPriority,
    TaskStatus,
    TrackerError,
    Unauthenticated,
    ValidationFailed,
)

from rbac.policy import (
    POLICY,
    Decision,
    authorize,
    evaluate,
    is_permitted,
)

__all__ = [
    # Core types
    "ActorContext",
    "Role",
    "Resource",
    "Operation",
    "TaskPriority",
    "TaskStatus",
    # Errors
    "TrackerError",
    "Unauthenticated",
    "Forbidden",
    "NotFound",
    "ValidationFailed",
    "Conflict",
    # Policy
    "POLICY",
    "Decision",
    "evaluate",
    "authorize",
    "is_permitted",
]
