#!/usr/bin/env python3
"""
RBAC core types - roles, resources, operations and the actor context

Every authorization decision is made against an ActorContext whose role was
resolved server-side from the user_roles collection. Roles, task priorities
and task statuses are closed enums; unknown strings are rejected at the
boundary instead of being carried around as free text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    ADMIN = "admin"
    DEPARTMENT_HEAD = "department_head"
    EMPLOYEE = "employee"


DEFAULT_ROLE = Role.EMPLOYEE


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Resource(str, Enum):
    PROFILE = "profile"
    ROLE_ASSIGNMENT = "role_assignment"
    PROJECT = "project"
    TASK = "task"


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def parse_role(value) -> Role:
    """Coerce a stored or transmitted role string into a Role.

    Raises ValueError for anything outside the closed set.
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown role: {value!r}")


@dataclass(frozen=True)
class ActorContext:
    """Authenticated actor used for every policy evaluation.

    `role` is None only when the actor has no role assignment on record;
    such an actor gets no role-based capability at all.
    """
    actor_id: str
    email: str = ""
    role: Optional[Role] = None
    session_id: Optional[str] = None

    def has_role(self, *roles: Role) -> bool:
        return self.role is not None and self.role in roles

    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)

    def is_department_head(self) -> bool:
        return self.has_role(Role.DEPARTMENT_HEAD)

    def is_employee(self) -> bool:
        return self.has_role(Role.EMPLOYEE)


class TrackerError(Exception):
    """Base class for failures surfaced by the policy engine and the store."""

    status_code = 400
    code = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Unauthenticated(TrackerError):
    """No resolvable actor or session."""
    status_code = 401
    code = "unauthenticated"


class Forbidden(TrackerError):
    """Authenticated, but the policy denies the operation."""
    status_code = 403
    code = "forbidden"


class NotFound(TrackerError):
    """Record absent, or hidden from the actor (indistinguishable on purpose)."""
    status_code = 404
    code = "not_found"


class ValidationFailed(TrackerError):
    status_code = 422
    code = "validation_failed"


class Conflict(TrackerError):
    status_code = 409
    code = "conflict"
