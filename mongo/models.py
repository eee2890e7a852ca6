"""Pydantic models for stored records and the write payloads the store accepts."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from rbac.permissions import Role, TaskPriority, TaskStatus


def _required_text(value, field_name: str):
    if value is None:
        raise ValueError(f"{field_name} cannot be null")
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    return value


def _optional_text(value):
    if value is None:
        return None
    value = value.strip()
    return value or None


def _stored_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """UTC-aware, millisecond precision: what MongoDB hands back."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


class WriteModel(BaseModel):
    """Base for write payloads: unknown fields are rejected, enums stored as values."""
    model_config = ConfigDict(extra="forbid", use_enum_values=True)


# ---------------------------------------------------------------------------
# Write payloads
# ---------------------------------------------------------------------------

class ProfileUpdate(WriteModel):
    email: Optional[str] = None
    full_name: Optional[str] = None

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, v):
        return _required_text(v, "full_name")

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        v = _required_text(v, "email").lower()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class RoleAssignmentCreate(WriteModel):
    user_id: str
    role: Role


class RoleAssignmentUpdate(WriteModel):
    role: Role


class ProjectCreate(WriteModel):
    name: str
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v):
        return _required_text(v, "name")

    @field_validator("description")
    @classmethod
    def _description(cls, v):
        return _optional_text(v)


class ProjectUpdate(WriteModel):
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v):
        return _required_text(v, "name")

    @field_validator("description")
    @classmethod
    def _description(cls, v):
        return _optional_text(v)


class TaskCreate(WriteModel):
    title: str
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    project_id: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def _title(cls, v):
        return _required_text(v, "title")

    @field_validator("description")
    @classmethod
    def _description(cls, v):
        return _optional_text(v)

    @field_validator("due_date")
    @classmethod
    def _due_date(cls, v):
        return _stored_datetime(v)


class TaskUpdate(WriteModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    project_id: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def _title(cls, v):
        return _required_text(v, "title")

    @field_validator("description")
    @classmethod
    def _description(cls, v):
        return _optional_text(v)

    @field_validator("due_date")
    @classmethod
    def _due_date(cls, v):
        return _stored_datetime(v)

    @field_validator("priority", "status")
    @classmethod
    def _not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


# ---------------------------------------------------------------------------
# Records (API responses)
# ---------------------------------------------------------------------------

class Profile(BaseModel):
    id: str
    email: str
    full_name: str
    created_at: datetime
    updated_at: datetime


class RoleAssignment(BaseModel):
    id: str
    user_id: str
    role: Role


class UserWithRole(Profile):
    role: Role


class Project(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    task_count: Optional[int] = None


class Task(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    priority: TaskPriority
    status: TaskStatus
    project_id: Optional[str] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TaskStats(BaseModel):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
