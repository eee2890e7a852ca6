#!/usr/bin/env python3
"""
RBAC-Protected Collection Endpoints

Profiles, role assignments, projects and tasks. Handlers only resolve the
actor and pass it to the store; every permission decision is made there.
"""

from fastapi import APIRouter, Depends, Query, Response, status
from typing import Annotated, Optional, List

from mongo.models import (
    Profile,
    ProfileUpdate,
    Project,
    ProjectCreate,
    ProjectUpdate,
    RoleAssignment,
    RoleAssignmentCreate,
    RoleAssignmentUpdate,
    Task,
    TaskCreate,
    TaskStats,
    TaskUpdate,
    UserWithRole,
)
from mongo.store import TrackerStore
from rbac.auth import get_current_actor, get_store
from rbac.permissions import ActorContext, Resource, Role, TaskPriority, TaskStatus


router = APIRouter(prefix="/api", tags=["collections"])

Actor = Annotated[ActorContext, Depends(get_current_actor)]
Store = Annotated[TrackerStore, Depends(get_store)]


# ============================================================================
# PROFILES
# ============================================================================

@router.get("/profiles", response_model=List[Profile])
async def list_profiles(actor: Actor, store: Store, search: Optional[str] = None):
    return await store.list_profiles(actor, search=search)


@router.get("/profiles/{user_id}", response_model=Profile)
async def get_profile(user_id: str, actor: Actor, store: Store):
    return await store.get_profile(actor, user_id)


@router.patch("/profiles/{user_id}", response_model=Profile)
async def update_profile(user_id: str, body: dict, actor: Actor, store: Store):
    """
    Update the caller's own profile.

    The body is passed through unparsed so that an attempt to smuggle a
    role in is answered with 403 rather than a validation error.
    """
    return await store.update_profile(actor, user_id, body)


# ============================================================================
# ROLES AND USER MANAGEMENT
# ============================================================================

@router.get("/roles", response_model=List[RoleAssignment])
async def list_roles(actor: Actor, store: Store, role: Optional[Role] = None):
    """
    - Admins see every assignment
    - Everyone else sees only their own
    """
    return await store.list_roles(actor, role=role)


@router.get("/roles/{user_id}", response_model=RoleAssignment)
async def get_role(user_id: str, actor: Actor, store: Store):
    return await store.get_role(actor, user_id)


@router.post("/roles", response_model=RoleAssignment, status_code=status.HTTP_201_CREATED)
async def create_role(body: RoleAssignmentCreate, actor: Actor, store: Store):
    return await store.insert(actor, Resource.ROLE_ASSIGNMENT, body)


@router.put("/roles/{user_id}", response_model=RoleAssignment)
async def replace_role(user_id: str, body: RoleAssignmentUpdate, actor: Actor, store: Store):
    return await store.assign_role(actor, user_id, body.role)


@router.delete("/roles/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(user_id: str, actor: Actor, store: Store):
    await store.delete(actor, Resource.ROLE_ASSIGNMENT, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users", response_model=List[UserWithRole])
async def list_users(actor: Actor, store: Store, search: Optional[str] = None):
    """Profiles with their roles (admin only)."""
    return await store.list_users_with_roles(actor, search=search)


# ============================================================================
# PROJECTS
# ============================================================================

@router.get("/projects", response_model=List[Project])
async def list_projects(actor: Actor, store: Store, search: Optional[str] = None):
    """
    List projects ordered by name.

    - task_count only counts tasks the caller can see
    """
    return await store.list_projects(actor, search=search)


@router.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
async def create_project(body: ProjectCreate, actor: Actor, store: Store):
    return await store.create_project(actor, body)


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: str, actor: Actor, store: Store):
    return await store.get_project(actor, project_id)


@router.patch("/projects/{project_id}", response_model=Project)
async def update_project(project_id: str, body: ProjectUpdate, actor: Actor, store: Store):
    return await store.update_project(actor, project_id, body)


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: str, actor: Actor, store: Store):
    """Delete a project and its tasks (admin only)."""
    await store.delete_project(actor, project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# TASKS
# ============================================================================

@router.get("/tasks", response_model=List[Task])
async def list_tasks(
    actor: Actor,
    store: Store,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    project_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
):
    """
    List tasks, newest first.

    - Employees see only tasks assigned to them
    - Department heads and admins see all tasks
    """
    return await store.list_tasks(
        actor,
        status=status.value if status else None,
        priority=priority.value if priority else None,
        project_id=project_id,
        assigned_to=assigned_to,
        search=search,
    )


@router.get("/tasks/stats", response_model=TaskStats)
async def task_stats(actor: Actor, store: Store, project_id: Optional[str] = None):
    return await store.task_stats(actor, project_id=project_id)


@router.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_task(body: TaskCreate, actor: Actor, store: Store):
    return await store.create_task(actor, body)


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(task_id: str, actor: Actor, store: Store):
    return await store.get_task(actor, task_id)


@router.patch("/tasks/{task_id}", response_model=Task)
async def update_task(task_id: str, body: TaskUpdate, actor: Actor, store: Store):
    return await store.update_task(actor, task_id, body)


@router.post("/tasks/{task_id}/complete", response_model=Task)
async def toggle_task_complete(
    task_id: str,
    actor: Actor,
    store: Store,
    completed: bool = Query(True),
):
    return await store.toggle_task_complete(actor, task_id, completed)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, actor: Actor, store: Store):
    await store.delete_task(actor, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
