#!/usr/bin/env python3
"""
Policy-enforced storage tier

Every read and write goes through the RBAC policy before a row is returned
or mutated: reads are narrowed with the actor's row predicate inside the
MongoDB query, writes are checked against the stored row and, where the rule
depends on the row, the predicate is repeated in the update filter itself.

The four primitives (select/insert/update/delete, plus get for a single
row) are generic over the resource kinds; the typed helpers at the bottom
are what the HTTP layer calls.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from mongo.client import DirectMongoClient
from mongo.constants import (
    PROFILES_COLLECTION,
    PROJECTS_COLLECTION,
    TASKS_COLLECTION,
    USER_ROLES_COLLECTION,
    document_to_record,
    new_id,
    utcnow,
)
from mongo.models import (
    ProfileUpdate,
    ProjectCreate,
    ProjectUpdate,
    RoleAssignmentCreate,
    RoleAssignmentUpdate,
    TaskCreate,
    TaskStats,
    TaskUpdate,
)
from rbac.filters import apply_actor_filter, filter_results_by_access, get_actor_filter
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
    ValidationFailed,
    parse_role,
)
from rbac.policy import authorize, evaluate, is_permitted, row_permitted

logger = logging.getLogger(__name__)

Payload = Union[BaseModel, Dict[str, Any]]


@dataclass(frozen=True)
class ResourceSpec:
    collection: str
    create_model: Optional[Type[BaseModel]]
    update_model: Optional[Type[BaseModel]]
    sort: Tuple[Tuple[str, int], ...]
    criteria_fields: FrozenSet[str] = frozenset()
    search_fields: Tuple[str, ...] = ()
    timestamps: bool = True


RESOURCES: Dict[Resource, ResourceSpec] = {
    Resource.PROFILE: ResourceSpec(
        collection=PROFILES_COLLECTION,
        create_model=None,
        update_model=ProfileUpdate,
        sort=(("full_name", 1),),
        criteria_fields=frozenset({"email"}),
        search_fields=("full_name", "email"),
    ),
    Resource.ROLE_ASSIGNMENT: ResourceSpec(
        collection=USER_ROLES_COLLECTION,
        create_model=RoleAssignmentCreate,
        update_model=RoleAssignmentUpdate,
        sort=(("_id", 1),),
        criteria_fields=frozenset({"user_id", "role"}),
        timestamps=False,
    ),
    Resource.PROJECT: ResourceSpec(
        collection=PROJECTS_COLLECTION,
        create_model=ProjectCreate,
        update_model=ProjectUpdate,
        sort=(("name", 1),),
        criteria_fields=frozenset({"created_by"}),
        search_fields=("name", "description"),
    ),
    Resource.TASK: ResourceSpec(
        collection=TASKS_COLLECTION,
        create_model=TaskCreate,
        update_model=TaskUpdate,
        sort=(("created_at", -1),),
        criteria_fields=frozenset({"status", "priority", "project_id", "assigned_to", "created_by"}),
        search_fields=("title", "description"),
    ),
}


def _payload_dict(fields: Payload) -> Dict[str, Any]:
    if isinstance(fields, BaseModel):
        return fields.model_dump(exclude_unset=True)
    return dict(fields or {})


def _validate(model: Type[BaseModel], fields: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    try:
        payload = model.model_validate(fields).model_dump(exclude_unset=partial)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationFailed(problems)
    # Unvalidated defaults still carry enum members
    return {field: _plain(value) for field, value in payload.items()}


def _plain(value):
    return value.value if isinstance(value, Enum) else value


class TrackerStore:
    """Storage tier for profiles, role assignments, projects and tasks"""

    def __init__(self, mongo: DirectMongoClient):
        self.mongo = mongo

    def _collection(self, resource: Resource):
        return self.mongo.db[RESOURCES[resource].collection]

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def resolve_actor(
        self,
        actor_id: str,
        email: str = "",
        session_id: Optional[str] = None,
    ) -> ActorContext:
        """Build an ActorContext from the authoritative role assignment."""
        doc = await self.mongo.db[USER_ROLES_COLLECTION].find_one({"_id": actor_id})
        role = None
        if doc is not None:
            try:
                role = parse_role(doc.get("role"))
            except ValueError as e:
                logger.error(f"Ignoring invalid role assignment for {actor_id}: {e}")
        else:
            logger.warning(f"Actor {actor_id} has no role assignment")
        return ActorContext(actor_id=actor_id, email=email or "", role=role, session_id=session_id)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def _criteria_query(
        self,
        resource: Resource,
        criteria: Optional[Dict[str, Any]],
        search: Optional[str],
    ) -> Dict[str, Any]:
        spec = RESOURCES[resource]
        clauses: List[Dict[str, Any]] = []
        for field, value in (criteria or {}).items():
            if field not in spec.criteria_fields:
                raise ValidationFailed(f"Cannot filter {resource.value} by '{field}'")
            clauses.append({field: _plain(value)})
        if search and search.strip() and spec.search_fields:
            pattern = re.escape(search.strip())
            clauses.append({
                "$or": [{field: {"$regex": pattern, "$options": "i"}} for field in spec.search_fields]
            })
        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    async def select(
        self,
        actor: ActorContext,
        resource: Resource,
        criteria: Optional[Dict[str, Any]] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return the rows of a resource the actor may read."""
        authorize(actor, resource, Operation.READ)
        query = self._criteria_query(resource, criteria, search)
        query = apply_actor_filter(query, resource, actor)

        cursor = self._collection(resource).find(query).sort(list(RESOURCES[resource].sort))
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=None)
        records = [document_to_record(doc) for doc in docs]
        return filter_results_by_access(records, actor, resource)

    async def get(self, actor: ActorContext, resource: Resource, record_id: str) -> Dict[str, Any]:
        """Return one row; hidden and absent rows both raise NotFound."""
        evaluation = evaluate(actor, resource, Operation.READ)
        doc = None
        if not evaluation.denied:
            doc = await self._collection(resource).find_one({"_id": record_id})
        record = document_to_record(doc)
        if record is None or not row_permitted(evaluation, actor, record):
            raise NotFound(f"{resource.value} not found")
        return record

    async def insert(self, actor: ActorContext, resource: Resource, fields: Payload) -> Dict[str, Any]:
        authorize(actor, resource, Operation.CREATE)
        spec = RESOURCES[resource]
        if spec.create_model is None:
            raise Forbidden(f"{resource.value} records cannot be created directly")
        payload = _validate(spec.create_model, _payload_dict(fields), partial=False)

        if resource is Resource.ROLE_ASSIGNMENT:
            doc = await self._role_assignment_document(payload)
        else:
            doc = await self._new_document(actor, resource, payload)

        authorize(actor, resource, Operation.CREATE, document_to_record(doc))
        try:
            await self._collection(resource).insert_one(doc)
        except DuplicateKeyError:
            raise Conflict(f"{resource.value} already exists")
        logger.info(f"{actor.actor_id} created {resource.value} {doc['_id']}")
        return document_to_record(doc)

    async def update(
        self,
        actor: ActorContext,
        resource: Resource,
        record_id: str,
        fields: Payload,
    ) -> Dict[str, Any]:
        """Apply a partial update; an update that changes nothing writes nothing."""
        evaluation = evaluate(actor, resource, Operation.UPDATE)
        fields = _payload_dict(fields)
        if resource is Resource.PROFILE and "role" in fields:
            raise Forbidden("Roles cannot be changed through the profile")
        authorize(actor, resource, Operation.UPDATE)

        spec = RESOURCES[resource]
        payload = _validate(spec.update_model, fields, partial=True)

        collection = self._collection(resource)
        record = document_to_record(await collection.find_one({"_id": record_id}))
        if record is None:
            self._raise_missing(evaluation.allowed, resource)
        if not row_permitted(evaluation, actor, record):
            raise Forbidden(f"Not allowed to update this {resource.value}")

        changes = await self._changes(resource, record, payload)
        if not changes:
            return record
        # A self-only grant must still hold for the row as written
        if not is_permitted(actor, resource, Operation.UPDATE, {**record, **changes}):
            logger.info(f"RBAC: {actor.actor_id} may not move {resource.value} {record_id} out of reach")
            raise Forbidden(f"Not allowed to update this {resource.value} that way")
        if spec.timestamps:
            changes["updated_at"] = utcnow()

        query: Dict[str, Any] = {"_id": record_id}
        actor_filter = get_actor_filter(evaluation, actor)
        if actor_filter is not None:
            query = {"$and": [query, actor_filter]}

        updated = await collection.find_one_and_update(
            query,
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            # Row deleted or reassigned since it was read
            self._raise_missing(evaluation.allowed, resource)
        logger.info(f"{actor.actor_id} updated {resource.value} {record_id}: {sorted(changes)}")
        return document_to_record(updated)

    async def delete(self, actor: ActorContext, resource: Resource, record_id: str) -> None:
        evaluation = authorize(actor, resource, Operation.DELETE)
        collection = self._collection(resource)
        record = document_to_record(await collection.find_one({"_id": record_id}))
        if record is None:
            self._raise_missing(evaluation.allowed, resource)
        if not row_permitted(evaluation, actor, record):
            raise Forbidden(f"Not allowed to delete this {resource.value}")

        if resource is Resource.ROLE_ASSIGNMENT:
            raise Conflict("Every user keeps exactly one role; replace it instead of deleting it")

        if resource is Resource.PROJECT:
            async with self.mongo.transaction() as session:
                removed = await self.mongo.db[TASKS_COLLECTION].delete_many(
                    {"project_id": record_id}, session=session
                )
                await collection.delete_one({"_id": record_id}, session=session)
            logger.info(f"{actor.actor_id} deleted project {record_id} and {removed.deleted_count} task(s)")
            return

        result = await collection.delete_one({"_id": record_id})
        if result.deleted_count == 0:
            self._raise_missing(evaluation.allowed, resource)
        logger.info(f"{actor.actor_id} deleted {resource.value} {record_id}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_missing(blanket: bool, resource: Resource):
        # Actors without blanket permission get the same answer for absent
        # rows as for rows they may not touch
        if blanket:
            raise NotFound(f"{resource.value} not found")
        raise Forbidden(f"Not allowed to modify this {resource.value}")

    async def _ensure_exists(self, collection: str, record_id: Optional[str], label: str):
        if record_id is None:
            return
        if await self.mongo.db[collection].find_one({"_id": record_id}) is None:
            raise ValidationFailed(f"{label} '{record_id}' does not exist")

    async def _check_references(self, resource: Resource, payload: Dict[str, Any]):
        if resource is not Resource.TASK:
            return
        if "project_id" in payload:
            await self._ensure_exists(PROJECTS_COLLECTION, payload["project_id"], "project")
        if "assigned_to" in payload:
            await self._ensure_exists(PROFILES_COLLECTION, payload["assigned_to"], "assignee")

    async def _new_document(self, actor: ActorContext, resource: Resource, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self._check_references(resource, payload)
        now = utcnow()
        doc = {"_id": new_id(), **payload, "created_by": actor.actor_id, "created_at": now, "updated_at": now}
        if resource is Resource.TASK:
            doc["completed_at"] = now if payload.get("status") == TaskStatus.COMPLETED.value else None
        return doc

    async def _role_assignment_document(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        user_id = payload["user_id"]
        await self._ensure_exists(PROFILES_COLLECTION, user_id, "user")
        if await self.mongo.db[USER_ROLES_COLLECTION].find_one({"_id": user_id}) is not None:
            raise Conflict(f"User {user_id} already has a role; replace it instead")
        return {"_id": user_id, "user_id": user_id, "role": payload["role"]}

    async def _changes(self, resource: Resource, record: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        changes = {field: value for field, value in payload.items() if record.get(field) != value}

        if resource is Resource.TASK and "status" in payload:
            completed = payload["status"] == TaskStatus.COMPLETED.value
            if completed and record.get("completed_at") is None:
                changes["completed_at"] = utcnow()
            elif not completed and record.get("completed_at") is not None:
                changes["completed_at"] = None

        await self._check_references(resource, changes)
        return changes

    # ------------------------------------------------------------------
    # Profiles and roles
    # ------------------------------------------------------------------

    async def list_profiles(self, actor: ActorContext, search: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.select(actor, Resource.PROFILE, search=search)

    async def get_profile(self, actor: ActorContext, user_id: str) -> Dict[str, Any]:
        return await self.get(actor, Resource.PROFILE, user_id)

    async def update_profile(self, actor: ActorContext, user_id: str, fields: Payload) -> Dict[str, Any]:
        return await self.update(actor, Resource.PROFILE, user_id, fields)

    async def list_roles(self, actor: ActorContext, role: Optional[Role] = None) -> List[Dict[str, Any]]:
        criteria = {"role": role} if role else None
        return await self.select(actor, Resource.ROLE_ASSIGNMENT, criteria)

    async def get_role(self, actor: ActorContext, user_id: str) -> Dict[str, Any]:
        return await self.get(actor, Resource.ROLE_ASSIGNMENT, user_id)

    async def assign_role(self, actor: ActorContext, user_id: str, role: Role) -> Dict[str, Any]:
        """Replace a user's role (admin only)."""
        return await self.update(actor, Resource.ROLE_ASSIGNMENT, user_id, {"role": role})

    async def list_users_with_roles(self, actor: ActorContext, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """Profiles joined with their roles, for user management."""
        if not evaluate(actor, Resource.ROLE_ASSIGNMENT, Operation.READ).allowed:
            raise Forbidden("User management requires the admin role")
        profiles = await self.select(actor, Resource.PROFILE, search=search)
        roles = {r["user_id"]: r["role"] for r in await self.select(actor, Resource.ROLE_ASSIGNMENT)}
        return [{**profile, "role": roles.get(profile["id"], Role.EMPLOYEE.value)} for profile in profiles]

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def list_projects(
        self,
        actor: ActorContext,
        search: Optional[str] = None,
        with_task_counts: bool = True,
    ) -> List[Dict[str, Any]]:
        """Projects ordered by name, each with the number of tasks the actor can see."""
        projects = await self.select(actor, Resource.PROJECT, search=search)
        if with_task_counts:
            counts: Dict[str, int] = {}
            for task in await self.select(actor, Resource.TASK):
                if task.get("project_id"):
                    counts[task["project_id"]] = counts.get(task["project_id"], 0) + 1
            for project in projects:
                project["task_count"] = counts.get(project["id"], 0)
        return projects

    async def get_project(self, actor: ActorContext, project_id: str) -> Dict[str, Any]:
        return await self.get(actor, Resource.PROJECT, project_id)

    async def create_project(self, actor: ActorContext, fields: Payload) -> Dict[str, Any]:
        return await self.insert(actor, Resource.PROJECT, fields)

    async def update_project(self, actor: ActorContext, project_id: str, fields: Payload) -> Dict[str, Any]:
        return await self.update(actor, Resource.PROJECT, project_id, fields)

    async def delete_project(self, actor: ActorContext, project_id: str) -> None:
        await self.delete(actor, Resource.PROJECT, project_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def list_tasks(
        self,
        actor: ActorContext,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        project_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Visible tasks, newest first."""
        try:
            status = TaskStatus(status).value if status is not None else None
            priority = TaskPriority(priority).value if priority is not None else None
        except ValueError as e:
            raise ValidationFailed(str(e))
        criteria = {
            key: value
            for key, value in (
                ("status", status),
                ("priority", priority),
                ("project_id", project_id),
                ("assigned_to", assigned_to),
            )
            if value is not None
        }
        return await self.select(actor, Resource.TASK, criteria, search=search)

    async def get_task(self, actor: ActorContext, task_id: str) -> Dict[str, Any]:
        return await self.get(actor, Resource.TASK, task_id)

    async def create_task(self, actor: ActorContext, fields: Payload) -> Dict[str, Any]:
        return await self.insert(actor, Resource.TASK, fields)

    async def update_task(self, actor: ActorContext, task_id: str, fields: Payload) -> Dict[str, Any]:
        return await self.update(actor, Resource.TASK, task_id, fields)

    async def toggle_task_complete(self, actor: ActorContext, task_id: str, completed: bool) -> Dict[str, Any]:
        status = TaskStatus.COMPLETED if completed else TaskStatus.PENDING
        return await self.update(actor, Resource.TASK, task_id, {"status": status})

    async def delete_task(self, actor: ActorContext, task_id: str) -> None:
        await self.delete(actor, Resource.TASK, task_id)

    async def task_stats(self, actor: ActorContext, project_id: Optional[str] = None) -> TaskStats:
        stats = TaskStats()
        for task in await self.list_tasks(actor, project_id=project_id):
            stats.total += 1
            if task["status"] == TaskStatus.COMPLETED.value:
                stats.completed += 1
            elif task["status"] == TaskStatus.IN_PROGRESS.value:
                stats.in_progress += 1
            else:
                stats.pending += 1
        return stats
