#!/usr/bin/env python3
"""
RBAC Policy Table - row-level rules for profiles, roles, projects and tasks

One table maps (resource, operation) to a Rule. A rule grants the operation
to a set of roles outright, to the actor whose id matches a record field
("self"), or to any authenticated actor. Anything without a rule is denied.

Evaluating a rule for an actor yields one of three decisions:

    ALLOW   - the role holds blanket permission
    FILTER  - permitted only for rows where record[self_field] == actor_id
    DENY    - nothing is permitted
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from rbac.permissions import (
    ActorContext,
    Forbidden,
    Operation,
    Resource,
    Role,
    Unauthenticated,
)

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    ALLOW = "allow"
    FILTER = "filter"
    DENY = "deny"


@dataclass(frozen=True)
class Rule:
    roles: FrozenSet[Role] = frozenset()
    self_field: Optional[str] = None
    any_authenticated: bool = False


@dataclass(frozen=True)
class Evaluation:
    """Outcome of evaluating one rule for one actor."""
    decision: Decision
    self_field: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW

    @property
    def denied(self) -> bool:
        return self.decision is Decision.DENY


_MANAGERS = frozenset({Role.DEPARTMENT_HEAD, Role.ADMIN})
_ADMINS = frozenset({Role.ADMIN})


POLICY: Dict[Tuple[Resource, Operation], Rule] = {
    # Profiles are created by account creation only, and never deleted here
    (Resource.PROFILE, Operation.READ): Rule(any_authenticated=True),
    (Resource.PROFILE, Operation.UPDATE): Rule(self_field="id"),

    # Role assignments live apart from profiles; only admins author them
    (Resource.ROLE_ASSIGNMENT, Operation.READ): Rule(roles=_ADMINS, self_field="user_id"),
    (Resource.ROLE_ASSIGNMENT, Operation.CREATE): Rule(roles=_ADMINS),
    (Resource.ROLE_ASSIGNMENT, Operation.UPDATE): Rule(roles=_ADMINS),
    (Resource.ROLE_ASSIGNMENT, Operation.DELETE): Rule(roles=_ADMINS),

    (Resource.PROJECT, Operation.READ): Rule(any_authenticated=True),
    (Resource.PROJECT, Operation.CREATE): Rule(roles=_MANAGERS),
    (Resource.PROJECT, Operation.UPDATE): Rule(roles=_MANAGERS),
    (Resource.PROJECT, Operation.DELETE): Rule(roles=_ADMINS),

    (Resource.TASK, Operation.READ): Rule(roles=_MANAGERS, self_field="assigned_to"),
    (Resource.TASK, Operation.CREATE): Rule(roles=_MANAGERS),
    (Resource.TASK, Operation.UPDATE): Rule(roles=_MANAGERS, self_field="assigned_to"),
    (Resource.TASK, Operation.DELETE): Rule(roles=_MANAGERS),
}


def evaluate(
    actor: Optional[ActorContext],
    resource: Resource,
    operation: Operation,
) -> Evaluation:
    """Evaluate the rule for (resource, operation) against an actor.

    Raises:
        Unauthenticated: if there is no actor
    """
    if actor is None or not actor.actor_id:
        raise Unauthenticated("Authentication required")

    rule = POLICY.get((resource, operation))
    if rule is None:
        return Evaluation(Decision.DENY)
    if rule.any_authenticated:
        return Evaluation(Decision.ALLOW)
    if actor.role is not None and actor.role in rule.roles:
        return Evaluation(Decision.ALLOW)
    if rule.self_field:
        return Evaluation(Decision.FILTER, rule.self_field)
    return Evaluation(Decision.DENY)


def row_permitted(evaluation: Evaluation, actor: ActorContext, record: Mapping[str, Any]) -> bool:
    """Apply an evaluation to one candidate record."""
    if evaluation.decision is Decision.ALLOW:
        return True
    if evaluation.decision is Decision.FILTER and evaluation.self_field:
        return record.get(evaluation.self_field) == actor.actor_id
    return False


def is_permitted(
    actor: Optional[ActorContext],
    resource: Resource,
    operation: Operation,
    record: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Non-raising check; without a record only blanket permission counts."""
    try:
        evaluation = evaluate(actor, resource, operation)
    except Unauthenticated:
        return False
    if record is None:
        return evaluation.allowed
    return row_permitted(evaluation, actor, record)


def authorize(
    actor: Optional[ActorContext],
    resource: Resource,
    operation: Operation,
    record: Optional[Mapping[str, Any]] = None,
) -> Evaluation:
    """Raise unless the operation is permitted.

    With no record, FILTER decisions pass through so callers can narrow a
    query or re-check the row later; DENY always raises.
    """
    evaluation = evaluate(actor, resource, operation)
    if evaluation.denied:
        logger.info(f"RBAC: denied {operation.value} on {resource.value} for {actor.actor_id} ({actor.role})")
        raise Forbidden(f"Not allowed to {operation.value} {resource.value}")
    if record is not None and not row_permitted(evaluation, actor, record):
        logger.info(f"RBAC: row denied {operation.value} on {resource.value} for {actor.actor_id}")
        raise Forbidden(f"Not allowed to {operation.value} this {resource.value}")
    return evaluation
