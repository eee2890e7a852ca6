#!/usr/bin/env python3
"""
RBAC Query Filters - narrow MongoDB queries to the rows an actor may see

Policy decisions are expressed on API-shaped records ("id", "assigned_to");
these helpers translate them into MongoDB filters on stored documents.
"""

import logging
from typing import Any, Dict, List, Optional

from rbac.permissions import ActorContext, Operation, Resource
from rbac.policy import Decision, Evaluation, evaluate, row_permitted

logger = logging.getLogger(__name__)

# Matches nothing; used when the policy denies the whole read
EMPTY_FILTER: Dict[str, Any] = {"_id": {"$exists": False}}


def _document_field(field: str) -> str:
    """Return the stored document path for a record field."""
    if field == "id":
        return "_id"
    return field


def get_actor_filter(evaluation: Evaluation, actor: ActorContext) -> Optional[Dict[str, Any]]:
    """MongoDB filter implementing an evaluation.

    Returns None when no narrowing is needed (blanket permission).
    """
    if evaluation.decision is Decision.ALLOW:
        return None
    if evaluation.decision is Decision.FILTER and evaluation.self_field:
        return {_document_field(evaluation.self_field): actor.actor_id}
    return dict(EMPTY_FILTER)


def apply_actor_filter(
    query: Dict[str, Any],
    resource: Resource,
    actor: ActorContext,
    operation: Operation = Operation.READ,
) -> Dict[str, Any]:
    """Merge the actor's row predicate into a base query.

    Args:
        query: Base MongoDB query filter
        resource: Resource kind being queried
        actor: Authenticated actor context
        operation: Operation the rows are selected for

    Returns:
        Query restricted to the rows the actor may touch
    """
    evaluation = evaluate(actor, resource, operation)
    actor_filter = get_actor_filter(evaluation, actor)
    logger.debug(f"RBAC apply_actor_filter: resource={resource.value}, actor={actor.actor_id}, decision={evaluation.decision.value}")

    if actor_filter is None:
        return query

    if "$and" in query:
        query = dict(query)
        query["$and"] = list(query["$and"]) + [actor_filter]
    elif query:
        query = {"$and": [query, actor_filter]}
    else:
        query = actor_filter
    return query


def filter_results_by_access(
    results: List[Dict[str, Any]],
    actor: ActorContext,
    resource: Resource,
) -> List[Dict[str, Any]]:
    """Filter a list of records to those the actor may read."""
    evaluation = evaluate(actor, resource, Operation.READ)
    return [record for record in results if row_permitted(evaluation, actor, record)]
