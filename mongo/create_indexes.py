#!/usr/bin/env python3
"""
MongoDB Index Creation for the task tracker
Creates the unique and lookup indexes the store relies on.
"""

import asyncio
import logging

from mongo.client import DirectMongoClient
from mongo.constants import (
    PROFILES_COLLECTION,
    PROJECTS_COLLECTION,
    SESSIONS_COLLECTION,
    TASKS_COLLECTION,
    USERS_COLLECTION,
)

# Configure logging
logger = logging.getLogger(__name__)

INDEXES = [
    # One account per email
    (USERS_COLLECTION, [("email", 1)], "users_email_unique", {"unique": True}),
    (SESSIONS_COLLECTION, [("user_id", 1)], "sessions_user", {}),
    (PROFILES_COLLECTION, [("full_name", 1)], "profiles_full_name", {}),
    (PROJECTS_COLLECTION, [("name", 1)], "projects_name", {}),
    # Employee task reads filter on the assignee
    (TASKS_COLLECTION, [("assigned_to", 1), ("created_at", -1)], "tasks_assignee_created", {}),
    (TASKS_COLLECTION, [("project_id", 1)], "tasks_project", {}),
    (TASKS_COLLECTION, [("status", 1), ("priority", 1)], "tasks_status_priority", {}),
    (TASKS_COLLECTION, [("created_at", -1)], "tasks_created_desc", {}),
]


async def create_indexes(mongo: DirectMongoClient) -> int:
    """Create all indexes; returns how many were created or already present"""
    created = 0
    db = mongo.db
    for collection, keys, name, options in INDEXES:
        try:
            await db[collection].create_index(keys, name=name, **options)
            created += 1
        except Exception as e:
            logger.error(f"Error creating index '{name}': {e}")
    logger.info(f"Ensured {created}/{len(INDEXES)} indexes")
    return created


async def main():
    mongo = DirectMongoClient()
    await mongo.connect()
    try:
        await create_indexes(mongo)
    finally:
        await mongo.disconnect()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())
