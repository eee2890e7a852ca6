"""
Account and session persistence

Account creation writes the actor, its profile and its default role
assignment in one MongoDB transaction: either all three documents exist
afterwards or none does. These operations are the trusted side of the
system and do not go through the RBAC policy.
"""

import logging
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from mongo.client import DirectMongoClient
from mongo.constants import (
    PROFILES_COLLECTION,
    SESSIONS_COLLECTION,
    USER_ROLES_COLLECTION,
    USERS_COLLECTION,
    new_id,
    utcnow,
)
from rbac.permissions import DEFAULT_ROLE, Conflict, NotFound, Role

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AccountStore:
    """Actors, credentials and server-side session records"""

    def __init__(self, mongo: DirectMongoClient):
        self.mongo = mongo

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.mongo.db[USERS_COLLECTION].find_one({"email": normalize_email(email)})

    async def find_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.mongo.db[USERS_COLLECTION].find_one({"_id": user_id})

    async def create_account(
        self,
        email: str,
        password_hash: str,
        full_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create an actor with exactly one profile and one employee role.

        Raises:
            Conflict: if the email is already registered
        """
        email = normalize_email(email)
        display_name = (full_name or "").strip() or email
        user_id = new_id()
        now = utcnow()
        db = self.mongo.db

        try:
            async with self.mongo.transaction() as session:
                if await db[USERS_COLLECTION].find_one({"email": email}, session=session):
                    raise Conflict(f"Email already registered: {email}")
                await db[USERS_COLLECTION].insert_one(
                    {"_id": user_id, "email": email, "password_hash": password_hash, "created_at": now},
                    session=session,
                )
                await db[PROFILES_COLLECTION].insert_one(
                    {"_id": user_id, "email": email, "full_name": display_name, "created_at": now, "updated_at": now},
                    session=session,
                )
                await db[USER_ROLES_COLLECTION].insert_one(
                    {"_id": user_id, "user_id": user_id, "role": DEFAULT_ROLE.value},
                    session=session,
                )
        except DuplicateKeyError:
            raise Conflict(f"Email already registered: {email}")

        logger.info(f"Created account {user_id} for {email}")
        return {"id": user_id, "email": email, "full_name": display_name, "created_at": now}

    async def grant_role(self, email: str, role: Role) -> Dict[str, Any]:
        """Set a user's role directly; operator bootstrap path, bypasses the policy."""
        user = await self.find_user_by_email(email)
        if user is None:
            raise NotFound(f"No user with email {email}")
        doc = {"_id": user["_id"], "user_id": user["_id"], "role": Role(role).value}
        await self.mongo.db[USER_ROLES_COLLECTION].replace_one({"_id": user["_id"]}, doc, upsert=True)
        logger.info(f"Granted role {doc['role']} to {email}")
        return {"id": doc["_id"], "user_id": doc["user_id"], "role": doc["role"]}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def open_session(self, user_id: str) -> str:
        session_id = new_id()
        now = utcnow()
        await self.mongo.db[SESSIONS_COLLECTION].insert_one(
            {"_id": session_id, "user_id": user_id, "created_at": now, "refreshed_at": now, "revoked_at": None}
        )
        return session_id

    async def is_session_active(self, session_id: str, user_id: str) -> bool:
        doc = await self.mongo.db[SESSIONS_COLLECTION].find_one({"_id": session_id})
        return bool(doc) and doc.get("user_id") == user_id and doc.get("revoked_at") is None

    async def touch_session(self, session_id: str) -> bool:
        """Record a token refresh; False if the session is gone or revoked."""
        result = await self.mongo.db[SESSIONS_COLLECTION].update_one(
            {"_id": session_id, "revoked_at": None},
            {"$set": {"refreshed_at": utcnow()}},
        )
        return result.matched_count > 0

    async def revoke_session(self, session_id: str) -> None:
        await self.mongo.db[SESSIONS_COLLECTION].update_one(
            {"_id": session_id, "revoked_at": None},
            {"$set": {"revoked_at": utcnow()}},
        )
        logger.info(f"Revoked session {session_id}")
