#!/usr/bin/env python3
"""
Authentication utilities for RBAC system
Resolves the bearer token of a request into an ActorContext
"""

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from auth import _get_bearer_token_from_header, decode_token
from mongo.accounts import AccountStore
from mongo.store import TrackerStore
from rbac.permissions import ActorContext

logger = logging.getLogger(__name__)


def get_store(request: Request) -> TrackerStore:
    return request.app.state.store


def get_accounts(request: Request) -> AccountStore:
    return request.app.state.accounts


async def get_token_claims(
    accounts: Annotated[AccountStore, Depends(get_accounts)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> Dict[str, Any]:
    """FastAPI dependency returning the claims of a live session token

    Raises:
        HTTPException: 401 if the token is missing, invalid, expired or revoked
    """
    token = _get_bearer_token_from_header(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please provide an Authorization bearer token.",
        )
    claims = decode_token(token)
    if not await accounts.is_session_active(claims["sid"], claims["sub"]):
        logger.info(f"Rejected token for revoked or unknown session {claims['sid']}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session has ended")
    return claims


async def get_current_actor(
    claims: Annotated[Dict[str, Any], Depends(get_token_claims)],
    store: Annotated[TrackerStore, Depends(get_store)],
) -> ActorContext:
    """FastAPI dependency to get the current authenticated actor

    The role comes from the user_roles collection on every request, never
    from the token or any other client-supplied value.
    """
    return await store.resolve_actor(
        claims["sub"],
        email=claims.get("email") or "",
        session_id=claims["sid"],
    )
