#!/usr/bin/env python3
"""
Authentication Endpoints

Password sign-up and sign-in, token refresh and sign-out. Sign-up creates
the actor together with its profile and default employee role in one
transaction (see AccountStore.create_account).
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from auth import create_access_token, hash_password, password_weakness, verify_password
from mongo.accounts import AccountStore, normalize_email
from rbac.auth import get_accounts, get_token_claims
from rbac.permissions import Conflict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class SignUpRequest(BaseModel):
    email: str
    password: str
    full_name: Optional[str] = None


class SignInRequest(BaseModel):
    email: str
    password: str


class UserInfo(BaseModel):
    id: str
    email: str


class SignUpResponse(UserInfo):
    full_name: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserInfo


def _auth_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _issue(user_id: str, email: str, session_id: str) -> TokenResponse:
    token, expires_at = create_access_token(sub=user_id, session_id=session_id, email=email)
    return TokenResponse(access_token=token, expires_at=expires_at, user=UserInfo(id=user_id, email=email))


@router.post("/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(
    body: SignUpRequest,
    accounts: Annotated[AccountStore, Depends(get_accounts)],
):
    email = normalize_email(body.email)
    if "@" not in email:
        raise _auth_error(422, "invalid_email", "A valid email address is required")
    weakness = password_weakness(body.password)
    if weakness:
        raise _auth_error(422, "weak_password", weakness)
    try:
        account = await accounts.create_account(email, hash_password(body.password), body.full_name)
    except Conflict:
        raise _auth_error(409, "email_exists", "An account with this email already exists")
    return SignUpResponse(id=account["id"], email=account["email"], full_name=account["full_name"])


@router.post("/token", response_model=TokenResponse)
async def sign_in(
    body: SignInRequest,
    accounts: Annotated[AccountStore, Depends(get_accounts)],
):
    user = await accounts.find_user_by_email(body.email)
    if user is None or not verify_password(body.password, user.get("password_hash", "")):
        logger.info(f"Failed sign-in for {normalize_email(body.email)}")
        raise _auth_error(401, "invalid_credentials", "Invalid email or password")
    session_id = await accounts.open_session(user["_id"])
    logger.info(f"User {user['_id']} signed in (session {session_id})")
    return _issue(user["_id"], user["email"], session_id)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    claims: Annotated[Dict[str, Any], Depends(get_token_claims)],
    accounts: Annotated[AccountStore, Depends(get_accounts)],
):
    if not await accounts.touch_session(claims["sid"]):
        raise _auth_error(401, "session_ended", "Session has ended")
    return _issue(claims["sub"], claims.get("email") or "", claims["sid"])


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(
    claims: Annotated[Dict[str, Any], Depends(get_token_claims)],
    accounts: Annotated[AccountStore, Depends(get_accounts)],
):
    await accounts.revoke_session(claims["sid"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/session")
async def current_session(
    claims: Annotated[Dict[str, Any], Depends(get_token_claims)],
):
    return {
        "session_id": claims["sid"],
        "expires_at": datetime.fromtimestamp(claims["exp"], tz=timezone.utc).isoformat(),
        "user": {"id": claims["sub"], "email": claims.get("email") or ""},
    }
