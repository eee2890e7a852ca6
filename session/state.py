"""
Session state and its transitions

The transitions are pure functions over an immutable SessionSnapshot so the
state machine can be exercised without any network:

    unauthenticated --signed_in--> resolving --resolved--> authenticated
                                   resolving --failed----> error
    any --signed_out--> unauthenticated
    token_refreshed keeps the status and swaps the session in place
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from rbac.permissions import Role


class SessionStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    RESOLVING = "resolving"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class Actor:
    id: str
    email: str = ""


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    expires_at: datetime
    actor: Actor

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "expires_at": self.expires_at.isoformat(),
            "user": {"id": self.actor.id, "email": self.actor.email},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthSession":
        expires_at = datetime.fromisoformat(str(data["expires_at"]).replace("Z", "+00:00"))
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        user = data.get("user") or {}
        return cls(
            access_token=data["access_token"],
            expires_at=expires_at,
            actor=Actor(id=user["id"], email=user.get("email", "")),
        )


@dataclass(frozen=True)
class ProfileData:
    id: str
    email: str
    full_name: str


@dataclass(frozen=True)
class SessionSnapshot:
    status: SessionStatus = SessionStatus.UNAUTHENTICATED
    session: Optional[AuthSession] = None
    profile: Optional[ProfileData] = None
    role: Optional[Role] = None
    error: Optional[str] = None

    @property
    def actor(self) -> Optional[Actor]:
        return self.session.actor if self.session else None

    def _holds(self, role: Role) -> bool:
        return self.status is SessionStatus.AUTHENTICATED and self.role is role

    @property
    def is_admin(self) -> bool:
        return self._holds(Role.ADMIN)

    @property
    def is_department_head(self) -> bool:
        return self._holds(Role.DEPARTMENT_HEAD)

    @property
    def is_employee(self) -> bool:
        return self._holds(Role.EMPLOYEE)


def signed_in(state: SessionSnapshot, session: AuthSession) -> SessionSnapshot:
    return SessionSnapshot(status=SessionStatus.RESOLVING, session=session)


def signed_out(state: SessionSnapshot) -> SessionSnapshot:
    return SessionSnapshot(status=SessionStatus.UNAUTHENTICATED)


def token_refreshed(state: SessionSnapshot, session: AuthSession) -> SessionSnapshot:
    if state.session is None:
        return state
    return replace(state, session=session)


def resolved(state: SessionSnapshot, profile: ProfileData, role: Role) -> SessionSnapshot:
    if state.status is not SessionStatus.RESOLVING:
        return state
    return replace(state, status=SessionStatus.AUTHENTICATED, profile=profile, role=role, error=None)


def resolution_failed(state: SessionSnapshot, error: str) -> SessionSnapshot:
    if state.status is not SessionStatus.RESOLVING:
        return state
    return replace(state, status=SessionStatus.ERROR, profile=None, role=None, error=error)
