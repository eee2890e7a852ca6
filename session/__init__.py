"""
Client-side session management

SessionManager owns the signed-in actor, its profile and its role; the
AuthClient and ProfileFetcher are its HTTP collaborators.
"""

from session.auth_client import AuthClient, FileSessionStorage, MemorySessionStorage
from session.data_client import ProfileFetcher
from session.errors import (
    DuplicateEmail,
    InvalidCredentials,
    NetworkError,
    SessionError,
    SessionExpired,
    WeakPassword,
)
from session.manager import SessionManager
from session.state import Actor, AuthEvent, AuthSession, ProfileData, SessionSnapshot, SessionStatus

__all__ = [
    "SessionManager",
    "AuthClient",
    "ProfileFetcher",
    "MemorySessionStorage",
    "FileSessionStorage",
    "Actor",
    "AuthEvent",
    "AuthSession",
    "ProfileData",
    "SessionSnapshot",
    "SessionStatus",
    "SessionError",
    "InvalidCredentials",
    "DuplicateEmail",
    "WeakPassword",
    "SessionExpired",
    "NetworkError",
]
