"""
HTTP client for the tracker's authentication endpoints

Besides the request/response calls, the client owns the persisted session
and notifies subscribers of SIGNED_IN / SIGNED_OUT / TOKEN_REFRESHED events,
the same way a hosted auth SDK does.
"""

import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from session.config import TRACKER_API_URL, TRACKER_HTTP_TIMEOUT, TRACKER_SESSION_FILE
from session.errors import (
    DuplicateEmail,
    InvalidCredentials,
    NetworkError,
    SessionError,
    SessionExpired,
    WeakPassword,
)
from session.state import Actor, AuthEvent, AuthSession

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent, Optional[AuthSession]], Awaitable[None]]


class MemorySessionStorage:
    def __init__(self, session: Optional[AuthSession] = None):
        self._session = session

    def load(self) -> Optional[AuthSession]:
        return self._session

    def save(self, session: AuthSession) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionStorage:
    """Persists the session as JSON so a restart can pick it up again."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[AuthSession]:
        if not self.path.exists():
            return None
        try:
            return AuthSession.from_dict(json.loads(self.path.read_text(encoding="utf-8")))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return None

    def save(self, session: AuthSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(session.to_dict()), encoding="utf-8")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


def default_storage():
    if TRACKER_SESSION_FILE:
        return FileSessionStorage(TRACKER_SESSION_FILE)
    return MemorySessionStorage()


def _error_detail(response: httpx.Response) -> Dict[str, Any]:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return {"message": response.text}
    if isinstance(detail, dict):
        return detail
    return {"message": str(detail)}


class AuthClient:
    """Talks to /auth/* and tracks the current session."""

    def __init__(
        self,
        base_url: str = TRACKER_API_URL,
        timeout: float = TRACKER_HTTP_TIMEOUT,
        storage=None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_http = http is None
        self._storage = storage if storage is not None else default_storage()
        self._listeners: List[AuthListener] = []

    async def aclose(self):
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe to auth events; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: AuthEvent, session: Optional[AuthSession]):
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception:
                logger.exception(f"Auth listener failed on {event.value}")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out calling {path}: {e}")
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach {path}: {e}")

    @staticmethod
    def _session_from(response: httpx.Response) -> AuthSession:
        return AuthSession.from_dict(response.json())

    async def get_session(self) -> Optional[AuthSession]:
        """The persisted session, if there is one that has not expired."""
        session = self._storage.load()
        if session is not None and session.is_expired():
            logger.info("Persisted session has expired; discarding it")
            self._storage.clear()
            return None
        return session

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        response = await self._request("POST", "/auth/token", json={"email": email, "password": password})
        if response.status_code == 401:
            detail = _error_detail(response)
            raise InvalidCredentials(detail.get("message", "Invalid email or password"), detail.get("code", ""))
        if response.status_code != 200:
            detail = _error_detail(response)
            raise SessionError(detail.get("message", "Sign-in failed"), detail.get("code", ""))

        session = self._session_from(response)
        self._storage.save(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, full_name: Optional[str] = None) -> Actor:
        response = await self._request(
            "POST",
            "/auth/signup",
            json={"email": email, "password": password, "full_name": full_name},
        )
        if response.status_code == 201:
            body = response.json()
            return Actor(id=body["id"], email=body["email"])

        detail = _error_detail(response)
        code = detail.get("code", "")
        message = detail.get("message", "Sign-up failed")
        if response.status_code == 409 or code == "email_exists":
            raise DuplicateEmail(message, code)
        if code == "weak_password":
            raise WeakPassword(message, code)
        raise SessionError(message, code)

    async def refresh_session(self) -> AuthSession:
        current = await self.get_session()
        if current is None:
            raise SessionExpired("No session to refresh")
        response = await self._request("POST", "/auth/refresh", token=current.access_token)
        if response.status_code == 401:
            self._storage.clear()
            await self._emit(AuthEvent.SIGNED_OUT, None)
            raise SessionExpired("Session has ended")
        if response.status_code != 200:
            detail = _error_detail(response)
            raise SessionError(detail.get("message", "Refresh failed"), detail.get("code", ""))

        session = self._session_from(response)
        self._storage.save(session)
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def sign_out(self) -> None:
        """Revoke the session server-side; local state is cleared regardless.

        Raises:
            NetworkError: after clearing, if the server could not be reached
        """
        current = self._storage.load()
        try:
            if current is not None:
                response = await self._request("POST", "/auth/signout", token=current.access_token)
                if response.status_code not in (204, 401):
                    logger.warning(f"Sign-out returned HTTP {response.status_code}")
        finally:
            self._storage.clear()
            await self._emit(AuthEvent.SIGNED_OUT, None)
