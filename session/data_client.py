"""Reads the signed-in actor's profile and role from the tracker API."""

import logging
from typing import Optional

import httpx

from rbac.permissions import Role, parse_role
from session.config import TRACKER_API_URL, TRACKER_HTTP_TIMEOUT
from session.errors import NetworkError, SessionError, SessionExpired
from session.state import AuthSession, ProfileData

logger = logging.getLogger(__name__)


class ProfileFetcher:
    def __init__(
        self,
        base_url: str = TRACKER_API_URL,
        timeout: float = TRACKER_HTTP_TIMEOUT,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_http = http is None

    async def aclose(self):
        if self._owns_http:
            await self._http.aclose()

    async def _get(self, path: str, session: AuthSession) -> dict:
        try:
            response = await self._http.get(path, headers={"Authorization": f"Bearer {session.access_token}"})
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out calling {path}: {e}")
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach {path}: {e}")
        if response.status_code == 401:
            raise SessionExpired(f"GET {path} rejected the access token")
        if response.status_code != 200:
            raise SessionError(f"GET {path} returned HTTP {response.status_code}")
        return response.json()

    async def fetch_profile(self, session: AuthSession) -> ProfileData:
        body = await self._get(f"/api/profiles/{session.actor.id}", session)
        return ProfileData(id=body["id"], email=body["email"], full_name=body["full_name"])

    async def fetch_role(self, session: AuthSession) -> Role:
        body = await self._get(f"/api/roles/{session.actor.id}", session)
        try:
            return parse_role(body.get("role"))
        except ValueError as e:
            raise SessionError(str(e))
