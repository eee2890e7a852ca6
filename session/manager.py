"""
Session Manager - the client's single owner of "who is signed in"

Reacts to auth events, resolves the actor's profile and role, and exposes
role predicates. Readers either poll `state` or subscribe to snapshots.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from rbac.permissions import Role
from session import state as transitions
from session.errors import NetworkError, SessionExpired
from session.state import Actor, AuthEvent, AuthSession, ProfileData, SessionSnapshot, SessionStatus

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[SessionSnapshot], None]


class SessionManager:
    """Tracks the current session and derives role-aware capability flags.

    Args:
        auth_client: provides sign-in/up/out, the persisted session and
            auth events (see session.auth_client.AuthClient)
        fetcher: provides fetch_profile(session) and fetch_role(session)
    """

    def __init__(self, auth_client, fetcher):
        self._auth = auth_client
        self._fetcher = fetcher
        self._state = SessionSnapshot()
        # Bumped on every sign-in/sign-out; resolutions carry the value they
        # started with and are dropped if it moved on
        self._generation = 0
        self._listeners: List[SnapshotListener] = []
        self._unsubscribe = auth_client.on_auth_state_change(self._on_auth_event)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionSnapshot:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def session(self) -> Optional[AuthSession]:
        return self._state.session

    @property
    def profile(self) -> Optional[ProfileData]:
        return self._state.profile

    @property
    def role(self) -> Optional[Role]:
        return self._state.role

    @property
    def is_admin(self) -> bool:
        return self._state.is_admin

    @property
    def is_department_head(self) -> bool:
        return self._state.is_department_head

    @property
    def is_employee(self) -> bool:
        return self._state.is_employee

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, new_state: SessionSnapshot):
        if new_state == self._state:
            return
        previous, self._state = self._state, new_state
        if previous.status is not new_state.status:
            logger.info(f"Session {previous.status.value} -> {new_state.status.value}")
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Session listener failed")

    # ------------------------------------------------------------------
    # Auth events
    # ------------------------------------------------------------------

    async def start(self):
        """Pick up a persisted session, if any."""
        session = await self._auth.get_session()
        if session is None:
            self._set(transitions.signed_out(self._state))
            return
        await self._resolve(session)

    async def _on_auth_event(self, event: AuthEvent, session: Optional[AuthSession]):
        if event is AuthEvent.SIGNED_IN and session is not None:
            await self._resolve(session)
        elif event is AuthEvent.SIGNED_OUT:
            self._generation += 1
            self._set(transitions.signed_out(self._state))
        elif event is AuthEvent.TOKEN_REFRESHED and session is not None:
            self._set(transitions.token_refreshed(self._state, session))

    async def _resolve(self, session: AuthSession):
        self._generation += 1
        generation = self._generation
        self._set(transitions.signed_in(self._state, session))

        # Both fetches run to completion so neither failure goes unobserved
        results = await asyncio.gather(
            self._fetcher.fetch_profile(session),
            self._fetcher.fetch_role(session),
            return_exceptions=True,
        )
        failure = next((r for r in results if isinstance(r, BaseException)), None)
        if isinstance(failure, asyncio.CancelledError):
            raise failure

        if generation != self._generation:
            logger.info(f"Discarding stale profile/role for {session.actor.id}")
            return
        if isinstance(failure, SessionExpired):
            logger.warning(f"Session for {session.actor.id} was rejected while loading profile/role; signing out")
            await self.sign_out()
            return
        if failure is not None:
            logger.warning(f"Could not load profile/role for {session.actor.id}: {failure}")
            self._set(transitions.resolution_failed(self._state, str(failure)))
            return

        profile, role = results
        self._set(transitions.resolved(self._state, profile, role))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Sign in; resolution of profile and role follows from SIGNED_IN.

        Raises:
            InvalidCredentials, NetworkError: state is left unchanged
        """
        return await self._auth.sign_in_with_password(email, password)

    async def sign_up(self, email: str, password: str, display_name: str) -> Actor:
        """Create an account; does not sign in.

        Raises:
            DuplicateEmail, WeakPassword, NetworkError
        """
        return await self._auth.sign_up(email, password, display_name)

    async def refresh(self) -> AuthSession:
        return await self._auth.refresh_session()

    async def sign_out(self):
        """Sign out; the local session is cleared even if the server is unreachable."""
        self._generation += 1
        try:
            await self._auth.sign_out()
        except NetworkError as e:
            logger.warning(f"Sign-out request failed, clearing local session anyway: {e}")
        finally:
            self._set(transitions.signed_out(self._state))

    def close(self):
        self._unsubscribe()
