#!/usr/bin/env python3
"""
Session manager tests

The state machine is exercised with in-process fakes for the auth client
and the profile/role fetcher; the last class runs the real HTTP clients
against the app.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from rbac.permissions import Role
from session import (
    Actor,
    AuthClient,
    AuthEvent,
    AuthSession,
    InvalidCredentials,
    MemorySessionStorage,
    NetworkError,
    ProfileData,
    ProfileFetcher,
    SessionError,
    SessionExpired,
    SessionManager,
    SessionSnapshot,
    SessionStatus,
)
from session import state as transitions


def make_session(actor_id="a", token="token-1", minutes=60):
    return AuthSession(
        access_token=token,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        actor=Actor(id=actor_id, email=f"{actor_id}@x.com"),
    )


class FakeAuthClient:
    def __init__(self, persisted=None):
        self.persisted = persisted
        self.listeners = []
        self.sign_in_error = None
        self.sign_out_error = None

    def on_auth_state_change(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    async def emit(self, event, session):
        for listener in list(self.listeners):
            await listener(event, session)

    async def get_session(self):
        return self.persisted

    async def sign_in_with_password(self, email, password):
        if self.sign_in_error:
            raise self.sign_in_error
        session = make_session(email.split("@")[0])
        self.persisted = session
        await self.emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email, password, full_name=None):
        return Actor(id=email.split("@")[0], email=email)

    async def refresh_session(self):
        session = make_session(self.persisted.actor.id, token="token-2")
        self.persisted = session
        await self.emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def sign_out(self):
        self.persisted = None
        await self.emit(AuthEvent.SIGNED_OUT, None)
        if self.sign_out_error:
            raise self.sign_out_error


class FakeFetcher:
    def __init__(self, roles):
        self.roles = roles
        self.gate = None
        self.started = []
        self.profile_error = None
        self.role_error = None

    async def _wait(self, what):
        self.started.append(what)
        if self.gate is not None:
            await self.gate.wait()

    async def fetch_profile(self, session):
        await self._wait("profile")
        if self.profile_error:
            raise self.profile_error
        return ProfileData(id=session.actor.id, email=session.actor.email, full_name=session.actor.id.upper())

    async def fetch_role(self, session):
        await self._wait("role")
        if self.role_error:
            raise self.role_error
        return self.roles[session.actor.id]


async def until(condition):
    for _ in range(200):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def auth_client():
    return FakeAuthClient()


@pytest.fixture
def fetcher():
    return FakeFetcher({"a": Role.EMPLOYEE, "b": Role.ADMIN, "h": Role.DEPARTMENT_HEAD})


@pytest.fixture
def manager(auth_client, fetcher):
    return SessionManager(auth_client, fetcher)


class TestTransitions:
    """Pure state transitions"""

    def test_initial_state(self):
        state = SessionSnapshot()
        assert state.status is SessionStatus.UNAUTHENTICATED
        assert state.actor is None
        assert not (state.is_admin or state.is_department_head or state.is_employee)

    def test_resolved_only_from_resolving(self):
        state = SessionSnapshot()
        profile = ProfileData(id="a", email="a@x.com", full_name="A")
        assert transitions.resolved(state, profile, Role.ADMIN) is state

        resolving = transitions.signed_in(state, make_session())
        done = transitions.resolved(resolving, profile, Role.ADMIN)
        assert done.status is SessionStatus.AUTHENTICATED
        assert done.is_admin

    def test_failure_keeps_session_without_role(self):
        resolving = transitions.signed_in(SessionSnapshot(), make_session())
        failed = transitions.resolution_failed(resolving, "boom")
        assert failed.status is SessionStatus.ERROR
        assert failed.session == resolving.session
        assert failed.role is None and failed.profile is None

    def test_token_refreshed_without_session_is_ignored(self):
        state = SessionSnapshot()
        assert transitions.token_refreshed(state, make_session()) is state

    def test_session_serialization(self):
        data = {"access_token": "t", "expires_at": "2030-01-01T00:00:00Z", "user": {"id": "a", "email": "a@x.com"}}
        session = AuthSession.from_dict(data)
        assert session.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert AuthSession.from_dict(session.to_dict()) == session
        assert make_session(minutes=-1).is_expired()


class TestSessionManager:
    async def test_start_without_persisted_session(self, manager):
        await manager.start()
        assert manager.status is SessionStatus.UNAUTHENTICATED

    async def test_start_resumes_persisted_session(self, auth_client, fetcher):
        auth_client.persisted = make_session("h")
        manager = SessionManager(auth_client, fetcher)
        await manager.start()
        assert manager.status is SessionStatus.AUTHENTICATED
        assert manager.is_department_head
        assert not manager.is_admin and not manager.is_employee

    async def test_sign_in_resolves_profile_and_role(self, manager):
        seen = []
        manager.subscribe(lambda state: seen.append(state.status))

        await manager.sign_in("a@x.com", "pw")

        assert manager.status is SessionStatus.AUTHENTICATED
        assert manager.profile.full_name == "A"
        assert manager.role is Role.EMPLOYEE
        assert manager.is_employee
        assert seen == [SessionStatus.RESOLVING, SessionStatus.AUTHENTICATED]

    async def test_fetches_run_together_and_predicates_wait(self, manager, fetcher):
        fetcher.gate = asyncio.Event()
        sign_in = asyncio.create_task(manager.sign_in("b@x.com", "pw"))

        await until(lambda: len(fetcher.started) == 2)
        assert sorted(fetcher.started) == ["profile", "role"]
        assert manager.status is SessionStatus.RESOLVING
        assert manager.profile is None
        assert not manager.is_admin

        fetcher.gate.set()
        await sign_in
        assert manager.is_admin

    async def test_sign_in_failure_leaves_state_unchanged(self, manager, auth_client):
        auth_client.sign_in_error = InvalidCredentials("Invalid email or password")
        before = manager.state
        with pytest.raises(InvalidCredentials):
            await manager.sign_in("a@x.com", "nope")
        assert manager.state is before

    async def test_resolution_failure_is_an_error_state(self, manager, fetcher):
        fetcher.profile_error = SessionError("GET /api/profiles/a returned HTTP 500")
        await manager.sign_in("a@x.com", "pw")

        assert manager.status is SessionStatus.ERROR
        assert manager.session is not None
        assert manager.role is None
        assert not (manager.is_admin or manager.is_department_head or manager.is_employee)
        assert "500" in manager.state.error

    async def test_both_fetches_failing_reports_the_first(self, manager, fetcher):
        fetcher.gate = asyncio.Event()
        fetcher.profile_error = SessionError("profile unavailable")
        fetcher.role_error = NetworkError("role unavailable")
        sign_in = asyncio.create_task(manager.sign_in("a@x.com", "pw"))
        await until(lambda: len(fetcher.started) == 2)
        assert manager.status is SessionStatus.RESOLVING

        fetcher.gate.set()
        await sign_in
        assert manager.status is SessionStatus.ERROR
        assert manager.state.error == "profile unavailable"

    async def test_role_failure_alone_is_an_error_state(self, manager, fetcher):
        fetcher.role_error = SessionError("GET /api/roles/a returned HTTP 404")
        await manager.sign_in("a@x.com", "pw")
        assert manager.status is SessionStatus.ERROR
        assert manager.profile is None
        assert "404" in manager.state.error

    async def test_rejected_persisted_session_signs_out(self, auth_client, fetcher):
        auth_client.persisted = make_session("a")
        fetcher.role_error = SessionExpired("GET /api/roles/a rejected the access token")
        manager = SessionManager(auth_client, fetcher)

        await manager.start()
        assert manager.status is SessionStatus.UNAUTHENTICATED
        assert manager.session is None
        assert manager.state.error is None
        assert auth_client.persisted is None

    async def test_sign_out_mid_resolution_discards_result(self, manager, fetcher):
        fetcher.gate = asyncio.Event()
        sign_in = asyncio.create_task(manager.sign_in("a@x.com", "pw"))
        await until(lambda: len(fetcher.started) == 2)

        await manager.sign_out()
        assert manager.status is SessionStatus.UNAUTHENTICATED

        fetcher.gate.set()
        await sign_in
        assert manager.status is SessionStatus.UNAUTHENTICATED
        assert manager.profile is None
        assert manager.role is None

    async def test_newer_sign_in_wins(self, manager, fetcher):
        fetcher.gate = asyncio.Event()
        first = asyncio.create_task(manager.sign_in("a@x.com", "pw"))
        await until(lambda: len(fetcher.started) == 2)
        second = asyncio.create_task(manager.sign_in("b@x.com", "pw"))
        await until(lambda: len(fetcher.started) == 4)

        fetcher.gate.set()
        await asyncio.gather(first, second)
        assert manager.profile.id == "b"
        assert manager.is_admin

    async def test_sign_out_survives_network_failure(self, manager, auth_client):
        await manager.sign_in("a@x.com", "pw")
        auth_client.sign_out_error = NetworkError("unreachable")

        await manager.sign_out()
        assert manager.status is SessionStatus.UNAUTHENTICATED
        assert manager.session is None

    async def test_refresh_swaps_session_in_place(self, manager):
        await manager.sign_in("h@x.com", "pw")
        await manager.refresh()
        assert manager.session.access_token == "token-2"
        assert manager.status is SessionStatus.AUTHENTICATED
        assert manager.is_department_head

    async def test_server_side_sign_out_event(self, manager, auth_client):
        await manager.sign_in("a@x.com", "pw")
        await auth_client.emit(AuthEvent.SIGNED_OUT, None)
        assert manager.status is SessionStatus.UNAUTHENTICATED

    async def test_sign_up_does_not_sign_in(self, manager):
        actor = await manager.sign_up("new@x.com", "pw-123456", "New")
        assert actor.email == "new@x.com"
        assert manager.status is SessionStatus.UNAUTHENTICATED

    async def test_close_stops_listening(self, manager, auth_client):
        manager.close()
        await auth_client.sign_in_with_password("a@x.com", "pw")
        assert manager.status is SessionStatus.UNAUTHENTICATED


class TestAgainstTheApi:
    """Real AuthClient and ProfileFetcher talking to the app in-process"""

    async def test_full_cycle(self, http, accounts):
        auth_client = AuthClient(storage=MemorySessionStorage(), http=http)
        manager = SessionManager(auth_client, ProfileFetcher(http=http))

        await manager.sign_up("head@x.com", "s3cret-pass", "Hal Head")
        await accounts.grant_role("head@x.com", Role.DEPARTMENT_HEAD)
        await manager.sign_in("head@x.com", "s3cret-pass")

        assert manager.status is SessionStatus.AUTHENTICATED
        assert manager.profile.full_name == "Hal Head"
        assert manager.is_department_head

        token = manager.session.access_token
        await manager.sign_out()
        assert manager.status is SessionStatus.UNAUTHENTICATED
        response = await http.get("/api/projects", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_session_revoked_elsewhere_is_dropped_on_start(self, http):
        storage = MemorySessionStorage()
        auth_client = AuthClient(storage=storage, http=http)
        await auth_client.sign_up("a@x.com", "s3cret-pass", "Ann")
        session = await auth_client.sign_in_with_password("a@x.com", "s3cret-pass")

        response = await http.post("/auth/signout", headers={"Authorization": f"Bearer {session.access_token}"})
        assert response.status_code == 204

        manager = SessionManager(auth_client, ProfileFetcher(http=http))
        await manager.start()
        assert manager.status is SessionStatus.UNAUTHENTICATED
        assert storage.load() is None
