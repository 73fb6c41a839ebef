"""Tests for the session manager: restore, login, logout and manual refresh."""

import asyncio
import json

import httpx
import pytest

from conftest import API_BASE_URL, PROFILE, FakeBackend, persisted_session
from siidaa_admin.errors import InvalidCredentials, LoginInProgress, ProfileFetchFailed, TokenRefreshFailed
from siidaa_admin.log_store import LogStore
from siidaa_admin.models import LogLevel, SessionState
from siidaa_admin.session import SESSION_KEYS, SessionManager
from siidaa_admin.storage import MemoryStorage


def auth_entries(log_store, level=None):
    return log_store.query(category="AUTH", min_level=level)


class TestRestore:

    def setup_method(self):
        self.storage = MemoryStorage()
        self.log_store = LogStore(self.storage, console=None)
        self.backend = FakeBackend()
        self.session = SessionManager(
            self.storage, self.log_store, API_BASE_URL, http_client=self.backend.client()
        )

    def test_initial_state_is_unknown_and_loading(self):
        assert self.session.state == SessionState.UNKNOWN
        assert self.session.is_loading is True
        assert self.session.is_authenticated is False

    def test_restore_valid_session_without_network(self):
        persisted_session(self.storage)
        state = self.session.restore()

        assert state == SessionState.AUTHENTICATED
        assert self.session.is_authenticated
        assert self.session.user.username == "alice"
        assert self.session.access_token == "saved-token"
        assert self.session.refresh_token == "saved-refresh"
        assert self.session.is_loading is False
        assert self.backend.requests == []
        assert auth_entries(self.log_store)[0].message == "Session restored for user: alice"

    def test_restore_without_persisted_session(self):
        self.storage.set_item("admin_token", "only-a-token")
        state = self.session.restore()

        assert state == SessionState.UNAUTHENTICATED
        assert not self.session.is_authenticated
        assert self.session.is_loading is False
        assert auth_entries(self.log_store)[0].message == "No persisted session found"

    def test_restore_with_malformed_user_discards_everything(self):
        self.storage.set_item("admin_token", "saved-token")
        self.storage.set_item("admin_user", "definitely not json")
        self.storage.set_item("admin_refresh_token", "saved-refresh")

        state = self.session.restore()

        assert state == SessionState.UNAUTHENTICATED
        assert not self.session.is_authenticated
        for key in SESSION_KEYS:
            assert self.storage.get_item(key) is None
        error = auth_entries(self.log_store, LogLevel.ERROR)[0]
        assert error.error.name == "PersistedStateCorrupt"

    def test_restore_with_incomplete_user_record_is_corrupt(self):
        self.storage.set_item("admin_token", "saved-token")
        self.storage.set_item("admin_user", json.dumps({"email": "nobody@example.com"}))

        self.session.restore()

        assert not self.session.is_authenticated
        assert self.storage.get_item("admin_token") is None


class TestLogin:

    def setup_method(self):
        self.storage = MemoryStorage()
        self.log_store = LogStore(self.storage, console=None)
        self.backend = FakeBackend()
        self.backend.on("POST", "/api/token/", json_body={"access": "access-1", "refresh": "refresh-1"})
        self.backend.on("GET", "/api/user/profile/", json_body=PROFILE)
        self.session = SessionManager(
            self.storage, self.log_store, API_BASE_URL, http_client=self.backend.client()
        )
        self.session.restore()

    @pytest.mark.asyncio
    async def test_successful_login(self):
        user = await self.session.login("alice", "right")

        assert user.username == "alice"
        assert self.session.is_authenticated
        assert self.session.state == SessionState.AUTHENTICATED
        assert self.session.is_loading is False
        assert self.storage.get_item("admin_token") == "access-1"
        assert self.storage.get_item("admin_refresh_token") == "refresh-1"
        assert json.loads(self.storage.get_item("admin_user"))["username"] == "alice"

        successes = [
            e for e in auth_entries(self.log_store)
            if e.level == LogLevel.INFO and e.message.startswith("Login successful")
        ]
        assert len(successes) == 1

    @pytest.mark.asyncio
    async def test_token_exchange_precedes_profile_fetch(self):
        await self.session.login("alice", "right")

        assert self.backend.paths() == [("POST", "/api/token/"), ("GET", "/api/user/profile/")]
        profile_request = self.backend.requests[1]
        assert profile_request.headers["Authorization"] == "Bearer access-1"
        token_request = self.backend.requests[0]
        assert json.loads(token_request.content) == {"username": "alice", "password": "right"}

    @pytest.mark.asyncio
    async def test_password_never_reaches_the_journal(self):
        await self.session.login("alice", "s3cret-password")
        assert "s3cret-password" not in self.log_store.export()

    @pytest.mark.asyncio
    async def test_invalid_credentials_uses_server_detail(self):
        self.backend.on("POST", "/api/token/", status_code=400, json_body={"detail": "Invalid credentials"})

        with pytest.raises(InvalidCredentials, match="Invalid credentials"):
            await self.session.login("alice", "wrong")

        assert not self.session.is_authenticated
        assert self.session.is_loading is False
        assert self.storage.get_item("admin_token") is None
        errors = auth_entries(self.log_store, LogLevel.ERROR)
        assert len(errors) == 1
        assert errors[0].message == "Login failed for user: alice"
        assert errors[0].error.message == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_invalid_credentials_without_detail_uses_generic_message(self):
        self.backend.on("POST", "/api/token/", status_code=401, text="<html>nope</html>")

        with pytest.raises(InvalidCredentials) as excinfo:
            await self.session.login("alice", "wrong")

        assert excinfo.value.detail == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_server_detail_is_passed_through(self):
        self.backend.on(
            "POST", "/api/token/", status_code=401,
            json_body={"detail": "No active account found with the given credentials"},
        )

        with pytest.raises(InvalidCredentials, match="No active account"):
            await self.session.login("alice", "wrong")

    @pytest.mark.asyncio
    async def test_profile_failure_is_a_login_failure(self):
        self.backend.on("GET", "/api/user/profile/", status_code=500, json_body={"detail": "oops"})

        with pytest.raises(ProfileFetchFailed, match="Failed to fetch user profile"):
            await self.session.login("alice", "right")

        assert not self.session.is_authenticated
        assert self.session.access_token is None
        assert self.storage.get_item("admin_token") is None
        assert auth_entries(self.log_store, LogLevel.ERROR)[0].error.message == "Failed to fetch user profile"

    @pytest.mark.asyncio
    async def test_network_error_propagates_after_logging(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        session = SessionManager(
            self.storage, self.log_store, API_BASE_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
        )

        with pytest.raises(httpx.ConnectError):
            await session.login("alice", "right")

        assert session.is_loading is False
        api_errors = self.log_store.query(category="API", min_level=LogLevel.ERROR)
        assert api_errors[0].message == f"POST {API_BASE_URL}/api/token/ - Failed"
        assert auth_entries(self.log_store, LogLevel.ERROR)[0].message == "Login failed for user: alice"

    @pytest.mark.asyncio
    async def test_concurrent_login_is_rejected(self):
        release = asyncio.Event()

        async def slow_handler(request):
            await release.wait()
            if request.url.path == "/api/token/":
                return httpx.Response(200, json={"access": "access-1", "refresh": "refresh-1"})
            return httpx.Response(200, json=PROFILE)

        session = SessionManager(
            self.storage, self.log_store, API_BASE_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow_handler)),
        )
        first = asyncio.ensure_future(session.login("alice", "right"))
        await asyncio.sleep(0)

        with pytest.raises(LoginInProgress):
            await session.login("alice", "right")

        release.set()
        user = await first
        assert user.username == "alice"
        assert session.is_authenticated


class TestLogoutAndInvalidate:

    def setup_method(self):
        self.storage = MemoryStorage()
        self.log_store = LogStore(self.storage, console=None)
        persisted_session(self.storage)
        self.session = SessionManager(self.storage, self.log_store, API_BASE_URL)
        self.session.restore()

    def test_logout_clears_everything(self):
        self.session.logout()

        assert not self.session.is_authenticated
        assert self.session.state == SessionState.UNAUTHENTICATED
        for key in SESSION_KEYS:
            assert self.storage.get_item(key) is None
        assert auth_entries(self.log_store)[0].message == "User logged out: alice"

    def test_logout_without_session_names_unknown(self):
        self.session.logout()
        self.session.logout()
        assert auth_entries(self.log_store)[0].message == "User logged out: unknown"

    def test_invalidate_clears_and_warns(self):
        self.session.invalidate()

        assert not self.session.is_authenticated
        assert self.storage.get_item("admin_user") is None
        warning = auth_entries(self.log_store, LogLevel.WARN)[0]
        assert warning.level == LogLevel.WARN
        assert warning.data == {"user": "alice"}


class TestRefresh:

    def setup_method(self):
        self.storage = MemoryStorage()
        self.log_store = LogStore(self.storage, console=None)
        self.backend = FakeBackend()
        persisted_session(self.storage)
        self.session = SessionManager(
            self.storage, self.log_store, API_BASE_URL, http_client=self.backend.client()
        )
        self.session.restore()

    @pytest.mark.asyncio
    async def test_refresh_stores_new_access_token(self):
        self.backend.on("POST", "/api/token/refresh/", json_body={"access": "access-2"})

        token = await self.session.refresh_access_token()

        assert token == "access-2"
        assert self.session.access_token == "access-2"
        assert self.storage.get_item("admin_token") == "access-2"
        assert json.loads(self.backend.requests[0].content) == {"refresh": "saved-refresh"}

    @pytest.mark.asyncio
    async def test_refresh_failure_logs_out(self):
        self.backend.on("POST", "/api/token/refresh/", status_code=401, json_body={"detail": "expired"})

        with pytest.raises(TokenRefreshFailed):
            await self.session.refresh_access_token()

        assert not self.session.is_authenticated
        assert self.storage.get_item("admin_token") is None

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self):
        self.storage.remove_item("admin_refresh_token")
        self.session.refresh_token = None

        with pytest.raises(TokenRefreshFailed, match="No refresh token available"):
            await self.session.refresh_access_token()

        assert self.backend.requests == []
