# src/siidaa_admin/session.py

import json
import time
import typing

import httpx
from pydantic import ValidationError

from .errors import (
    InvalidCredentials,
    LoginInProgress,
    PersistedStateCorrupt,
    ProfileFetchFailed,
    StorageWriteFailed,
    TokenRefreshFailed,
)
from .log_store import AUTH, LogStore
from .models import SessionState, User
from .storage import Storage
from .transport import elapsed_ms, open_client

TOKEN_KEY = "admin_token"
USER_KEY = "admin_user"
REFRESH_TOKEN_KEY = "admin_refresh_token"
SESSION_KEYS = (TOKEN_KEY, USER_KEY, REFRESH_TOKEN_KEY)


class SessionManager:
    """
    Owns the access token, refresh token and current user.

    `is_authenticated` is derived: token and user are always set and cleared together.
    Token refresh exists but is never triggered automatically; a 401 on any request
    ends the session through `invalidate()`.
    """

    def __init__(
            self,
            storage: Storage,
            log_store: LogStore,
            api_base_url: str,
            http_client: typing.Optional[httpx.AsyncClient] = None,
            timeout: float = 30.0,
    ):
        self.storage = storage
        self.log_store = log_store
        self.api_base_url = api_base_url.rstrip("/")
        self.http_client = http_client
        self.timeout = timeout

        self.access_token: typing.Optional[str] = None
        self.refresh_token: typing.Optional[str] = None
        self.user: typing.Optional[User] = None
        self.is_loading = True
        self.state = SessionState.UNKNOWN
        self._login_pending = False

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None and self.user is not None

    @property
    def username(self) -> typing.Optional[str]:
        return self.user.username if self.user else None

    # --- Restore ---

    def restore(self) -> SessionState:
        self.state = SessionState.RESTORING
        self.is_loading = True
        try:
            saved_token = self.storage.get_item(TOKEN_KEY)
            saved_user = self.storage.get_item(USER_KEY)

            if not saved_token or not saved_user:
                self._set_unauthenticated()
                self.log_store.info(AUTH, "No persisted session found")
                return self.state

            try:
                user = self._parse_user(saved_user)
            except PersistedStateCorrupt as e:
                self._remove_persisted()
                self._set_unauthenticated()
                self.log_store.error(AUTH, "Discarded corrupt persisted session", e)
                return self.state

            self.access_token = saved_token
            self.refresh_token = self.storage.get_item(REFRESH_TOKEN_KEY)
            self.user = user
            self.state = SessionState.AUTHENTICATED
            self.log_store.info(AUTH, f"Session restored for user: {user.username}")
            return self.state
        finally:
            self.is_loading = False

    @staticmethod
    def _parse_user(raw: str) -> User:
        try:
            return User.model_validate(json.loads(raw))
        except (ValueError, TypeError, ValidationError) as e:
            raise PersistedStateCorrupt(f"Persisted user record is unreadable: {e}") from e

    # --- Login / logout ---

    async def login(self, username: str, password: str) -> User:
        if self._login_pending:
            raise LoginInProgress()

        self._login_pending = True
        self.is_loading = True
        self.log_store.auth_attempt(username)
        try:
            async with open_client(self.http_client, self.timeout) as client:
                token_data = await self._obtain_token_pair(client, username, password)
                access_token = token_data.get("access")
                if not access_token:
                    raise InvalidCredentials("Token response did not include an access token")
                user = await self._fetch_profile(client, access_token)

            self.access_token = access_token
            self.refresh_token = token_data.get("refresh")
            self.user = user
            self.state = SessionState.AUTHENTICATED
            self._persist()
            self.log_store.auth_success(user.username)
            return user
        except Exception as e:
            self.log_store.auth_failure(username, str(e))
            raise
        finally:
            self.is_loading = False
            self._login_pending = False

    async def _obtain_token_pair(self, client: httpx.AsyncClient, username: str, password: str) -> dict:
        url = f"{self.api_base_url}/api/token/"
        self.log_store.api_request("POST", url)
        started = time.perf_counter()
        try:
            response = await client.post(url, json={"username": username, "password": password})
        except httpx.RequestError as e:
            self.log_store.api_error("POST", url, e, elapsed_ms(started))
            raise
        self.log_store.api_response("POST", url, response.status_code, elapsed_ms(started))

        if not response.is_success:
            detail = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    detail = body.get("detail")
            except ValueError:
                pass
            raise InvalidCredentials(detail)
        return response.json()

    async def _fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> User:
        url = f"{self.api_base_url}/api/user/profile/"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self.log_store.api_request("GET", url)
        started = time.perf_counter()
        try:
            response = await client.get(url, headers=headers)
        except httpx.RequestError as e:
            self.log_store.api_error("GET", url, e, elapsed_ms(started))
            raise
        self.log_store.api_response("GET", url, response.status_code, elapsed_ms(started))

        if not response.is_success:
            raise ProfileFetchFailed(response.status_code)
        try:
            return User.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProfileFetchFailed(response.status_code) from e

    def logout(self) -> None:
        username = self.username
        self._remove_persisted()
        self._set_unauthenticated()
        self.log_store.auth_logout(username)

    def invalidate(self, reason: str = "Session rejected by backend") -> None:
        """Ends the session after the backend answered 401."""
        username = self.username
        self._remove_persisted()
        self._set_unauthenticated()
        self.log_store.warn(AUTH, f"{reason}; session cleared", {"user": username or "unknown"})

    # --- Refresh (manual only) ---

    async def refresh_access_token(self) -> str:
        refresh_token = self.refresh_token or self.storage.get_item(REFRESH_TOKEN_KEY)
        try:
            if not refresh_token:
                raise TokenRefreshFailed("No refresh token available")

            url = f"{self.api_base_url}/api/token/refresh/"
            self.log_store.api_request("POST", url)
            started = time.perf_counter()
            async with open_client(self.http_client, self.timeout) as client:
                try:
                    response = await client.post(url, json={"refresh": refresh_token})
                except httpx.RequestError as e:
                    self.log_store.api_error("POST", url, e, elapsed_ms(started))
                    raise TokenRefreshFailed(f"Token refresh request failed: {e}") from e
            self.log_store.api_response("POST", url, response.status_code, elapsed_ms(started))

            if not response.is_success:
                raise TokenRefreshFailed("Token refresh failed")
            new_access_token = response.json().get("access")
            if not new_access_token:
                raise TokenRefreshFailed("Token refresh response did not include an access token")
        except TokenRefreshFailed as e:
            self.log_store.error(AUTH, "Token refresh failed", e)
            self.logout()
            raise

        self.access_token = new_access_token
        self._write(TOKEN_KEY, new_access_token)
        self.log_store.info(AUTH, "Access token refreshed")
        return new_access_token

    # --- Persistence ---

    def _persist(self) -> None:
        self._write(TOKEN_KEY, self.access_token)
        self._write(USER_KEY, self.user.model_dump_json())
        if self.refresh_token:
            self._write(REFRESH_TOKEN_KEY, self.refresh_token)

    def _write(self, key: str, value: str) -> None:
        try:
            self.storage.set_item(key, value)
        except StorageWriteFailed as e:
            self.log_store.warn(AUTH, "Could not persist session", {"key": key, "reason": e.reason})

    def _remove_persisted(self) -> None:
        for key in SESSION_KEYS:
            try:
                self.storage.remove_item(key)
            except StorageWriteFailed as e:
                self.log_store.warn(AUTH, "Could not remove persisted session", {"key": key, "reason": e.reason})

    def _set_unauthenticated(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self.state = SessionState.UNAUTHENTICATED
