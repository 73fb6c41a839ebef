# src/siidaa_admin/browser_sessions.py
"""
Cookie-keyed browser sessions for the BFF.

The process holds one operator session (tokens and profile). A browser acts as that
operator only while its session cookie is bound, and only `/login` binds one. Bound ids
are kept in storage so a restart restores them along with the tokens.
"""

import json
import typing
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from .errors import StorageWriteFailed
from .log_store import AUTH, LogStore
from .storage import Storage

SESSION_COOKIE_NAME = "session_id"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 4  # 4 hours
BOUND_SESSIONS_KEY = "siidaa_admin_bff_sessions"


def new_session_id() -> str:
    return str(uuid.uuid4())


class BrowserSessions:

    def __init__(self, storage: Storage, log_store: LogStore):
        self.storage = storage
        self.log_store = log_store
        self._bound: typing.Set[str] = set()

    def restore(self) -> int:
        raw = self.storage.get_item(BOUND_SESSIONS_KEY)
        if not raw:
            return 0
        try:
            ids = json.loads(raw)
            if not isinstance(ids, list):
                raise ValueError("expected a list of session ids")
        except ValueError as e:
            self.log_store.warn(AUTH, "Discarded unreadable browser sessions", {"reason": str(e)})
            self.revoke_all()
            return 0
        self._bound = {i for i in ids if isinstance(i, str)}
        return len(self._bound)

    def is_bound(self, session_id: typing.Optional[str]) -> bool:
        return session_id is not None and session_id in self._bound

    def bind(self) -> str:
        """Issues a fresh bound id. Earlier bindings end: the latest sign-in owns the session."""
        session_id = new_session_id()
        self._bound = {session_id}
        self._save()
        return session_id

    def revoke_all(self) -> None:
        self._bound = set()
        self._save()

    def _save(self) -> None:
        try:
            if self._bound:
                self.storage.set_item(BOUND_SESSIONS_KEY, json.dumps(sorted(self._bound)))
            else:
                self.storage.remove_item(BOUND_SESSIONS_KEY)
        except StorageWriteFailed as e:
            self.log_store.warn(AUTH, "Could not persist browser sessions", {"reason": e.reason})


class SessionCookieMiddleware(BaseHTTPMiddleware):
    """
    Gives every browser a session id cookie. Routes may swap `request.state.browser_session["id"]`
    (on login and logout) and the new id is what goes back in the cookie.
    """

    def __init__(self, app, secure: bool = False):
        super().__init__(app)
        self.secure = secure

    async def dispatch(self, request: Request, call_next):
        browser_session = {"id": request.cookies.get(SESSION_COOKIE_NAME) or new_session_id()}
        request.state.browser_session = browser_session
        response: StarletteResponse = await call_next(request)
        response.set_cookie(
            SESSION_COOKIE_NAME,
            browser_session["id"],
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )
        return response
