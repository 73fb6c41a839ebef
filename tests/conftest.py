import json

import httpx
import pytest

from siidaa_admin.log_store import LogStore
from siidaa_admin.models import LogLevel
from siidaa_admin.storage import MemoryStorage

API_BASE_URL = "http://backend.test"

PROFILE = {
    "id": 7,
    "username": "alice",
    "email": "alice@example.com",
    "first_name": "Alice",
    "last_name": "Admin",
    "is_staff": True,
    "is_superuser": False,
}


class FakeBackend:
    """Routes httpx requests to canned responses and remembers what it saw."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, status_code=200, json_body=None, text=None):
        self.routes[(method, path)] = (status_code, json_body, text)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"detail": "Not found."})
        status_code, json_body, text = self.routes[key]
        if text is not None:
            return httpx.Response(status_code, text=text)
        if json_body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=json_body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def paths(self):
        return [(r.method, r.url.path) for r in self.requests]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def log_store(storage):
    return LogStore(storage, min_level=LogLevel.DEBUG, console=None)


@pytest.fixture
def backend():
    backend = FakeBackend()
    backend.on("POST", "/api/token/", json_body={"access": "access-1", "refresh": "refresh-1"})
    backend.on("GET", "/api/user/profile/", json_body=PROFILE)
    return backend


def persisted_session(storage, user=None, token="saved-token", refresh="saved-refresh"):
    storage.set_item("admin_token", token)
    storage.set_item("admin_user", json.dumps(user or PROFILE))
    storage.set_item("admin_refresh_token", refresh)
