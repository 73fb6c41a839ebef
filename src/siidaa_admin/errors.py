# src/siidaa_admin/errors.py

from typing import Optional


class AdminClientError(Exception):
    """Base class for every error raised by the admin client core."""


class InvalidCredentials(AdminClientError):
    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or "Invalid credentials"
        super().__init__(self.detail)


class ProfileFetchFailed(AdminClientError):
    def __init__(self, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__("Failed to fetch user profile")


class LoginInProgress(AdminClientError):
    def __init__(self):
        super().__init__("A login attempt is already in progress.")


class TokenRefreshFailed(AdminClientError):
    pass


class HttpError(AdminClientError):
    """Non-2xx response from the backend. Carries the HTTP status."""

    def __init__(self, status_code: int, url: Optional[str] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(f"HTTP error! status: {status_code}")


class Unauthorized(HttpError):
    """A 401 from the backend. The session has already been cleared when this is raised."""

    def __init__(self, url: Optional[str] = None, body: Optional[str] = None):
        super().__init__(401, url=url, body=body)


class PersistedStateCorrupt(AdminClientError):
    pass


class StorageWriteFailed(AdminClientError):
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Could not write storage key '{key}': {reason}")
