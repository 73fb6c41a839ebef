# src/siidaa_admin/models.py

import copy
import traceback
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(IntEnum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3


class CapturedError(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Error"
    message: str
    stack: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "CapturedError":
        stack = None
        if exc.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(name=type(exc).__name__, message=str(exc), stack=stack)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LogEntry(BaseModel):
    """
    One diagnostic event. Immutable once created.
    url/method/status/duration are only filled in for API events.
    """
    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(default_factory=utc_timestamp)
    level: LogLevel
    category: str
    message: str
    data: Any = None
    error: Optional[CapturedError] = None
    url: Optional[str] = None
    method: Optional[str] = None
    status: Optional[int] = None
    duration: Optional[float] = None  # milliseconds

    @field_validator("data", mode="before")
    @classmethod
    def detach_data(cls, v: Any) -> Any:
        # the caller keeps no handle on what the journal holds
        return copy.deepcopy(v)


class User(BaseModel):
    """Profile returned by /api/user/profile/."""
    model_config = ConfigDict(extra="allow")

    id: int
    username: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    is_staff: bool = False
    is_superuser: bool = False


class SessionState(str, Enum):
    UNKNOWN = "unknown"
    RESTORING = "restoring"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
