# src/siidaa_admin/log_store.py
"""
Bounded, queryable journal of diagnostic events (API calls, auth, network, environment).

Entries live in memory up to `max_entries`; the most recent `persist_entries` are
mirrored to durable storage after every accepted record so that a restart can
pick them up again with `restore()`.
"""

import json
import typing
from collections import Counter
from datetime import datetime, timezone

from .errors import StorageWriteFailed
from .models import CapturedError, LogEntry, LogLevel
from .storage import Storage

DEFAULT_STORAGE_KEY = "siidaa_admin_logs"

# Conventional categories. Callers may use any other tag.
API = "API"
AUTH = "AUTH"
NETWORK = "NETWORK"
ENV = "ENV"
SYSTEM = "SYSTEM"


def entries_to_json(entries: typing.Sequence[LogEntry], indent: typing.Optional[int] = None) -> str:
    return json.dumps(
        [entry.model_dump(mode="python") for entry in entries],
        indent=indent,
        default=str,
    )


def parse_level(value: typing.Union[None, int, str, LogLevel]) -> typing.Optional[LogLevel]:
    """Accepts a LogLevel, its number or its name. None and "all" mean no level filter."""
    if value is None or isinstance(value, LogLevel):
        return value
    if isinstance(value, int):
        return LogLevel(value)
    text = value.strip()
    if not text or text.lower() == "all":
        return None
    if text.isdigit():
        return LogLevel(int(text))
    try:
        return LogLevel[text.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {value}") from None


def _format_console_time(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).strftime("%H:%M:%S")
    except ValueError:
        return timestamp


class LogStore:
    def __init__(
            self,
            storage: Storage,
            min_level: LogLevel = LogLevel.DEBUG,
            max_entries: int = 1000,
            persist_entries: int = 100,
            storage_key: str = DEFAULT_STORAGE_KEY,
            console: typing.Optional[typing.Callable[[str], None]] = print,
    ):
        self.storage = storage
        self.min_level = LogLevel(min_level)
        self.max_entries = max_entries
        self.persist_entries = persist_entries
        self.storage_key = storage_key
        self.console = console
        self._entries: typing.List[LogEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    # --- Core ---

    def record(
            self,
            level: LogLevel,
            category: str,
            message: str,
            data: typing.Any = None,
            error: typing.Optional[typing.Union[BaseException, CapturedError]] = None,
            url: typing.Optional[str] = None,
            method: typing.Optional[str] = None,
            status: typing.Optional[int] = None,
            duration: typing.Optional[float] = None,
    ) -> typing.Optional[LogEntry]:
        if level < self.min_level:
            return None

        if isinstance(error, BaseException):
            error = CapturedError.from_exception(error)

        entry = LogEntry(
            level=level,
            category=category,
            message=message,
            data=data,
            error=error,
            url=url,
            method=method,
            status=status,
            duration=duration,
        )
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            del self._entries[:len(self._entries) - self.max_entries]

        self._output_to_console(entry)
        self._persist()
        return entry.model_copy(deep=True)

    def _output_to_console(self, entry: LogEntry) -> None:
        if self.console is None:
            return
        prefix = f"[{_format_console_time(entry.timestamp)}] [{entry.category}]"
        self.console(f"{prefix} {entry.level.name}: {entry.message}")
        if entry.error is not None:
            self.console(f"    {entry.error.name}: {entry.error.message}")
        if entry.data is not None:
            self.console(f"    Data: {entry.data}")

    def _persist(self) -> None:
        recent = self._entries[-self.persist_entries:]
        try:
            self.storage.set_item(self.storage_key, entries_to_json(recent))
        except (StorageWriteFailed, TypeError, ValueError) as e:
            # Persistence is best effort; the in-memory journal is unaffected.
            if self.console is not None:
                self.console(f"LOG_STORE: Could not persist logs: {e}")

    # --- Level helpers ---

    def debug(self, category: str, message: str, data: typing.Any = None) -> typing.Optional[LogEntry]:
        return self.record(LogLevel.DEBUG, category, message, data)

    def info(self, category: str, message: str, data: typing.Any = None) -> typing.Optional[LogEntry]:
        return self.record(LogLevel.INFO, category, message, data)

    def warn(self, category: str, message: str, data: typing.Any = None) -> typing.Optional[LogEntry]:
        return self.record(LogLevel.WARN, category, message, data)

    def error(self, category: str, message: str, error: typing.Optional[BaseException] = None,
              data: typing.Any = None) -> typing.Optional[LogEntry]:
        return self.record(LogLevel.ERROR, category, message, data, error)

    # --- API events ---

    def api_request(self, method: str, url: str, data: typing.Any = None) -> typing.Optional[LogEntry]:
        return self.record(LogLevel.INFO, API, f"{method} {url}", data, url=url, method=method)

    def api_response(self, method: str, url: str, status: int, duration: float,
                     data: typing.Any = None) -> typing.Optional[LogEntry]:
        level = LogLevel.ERROR if status >= 400 else LogLevel.INFO
        return self.record(
            level, API, f"{method} {url} - {status}", data,
            url=url, method=method, status=status, duration=duration,
        )

    def api_error(self, method: str, url: str, error: BaseException,
                  duration: typing.Optional[float] = None) -> typing.Optional[LogEntry]:
        return self.record(
            LogLevel.ERROR, API, f"{method} {url} - Failed", error=error,
            url=url, method=method, duration=duration,
        )

    # --- Auth events ---

    def auth_attempt(self, username: str) -> typing.Optional[LogEntry]:
        return self.info(AUTH, f"Login attempt for user: {username}")

    def auth_success(self, username: str) -> typing.Optional[LogEntry]:
        return self.info(AUTH, f"Login successful for user: {username}")

    def auth_failure(self, username: str, error_text: str) -> typing.Optional[LogEntry]:
        return self.record(
            LogLevel.ERROR, AUTH, f"Login failed for user: {username}",
            error=CapturedError(message=error_text),
        )

    def auth_logout(self, username: typing.Optional[str] = None) -> typing.Optional[LogEntry]:
        return self.info(AUTH, f"User logged out: {username or 'unknown'}")

    # --- Network / environment ---

    def network_test(self, url: str, success: bool, duration: float,
                     error: typing.Optional[BaseException] = None) -> typing.Optional[LogEntry]:
        if success:
            return self.info(NETWORK, f"Connection test successful: {url}", {"duration": duration})
        return self.error(NETWORK, f"Connection test failed: {url}", error, {"duration": duration})

    def environment(self, data: typing.Dict[str, typing.Any]) -> typing.Optional[LogEntry]:
        return self.info(ENV, "Environment information", data)

    # --- Reading ---

    def query(
            self,
            category: typing.Optional[str] = None,
            min_level: typing.Optional[LogLevel] = None,
            search: typing.Optional[str] = None,
    ) -> typing.List[LogEntry]:
        """Most recent first. `search` matches message, category or error text, case-insensitively."""
        entries: typing.Iterable[LogEntry] = self._entries
        if category:
            entries = [e for e in entries if e.category == category]
        if min_level is not None:
            entries = [e for e in entries if e.level >= min_level]
        if search:
            needle = search.lower()
            entries = [
                e for e in entries
                if needle in e.message.lower()
                or needle in e.category.lower()
                or (e.error is not None and needle in e.error.message.lower())
            ]
        return [e.model_copy(deep=True) for e in reversed(list(entries))]

    def stats(self) -> typing.Dict[str, typing.Any]:
        level_counts = Counter(entry.level for entry in self._entries)
        category_counts = Counter(entry.category for entry in self._entries)
        errors = [entry for entry in self._entries if entry.level == LogLevel.ERROR]
        return {
            "total": len(self._entries),
            "by_level": {level.name.lower(): level_counts.get(level, 0) for level in LogLevel},
            "by_category": dict(category_counts),
            "recent_errors": [
                {
                    "timestamp": entry.timestamp,
                    "category": entry.category,
                    "message": entry.message,
                    "error": entry.error.message if entry.error else None,
                }
                for entry in errors[-5:]
            ],
        }

    def export(self) -> str:
        return entries_to_json(self._entries, indent=2)

    @staticmethod
    def export_filename(now: typing.Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        return f"siidaa-admin-logs-{now.date().isoformat()}.json"

    # --- Lifecycle ---

    def clear(self) -> None:
        self._entries = []
        try:
            self.storage.remove_item(self.storage_key)
        except StorageWriteFailed as e:
            if self.console is not None:
                self.console(f"LOG_STORE: Could not remove persisted logs: {e}")
        self.info(SYSTEM, "Logs cleared")

    def restore(self) -> int:
        """
        Prepends the persisted snapshot to the in-memory journal.
        Returns the number of entries loaded. Never raises.
        """
        stored = self.storage.get_item(self.storage_key)
        if not stored:
            return 0
        try:
            raw = json.loads(stored)
            if not isinstance(raw, list):
                raise ValueError("persisted logs are not a JSON array")
            loaded = [LogEntry.model_validate(item) for item in raw]
        except (ValueError, TypeError) as e:
            self.error(SYSTEM, "Failed to load persisted logs", e)
            return 0

        self._entries = loaded + self._entries
        if len(self._entries) > self.max_entries:
            del self._entries[:len(self._entries) - self.max_entries]
        self.info(SYSTEM, f"Loaded {len(loaded)} persisted logs")
        return len(loaded)
