"""Persistent, filterable history of structured application events."""

from __future__ import annotations

import json
import logging
import traceback
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..store import CollectionStore, KeyValueStore, StorageError
from .events import LOG_STORE_UPDATED, EventBus

logger = logging.getLogger(__name__)

MAX_LOGS = 1000
READ_IDS_KEY = "event_log_read_ids"

LOG_LEVELS = ("info", "warning", "error", "debug")
LOG_CATEGORIES = (
    "system",
    "provider",
    "user",
    "error",
    "api",
    "auth",
    "database",
    "network",
    "performance",
    "settings",
    "task",
    "update",
    "feature",
)

_OPTIONAL_FIELDS = {
    "component": "component",
    "action": "action",
    "user_id": "userId",
    "session_id": "sessionId",
    "metadata": "metadata",
    "duration": "duration",
    "status_code": "statusCode",
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _parse_timestamp(value: str | datetime) -> datetime:
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


@dataclass
class LogEntry:
    id: str
    timestamp: str
    level: str
    category: str
    message: str
    component: str | None = None
    action: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] | None = None
    duration: float | None = None
    status_code: int | None = None
    read: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level,
            "category": self.category,
            "message": self.message,
            "read": self.read,
        }
        for attr, key in _OPTIONAL_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogEntry:
        entry = cls(
            id=data["id"],
            timestamp=data["timestamp"],
            level=data["level"],
            category=data["category"],
            message=data["message"],
            read=bool(data.get("read", False)),
        )
        for attr, key in _OPTIONAL_FIELDS.items():
            if key in data:
                setattr(entry, attr, data[key])
        return entry


class EventLogStore:
    """Append-only event history capped at ``max_logs`` entries.

    Entries are kept in insertion order, which is also timestamp order, so
    trimming from the front always drops the oldest entries. Entries go to
    a collection store; the ids of read entries go to a separate key so that
    toggling read state does not rewrite the whole log. When either store
    fails the log keeps working in memory for the rest of the session.
    """

    def __init__(
        self,
        collection: CollectionStore | None = None,
        kv: KeyValueStore | None = None,
        bus: EventBus | None = None,
        max_logs: int = MAX_LOGS,
    ) -> None:
        if max_logs <= 0:
            raise ValueError("max_logs must be positive")
        self.max_logs = max_logs
        self._collection = collection
        self._kv = kv
        self._bus = bus
        self._logs: deque[LogEntry] = deque()
        self._load()

    @property
    def persistent(self) -> bool:
        return self._collection is not None

    # --- Persistence -------------------------------------------------------

    def _load(self) -> None:
        if self._collection is None:
            return
        try:
            items = self._collection.load()
        except StorageError:
            self._degrade()
            return
        read_ids = self._load_read_ids()

        for item in items:
            try:
                entry = LogEntry.from_dict(item)
            except (KeyError, TypeError):
                logger.warning("Skipping malformed event log entry: %r", item)
                continue
            if entry.id in read_ids:
                entry.read = True
            self._logs.append(entry)
        self._trim()
        logger.info("Loaded %d event log entries", len(self._logs))

    def _load_read_ids(self) -> set[str]:
        if self._kv is None:
            return set()
        try:
            return set(self._kv.get(READ_IDS_KEY, []) or [])
        except StorageError:
            # Entries stay on disk; only the read flags are lost
            logger.warning("Event log read state unavailable, keeping it with the entries", exc_info=True)
            self._kv = None
            return set()

    def _degrade(self) -> None:
        logger.warning("Event log storage unavailable, keeping logs in memory for this session", exc_info=True)
        self._collection = None
        self._kv = None

    def _persist(self) -> None:
        if self._collection is None:
            return
        try:
            self._collection.save([e.to_dict() for e in self._logs])
        except StorageError:
            self._degrade()

    def _persist_read_state(self) -> None:
        if self._kv is None:
            # No separate key: the read flag travels with the entries
            self._persist()
            return
        try:
            self._kv.set(READ_IDS_KEY, [e.id for e in self._logs if e.read])
        except StorageError:
            self._degrade()

    def _notify(self, entry: LogEntry | None = None) -> None:
        if self._bus is None:
            return
        # Listeners get the whole log; SSE clients only the change summary
        summary = {
            "entry": entry.to_dict() if entry is not None else None,
            "count": len(self._logs),
            "unreadCount": self.get_unread_count(),
        }
        self._bus.emit(LOG_STORE_UPDATED, self.get_logs(), wire=summary)

    def _trim(self) -> bool:
        evicted = False
        while len(self._logs) > self.max_logs:
            self._logs.popleft()
            evicted = True
        return evicted

    # --- Writing -----------------------------------------------------------

    def log(
        self,
        level: str,
        category: str,
        message: str,
        *,
        component: str | None = None,
        action: str | None = None,
        user_id: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        duration: float | None = None,
        status_code: int | None = None,
    ) -> LogEntry:
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {level!r}")
        if category not in LOG_CATEGORIES:
            raise ValueError(f"Unknown log category: {category!r}")
        entry = LogEntry(
            id=uuid.uuid4().hex,
            timestamp=_now(),
            level=level,
            category=category,
            message=message,
            component=component,
            action=action,
            user_id=user_id,
            session_id=session_id,
            metadata=dict(metadata) if metadata else None,
            duration=duration,
            status_code=status_code,
        )
        return self._append(entry)

    def _append(self, entry: LogEntry) -> LogEntry:
        self._logs.append(entry)
        evicted = self._trim()
        self._persist()
        if evicted and self._kv is not None:
            self._persist_read_state()
        self._notify(entry)
        return entry

    def log_system(self, message: str, level: str = "info", **fields: Any) -> LogEntry:
        return self.log(level, "system", message, **fields)

    def log_provider(self, provider: str, message: str, level: str = "info", **fields: Any) -> LogEntry:
        fields.setdefault("component", provider)
        return self.log(level, "provider", message, **fields)

    def log_user_action(self, action: str, message: str | None = None, **fields: Any) -> LogEntry:
        return self.log("info", "user", message or action, action=action, **fields)

    def log_api_request(
        self,
        method: str,
        url: str,
        status_code: int,
        duration: float | None = None,
        **fields: Any,
    ) -> LogEntry:
        if status_code == 0 or status_code >= 500:
            level = "error"
        elif status_code >= 400:
            level = "warning"
        else:
            level = "info"
        metadata = {"method": method.upper(), "url": url, **(fields.pop("metadata", None) or {})}
        return self.log(
            level,
            "api",
            f"{method.upper()} {url} {status_code}",
            status_code=status_code,
            duration=duration,
            metadata=metadata,
            **fields,
        )

    def log_error(self, error: BaseException | str, **fields: Any) -> LogEntry:
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            metadata = {
                "errorType": type(error).__name__,
                "stack": "".join(traceback.format_exception(error)),
                **(fields.pop("metadata", None) or {}),
            }
            fields["metadata"] = metadata
        else:
            message = error
        return self.log("error", "error", message, **fields)

    def log_performance(self, operation: str, duration: float, level: str = "info", **fields: Any) -> LogEntry:
        fields.setdefault("action", operation)
        return self.log(level, "performance", f"{operation} took {duration:.0f}ms", duration=duration, **fields)

    def log_auth(self, action: str, success: bool = True, **fields: Any) -> LogEntry:
        outcome = "succeeded" if success else "failed"
        metadata = {"success": success, **(fields.pop("metadata", None) or {})}
        return self.log(
            "info" if success else "warning",
            "auth",
            f"Authentication {action} {outcome}",
            action=action,
            metadata=metadata,
            **fields,
        )

    def log_network_status(self, connected: bool, latency_ms: float | None = None, **fields: Any) -> LogEntry:
        if connected:
            message = "Network connected" if latency_ms is None else f"Network connected ({latency_ms:.0f}ms)"
        else:
            message = "Network disconnected"
        metadata = {"connected": connected, "latencyMs": latency_ms, **(fields.pop("metadata", None) or {})}
        fields.setdefault("component", "connection")
        return self.log("info" if connected else "warning", "network", message, metadata=metadata, **fields)

    # --- Reading -----------------------------------------------------------

    def get_logs(self) -> list[LogEntry]:
        """All entries, oldest first."""
        return list(self._logs)

    def get_filtered_logs(
        self,
        level: str | None = None,
        category: str | None = None,
        component: str | None = None,
        since: str | datetime | None = None,
    ) -> list[LogEntry]:
        """Entries matching every given filter; omitted filters match all."""
        since_dt = _parse_timestamp(since) if since is not None else None
        result = []
        for e in self._logs:
            if level is not None and e.level != level:
                continue
            if category is not None and e.category != category:
                continue
            if component is not None and e.component != component:
                continue
            if since_dt is not None and _parse_timestamp(e.timestamp) < since_dt:
                continue
            result.append(e)
        return result

    def get_unread_count(self) -> int:
        return sum(1 for e in self._logs if not e.read)

    def mark_as_read(self, log_id: str) -> bool:
        for e in self._logs:
            if e.id == log_id:
                if not e.read:
                    e.read = True
                    self._persist_read_state()
                    self._notify(e)
                return True
        return False

    def mark_all_as_read(self) -> int:
        changed = 0
        for e in self._logs:
            if not e.read:
                e.read = True
                changed += 1
        if changed:
            self._persist_read_state()
            self._notify()
        return changed

    def clear(self) -> None:
        self._logs.clear()
        self._persist()
        if self._kv is not None:
            try:
                self._kv.set(READ_IDS_KEY, [])
            except StorageError:
                self._degrade()
        self._notify()

    def export_logs(self) -> str:
        return json.dumps([e.to_dict() for e in self._logs], indent=2)
