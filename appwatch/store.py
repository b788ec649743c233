"""Small durable stores backed by JSON files.

Layout:
    data/state.json       key/value pairs (debug config, acknowledgment flags,
                          event log read ids)
    data/event_log.json   ordered event log entries

The in-memory variants share the same interface so components can run
without a data directory (tests, storage disabled).
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 — used at runtime
from typing import Any, Protocol


class StorageError(Exception):
    """Raised when a durable store cannot be read or written."""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text())


def _write_json(path: Path, data: Any) -> None:
    _ensure_dir(path.parent)
    # Write-then-rename so a crash never leaves a truncated file behind
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    os.replace(tmp, path)


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class CollectionStore(Protocol):
    def load(self) -> list[dict[str, Any]]: ...

    def save(self, items: list[dict[str, Any]]) -> None: ...


# --- JSON files ------------------------------------------------------------


class JsonKeyValueStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = _read_json(self.path)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a JSON object")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        try:
            _write_json(self.path, data)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def delete(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        del data[key]
        try:
            _write_json(self.path, data)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e


class JsonCollectionStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = _read_json(self.path)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        # Saved as {"items": [...], "savedAt": ...}; a bare list is accepted too
        if isinstance(data, dict):
            data = data.get("items", [])
        if not isinstance(data, list):
            raise StorageError(f"{self.path} does not hold a JSON list")
        return data

    def save(self, items: list[dict[str, Any]]) -> None:
        try:
            _write_json(self.path, {"items": items, "savedAt": _now()})
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e


# --- In memory -------------------------------------------------------------


class MemoryKeyValueStore:
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class MemoryCollectionStore:
    def __init__(self) -> None:
        self._items: list[dict[str, Any]] = []

    def load(self) -> list[dict[str, Any]]:
        return [dict(item) for item in self._items]

    def save(self, items: list[dict[str, Any]]) -> None:
        self._items = [dict(item) for item in items]


def state_store(data_path: Path) -> JsonKeyValueStore:
    return JsonKeyValueStore(data_path / "state.json")


def event_log_store(data_path: Path) -> JsonCollectionStore:
    return JsonCollectionStore(data_path / "event_log.json")
