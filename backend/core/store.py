"""
store.py — Key-value persistence boundary for derived documents.

The engine only needs get/set/remove of string values. Two backends:
- MemoryStore: process-local dict (tests, ephemeral runs)
- JsonFileStore: one JSON file on disk, each write serialised by a lock

store_lock() hands out one re-entrant lock per store so callers can hold it
across a multi-document read-modify-write cycle.

read_json / write_json wrap a store with JSON (de)serialisation, logging
and re-raising any failure of the underlying store as StorageError.
"""

import json
import logging
import os
import tempfile
import threading
import weakref
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """The underlying key-value store failed to read or write."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    All keys live in one JSON object on disk.

    A single lock serialises read-modify-write cycles so two writers in the
    same process cannot drop each other's update. The file is replaced
    atomically on every write.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            content = f.read()
        return json.loads(content) if content.strip() else {}

    def _dump(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._dump(data)


def create_store(path: Optional[str] = None) -> KeyValueStore:
    """JsonFileStore when a path is configured, otherwise an in-memory store."""
    if path:
        logger.info("Using JSON file store at %s", path)
        return JsonFileStore(path)
    logger.info("STORE_PATH not set; using in-memory store")
    return MemoryStore()


# One re-entrant lock per store instance, shared by every service over it.
_STORE_LOCKS = weakref.WeakKeyDictionary()
_STORE_LOCKS_GUARD = threading.Lock()


def store_lock(store: KeyValueStore):
    """
    Lock serialising multi-document read-modify-write cycles on one store.

    Per-key writes are atomic on their own; a ledger mutation touches several
    documents and must hold this lock for the whole cycle.
    """
    with _STORE_LOCKS_GUARD:
        lock = _STORE_LOCKS.get(store)
        if lock is None:
            lock = _STORE_LOCKS[store] = threading.RLock()
        return lock


# Process-wide store shared by the route modules.
_STORE_CACHE: Optional[KeyValueStore] = None


def get_default_store() -> KeyValueStore:
    """Store configured by STORE_PATH, created once per process."""
    global _STORE_CACHE

    if _STORE_CACHE is None:
        _STORE_CACHE = create_store(os.getenv("STORE_PATH"))
    return _STORE_CACHE


def reset_default_store(store: Optional[KeyValueStore] = None) -> None:
    """Swap the process-wide store (None re-reads STORE_PATH on next use)."""
    global _STORE_CACHE
    _STORE_CACHE = store


# ── JSON helpers ────────────────────────────────────────────────────

def read_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    """
    Load a JSON document. Missing or unparsable documents return `default`;
    a failing store raises StorageError.
    """
    try:
        raw = store.get(key)
    except Exception as exc:
        logger.exception("Failed to read '%s' from store", key)
        raise StorageError(f"Failed to read '{key}'") from exc

    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Stored document '%s' is not valid JSON; ignoring it", key)
        return default


def write_json(store: KeyValueStore, key: str, value: Any) -> None:
    try:
        store.set(key, json.dumps(value))
    except Exception as exc:
        logger.exception("Failed to write '%s' to store", key)
        raise StorageError(f"Failed to write '{key}'") from exc


def remove_key(store: KeyValueStore, key: str) -> None:
    try:
        store.remove(key)
    except Exception as exc:
        logger.exception("Failed to remove '%s' from store", key)
        raise StorageError(f"Failed to remove '{key}'") from exc
