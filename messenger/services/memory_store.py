"""
In-process document store

Holds the whole JSON tree in memory with the same ETag and listener
semantics as the Realtime Database backend. Used in development mode
(``STORE_BACKEND=memory``) and by the test suite.
"""

import copy
import hashlib
import json
import logging
import threading
from collections import defaultdict
from typing import Any, Dict, List, Tuple

from messenger.services.document_store import DocumentStore, SnapshotCallback, Subscription

logger = logging.getLogger(__name__)


def _split(path: str) -> List[str]:
    return [segment for segment in path.strip("/").split("/") if segment]


def _related(a: List[str], b: List[str]) -> bool:
    """True when one path is a prefix of (or equal to) the other"""
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]


def compute_etag(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.md5(encoded).hexdigest()


class MemoryStore(DocumentStore):
    """Thread-safe in-memory JSON tree"""

    def __init__(self, initial: Dict[str, Any] = None, **kwargs):
        super().__init__(**kwargs)
        self._root: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.RLock()
        self._listeners: Dict[Tuple[str, ...], List[SnapshotCallback]] = defaultdict(list)

    # ============================================
    # TREE HELPERS
    # ============================================

    def _read(self, segments: List[str]) -> Any:
        node: Any = self._root
        for segment in segments:
            if isinstance(node, dict):
                node = node.get(segment)
            elif isinstance(node, list) and segment.isdigit() and int(segment) < len(node):
                node = node[int(segment)]
            else:
                return None
            if node is None:
                return None
        return copy.deepcopy(node)

    def _write(self, segments: List[str], value: Any) -> None:
        if not segments:
            self._root = copy.deepcopy(value) if isinstance(value, dict) else {}
            return

        node = self._root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[segment] = child
            node = child

        # Empty containers are not stored, like the Realtime Database
        if value is None or value == [] or value == {}:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = copy.deepcopy(value)

    def snapshot(self, path: str = "") -> Any:
        """Current value at path (a copy); handy for inspection in tests"""
        with self._lock:
            return self._read(_split(path))

    # ============================================
    # BACKEND PRIMITIVES
    # ============================================

    async def _get(self, path: str) -> Tuple[Any, str]:
        with self._lock:
            value = self._read(_split(path))
        return value, compute_etag(value)

    async def _set(self, path: str, value: Any) -> None:
        segments = _split(path)
        with self._lock:
            self._write(segments, value)
        self._notify(segments)

    async def _set_if_unchanged(self, path: str, etag: str, value: Any) -> bool:
        segments = _split(path)
        with self._lock:
            if compute_etag(self._read(segments)) != etag:
                return False
            self._write(segments, value)
        self._notify(segments)
        return True

    # ============================================
    # LISTENERS
    # ============================================

    def _notify(self, changed: List[str]) -> None:
        with self._lock:
            targets = [
                (key, list(callbacks))
                for key, callbacks in self._listeners.items()
                if callbacks and _related(list(key), changed)
            ]
            snapshots = [(self._read(list(key)), callbacks) for key, callbacks in targets]

        for value, callbacks in snapshots:
            for callback in callbacks:
                try:
                    callback(copy.deepcopy(value))
                except Exception:
                    logger.exception("Snapshot listener failed")

    def listen(self, path: str, callback: SnapshotCallback) -> Subscription:
        key = tuple(_split(path))
        with self._lock:
            self._listeners[key].append(callback)
            current = self._read(list(key))

        def remove() -> None:
            with self._lock:
                callbacks = self._listeners.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._listeners.pop(key, None)

        callback(current)
        return Subscription(path, remove)

    def listener_count(self, path: str) -> int:
        with self._lock:
            return len(self._listeners.get(tuple(_split(path)), []))
