"""Vibe-token cache keyed by reference image content."""

from __future__ import annotations

import hashlib
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass(frozen=True)
class VibeCacheKey:
    content_hash: str
    information_extracted: float
    model: str

    def __str__(self) -> str:
        return f"{self.content_hash}:{self.information_extracted}:{self.model}"


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class VibeTokenCache:
    """Maps ``(sha256, information_extracted, model)`` to a vibe token.

    Concurrent lookups for the same key share one fetch: the factory runs
    under a per-key lock and later callers read the stored value. Unbounded
    unless ``max_entries`` is given, in which case the least recently used
    token is evicted.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive when set.")
        self.max_entries = max_entries
        self._entries: "OrderedDict[VibeCacheKey, str]" = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks: Dict[VibeCacheKey, threading.Lock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: VibeCacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: VibeCacheKey) -> Optional[str]:
        with self._lock:
            token = self._entries.get(key)
            if token is not None:
                self._entries.move_to_end(key)
            return token

    def put(self, key: VibeCacheKey, token: str) -> None:
        with self._lock:
            self._entries[key] = token
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()

    def _key_lock(self, key: VibeCacheKey) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def get_or_create(self, key: VibeCacheKey, factory: Callable[[], str]) -> str:
        token = self.get(key)
        if token is not None:
            return token
        with self._key_lock(key):
            token = self.get(key)
            if token is None:
                token = factory()
                self.put(key, token)
        with self._lock:
            self._key_locks.pop(key, None)
        return token
