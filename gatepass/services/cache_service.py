"""
Gate Pass Service
Read cache for dashboard queries.

Process-local, time-bounded cache in front of the expensive list queries
(open passes, per-subject history). Callers use the read-through pattern:
on a miss they load from the database and ``set`` the result. Write paths
call ``invalidate`` for every affected key before they return, so a reader
never sees a list that is older than a completed write.

Values are stored JSON-serialised: readers always receive a fresh copy and
the cache can never be mistaken for the authoritative record.

A fault inside the cache (e.g. an unserialisable value) is logged and
treated as a miss; cache operations never raise to the caller.
"""

from __future__ import annotations

import json
import logging
import time
from threading import Lock
from typing import Any, Callable

from flask import current_app

logger = logging.getLogger(__name__)

# Default TTL in seconds
DEFAULT_TTL_SECONDS = 60
MAX_ENTRIES = 1000

EXTENSION_KEY = "read_cache"


# ── Key builders ─────────────────────────────────────────────────────────

PASS_KEY_PREFIX = "passes:"
OPEN_PASSES_KEY = f"{PASS_KEY_PREFIX}open"


def subject_passes_key(subject_id) -> str:
    return f"{PASS_KEY_PREFIX}subject:{subject_id}"


def pass_keys_for_subject(subject_id) -> list[str]:
    """Every cache key a pass mutation for *subject_id* can make stale."""
    return [OPEN_PASSES_KEY, subject_passes_key(subject_id)]


class ReadCache:
    """TTL cache guarded by a single lock around every map access."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 max_entries: int = MAX_ENTRIES):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, tuple[str, float]] = {}  # key → (value_json, written_at)
        self._lock = Lock()
        # Bumped by every invalidation; a read-through fill that started before
        # an invalidation is discarded instead of cached.
        self._epoch = 0
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "invalidations": 0, "evictions": 0}

    def _is_fresh(self, written_at: float, now: float) -> bool:
        return now - written_at <= self.ttl_seconds

    def get(self, key: str) -> Any | None:
        """Return a copy of the cached value, or None if missing or expired."""
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    self._stats["misses"] += 1
                    return None
                raw, written_at = entry
                if not self._is_fresh(written_at, self._clock()):
                    del self._entries[key]
                    self._stats["misses"] += 1
                    self._stats["evictions"] += 1
                    return None
                self._stats["hits"] += 1
            return json.loads(raw)
        except Exception as exc:
            logger.warning("Read cache lookup failed for %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any) -> None:
        """Store a copy of *value* under *key*."""
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Read cache refused unserialisable value for %s: %s", key, exc)
            return
        with self._lock:
            self._entries[key] = (raw, self._clock())
            self._stats["sets"] += 1
            self._enforce_limit()

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or every key when *key* is None."""
        with self._lock:
            self._epoch += 1
            if key is None:
                self._stats["invalidations"] += len(self._entries)
                self._entries.clear()
            elif self._entries.pop(key, None) is not None:
                self._stats["invalidations"] += 1

    def invalidate_many(self, keys) -> None:
        """Drop several keys under one lock acquisition."""
        with self._lock:
            self._epoch += 1
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    self._stats["invalidations"] += 1

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with *prefix*. Returns the count removed."""
        with self._lock:
            self._epoch += 1
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            self._stats["invalidations"] += len(doomed)
            return len(doomed)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        """Read-through: return the cached value or compute, cache and return it.

        The loaded value is only cached if no invalidation happened while
        *loader* ran; otherwise it is returned uncached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        with self._lock:
            epoch = self._epoch
        value = loader()
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Read cache refused unserialisable value for %s: %s", key, exc)
            return value
        with self._lock:
            if self._epoch == epoch:
                self._entries[key] = (raw, self._clock())
                self._stats["sets"] += 1
                self._enforce_limit()
        return value

    def cleanup_expired(self) -> int:
        """Physically remove expired entries. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, ts) in self._entries.items() if not self._is_fresh(ts, now)]
            for k in expired:
                del self._entries[k]
            self._stats["evictions"] += len(expired)
            return len(expired)

    def get_stats(self) -> dict:
        """Return cache statistics."""
        with self._lock:
            stats = dict(self._stats)
            entries = len(self._entries)
        total = stats["hits"] + stats["misses"]
        stats["hit_rate_pct"] = round(stats["hits"] / total * 100, 2) if total else 0.0
        stats["entries"] = entries
        stats["ttl_seconds"] = self.ttl_seconds
        return stats

    def _enforce_limit(self):
        """Evict oldest entries if the map exceeds its limit. Must hold lock."""
        overflow = len(self._entries) - self._max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k][1])[:overflow]
        for k in oldest:
            del self._entries[k]
            self._stats["evictions"] += 1


def init_read_cache(app) -> ReadCache:
    """Create the app's cache and register it under ``app.extensions``."""
    cache = ReadCache(ttl_seconds=app.config.get("PASS_CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS))
    app.extensions[EXTENSION_KEY] = cache
    return cache


def get_read_cache() -> ReadCache:
    """Return the cache owned by the current app."""
    return current_app.extensions[EXTENSION_KEY]
