"""Content-hash deduplication ledger.

This module provides:
- DedupCache: protocol for TTL key/value caches with atomic get-or-set
- MemoryDedupCache: thread-safe in-process cache
- RedisDedupCache: distributed cache using SET NX EX
- DeduplicationLedger: fingerprint -> first MessageID bookkeeping

The ledger is a warning channel: a duplicate is reported to the caller so the
message record can be annotated, but processing is never blocked.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class DedupCache(Protocol):
    """TTL-expiring key/value cache used by the ledger.

    Implementations must make get_or_set atomic: two concurrent callers with
    the same key never both observe an absent entry.
    """

    def get_or_set(self, key: str, value: str, ttl_seconds: int) -> str | None:
        """Store value if key is absent or expired.

        Returns:
            The existing unexpired value, or None when value was stored.
        """
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value unconditionally, resetting its expiry."""
        ...

    def delete(self, key: str) -> None:
        """Remove key if present."""
        ...


class MemoryDedupCache:
    """In-process TTL cache guarded by a lock.

    Suitable for tests and single-process deployments. Expired entries are
    dropped lazily on access and by purge_expired().
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the cache.

        Args:
            clock: Seconds source used for expiry (injectable for tests).
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[str, float]] = {}  # key -> (value, expires_at)

    def get_or_set(self, key: str, value: str, ttl_seconds: int) -> str | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[1] > now:
                return entry[0]
            self._entries[key] = (value, now + ttl_seconds)
            return None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisDedupCache:
    """Distributed TTL cache backed by Redis.

    get_or_set relies on SET NX EX, which Redis executes atomically across
    all workers sharing the server.
    """

    def __init__(self, client: Any, key_prefix: str = "hotelsync:dedup:") -> None:
        """Initialize the cache.

        Args:
            client: redis.Redis instance (or compatible client).
            key_prefix: Namespace prepended to every fingerprint.
        """
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "hotelsync:dedup:") -> RedisDedupCache:
        """Create a cache connected to the Redis server at url."""
        import redis

        return cls(redis.Redis.from_url(url, decode_responses=True), key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get_or_set(self, key: str, value: str, ttl_seconds: int) -> str | None:
        redis_key = self._key(key)
        # The existing entry may expire between SET NX and GET; try again once.
        for _ in range(2):
            if self._client.set(redis_key, value, nx=True, ex=ttl_seconds):
                return None
            existing = self._client.get(redis_key)
            if existing is not None:
                return existing.decode("utf-8") if isinstance(existing, bytes) else str(existing)
        self._client.set(redis_key, value, ex=ttl_seconds)
        return None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.set(self._key(key), value, ex=ttl_seconds)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))


@dataclass(frozen=True)
class DedupResult:
    """Outcome of a ledger check."""

    is_duplicate: bool
    first_message_id: str | None = None


class DeduplicationLedger:
    """Track which MessageID first produced a given content fingerprint."""

    def __init__(self, cache: DedupCache, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        """Initialize the ledger.

        Args:
            cache: Backing cache (must provide atomic get_or_set).
            ttl_seconds: How long a fingerprint is remembered.
        """
        self._cache = cache
        self._ttl = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def check_and_record(self, fingerprint: str, message_id: str) -> DedupResult:
        """Record a fingerprint and report whether it was already seen.

        Args:
            fingerprint: Content fingerprint of the serialized payload.
            message_id: MessageID of the message carrying that payload.

        Returns:
            DedupResult. is_duplicate is True when another MessageID recorded
            the same fingerprint within the TTL; first_message_id names it.
        """
        existing = self._cache.get_or_set(fingerprint, message_id, self._ttl)
        if existing is None:
            return DedupResult(is_duplicate=False)
        if existing == message_id:
            # Same message checked again: refresh the entry
            self._cache.set(fingerprint, message_id, self._ttl)
            return DedupResult(is_duplicate=False)

        logger.warning(
            "Duplicate payload %s: message %s repeats content first sent as %s",
            fingerprint[:12],
            message_id,
            existing,
        )
        return DedupResult(is_duplicate=True, first_message_id=existing)

    def forget(self, fingerprint: str) -> None:
        """Drop a fingerprint from the ledger."""
        self._cache.delete(fingerprint)
