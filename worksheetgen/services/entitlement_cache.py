"""
Entitlement cache.

Short-TTL, read-through, in-process cache for derived entitlement decisions,
keyed by (namespace, user id). Writers call delete() after their store write
commits so the next read recomputes.
"""
import logging
import threading
import time
from typing import Any, Callable, NamedTuple, Optional

from cachetools import TLRUCache

from worksheetgen.core.config import ENTITLEMENT_CACHE_MAXSIZE, ENTITLEMENT_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUS_NAMESPACE = "subscription_status"
CAN_GENERATE_NAMESPACE = "can_generate"

USER_NAMESPACES = (SUBSCRIPTION_STATUS_NAMESPACE, CAN_GENERATE_NAMESPACE)


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _expires_at(key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class EntitlementCache:
    """
    TLRUCache guarded by a lock (cachetools caches are not thread-safe).

    Two concurrent misses for the same key may both compute; compute functions
    are read-only, so the duplicate work is harmless.
    """

    def __init__(
        self,
        default_ttl_seconds: float = ENTITLEMENT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = ENTITLEMENT_CACHE_MAXSIZE,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self._entries = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=clock)
        self._lock = threading.Lock()

    @staticmethod
    def _key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    def get(self, namespace: str, key: str) -> Optional[Any]:
        with self._lock:
            self._entries.expire()
            entry = self._entries.get(self._key(namespace, key))
            return entry.value if entry is not None else None

    def set(self, namespace: str, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[self._key(namespace, key)] = _Entry(value, ttl)

    def get_or_set(
        self,
        namespace: str,
        key: str,
        compute_fn: Callable[[], Any],
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value, or compute, store and return it.

        compute_fn runs outside the lock. None results are returned but not cached.
        Exceptions from compute_fn propagate and nothing is stored.
        """
        cached = self.get(namespace, key)
        if cached is not None:
            return cached

        value = compute_fn()
        if value is not None:
            self.set(namespace, key, value, ttl_seconds)
        return value

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._entries.pop(self._key(namespace, key), None)

    def invalidate_user(self, user_id: str) -> None:
        """Drop every derived entitlement entry for a user."""
        for namespace in USER_NAMESPACES:
            self.delete(namespace, user_id)
        logger.debug(f"Entitlement cache invalidated: user_id={user_id}")

    def clear_namespace(self, namespace: str) -> None:
        prefix = f"{namespace}:"
        with self._lock:
            for cache_key in [k for k in self._entries.keys() if k.startswith(prefix)]:
                self._entries.pop(cache_key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)


class NullEntitlementCache(EntitlementCache):
    """Cache that never stores anything; every read recomputes."""

    def __init__(self):
        super().__init__(default_ttl_seconds=0)

    def get(self, namespace: str, key: str) -> Optional[Any]:
        return None

    def set(self, namespace: str, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        return None
