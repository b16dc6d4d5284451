"""
Mutual-exclusion stores for exclusive tasks.

Locks are opaque keys with a TTL. Only existence matters: ``acquire`` is an
atomic create-if-absent, and a lock is never refreshed, only replaced once it
has expired.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol, Union

from horizon.errors import ConfigError
from horizon.utils import ensure_aware_utc, maybe_await

logger = logging.getLogger(__name__)

LOCK_DRIVERS = {"memory", "cache"}
DEFAULT_LOCK_PREFIX = "horizon:lock:"
LOCK_MARKER = "1"


def lock_key(name: str, now: datetime) -> str:
    """Key shared by every node evaluating ``name`` in the same UTC minute."""
    bucket = ensure_aware_utc(now).strftime("%Y%m%d%H%M")
    return f"task:{name}:{bucket}"


class LockStore(Protocol):
    async def acquire(self, key: str, ttl_seconds: int) -> bool: ...

    async def release(self, key: str) -> None: ...

    async def force_acquire(self, key: str, ttl_seconds: int) -> None: ...

    async def exists(self, key: str) -> bool: ...


class SharedCache(Protocol):
    """Shared cache collaborator. Methods may be plain or coroutine functions."""

    def add(self, key: str, value: Any, ttl_seconds: int) -> Any: ...

    def put(self, key: str, value: Any, ttl_seconds: int) -> Any: ...

    def forget(self, key: str) -> Any: ...

    def has(self, key: str) -> Any: ...


class MemoryLockStore:
    """Per-process lock table. Gives no exclusion across processes."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expiries: Dict[str, float] = {}
        self._mutex = threading.Lock()

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        with self._mutex:
            now = self._clock()
            expires_at = self._expiries.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._expiries[key] = now + ttl_seconds
            return True

    async def release(self, key: str) -> None:
        with self._mutex:
            self._expiries.pop(key, None)

    async def force_acquire(self, key: str, ttl_seconds: int) -> None:
        with self._mutex:
            self._expiries[key] = self._clock() + ttl_seconds

    async def exists(self, key: str) -> bool:
        with self._mutex:
            expires_at = self._expiries.get(key)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._expiries[key]
                return False
            return True


class CacheLockStore:
    """Lock store over a shared cache whose ``add`` is atomic."""

    def __init__(self, cache: SharedCache, prefix: str = DEFAULT_LOCK_PREFIX) -> None:
        self.cache = cache
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await maybe_await(self.cache.add(self._key(key), LOCK_MARKER, ttl_seconds)))

    async def release(self, key: str) -> None:
        await maybe_await(self.cache.forget(self._key(key)))

    async def force_acquire(self, key: str, ttl_seconds: int) -> None:
        logger.warning("Force-acquiring lock %s for %ss", key, ttl_seconds)
        await maybe_await(self.cache.put(self._key(key), LOCK_MARKER, ttl_seconds))

    async def exists(self, key: str) -> bool:
        return bool(await maybe_await(self.cache.has(self._key(key))))


class LockManager:
    """Selects one lock store and forwards every operation to it."""

    def __init__(
        self,
        driver: Union[str, LockStore] = "memory",
        cache: Optional[SharedCache] = None,
        prefix: str = DEFAULT_LOCK_PREFIX,
    ) -> None:
        self.store: LockStore
        if not isinstance(driver, str):
            self.store = driver
        elif driver == "memory":
            self.store = MemoryLockStore()
        elif driver == "cache":
            if cache is None:
                raise ConfigError('Error: lock driver "cache" requires a shared cache collaborator.')
            self.store = CacheLockStore(cache, prefix=prefix)
        else:
            raise ConfigError(
                f'Error: lock driver must be one of {sorted(LOCK_DRIVERS)}, got "{driver}".'
            )

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        return await self.store.acquire(key, ttl_seconds)

    async def release(self, key: str) -> None:
        await self.store.release(key)

    async def force_acquire(self, key: str, ttl_seconds: int) -> None:
        await self.store.force_acquire(key, ttl_seconds)

    async def exists(self, key: str) -> bool:
        return await self.store.exists(key)
