"""In-memory key-value store for testing and single-process use."""

import asyncio
import time
from collections.abc import Callable


class InMemoryKeyValueStore:
    """
    In-memory implementation of KeyValueStore with expiring keys.

    All data is lost when process terminates.

    Example:
        >>> store = InMemoryKeyValueStore()
        >>> await store.set_with_ttl("k", "v", ttl_seconds=60)
        >>> await store.get("k")
        'v'
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize an empty store.

        Args:
            clock: Monotonic seconds used for expiry
        """
        self._clock = clock
        self._values: dict[str, str | dict[str, str]] = {}
        self._expires_at: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, deadline in self._expires_at.items() if deadline <= now]
        for key in expired:
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            self._purge_expired()
            value = self._values.get(key)
            return value if isinstance(value, str) else None

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._values[key] = value
            self._expires_at[key] = self._clock() + ttl_seconds

    async def hash_set_with_ttl(
        self,
        key: str,
        fields: dict[str, str],
        ttl_seconds: int,
    ) -> None:
        async with self._lock:
            self._values[key] = dict(fields)
            self._expires_at[key] = self._clock() + ttl_seconds

    async def hash_get_all(self, key: str) -> dict[str, str]:
        async with self._lock:
            self._purge_expired()
            value = self._values.get(key)
            return dict(value) if isinstance(value, dict) else {}

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        async with self._lock:
            self._purge_expired()
            return sorted(key for key in self._values if key.startswith(prefix))

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            self._purge_expired()
            deleted = 0
            for key in keys:
                if key in self._values:
                    del self._values[key]
                    self._expires_at.pop(key, None)
                    deleted += 1
            return deleted

    def ttl(self, key: str) -> float | None:
        """Seconds until key expires, None if absent."""
        deadline = self._expires_at.get(key)
        if deadline is None:
            return None
        return deadline - self._clock()

    async def clear(self) -> None:
        """Clear all keys. Useful for test setup/teardown."""
        async with self._lock:
            self._values.clear()
            self._expires_at.clear()


__all__ = ["InMemoryKeyValueStore"]
