"""
Per-device state containers.

- ShardedMap: dict split across shards, each guarded by its own
  threading.Lock, so admin calls from other threads are safe and no
  global lock exists.
- DeviceLocks: one asyncio.Lock per device key, created on demand and
  dropped once nobody holds or waits on it. Serializes evaluations for the
  same device while different devices proceed independently.
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_SHARDS = 32


class ShardedMap(Generic[K, V]):
    """Hash-sharded dictionary with one lock per shard."""

    def __init__(self, shards: int = DEFAULT_SHARDS) -> None:
        self._shards: list[tuple[threading.Lock, dict[K, V]]] = [
            (threading.Lock(), {}) for _ in range(max(1, shards))
        ]

    def _shard(self, key: K) -> tuple[threading.Lock, dict[K, V]]:
        return self._shards[hash(key) % len(self._shards)]

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        lock, data = self._shard(key)
        with lock:
            return data.get(key, default)

    def set(self, key: K, value: V) -> None:
        lock, data = self._shard(key)
        with lock:
            data[key] = value

    def pop(self, key: K) -> Optional[V]:
        lock, data = self._shard(key)
        with lock:
            return data.pop(key, None)

    def update(self, key: K, func: Callable[[Optional[V]], Optional[V]]) -> Optional[V]:
        """
        Atomically replace the value for key with func(old).

        Returning None from func removes the key.
        """
        lock, data = self._shard(key)
        with lock:
            new = func(data.get(key))
            if new is None:
                data.pop(key, None)
            else:
                data[key] = new
            return new

    def __contains__(self, key: object) -> bool:
        lock, data = self._shard(key)  # type: ignore[arg-type]
        with lock:
            return key in data

    def __len__(self) -> int:
        total = 0
        for lock, data in self._shards:
            with lock:
                total += len(data)
        return total


class DeviceLocks:
    """Reference-counted asyncio locks keyed by device id."""

    def __init__(self) -> None:
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, device_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(device_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[device_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[device_id]
            if users <= 1:
                del self._locks[device_id]
            else:
                self._locks[device_id] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)
