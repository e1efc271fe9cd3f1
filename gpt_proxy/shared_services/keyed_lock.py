"""Per-key asyncio locks: serialize work for one key without blocking other keys."""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLock:
    """
    Hands out one asyncio.Lock per key. A key's lock is dropped once no task
    holds or waits on it, so idle user ids do not accumulate.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _KeyLock] = {}

    def _get_lock(self, key: str) -> _KeyLock:
        if key not in self._locks:
            self._locks[key] = _KeyLock()
        return self._locks[key]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._get_lock(key)
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
