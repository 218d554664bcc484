"""Process-wide asyncio locks keyed by string.

Entries exist only while some task holds or waits on the key, so the map
stays bounded by the number of keys in active use.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

_locks: dict[str, asyncio.Lock] = {}
_holders: dict[str, int] = {}


@asynccontextmanager
async def keyed_lock(key: str) -> AsyncIterator[None]:
    """Serialize every block entered with the same key in this process."""
    lock = _locks.get(key)
    if lock is None:
        lock = _locks[key] = asyncio.Lock()
    _holders[key] = _holders.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _holders[key] -= 1
        if _holders[key] == 0:
            del _holders[key]
            del _locks[key]


def active_lock_keys() -> list[str]:
    return sorted(_locks)
