"""
In-process per-key locks.

Serializes work on the same trade, request, invite, pack bucket or owner
within one worker process. Cross-process safety comes from row locks and
compare-and-set updates in the database layer.

Lock order, to stay deadlock free when locks are nested:
entity keys (trade:, request:, invite:, pack:, pair keys) first, then
room-codes, then owner: keys. Keys passed together to `hold` are acquired
in sorted order.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

ROOM_CODES_KEY = "room-codes"


def trade_key(trade_id: int) -> str:
    return f"trade:{trade_id}"


def request_key(request_id: int) -> str:
    return f"request:{request_id}"


def invite_key(invite_id: int) -> str:
    return f"invite:{invite_id}"


def pack_key(user_id: str) -> str:
    return f"pack:{user_id}"


def owner_key(user_id: str) -> str:
    return f"owner:{user_id}"


def pair_key(prefix: str, user_id: str, other_id: str, ordered: bool = True) -> str:
    """Key for a pair of users; unordered pairs are normalized."""
    if not ordered:
        user_id, other_id = sorted((user_id, other_id))
    return f"{prefix}:{user_id}:{other_id}"


class KeyedLock:
    """A family of asyncio locks addressed by string keys."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Acquire every key (sorted, deduplicated) for the duration of the block."""
        ordered = sorted(set(keys))
        for key in ordered:
            self._refs[key] = self._refs.get(key, 0) + 1
            self._locks.setdefault(key, asyncio.Lock())

        acquired: list[str] = []
        try:
            for key in ordered:
                await self._locks[key].acquire()
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
            for key in ordered:
                self._refs[key] -= 1
                if self._refs[key] == 0:
                    del self._refs[key]
                    del self._locks[key]

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Shared by all services in the process so owner keys are honored across them
_keyed_lock: KeyedLock | None = None


def get_keyed_lock() -> KeyedLock:
    """Get the process-wide lock family."""
    global _keyed_lock
    if _keyed_lock is None:
        _keyed_lock = KeyedLock()
    return _keyed_lock


def reset_keyed_lock() -> None:
    """Reset the process-wide lock family (for testing)."""
    global _keyed_lock
    _keyed_lock = None
