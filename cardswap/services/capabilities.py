"""
Boundary capabilities consumed by the trading core.

The friend graph and room code generation are owned elsewhere; the core
only calls them through these small interfaces so tests can swap them.
"""

import secrets
import string
from collections.abc import Callable
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from cardswap.db.operations import are_friends

ROOM_CODE_ALPHABET = string.ascii_letters + string.digits

RoomCodeGenerator = Callable[[], str]


class FriendGraph(Protocol):
    async def are_friends(self, session: AsyncSession, user_id: str, other_id: str) -> bool: ...


class DatabaseFriendGraph:
    """Friend graph backed by the friendships table."""

    async def are_friends(self, session: AsyncSession, user_id: str, other_id: str) -> bool:
        return await are_friends(session, user_id, other_id)


def random_room_code_generator(length: int = 10) -> RoomCodeGenerator:
    """Room codes drawn uniformly from letters and digits."""

    def generate() -> str:
        return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))

    return generate
