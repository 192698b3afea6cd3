"""
Pack opening: token consumption, pack selection and the card grant as one
unit of work.

Pack results only ever add to the opener's collection.
"""

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardswap.config import settings
from cardswap.db.operations import (
    add_cards,
    count_pack_opens_since,
    get_card_pool,
    record_pack_open,
)
from cardswap.models.card import Card, CardRef, Rarity, aggregate_refs
from cardswap.models.failure import NotFoundError
from cardswap.models.pack import TokenSnapshot
from cardswap.services.locks import KeyedLock, get_keyed_lock, owner_key, pack_key
from cardswap.services.pack_selector import select_pack
from cardswap.services.pack_tokens import PackTokenBucket, bucket_from_settings, utcnow

logger = logging.getLogger(__name__)

OPEN_COUNT_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class OpenedPack:
    cards: list[Card]
    tokens: TokenSnapshot


@dataclass(frozen=True)
class PackStatus:
    tokens: int
    capacity: int
    next_allowed_at: datetime | None
    opened_last_24h: int


class PackOpeningService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bucket: PackTokenBucket | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
        pack_size: int | None = None,
        min_hit_rarity: str | Rarity | None = None,
    ):
        self.session_factory = session_factory
        self.bucket = bucket or bucket_from_settings()
        self.locks = locks or get_keyed_lock()
        self.clock = clock
        self.rng = rng
        self.pack_size = pack_size or settings.pack_size
        self.min_hit_rarity = min_hit_rarity or settings.pack_min_hit_rarity

    async def open_pack(self, user_id: str, set_id: str | None = None) -> OpenedPack:
        """
        Open one pack for a user.

        Raises:
            NotFoundError: if the catalog has no cards for the requested pool
            RateLimitedError: if the user has no tokens left
        """
        now = self.clock()
        async with self.locks.hold(pack_key(user_id), owner_key(user_id)):
            async with self.session_factory() as session, session.begin():
                pool = await get_card_pool(session, set_id)
                if not pool:
                    raise NotFoundError("Card pool", set_id or "all")

                tokens = await self.bucket.consume_in(session, user_id, now)

                cards = select_pack(
                    pool,
                    pack_size=self.pack_size,
                    min_rarity=self.min_hit_rarity,
                    rng=self.rng,
                )
                granted = aggregate_refs([CardRef(card.card_id) for card in cards])
                for card_id, quantity in granted.items():
                    await add_cards(session, user_id, card_id, quantity)
                await record_pack_open(session, user_id, [c.card_id for c in cards], now)

        logger.info(
            "PACK_OPENED",
            extra={
                "user_id": user_id,
                "card_count": len(cards),
                "tokens_left": tokens.tokens,
            },
        )
        return OpenedPack(cards=cards, tokens=tokens)

    async def status(self, user_id: str) -> PackStatus:
        """Current tokens, next refill and packs opened in the last 24 hours."""
        now = self.clock()
        async with self.locks.hold(pack_key(user_id)):
            async with self.session_factory() as session, session.begin():
                snap = await self.bucket.snapshot(session, user_id, now)
                opened = await count_pack_opens_since(session, user_id, now - OPEN_COUNT_WINDOW)

        return PackStatus(
            tokens=snap.tokens,
            capacity=self.bucket.capacity,
            next_allowed_at=snap.next_allowed_at,
            opened_last_24h=opened,
        )
