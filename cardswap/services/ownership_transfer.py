"""
Ownership transfer: the card hand-off performed when a trade completes.

Settlement is verify-then-mutate. Every reference on both sides is checked
against freshly read collection quantities before any record changes, so
a failed settlement mutates nothing. Both directions are applied inside the
caller's transaction, which commits or rolls back as one unit.

Callers must hold the trade's lock and the owner locks of both
participants for the whole unit of work (see `owner_keys_for`).
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cardswap.db.operations import add_cards, owned_quantity, remove_cards
from cardswap.models.card import Bucket, aggregate_refs, refs_from_json
from cardswap.models.db import TradeDB
from cardswap.models.failure import InsufficientOwnershipError
from cardswap.services.locks import owner_key

logger = logging.getLogger(__name__)


def owner_keys_for(trade: TradeDB) -> tuple[str, str]:
    return owner_key(trade.initiator_user_id), owner_key(trade.receiver_user_id)


async def verify(session: AsyncSession, trade: TradeDB) -> list[tuple[str, str, int, int]]:
    """
    Check both sides of a trade against current collection quantities.

    Returns the shortfalls as (owner_id, card_id, required, owned); empty
    when the trade can settle.
    """
    shortfalls: list[tuple[str, str, int, int]] = []
    sides = (
        (trade.initiator_user_id, trade.initiator_cards),
        (trade.receiver_user_id, trade.receiver_cards),
    )
    for owner_id, cards in sides:
        for card_id, required in aggregate_refs(refs_from_json(cards)).items():
            owned = await owned_quantity(
                session, owner_id, card_id, Bucket.COLLECTION, for_update=True
            )
            if owned < required:
                shortfalls.append((owner_id, card_id, required, owned))
    return shortfalls


async def settle(session: AsyncSession, trade: TradeDB) -> None:
    """
    Move the trade's cards between its participants.

    Raises:
        InsufficientOwnershipError: if any reference is not covered; nothing
            has been mutated in that case
    """
    shortfalls = await verify(session, trade)
    if shortfalls:
        logger.info(
            "SETTLEMENT_REJECTED",
            extra={"trade_id": trade.id, "shortfalls": len(shortfalls)},
        )
        raise InsufficientOwnershipError(shortfalls)

    transfers = (
        (trade.initiator_user_id, trade.receiver_user_id, trade.initiator_cards),
        (trade.receiver_user_id, trade.initiator_user_id, trade.receiver_cards),
    )
    moved = 0
    for source, destination, cards in transfers:
        for card_id, quantity in aggregate_refs(refs_from_json(cards)).items():
            await remove_cards(session, source, card_id, quantity)
            await add_cards(session, destination, card_id, quantity, tradeable=False)
            moved += quantity

    logger.info(
        "TRADE_SETTLED",
        extra={
            "trade_id": trade.id,
            "initiator": trade.initiator_user_id,
            "receiver": trade.receiver_user_id,
            "cards_moved": moved,
        },
    )
