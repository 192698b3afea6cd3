"""
Database CRUD operations.

Provides async functions for users, the card catalog, ownership records,
trades, trade requests, room invites and pack token state. Every function
works inside the caller's session and only flushes; committing is the
caller's unit of work.

Status changes go through compare-and-set updates: the row is only
updated if it still has the expected status, and the caller learns
whether it won.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cardswap.models.card import Bucket, Card, CardRef, refs_to_json
from cardswap.models.db import (
    Base,
    CardDB,
    CardOwnershipDB,
    FriendshipDB,
    FriendTradeRoomInviteDB,
    PackOpenDB,
    PackTokenStateDB,
    TradeDB,
    TradeRequestDB,
    UserDB,
)
from cardswap.models.failure import InsufficientOwnershipError
from cardswap.models.trade import (
    ACTIVE_TRADE_STATUSES,
    InviteStatus,
    RequestStatus,
    TradeStatus,
    TradeType,
    invite_pending_key,
    request_pending_key,
)

_ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_TRADE_STATUSES]

_DIALECT_INSERTS = {"postgresql": postgresql_insert, "sqlite": sqlite_insert}


def is_unique_violation(exc: IntegrityError, index_name: str, column: str) -> bool:
    """
    Check whether an IntegrityError came from a given unique index.

    PostgreSQL names the index; SQLite names the indexed table.column.
    """
    message = str(exc.orig)
    return index_name in message or column in message


async def _compare_and_set(
    session: AsyncSession,
    model: type[Base],
    entity_id: int,
    expected: str,
    target: str,
    **values: Any,
) -> bool:
    """
    Move a row from `expected` to `target` status.

    Returns False if the row no longer has the expected status.
    """
    result = await session.execute(
        update(model)
        .where(model.id == entity_id, model.status == expected)  # type: ignore[attr-defined]
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    # rowcount is available on UPDATE results; type stubs incomplete for async
    return int(result.rowcount) == 1  # type: ignore[attr-defined]


# --- User Operations ---


async def get_user(session: AsyncSession, user_id: str) -> UserDB | None:
    """Get a user by id. Returns None if unknown."""
    return await session.get(UserDB, user_id)


async def create_user(session: AsyncSession, user_id: str, username: str) -> UserDB:
    """
    Register a user id in the directory.

    Raises IntegrityError if the id or username already exists.
    """
    user = UserDB(id=user_id, username=username)
    session.add(user)
    await session.flush()
    return user


async def add_friendship(session: AsyncSession, user_id: str, friend_id: str) -> None:
    """Record a mutual friendship (both directed edges)."""
    for a, b in ((user_id, friend_id), (friend_id, user_id)):
        existing = await session.execute(
            select(FriendshipDB.id).where(FriendshipDB.user_id == a, FriendshipDB.friend_id == b)
        )
        if existing.scalar_one_or_none() is None:
            session.add(FriendshipDB(user_id=a, friend_id=b))
    await session.flush()


async def are_friends(session: AsyncSession, user_id: str, other_id: str) -> bool:
    """True if both users list each other as friends."""
    result = await session.execute(
        select(func.count())
        .select_from(FriendshipDB)
        .where(
            or_(
                (FriendshipDB.user_id == user_id) & (FriendshipDB.friend_id == other_id),
                (FriendshipDB.user_id == other_id) & (FriendshipDB.friend_id == user_id),
            )
        )
    )
    return int(result.scalar_one()) == 2


# --- Catalog Operations ---


async def upsert_card(
    session: AsyncSession,
    card_id: str,
    name: str,
    rarity: str | None,
    set_id: str | None = None,
) -> CardDB:
    """Insert or update a catalog card."""
    card = await session.get(CardDB, card_id)
    if card is None:
        card = CardDB(id=card_id, name=name, rarity=rarity, set_id=set_id)
        session.add(card)
    else:
        card.name = name
        card.rarity = rarity
        card.set_id = set_id
    await session.flush()
    return card


async def get_card_pool(session: AsyncSession, set_id: str | None = None) -> list[Card]:
    """Cards eligible for a pack, optionally limited to one set."""
    query = select(CardDB).order_by(CardDB.id)
    if set_id is not None:
        query = query.where(CardDB.set_id == set_id)
    result = await session.execute(query)
    return [Card(card_id=c.id, name=c.name, rarity=c.rarity) for c in result.scalars().all()]


# --- Ownership Operations ---


async def get_ownership(
    session: AsyncSession,
    owner_id: str,
    card_id: str,
    bucket: Bucket = Bucket.COLLECTION,
    for_update: bool = False,
) -> CardOwnershipDB | None:
    """
    Get one ownership record.

    With for_update the row is locked until the transaction ends
    (ignored by SQLite, which locks the whole database on write).
    """
    query = select(CardOwnershipDB).where(
        CardOwnershipDB.owner_id == owner_id,
        CardOwnershipDB.card_id == card_id,
        CardOwnershipDB.bucket == bucket.value,
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def owned_quantity(
    session: AsyncSession,
    owner_id: str,
    card_id: str,
    bucket: Bucket = Bucket.COLLECTION,
    for_update: bool = False,
) -> int:
    """Quantity held, 0 when no record exists."""
    record = await get_ownership(session, owner_id, card_id, bucket, for_update=for_update)
    return record.quantity if record else 0


async def list_ownership(
    session: AsyncSession, owner_id: str, bucket: Bucket | None = None
) -> list[CardOwnershipDB]:
    """All ownership records of a user, optionally for one bucket."""
    query = select(CardOwnershipDB).where(CardOwnershipDB.owner_id == owner_id)
    if bucket is not None:
        query = query.where(CardOwnershipDB.bucket == bucket.value)
    result = await session.execute(query.order_by(CardOwnershipDB.card_id))
    return list(result.scalars().all())


async def add_cards(
    session: AsyncSession,
    owner_id: str,
    card_id: str,
    quantity: int,
    bucket: Bucket = Bucket.COLLECTION,
    tradeable: bool | None = None,
) -> CardOwnershipDB:
    """
    Upsert-increment an ownership record.

    tradeable is only changed when given.
    """
    if quantity < 1:
        msg = f"Quantity to add must be positive, got {quantity}"
        raise ValueError(msg)

    record = await get_ownership(session, owner_id, card_id, bucket, for_update=True)
    if record is None:
        record = CardOwnershipDB(
            owner_id=owner_id,
            card_id=card_id,
            bucket=bucket.value,
            quantity=quantity,
            tradeable=bool(tradeable),
        )
        session.add(record)
    else:
        record.quantity += quantity
        if tradeable is not None:
            record.tradeable = tradeable
    await session.flush()
    return record


async def remove_cards(
    session: AsyncSession,
    owner_id: str,
    card_id: str,
    quantity: int,
    bucket: Bucket = Bucket.COLLECTION,
) -> int:
    """
    Decrement an ownership record, deleting it at zero.

    Returns the remaining quantity.

    Raises:
        InsufficientOwnershipError: if fewer than `quantity` copies are held
    """
    record = await get_ownership(session, owner_id, card_id, bucket, for_update=True)
    owned = record.quantity if record else 0
    if record is None or owned < quantity:
        raise InsufficientOwnershipError([(owner_id, card_id, quantity, owned)])

    remaining = owned - quantity
    if remaining == 0:
        await session.delete(record)
    else:
        record.quantity = remaining
    await session.flush()
    return remaining


# --- Trade Operations ---


async def create_trade(
    session: AsyncSession,
    initiator_user_id: str,
    receiver_user_id: str,
    initiator_cards: list[CardRef],
    receiver_cards: list[CardRef],
    trade_type: TradeType = TradeType.PUBLIC,
    status: TradeStatus = TradeStatus.PENDING,
    private_room_code: str | None = None,
    request_id: int | None = None,
) -> TradeDB:
    """Insert a new trade."""
    trade = TradeDB(
        initiator_user_id=initiator_user_id,
        receiver_user_id=receiver_user_id,
        initiator_cards=refs_to_json(initiator_cards),
        receiver_cards=refs_to_json(receiver_cards),
        trade_type=trade_type.value,
        status=status.value,
        private_room_code=private_room_code,
        request_id=request_id,
    )
    session.add(trade)
    await session.flush()
    return trade


async def get_trade(
    session: AsyncSession, trade_id: int, for_update: bool = False
) -> TradeDB | None:
    """Get a trade by id. Returns None if not found."""
    query = select(TradeDB).where(TradeDB.id == trade_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_trade_by_room_code(session: AsyncSession, code: str) -> TradeDB | None:
    """
    Find the trade behind a private room code.

    A code can be reused once its trade is terminal, so the active trade
    wins; otherwise the most recent one is returned.
    """
    result = await session.execute(
        select(TradeDB)
        .where(TradeDB.private_room_code == code, TradeDB.status.in_(_ACTIVE_STATUS_VALUES))
        .limit(1)
    )
    active = result.scalar_one_or_none()
    if active is not None:
        return active

    result = await session.execute(
        select(TradeDB).where(TradeDB.private_room_code == code).order_by(TradeDB.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def room_code_in_use(session: AsyncSession, code: str) -> bool:
    """True if a non-terminal trade holds this room code."""
    result = await session.execute(
        select(func.count())
        .select_from(TradeDB)
        .where(TradeDB.private_room_code == code, TradeDB.status.in_(_ACTIVE_STATUS_VALUES))
    )
    return int(result.scalar_one()) > 0


async def list_trades(
    session: AsyncSession,
    status: TradeStatus | None = None,
    trade_type: TradeType | None = None,
    user_id: str | None = None,
    page: int = 1,
    limit: int = 20,
    visible_to: str | None = None,
) -> tuple[list[TradeDB], int]:
    """
    List trades newest first.

    With visible_to, private trades are limited to those the user is part of.

    Returns:
        Tuple of (trades on this page, total matching trades).
    """
    conditions = []
    if status is not None:
        conditions.append(TradeDB.status == status.value)
    if trade_type is not None:
        conditions.append(TradeDB.trade_type == trade_type.value)
    if user_id is not None:
        conditions.append(
            or_(TradeDB.initiator_user_id == user_id, TradeDB.receiver_user_id == user_id)
        )
    if visible_to is not None:
        conditions.append(
            or_(
                TradeDB.trade_type != TradeType.PRIVATE.value,
                TradeDB.initiator_user_id == visible_to,
                TradeDB.receiver_user_id == visible_to,
            )
        )

    total_result = await session.execute(
        select(func.count()).select_from(TradeDB).where(*conditions)
    )
    total = int(total_result.scalar_one())

    result = await session.execute(
        select(TradeDB)
        .where(*conditions)
        .order_by(TradeDB.created_at.desc(), TradeDB.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def set_trade_status(
    session: AsyncSession,
    trade_id: int,
    expected: TradeStatus,
    target: TradeStatus,
    completed_at: datetime | None = None,
) -> bool:
    """Compare-and-set a trade's status."""
    values: dict[str, Any] = {}
    if completed_at is not None:
        values["completed_at"] = completed_at
    return await _compare_and_set(
        session, TradeDB, trade_id, expected.value, target.value, **values
    )


async def set_trade_cards(
    session: AsyncSession,
    trade: TradeDB,
    side: str,
    cards: list[CardRef],
) -> TradeDB:
    """Replace one side's card list ("initiator" or "receiver")."""
    if side == "initiator":
        trade.initiator_cards = refs_to_json(cards)
    elif side == "receiver":
        trade.receiver_cards = refs_to_json(cards)
    else:
        msg = f"Unknown trade side '{side}'"
        raise ValueError(msg)
    await session.flush()
    return trade


# --- Trade Request Operations ---


async def create_trade_request(
    session: AsyncSession,
    from_user_id: str,
    to_user_id: str,
    offer: CardRef | None,
    want: CardRef | None,
    is_manual: bool = False,
    note: str = "",
) -> TradeRequestDB:
    """Insert a pending trade request."""
    request = TradeRequestDB(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        offer_card_id=offer.card_id if offer else None,
        offer_quantity=offer.quantity if offer else None,
        want_card_id=want.card_id if want else None,
        want_quantity=want.quantity if want else None,
        is_manual=is_manual,
        note=note,
        status=RequestStatus.PENDING.value,
        pending_key=request_pending_key(
            from_user_id, to_user_id, is_manual, want.card_id if want else None
        ),
    )
    session.add(request)
    await session.flush()
    return request


async def get_trade_request(
    session: AsyncSession, request_id: int, for_update: bool = False
) -> TradeRequestDB | None:
    """Get a trade request by id."""
    query = select(TradeRequestDB).where(TradeRequestDB.id == request_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def find_pending_request(
    session: AsyncSession,
    from_user_id: str,
    to_user_id: str,
    is_manual: bool,
    want_card_id: str | None,
) -> TradeRequestDB | None:
    """
    Find a pending request equivalent to a new proposal.

    Manual requests are equivalent per ordered pair; card requests also
    need the same wanted card.
    """
    result = await session.execute(
        select(TradeRequestDB).where(
            TradeRequestDB.pending_key
            == request_pending_key(from_user_id, to_user_id, is_manual, want_card_id),
            TradeRequestDB.status == RequestStatus.PENDING.value,
        )
    )
    return result.scalar_one_or_none()


async def list_requests_received(session: AsyncSession, user_id: str) -> list[TradeRequestDB]:
    """Requests addressed to a user, newest first."""
    result = await session.execute(
        select(TradeRequestDB)
        .where(TradeRequestDB.to_user_id == user_id)
        .order_by(TradeRequestDB.created_at.desc(), TradeRequestDB.id.desc())
    )
    return list(result.scalars().all())


async def list_requests_sent(session: AsyncSession, user_id: str) -> list[TradeRequestDB]:
    """Requests sent by a user, newest first."""
    result = await session.execute(
        select(TradeRequestDB)
        .where(TradeRequestDB.from_user_id == user_id)
        .order_by(TradeRequestDB.created_at.desc(), TradeRequestDB.id.desc())
    )
    return list(result.scalars().all())


async def set_request_status(
    session: AsyncSession,
    request_id: int,
    expected: RequestStatus,
    target: RequestStatus,
    trade_id: int | None = None,
    finished_at: datetime | None = None,
) -> bool:
    """Compare-and-set a trade request's status."""
    values: dict[str, Any] = {}
    if trade_id is not None:
        values["trade_id"] = trade_id
    if finished_at is not None:
        values["finished_at"] = finished_at
    return await _compare_and_set(
        session, TradeRequestDB, request_id, expected.value, target.value, **values
    )


# --- Friend Trade Room Invite Operations ---


async def create_invite(
    session: AsyncSession, from_user_id: str, to_user_id: str
) -> FriendTradeRoomInviteDB:
    """Insert a pending room invite."""
    invite = FriendTradeRoomInviteDB(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        status=InviteStatus.PENDING.value,
        pending_key=invite_pending_key(from_user_id, to_user_id),
    )
    session.add(invite)
    await session.flush()
    return invite


async def get_invite(
    session: AsyncSession, invite_id: int, for_update: bool = False
) -> FriendTradeRoomInviteDB | None:
    """Get a room invite by id."""
    query = select(FriendTradeRoomInviteDB).where(FriendTradeRoomInviteDB.id == invite_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def find_pending_invite(
    session: AsyncSession, user_id: str, other_id: str
) -> FriendTradeRoomInviteDB | None:
    """Find a pending invite between two users, in either direction."""
    result = await session.execute(
        select(FriendTradeRoomInviteDB).where(
            FriendTradeRoomInviteDB.pending_key == invite_pending_key(user_id, other_id),
            FriendTradeRoomInviteDB.status == InviteStatus.PENDING.value,
        )
    )
    return result.scalar_one_or_none()


async def list_invites(
    session: AsyncSession, user_id: str
) -> tuple[list[FriendTradeRoomInviteDB], list[FriendTradeRoomInviteDB]]:
    """
    Invites involving a user, newest first.

    Returns:
        Tuple of (received, sent).
    """
    order = (FriendTradeRoomInviteDB.created_at.desc(), FriendTradeRoomInviteDB.id.desc())
    received = await session.execute(
        select(FriendTradeRoomInviteDB)
        .where(FriendTradeRoomInviteDB.to_user_id == user_id)
        .order_by(*order)
    )
    sent = await session.execute(
        select(FriendTradeRoomInviteDB)
        .where(FriendTradeRoomInviteDB.from_user_id == user_id)
        .order_by(*order)
    )
    return list(received.scalars().all()), list(sent.scalars().all())


async def set_invite_status(
    session: AsyncSession,
    invite_id: int,
    expected: InviteStatus,
    target: InviteStatus,
    **values: Any,
) -> bool:
    """Compare-and-set a room invite's status."""
    return await _compare_and_set(
        session, FriendTradeRoomInviteDB, invite_id, expected.value, target.value, **values
    )


# --- Pack Operations ---


async def get_pack_state(
    session: AsyncSession, user_id: str, for_update: bool = False
) -> PackTokenStateDB | None:
    """Get a user's stored token bucket, None if never initialized."""
    query = select(PackTokenStateDB).where(PackTokenStateDB.user_id == user_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def init_pack_state(
    session: AsyncSession, user_id: str, tokens: int, last_refill_at: datetime
) -> PackTokenStateDB:
    """
    Create a user's token bucket unless one exists, then lock and return it.

    A concurrent first insert from another worker wins silently; its row is
    returned instead of ours.
    """
    insert = _DIALECT_INSERTS[session.bind.dialect.name]
    await session.execute(
        insert(PackTokenStateDB)
        .values(user_id=user_id, tokens=tokens, last_refill_at=last_refill_at)
        .on_conflict_do_nothing(index_elements=[PackTokenStateDB.user_id])
    )
    state = await get_pack_state(session, user_id, for_update=True)
    if state is None:
        msg = f"pack token state for {user_id} vanished after insert"
        raise RuntimeError(msg)
    return state


async def save_pack_state(
    session: AsyncSession, user_id: str, tokens: int, last_refill_at: datetime
) -> PackTokenStateDB:
    """Insert or update a user's token bucket."""
    state = await get_pack_state(session, user_id, for_update=True)
    if state is None:
        state = await init_pack_state(session, user_id, tokens, last_refill_at)
    state.tokens = tokens
    state.last_refill_at = last_refill_at
    await session.flush()
    return state


async def record_pack_open(
    session: AsyncSession, user_id: str, card_ids: list[str], opened_at: datetime
) -> PackOpenDB:
    """Append a pack opening to the audit log."""
    record = PackOpenDB(user_id=user_id, card_ids=card_ids, opened_at=opened_at)
    session.add(record)
    await session.flush()
    return record


async def count_pack_opens_since(session: AsyncSession, user_id: str, since: datetime) -> int:
    """Number of packs a user opened at or after `since`."""
    result = await session.execute(
        select(func.count())
        .select_from(PackOpenDB)
        .where(PackOpenDB.user_id == user_id, PackOpenDB.opened_at >= since)
    )
    return int(result.scalar_one())
