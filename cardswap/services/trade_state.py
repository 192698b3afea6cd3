"""
Trade state machine.

    pending  -> accepted | rejected | cancelled
    accepted -> completed | cancelled

INVARIANTS:
- Only a participant may move a trade; anyone else gets Forbidden,
  whatever transition they asked for
- Nothing leaves a terminal status; asking for it is an error, not a no-op
- Status changes are compare-and-set on the previous status, under the
  trade's lock, so a trade settles at most once
- Only `completed` settles cards, and a failed settlement leaves the
  status untouched
- A private room code is unique among pending/accepted trades only;
  rejecting or cancelling a trade frees its code
"""

import logging
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from datetime import datetime
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardswap.config import settings
from cardswap.db.operations import (
    create_trade,
    get_trade,
    get_trade_by_room_code,
    get_user,
    is_unique_violation,
    list_trades,
    room_code_in_use,
    set_trade_cards,
    set_trade_status,
)
from cardswap.models.card import CardRef
from cardswap.models.db import ACTIVE_ROOM_CODE_INDEX, TradeDB
from cardswap.models.failure import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RecipientNotFoundError,
    RoomCodeExhaustedError,
    SelfTradeNotAllowedError,
)
from cardswap.models.trade import TradeStatus, TradeType, can_transition
from cardswap.services.capabilities import RoomCodeGenerator, random_room_code_generator
from cardswap.services.locks import ROOM_CODES_KEY, KeyedLock, get_keyed_lock, trade_key
from cardswap.services.notifications import (
    LoggingNotificationChannel,
    NotificationChannel,
    NotificationEvent,
    NotificationKind,
    publish_all,
)
from cardswap.services.ownership_transfer import owner_keys_for, settle
from cardswap.services.pack_tokens import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSITION_NOTIFICATIONS: dict[TradeStatus, tuple[NotificationKind, str]] = {
    TradeStatus.ACCEPTED: (NotificationKind.TRADE_ACCEPTED, "Trade accepted"),
    TradeStatus.REJECTED: (NotificationKind.TRADE_REJECTED, "Trade rejected"),
    TradeStatus.CANCELLED: (NotificationKind.TRADE_CANCELLED, "Trade cancelled"),
    TradeStatus.COMPLETED: (NotificationKind.TRADE_COMPLETED, "Trade completed"),
}


async def allocate_room_code(
    session: AsyncSession,
    generate: RoomCodeGenerator,
    max_attempts: int,
) -> str:
    """
    Draw room codes until one is free among active trades.

    The caller must hold ROOM_CODES_KEY until its transaction commits.

    Raises:
        RoomCodeExhaustedError: if every attempt collided
    """
    for attempt in range(1, max_attempts + 1):
        code = generate()
        if not await room_code_in_use(session, code):
            return code
        logger.debug("ROOM_CODE_COLLISION", extra={"attempt": attempt})
    logger.warning("ROOM_CODE_EXHAUSTED", extra={"attempts": max_attempts})
    raise RoomCodeExhaustedError(max_attempts)


async def retry_room_code_clash(open_room: Callable[[], Awaitable[T]], attempts: int) -> T:
    """
    Run a unit of work that opens a private trade, again if its code clashed.

    ROOM_CODES_KEY only serializes allocation within this process. A code
    committed by another worker after our check makes the insert violate
    the active room code index; the unit of work has then rolled back and
    is run again with a fresh draw.

    Raises:
        RoomCodeExhaustedError: if every attempt clashed
    """
    for attempt in range(1, attempts + 1):
        try:
            return await open_room()
        except IntegrityError as exc:
            if not is_unique_violation(exc, ACTIVE_ROOM_CODE_INDEX, "trades.private_room_code"):
                raise
            logger.info("ROOM_CODE_CLASH", extra={"attempt": attempt})
    logger.warning("ROOM_CODE_EXHAUSTED", extra={"attempts": attempts})
    raise RoomCodeExhaustedError(attempts)


def require_participant(trade: TradeDB, actor_id: str, action: str) -> None:
    if actor_id not in trade.participants():
        raise ForbiddenError(actor_id, action)


def require_viewer(trade: TradeDB, viewer_id: str | None) -> None:
    """Private trades and their room codes are visible to participants only."""
    if viewer_id is not None and trade.trade_type == TradeType.PRIVATE.value:
        require_participant(trade, viewer_id, "view this trade room")


class TradeStateMachine:
    """Trade creation, lookups and lifecycle transitions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLock | None = None,
        notifier: NotificationChannel | None = None,
        room_codes: RoomCodeGenerator | None = None,
        room_code_attempts: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = locks or get_keyed_lock()
        self.notifier = notifier or LoggingNotificationChannel()
        self.room_codes = room_codes or random_room_code_generator(settings.room_code_length)
        self.room_code_attempts = room_code_attempts or settings.room_code_max_attempts
        self.clock = clock

    async def create_trade(
        self,
        initiator_id: str,
        receiver_id: str,
        initiator_cards: list[CardRef],
        receiver_cards: list[CardRef],
        trade_type: TradeType = TradeType.PUBLIC,
    ) -> TradeDB:
        """
        Open a trade directly.

        Private trades get a fresh room code.

        Raises:
            SelfTradeNotAllowedError: if both sides are the same user
            RecipientNotFoundError: if the receiver does not exist
        """
        if initiator_id == receiver_id:
            raise SelfTradeNotAllowedError()

        private = trade_type is TradeType.PRIVATE

        async def open_trade() -> TradeDB:
            async with self.locks.hold(*((ROOM_CODES_KEY,) if private else ())):
                async with self.session_factory() as session, session.begin():
                    if await get_user(session, receiver_id) is None:
                        raise RecipientNotFoundError(receiver_id)

                    code = None
                    if private:
                        code = await allocate_room_code(
                            session, self.room_codes, self.room_code_attempts
                        )

                    return await create_trade(
                        session,
                        initiator_id,
                        receiver_id,
                        initiator_cards,
                        receiver_cards,
                        trade_type=trade_type,
                        private_room_code=code,
                    )

        if private:
            trade = await retry_room_code_clash(open_trade, self.room_code_attempts)
        else:
            trade = await open_trade()

        logger.info(
            "TRADE_CREATED",
            extra={"trade_id": trade.id, "trade_type": trade.trade_type},
        )
        return trade

    async def transition(self, trade_id: int, actor_id: str, target: TradeStatus) -> TradeDB:
        """
        Move a trade to `target`.

        Raises:
            NotFoundError: if the trade does not exist
            ForbiddenError: if the actor is not a participant
            InvalidTransitionError: if the move is not allowed, including a
                second completion racing the first
            InsufficientOwnershipError: if completing and the cards are no
                longer owned; the trade keeps its status
        """
        async with self.locks.hold(trade_key(trade_id)), AsyncExitStack() as owner_locks:
            async with self.session_factory() as session, session.begin():
                trade = await get_trade(session, trade_id, for_update=True)
                if trade is None:
                    raise NotFoundError("Trade", trade_id)
                require_participant(trade, actor_id, "change this trade")

                current = TradeStatus(trade.status)
                if not can_transition(current, target):
                    raise InvalidTransitionError("trade", current.value, target.value)

                completed_at = None
                if target is TradeStatus.COMPLETED:
                    # Owner locks are released by the exit stack after commit
                    await owner_locks.enter_async_context(
                        self.locks.hold(*owner_keys_for(trade))
                    )
                    await settle(session, trade)
                    completed_at = self.clock()

                won = await set_trade_status(
                    session, trade_id, current, target, completed_at=completed_at
                )
                if not won:
                    raise InvalidTransitionError("trade", current.value, target.value)
                await session.refresh(trade)

        logger.info(
            "TRADE_TRANSITION",
            extra={
                "trade_id": trade_id,
                "from_status": current.value,
                "to_status": target.value,
                "actor": actor_id,
            },
        )

        kind, title = _TRANSITION_NOTIFICATIONS[target]
        counterparty = (
            trade.receiver_user_id if actor_id == trade.initiator_user_id else trade.initiator_user_id
        )
        publish_all(
            self.notifier,
            [
                NotificationEvent(
                    kind=kind,
                    user_id=counterparty,
                    title=title,
                    message=f"Trade #{trade_id} is now {target.value}.",
                    data={"trade_id": trade_id, "private_room_code": trade.private_room_code},
                )
            ],
        )
        return trade

    async def update_cards(self, trade_id: int, actor_id: str, cards: list[CardRef]) -> TradeDB:
        """
        Replace the actor's own side of a pending trade.

        Raises:
            NotFoundError, ForbiddenError
            InvalidTransitionError: if the trade is no longer pending
        """
        async with self.locks.hold(trade_key(trade_id)):
            async with self.session_factory() as session, session.begin():
                trade = await get_trade(session, trade_id, for_update=True)
                if trade is None:
                    raise NotFoundError("Trade", trade_id)
                require_participant(trade, actor_id, "change this trade")

                if trade.status != TradeStatus.PENDING.value:
                    raise InvalidTransitionError(
                        "trade",
                        trade.status,
                        TradeStatus.PENDING.value,
                        message="Cards can only be changed while the trade is pending.",
                    )

                side = "initiator" if actor_id == trade.initiator_user_id else "receiver"
                await set_trade_cards(session, trade, side, cards)
        return trade

    async def get_trade(self, trade_id: int, viewer_id: str | None = None) -> TradeDB:
        """
        Look up a trade. With a viewer, private trades are only shown to
        their participants.
        """
        async with self.session_factory() as session:
            trade = await get_trade(session, trade_id)
        if trade is None:
            raise NotFoundError("Trade", trade_id)
        require_viewer(trade, viewer_id)
        return trade

    async def get_trade_by_room_code(self, code: str, viewer_id: str | None = None) -> TradeDB:
        async with self.session_factory() as session:
            trade = await get_trade_by_room_code(session, code)
        if trade is None:
            raise NotFoundError("Trade room", code)
        require_viewer(trade, viewer_id)
        return trade

    async def list_trades(
        self,
        status: TradeStatus | None = None,
        trade_type: TradeType | None = None,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 20,
        viewer_id: str | None = None,
    ) -> tuple[list[TradeDB], int]:
        """List trades. With a viewer, other users' private trades are left out."""
        async with self.session_factory() as session:
            return await list_trades(
                session,
                status=status,
                trade_type=trade_type,
                user_id=user_id,
                visible_to=viewer_id,
                page=page,
                limit=limit,
            )
