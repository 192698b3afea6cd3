"""
Trade request negotiation.

A request is a one-sided proposal (offer and/or want, or a manual note)
from one user to another. Accepting it opens a private trade between the
two users; rejecting or cancelling it closes it. A request never leaves a
terminal status.

At most one pending request exists per ordered (from, to) pair for the
same wanted card, or for manual requests.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardswap.config import settings
from cardswap.db.operations import (
    create_trade,
    create_trade_request,
    find_pending_request,
    get_trade_request,
    get_user,
    is_unique_violation,
    list_requests_received,
    list_requests_sent,
    owned_quantity,
    set_request_status,
)
from cardswap.models.card import CardRef
from cardswap.models.db import PENDING_REQUEST_INDEX, TradeDB, TradeRequestDB
from cardswap.models.failure import (
    DuplicateRequestError,
    ForbiddenError,
    InsufficientOwnershipError,
    InvalidCardRefError,
    InvalidTransitionError,
    NotFoundError,
    RecipientNotFoundError,
    SelfTradeNotAllowedError,
)
from cardswap.models.trade import RequestStatus, TradeStatus, TradeType
from cardswap.services.capabilities import RoomCodeGenerator, random_room_code_generator
from cardswap.services.locks import (
    ROOM_CODES_KEY,
    KeyedLock,
    get_keyed_lock,
    pair_key,
    request_key,
)
from cardswap.services.notifications import (
    LoggingNotificationChannel,
    NotificationChannel,
    NotificationEvent,
    NotificationKind,
    publish_all,
)
from cardswap.services.pack_tokens import utcnow
from cardswap.services.trade_state import allocate_room_code, retry_room_code_clash

logger = logging.getLogger(__name__)

_VERBS = {
    RequestStatus.ACCEPTED: "accept",
    RequestStatus.REJECTED: "reject",
    RequestStatus.CANCELLED: "cancel",
}


class TradeRequestNegotiator:
    """Create, accept, reject and cancel trade requests."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLock | None = None,
        notifier: NotificationChannel | None = None,
        room_codes: RoomCodeGenerator | None = None,
        room_code_attempts: int | None = None,
        accept_status: TradeStatus | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = locks or get_keyed_lock()
        self.notifier = notifier or LoggingNotificationChannel()
        self.room_codes = room_codes or random_room_code_generator(settings.room_code_length)
        self.room_code_attempts = room_code_attempts or settings.room_code_max_attempts
        # Status of the trade opened by an accepted request
        self.accept_status = accept_status or TradeStatus(settings.trade_request_accept_status)
        self.clock = clock

    async def create(
        self,
        from_user_id: str,
        to_user_id: str,
        offer: CardRef | None = None,
        want: CardRef | None = None,
        is_manual: bool = False,
        note: str = "",
    ) -> TradeRequestDB:
        """
        Propose a trade to another user.

        The offered card, if any, must be owned by the sender now. It is
        checked again only when the resulting trade completes.

        Raises:
            SelfTradeNotAllowedError: if from and to are the same user
            RecipientNotFoundError: if the recipient does not exist
            InvalidCardRefError: if a card request names no wanted card
            DuplicateRequestError: if an equivalent request is pending
            InsufficientOwnershipError: if the sender lacks the offered cards
        """
        if from_user_id == to_user_id:
            raise SelfTradeNotAllowedError()
        if not is_manual and want is None:
            raise InvalidCardRefError("a card request must name the wanted card")

        want_card_id = None if is_manual else want.card_id

        try:
            async with self.locks.hold(pair_key("request", from_user_id, to_user_id)):
                async with self.session_factory() as session, session.begin():
                    if await get_user(session, to_user_id) is None:
                        raise RecipientNotFoundError(to_user_id)

                    existing = await find_pending_request(
                        session, from_user_id, to_user_id, is_manual, want_card_id
                    )
                    if existing is not None:
                        raise DuplicateRequestError(existing.id)

                    if offer is not None:
                        owned = await owned_quantity(session, from_user_id, offer.card_id)
                        if owned < offer.quantity:
                            raise InsufficientOwnershipError(
                                [(from_user_id, offer.card_id, offer.quantity, owned)]
                            )

                    request = await create_trade_request(
                        session,
                        from_user_id,
                        to_user_id,
                        offer,
                        want,
                        is_manual=is_manual,
                        note=note,
                    )
        except IntegrityError as exc:
            # Another worker committed an equivalent request after our check
            if not is_unique_violation(exc, PENDING_REQUEST_INDEX, "trade_requests.pending_key"):
                raise
            async with self.session_factory() as session:
                existing = await find_pending_request(
                    session, from_user_id, to_user_id, is_manual, want_card_id
                )
            if existing is None:
                raise
            raise DuplicateRequestError(existing.id) from exc

        logger.info(
            "TRADE_REQUEST_CREATED",
            extra={"request_id": request.id, "from": from_user_id, "to": to_user_id},
        )
        publish_all(
            self.notifier,
            [
                NotificationEvent(
                    kind=NotificationKind.TRADE_REQUEST_RECEIVED,
                    user_id=to_user_id,
                    title="New trade request",
                    message=f"{from_user_id} sent you a trade request.",
                    data={"request_id": request.id},
                )
            ],
        )
        return request

    async def accept(self, request_id: int, by_user_id: str) -> tuple[TradeRequestDB, TradeDB]:
        """
        Accept a pending request and open its private trade.

        Raises:
            NotFoundError, ForbiddenError
            InvalidTransitionError: if the request is no longer pending
            RoomCodeExhaustedError: if no free room code could be drawn
        """
        now = self.clock()

        async def open_trade() -> tuple[TradeRequestDB, TradeDB]:
            async with self.locks.hold(request_key(request_id), ROOM_CODES_KEY):
                async with self.session_factory() as session, session.begin():
                    request = await self._load(
                        session, request_id, by_user_id, "to_user_id", RequestStatus.ACCEPTED
                    )

                    code = await allocate_room_code(
                        session, self.room_codes, self.room_code_attempts
                    )
                    trade = await create_trade(
                        session,
                        request.from_user_id,
                        request.to_user_id,
                        _refs(request.offer_card_id, request.offer_quantity),
                        _refs(request.want_card_id, request.want_quantity),
                        trade_type=TradeType.PRIVATE,
                        status=self.accept_status,
                        private_room_code=code,
                        request_id=request.id,
                    )

                    await self._finish(
                        session,
                        request,
                        RequestStatus.ACCEPTED,
                        trade_id=trade.id,
                        finished_at=now,
                    )
            return request, trade

        request, trade = await retry_room_code_clash(open_trade, self.room_code_attempts)

        logger.info(
            "TRADE_REQUEST_ACCEPTED",
            extra={"request_id": request_id, "trade_id": trade.id, "trade_status": trade.status},
        )
        publish_all(
            self.notifier,
            [
                NotificationEvent(
                    kind=NotificationKind.TRADE_REQUEST_ACCEPTED,
                    user_id=request.from_user_id,
                    title="Trade request accepted",
                    message=f"{by_user_id} accepted your trade request.",
                    data={"request_id": request_id, "trade_id": trade.id},
                )
            ],
        )
        return request, trade

    async def reject(self, request_id: int, by_user_id: str) -> TradeRequestDB:
        """Reject a pending request. Only the recipient may reject."""
        now = self.clock()
        async with self.locks.hold(request_key(request_id)):
            async with self.session_factory() as session, session.begin():
                request = await self._load(
                    session, request_id, by_user_id, "to_user_id", RequestStatus.REJECTED
                )
                await self._finish(session, request, RequestStatus.REJECTED, finished_at=now)

        logger.info("TRADE_REQUEST_REJECTED", extra={"request_id": request_id})
        publish_all(
            self.notifier,
            [
                NotificationEvent(
                    kind=NotificationKind.TRADE_REQUEST_REJECTED,
                    user_id=request.from_user_id,
                    title="Trade request rejected",
                    message=f"{by_user_id} rejected your trade request.",
                    data={"request_id": request_id},
                )
            ],
        )
        return request

    async def cancel(self, request_id: int, by_user_id: str) -> TradeRequestDB:
        """Withdraw a pending request. Only the sender may cancel."""
        now = self.clock()
        async with self.locks.hold(request_key(request_id)):
            async with self.session_factory() as session, session.begin():
                request = await self._load(
                    session, request_id, by_user_id, "from_user_id", RequestStatus.CANCELLED
                )
                await self._finish(session, request, RequestStatus.CANCELLED, finished_at=now)

        logger.info("TRADE_REQUEST_CANCELLED", extra={"request_id": request_id})
        return request

    async def list_received(self, user_id: str) -> list[TradeRequestDB]:
        async with self.session_factory() as session:
            return await list_requests_received(session, user_id)

    async def list_sent(self, user_id: str) -> list[TradeRequestDB]:
        async with self.session_factory() as session:
            return await list_requests_sent(session, user_id)

    async def _load(
        self,
        session: AsyncSession,
        request_id: int,
        actor_id: str,
        allowed_field: str,
        target: RequestStatus,
    ) -> TradeRequestDB:
        request = await get_trade_request(session, request_id, for_update=True)
        if request is None:
            raise NotFoundError("Trade request", request_id)
        if getattr(request, allowed_field) != actor_id:
            raise ForbiddenError(actor_id, f"{_VERBS[target]} this trade request")
        if request.status != RequestStatus.PENDING.value:
            raise InvalidTransitionError("trade request", request.status, target.value)
        return request

    async def _finish(
        self,
        session: AsyncSession,
        request: TradeRequestDB,
        target: RequestStatus,
        trade_id: int | None = None,
        finished_at: datetime | None = None,
    ) -> None:
        won = await set_request_status(
            session,
            request.id,
            RequestStatus.PENDING,
            target,
            trade_id=trade_id,
            finished_at=finished_at,
        )
        if not won:
            raise InvalidTransitionError("trade request", RequestStatus.PENDING.value, target.value)
        await session.refresh(request)


def _refs(card_id: str | None, quantity: int | None) -> list[CardRef]:
    if card_id is None:
        return []
    return [CardRef(card_id, quantity or 1)]
