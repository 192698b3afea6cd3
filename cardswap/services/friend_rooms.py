"""
Friend-only private trade rooms.

An invite can only be sent to a mutual friend. Accepting it opens an empty
private trade with a room code that is unique among active trades; the
participants then fill in their sides through the trade itself.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardswap.config import settings
from cardswap.db.operations import (
    create_invite,
    create_trade,
    find_pending_invite,
    get_invite,
    get_user,
    is_unique_violation,
    list_invites,
    set_invite_status,
)
from cardswap.models.db import PENDING_INVITE_INDEX, FriendTradeRoomInviteDB, TradeDB
from cardswap.models.failure import (
    DuplicateInviteError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    NotFriendsError,
    RecipientNotFoundError,
    SelfInviteError,
)
from cardswap.models.trade import InviteStatus, TradeType
from cardswap.services.capabilities import (
    DatabaseFriendGraph,
    FriendGraph,
    RoomCodeGenerator,
    random_room_code_generator,
)
from cardswap.services.locks import (
    ROOM_CODES_KEY,
    KeyedLock,
    get_keyed_lock,
    invite_key,
    pair_key,
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


class FriendRoomInviteFlow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLock | None = None,
        notifier: NotificationChannel | None = None,
        friends: FriendGraph | None = None,
        room_codes: RoomCodeGenerator | None = None,
        room_code_attempts: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = locks or get_keyed_lock()
        self.notifier = notifier or LoggingNotificationChannel()
        self.friends = friends or DatabaseFriendGraph()
        self.room_codes = room_codes or random_room_code_generator(settings.room_code_length)
        self.room_code_attempts = room_code_attempts or settings.room_code_max_attempts
        self.clock = clock

    async def invite(self, from_user_id: str, to_user_id: str) -> FriendTradeRoomInviteDB:
        """
        Invite a friend into a private trade room.

        Raises:
            SelfInviteError: if inviting yourself
            RecipientNotFoundError: if the invitee does not exist
            NotFriendsError: if the two users are not mutual friends
            DuplicateInviteError: if an invite is pending in either direction
        """
        if from_user_id == to_user_id:
            raise SelfInviteError()

        try:
            async with self.locks.hold(pair_key("invite", from_user_id, to_user_id, ordered=False)):
                async with self.session_factory() as session, session.begin():
                    if await get_user(session, to_user_id) is None:
                        raise RecipientNotFoundError(to_user_id)
                    if not await self.friends.are_friends(session, from_user_id, to_user_id):
                        raise NotFriendsError(from_user_id, to_user_id)

                    existing = await find_pending_invite(session, from_user_id, to_user_id)
                    if existing is not None:
                        raise DuplicateInviteError(existing.id)

                    invite = await create_invite(session, from_user_id, to_user_id)
        except IntegrityError as exc:
            # Another worker committed the same pair after our check
            if not is_unique_violation(
                exc, PENDING_INVITE_INDEX, "friend_trade_room_invites.pending_key"
            ):
                raise
            async with self.session_factory() as session:
                existing = await find_pending_invite(session, from_user_id, to_user_id)
            if existing is None:
                raise
            raise DuplicateInviteError(existing.id) from exc

        logger.info(
            "ROOM_INVITE_CREATED",
            extra={"invite_id": invite.id, "from": from_user_id, "to": to_user_id},
        )
        publish_all(
            self.notifier,
            [
                NotificationEvent(
                    kind=NotificationKind.ROOM_INVITE_RECEIVED,
                    user_id=to_user_id,
                    title="Trade room invite",
                    message=f"{from_user_id} invited you to a private trade room.",
                    data={"invite_id": invite.id},
                )
            ],
        )
        return invite

    async def accept(
        self, invite_id: int, by_user_id: str
    ) -> tuple[FriendTradeRoomInviteDB, TradeDB]:
        """
        Accept a pending invite and open the room.

        The room code, the trade and the invite update commit together.
        """
        now = self.clock()

        async def open_room() -> tuple[FriendTradeRoomInviteDB, TradeDB]:
            async with self.locks.hold(invite_key(invite_id), ROOM_CODES_KEY):
                async with self.session_factory() as session, session.begin():
                    invite = await self._load(
                        session, invite_id, by_user_id, InviteStatus.ACCEPTED
                    )

                    code = await allocate_room_code(
                        session, self.room_codes, self.room_code_attempts
                    )
                    trade = await create_trade(
                        session,
                        invite.from_user_id,
                        invite.to_user_id,
                        [],
                        [],
                        trade_type=TradeType.PRIVATE,
                        private_room_code=code,
                    )

                    await self._finish(
                        session,
                        invite,
                        InviteStatus.ACCEPTED,
                        trade_id=trade.id,
                        private_room_code=code,
                        completed_at=now,
                    )
            return invite, trade

        invite, trade = await retry_room_code_clash(open_room, self.room_code_attempts)

        logger.info(
            "ROOM_INVITE_ACCEPTED",
            extra={"invite_id": invite_id, "trade_id": trade.id},
        )
        publish_all(
            self.notifier,
            [
                NotificationEvent(
                    kind=NotificationKind.ROOM_INVITE_ACCEPTED,
                    user_id=invite.from_user_id,
                    title="Trade room ready",
                    message=f"{by_user_id} accepted your trade room invite.",
                    data={
                        "invite_id": invite_id,
                        "trade_id": trade.id,
                        "private_room_code": trade.private_room_code,
                    },
                )
            ],
        )
        return invite, trade

    async def reject(self, invite_id: int, by_user_id: str) -> FriendTradeRoomInviteDB:
        """Reject a pending invite. Only the invitee may reject."""
        now = self.clock()
        async with self.locks.hold(invite_key(invite_id)):
            async with self.session_factory() as session, session.begin():
                invite = await self._load(session, invite_id, by_user_id, InviteStatus.REJECTED)
                await self._finish(session, invite, InviteStatus.REJECTED, completed_at=now)

        logger.info("ROOM_INVITE_REJECTED", extra={"invite_id": invite_id})
        publish_all(
            self.notifier,
            [
                NotificationEvent(
                    kind=NotificationKind.ROOM_INVITE_REJECTED,
                    user_id=invite.from_user_id,
                    title="Trade room invite declined",
                    message=f"{by_user_id} declined your trade room invite.",
                    data={"invite_id": invite_id},
                )
            ],
        )
        return invite

    async def list_invites(
        self, user_id: str
    ) -> tuple[list[FriendTradeRoomInviteDB], list[FriendTradeRoomInviteDB]]:
        """Returns (received, sent)."""
        async with self.session_factory() as session:
            return await list_invites(session, user_id)

    async def _load(
        self, session: AsyncSession, invite_id: int, actor_id: str, target: InviteStatus
    ) -> FriendTradeRoomInviteDB:
        invite = await get_invite(session, invite_id, for_update=True)
        if invite is None:
            raise NotFoundError("Trade room invite", invite_id)
        if invite.to_user_id != actor_id:
            raise ForbiddenError(actor_id, "answer this trade room invite")
        if invite.status != InviteStatus.PENDING.value:
            raise InvalidTransitionError("trade room invite", invite.status, target.value)
        return invite

    async def _finish(
        self,
        session: AsyncSession,
        invite: FriendTradeRoomInviteDB,
        target: InviteStatus,
        **values,
    ) -> None:
        won = await set_invite_status(session, invite.id, InviteStatus.PENDING, target, **values)
        if not won:
            raise InvalidTransitionError(
                "trade room invite", InviteStatus.PENDING.value, target.value
            )
        await session.refresh(invite)
