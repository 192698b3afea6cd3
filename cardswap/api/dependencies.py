"""
FastAPI dependencies: caller identity and service construction.

Authentication is handled upstream; the gateway forwards the verified
user id in the `X-User-Id` header.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardswap.db.database import get_session_factory
from cardswap.models.failure import UnauthenticatedError
from cardswap.services.friend_rooms import FriendRoomInviteFlow
from cardswap.services.notifications import LoggingNotificationChannel, NotificationChannel
from cardswap.services.pack_opening import PackOpeningService
from cardswap.services.pack_tokens import utcnow
from cardswap.services.trade_requests import TradeRequestNegotiator
from cardswap.services.trade_state import TradeStateMachine

SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the calling user. Returns 401 if the header is missing."""
    if not x_user_id:
        raise UnauthenticatedError("X-User-Id")
    return x_user_id


CurrentUser = Annotated[str, Depends(get_current_user_id)]


def get_notifier() -> NotificationChannel:
    return LoggingNotificationChannel()


def get_clock() -> Callable[[], datetime]:
    return utcnow


Notifier = Annotated[NotificationChannel, Depends(get_notifier)]
Clock = Annotated[Callable[[], datetime], Depends(get_clock)]


def get_trade_state_machine(
    session_factory: SessionFactory, notifier: Notifier, clock: Clock
) -> TradeStateMachine:
    return TradeStateMachine(session_factory, notifier=notifier, clock=clock)


def get_trade_request_negotiator(
    session_factory: SessionFactory, notifier: Notifier, clock: Clock
) -> TradeRequestNegotiator:
    return TradeRequestNegotiator(session_factory, notifier=notifier, clock=clock)


def get_friend_room_flow(
    session_factory: SessionFactory, notifier: Notifier, clock: Clock
) -> FriendRoomInviteFlow:
    return FriendRoomInviteFlow(session_factory, notifier=notifier, clock=clock)


def get_pack_opening_service(session_factory: SessionFactory, clock: Clock) -> PackOpeningService:
    return PackOpeningService(session_factory, clock=clock)
