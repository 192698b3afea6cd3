"""
cardswap services.

Trade negotiation and settlement, friend trade rooms and pack opening.
"""

from cardswap.services.capabilities import (
    DatabaseFriendGraph,
    FriendGraph,
    RoomCodeGenerator,
    random_room_code_generator,
)
from cardswap.services.friend_rooms import FriendRoomInviteFlow
from cardswap.services.locks import KeyedLock, get_keyed_lock, reset_keyed_lock
from cardswap.services.notifications import (
    LoggingNotificationChannel,
    NotificationChannel,
    NotificationEvent,
    NotificationKind,
    RecordingNotificationChannel,
)
from cardswap.services.ownership_transfer import settle, verify
from cardswap.services.pack_opening import OpenedPack, PackOpeningService, PackStatus
from cardswap.services.pack_selector import select_pack
from cardswap.services.pack_tokens import (
    PackTokenBucket,
    PackTokenService,
    bucket_from_settings,
    compute_state,
)
from cardswap.services.trade_requests import TradeRequestNegotiator
from cardswap.services.trade_state import TradeStateMachine, allocate_room_code

__all__ = [
    # Capabilities
    "DatabaseFriendGraph",
    "FriendGraph",
    "RoomCodeGenerator",
    "random_room_code_generator",
    "LoggingNotificationChannel",
    "NotificationChannel",
    "NotificationEvent",
    "NotificationKind",
    "RecordingNotificationChannel",
    # Concurrency
    "KeyedLock",
    "get_keyed_lock",
    "reset_keyed_lock",
    # Trading
    "FriendRoomInviteFlow",
    "TradeRequestNegotiator",
    "TradeStateMachine",
    "allocate_room_code",
    "settle",
    "verify",
    # Packs
    "OpenedPack",
    "PackOpeningService",
    "PackStatus",
    "PackTokenBucket",
    "PackTokenService",
    "bucket_from_settings",
    "compute_state",
    "select_pack",
]
