from cardswap.models.card import (
    Bucket,
    Card,
    CardRef,
    Rarity,
    aggregate_refs,
    refs_from_json,
    refs_to_json,
)
from cardswap.models.failure import (
    ApiResponse,
    DuplicateInviteError,
    DuplicateRequestError,
    FailureDetail,
    FailureKind,
    ForbiddenError,
    InsufficientOwnershipError,
    InvalidCardRefError,
    InvalidTransitionError,
    KnownError,
    NotFoundError,
    NotFriendsError,
    OutcomeType,
    RateLimitedError,
    RecipientNotFoundError,
    RoomCodeExhaustedError,
    SelfInviteError,
    SelfTradeNotAllowedError,
    UnauthenticatedError,
)
from cardswap.models.pack import PackTokenState, TokenSnapshot
from cardswap.models.trade import (
    ACTIVE_TRADE_STATUSES,
    TERMINAL_TRADE_STATUSES,
    TRADE_TRANSITIONS,
    InviteStatus,
    RequestStatus,
    TradeStatus,
    TradeType,
    can_transition,
)

__all__ = [
    "ACTIVE_TRADE_STATUSES",
    "ApiResponse",
    "Bucket",
    "Card",
    "CardRef",
    "DuplicateInviteError",
    "DuplicateRequestError",
    "FailureDetail",
    "FailureKind",
    "ForbiddenError",
    "InsufficientOwnershipError",
    "InvalidCardRefError",
    "InvalidTransitionError",
    "InviteStatus",
    "KnownError",
    "NotFoundError",
    "NotFriendsError",
    "OutcomeType",
    "PackTokenState",
    "Rarity",
    "RateLimitedError",
    "RecipientNotFoundError",
    "RequestStatus",
    "RoomCodeExhaustedError",
    "SelfInviteError",
    "SelfTradeNotAllowedError",
    "TERMINAL_TRADE_STATUSES",
    "TRADE_TRANSITIONS",
    "TokenSnapshot",
    "TradeStatus",
    "TradeType",
    "UnauthenticatedError",
    "aggregate_refs",
    "can_transition",
    "refs_from_json",
    "refs_to_json",
]
