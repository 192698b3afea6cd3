"""
Trade lifecycle enums and the transition table.

    pending  -> accepted | rejected | cancelled
    accepted -> completed | cancelled

rejected, cancelled and completed are terminal.
"""

import json
from enum import Enum


class TradeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TRADE_STATUSES


class TradeType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


TERMINAL_TRADE_STATUSES = frozenset(
    {TradeStatus.REJECTED, TradeStatus.CANCELLED, TradeStatus.COMPLETED}
)

ACTIVE_TRADE_STATUSES = frozenset({TradeStatus.PENDING, TradeStatus.ACCEPTED})

TRADE_TRANSITIONS: dict[TradeStatus, frozenset[TradeStatus]] = {
    TradeStatus.PENDING: frozenset(
        {TradeStatus.ACCEPTED, TradeStatus.REJECTED, TradeStatus.CANCELLED}
    ),
    TradeStatus.ACCEPTED: frozenset({TradeStatus.COMPLETED, TradeStatus.CANCELLED}),
    TradeStatus.REJECTED: frozenset(),
    TradeStatus.CANCELLED: frozenset(),
    TradeStatus.COMPLETED: frozenset(),
}


def can_transition(current: TradeStatus, target: TradeStatus) -> bool:
    """Check the transition table."""
    return target in TRADE_TRANSITIONS[current]


def request_pending_key(
    from_user_id: str, to_user_id: str, is_manual: bool, want_card_id: str | None
) -> str:
    """
    Equivalence key of a trade request.

    Two pending requests may not share a key. Manual requests are equivalent
    per ordered pair; card requests also need the same wanted card.
    """
    if is_manual:
        return json.dumps([from_user_id, to_user_id, "manual"])
    return json.dumps([from_user_id, to_user_id, "card", want_card_id])


def invite_pending_key(user_id: str, other_id: str) -> str:
    """Unordered pair key: at most one pending invite between two users."""
    return json.dumps(sorted([user_id, other_id]))
