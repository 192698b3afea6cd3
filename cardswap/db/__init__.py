from cardswap.db.database import dispose_db, get_session, get_session_factory, init_db
from cardswap.db.operations import (
    add_cards,
    add_friendship,
    are_friends,
    count_pack_opens_since,
    create_invite,
    create_trade,
    create_trade_request,
    create_user,
    find_pending_invite,
    find_pending_request,
    get_card_pool,
    get_invite,
    get_ownership,
    get_pack_state,
    get_trade,
    get_trade_by_room_code,
    get_trade_request,
    get_user,
    list_invites,
    list_ownership,
    list_requests_received,
    list_requests_sent,
    list_trades,
    owned_quantity,
    record_pack_open,
    remove_cards,
    room_code_in_use,
    save_pack_state,
    set_invite_status,
    set_request_status,
    set_trade_cards,
    set_trade_status,
    upsert_card,
)

__all__ = [
    "add_cards",
    "add_friendship",
    "are_friends",
    "count_pack_opens_since",
    "create_invite",
    "create_trade",
    "create_trade_request",
    "create_user",
    "find_pending_invite",
    "find_pending_request",
    "get_card_pool",
    "get_invite",
    "get_ownership",
    "get_pack_state",
    "get_session",
    "get_session_factory",
    "get_trade",
    "get_trade_by_room_code",
    "get_trade_request",
    "get_user",
    "dispose_db",
    "init_db",
    "list_invites",
    "list_ownership",
    "list_requests_received",
    "list_requests_sent",
    "list_trades",
    "owned_quantity",
    "record_pack_open",
    "remove_cards",
    "room_code_in_use",
    "save_pack_state",
    "set_invite_status",
    "set_request_status",
    "set_trade_cards",
    "set_trade_status",
    "upsert_card",
]
