from cardswap.api.collection import router as collection_router
from cardswap.api.friend_rooms import router as friend_rooms_router
from cardswap.api.health import router as health_router
from cardswap.api.packs import router as packs_router
from cardswap.api.trade_requests import router as trade_requests_router
from cardswap.api.trades import router as trades_router

__all__ = [
    "collection_router",
    "friend_rooms_router",
    "health_router",
    "packs_router",
    "trade_requests_router",
    "trades_router",
]
