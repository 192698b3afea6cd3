from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from cardswap.models.card import Rarity


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "cardswap"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/cardswap"

    # Pack opening token bucket
    pack_token_capacity: int = 2
    pack_refill_hours: int = 12
    pack_size: int = 10
    # Lowest rarity the guaranteed hit slot may hold; unknown names fail at startup
    pack_min_hit_rarity: Rarity = Rarity.RARE

    # Status of the trade created when a trade request is accepted.
    # "pending" keeps a confirmation step, "accepted" skips it.
    trade_request_accept_status: Literal["pending", "accepted"] = "pending"

    room_code_length: int = 10
    room_code_max_attempts: int = 20


settings = Settings()


# =============================================================================
# LISTING LIMITS
# =============================================================================

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
