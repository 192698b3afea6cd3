"""
Pack opening API endpoints.

Opening a pack costs one token. Tokens refill over time up to a fixed
capacity; an empty bucket answers 429 with the time of the next refill.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cardswap.api.dependencies import CurrentUser, get_pack_opening_service
from cardswap.services.pack_opening import PackOpeningService

router = APIRouter(prefix="/packs", tags=["packs"])

Packs = Annotated[PackOpeningService, Depends(get_pack_opening_service)]


class PackStatusResponse(BaseModel):
    """Response model for the caller's pack tokens."""

    tokens: int
    capacity: int
    next_allowed_at: datetime | None = Field(
        default=None,
        description="When the next token arrives; null when the bucket is full",
    )
    opened_last_24h: int = 0


class OpenPackRequest(BaseModel):
    set_id: str | None = Field(
        default=None,
        description="Restrict the pool to one card set",
    )


class PackCardResponse(BaseModel):
    card_id: str
    name: str = ""
    rarity: str | None = None


class OpenPackResponse(BaseModel):
    """Response model for an opened pack."""

    cards: list[PackCardResponse]
    tokens: int
    next_allowed_at: datetime | None = None


@router.get("/status", response_model=PackStatusResponse)
async def pack_status(user_id: CurrentUser, packs: Packs) -> PackStatusResponse:
    state = await packs.status(user_id)
    return PackStatusResponse(
        tokens=state.tokens,
        capacity=state.capacity,
        next_allowed_at=state.next_allowed_at,
        opened_last_24h=state.opened_last_24h,
    )


@router.post("/open", response_model=OpenPackResponse)
async def open_pack(
    user_id: CurrentUser,
    packs: Packs,
    payload: OpenPackRequest | None = None,
) -> OpenPackResponse:
    """Spend a token and add the pulled cards to the caller's collection."""
    opened = await packs.open_pack(user_id, set_id=payload.set_id if payload else None)
    return OpenPackResponse(
        cards=[
            PackCardResponse(card_id=card.card_id, name=card.name, rarity=card.rarity)
            for card in opened.cards
        ],
        tokens=opened.tokens.tokens,
        next_allowed_at=opened.tokens.next_allowed_at,
    )
