"""
Request and response models shared by the trading routers.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from cardswap.models.card import CardRef
from cardswap.models.trade import TradeStatus, TradeType


class CardRefModel(BaseModel):
    """Some copies of one card."""

    card_id: str = Field(..., min_length=1, examples=["base1-4"])
    quantity: int = Field(default=1, ge=1)

    def to_ref(self) -> CardRef:
        return CardRef(self.card_id, self.quantity)


def to_refs(cards: list[CardRefModel]) -> list[CardRef]:
    return [card.to_ref() for card in cards]


class TradeResponse(BaseModel):
    """Response model for a single trade."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    initiator_user_id: str
    receiver_user_id: str
    initiator_cards: list[CardRefModel] = Field(default_factory=list)
    receiver_cards: list[CardRefModel] = Field(default_factory=list)
    trade_type: TradeType
    status: TradeStatus
    private_room_code: str | None = None
    request_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class TradeRequestResponse(BaseModel):
    """Response model for a trade request."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    from_user_id: str
    to_user_id: str
    offer_card_id: str | None = None
    offer_quantity: int | None = None
    want_card_id: str | None = None
    want_quantity: int | None = None
    is_manual: bool = False
    note: str = ""
    status: str
    trade_id: int | None = None
    created_at: datetime | None = None
    finished_at: datetime | None = None


class InviteResponse(BaseModel):
    """Response model for a friend trade room invite."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    from_user_id: str
    to_user_id: str
    status: str
    trade_id: int | None = None
    private_room_code: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
