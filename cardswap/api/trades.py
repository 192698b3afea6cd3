"""
Trade API endpoints.

Direct trade creation, lookups, lifecycle transitions and edits to a
participant's own side of a pending trade.
"""

import math
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from cardswap.api.dependencies import CurrentUser, get_trade_state_machine
from cardswap.api.schemas import CardRefModel, TradeResponse, to_refs
from cardswap.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from cardswap.models.trade import TradeStatus, TradeType
from cardswap.services.trade_state import TradeStateMachine

router = APIRouter(prefix="/trades", tags=["trades"])

Trades = Annotated[TradeStateMachine, Depends(get_trade_state_machine)]


class CreateTradeRequest(BaseModel):
    """Request model for opening a trade."""

    receiver_user_id: str = Field(..., min_length=1)
    initiator_cards: list[CardRefModel] = Field(default_factory=list)
    receiver_cards: list[CardRefModel] = Field(default_factory=list)
    trade_type: TradeType = TradeType.PUBLIC


class TradeStatusRequest(BaseModel):
    status: TradeStatus


class TradeCardsRequest(BaseModel):
    cards: list[CardRefModel] = Field(
        ...,
        description="The caller's complete side of the trade",
    )


class TradeListResponse(BaseModel):
    """Paginated trade listing."""

    trades: list[TradeResponse]
    total: int
    page: int
    limit: int
    pages: int


@router.post("", response_model=TradeResponse, status_code=status.HTTP_201_CREATED)
async def create_trade(
    payload: CreateTradeRequest,
    user_id: CurrentUser,
    trades: Trades,
) -> TradeResponse:
    """Open a trade with another user. Private trades get a room code."""
    trade = await trades.create_trade(
        user_id,
        payload.receiver_user_id,
        to_refs(payload.initiator_cards),
        to_refs(payload.receiver_cards),
        trade_type=payload.trade_type,
    )
    return TradeResponse.model_validate(trade)


@router.get("", response_model=TradeListResponse)
async def list_trades(
    viewer_id: CurrentUser,
    trades: Trades,
    status_filter: Annotated[TradeStatus | None, Query(alias="status")] = None,
    trade_type: TradeType | None = None,
    user_id: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
) -> TradeListResponse:
    """List trades, newest first. Private trades show only to their participants."""
    rows, total = await trades.list_trades(
        status=status_filter,
        trade_type=trade_type,
        user_id=user_id,
        viewer_id=viewer_id,
        page=page,
        limit=limit,
    )
    return TradeListResponse(
        trades=[TradeResponse.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/room/{code}", response_model=TradeResponse)
async def get_trade_by_room_code(
    code: str, user_id: CurrentUser, trades: Trades
) -> TradeResponse:
    """Look up a private trade by its room code, preferring the active one."""
    trade = await trades.get_trade_by_room_code(code, viewer_id=user_id)
    return TradeResponse.model_validate(trade)


@router.get("/{trade_id}", response_model=TradeResponse)
async def get_trade(trade_id: int, user_id: CurrentUser, trades: Trades) -> TradeResponse:
    return TradeResponse.model_validate(await trades.get_trade(trade_id, viewer_id=user_id))


@router.post("/{trade_id}/status", response_model=TradeResponse)
async def change_trade_status(
    trade_id: int,
    payload: TradeStatusRequest,
    user_id: CurrentUser,
    trades: Trades,
) -> TradeResponse:
    """
    Move a trade through its lifecycle.

    Completing a trade moves the cards between the two collections.
    """
    trade = await trades.transition(trade_id, user_id, payload.status)
    return TradeResponse.model_validate(trade)


@router.put("/{trade_id}/cards", response_model=TradeResponse)
async def update_trade_cards(
    trade_id: int,
    payload: TradeCardsRequest,
    user_id: CurrentUser,
    trades: Trades,
) -> TradeResponse:
    """Replace the caller's side of a pending trade."""
    trade = await trades.update_cards(trade_id, user_id, to_refs(payload.cards))
    return TradeResponse.model_validate(trade)
