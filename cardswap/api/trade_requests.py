"""
Trade request API endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from cardswap.api.dependencies import CurrentUser, get_trade_request_negotiator
from cardswap.api.schemas import CardRefModel, TradeRequestResponse, TradeResponse
from cardswap.services.trade_requests import TradeRequestNegotiator

router = APIRouter(prefix="/trade-requests", tags=["trade-requests"])

Negotiator = Annotated[TradeRequestNegotiator, Depends(get_trade_request_negotiator)]


class CreateTradeRequestPayload(BaseModel):
    """Request model for proposing a trade."""

    to_user_id: str = Field(..., min_length=1)
    offer: CardRefModel | None = None
    want: CardRefModel | None = None
    is_manual: bool = Field(
        default=False,
        description="Free-form request described by the note instead of a wanted card",
    )
    note: str = Field(default="", max_length=500)


class AcceptedRequestResponse(BaseModel):
    request: TradeRequestResponse
    trade: TradeResponse


@router.post("", response_model=TradeRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_trade_request(
    payload: CreateTradeRequestPayload,
    user_id: CurrentUser,
    negotiator: Negotiator,
) -> TradeRequestResponse:
    request = await negotiator.create(
        user_id,
        payload.to_user_id,
        offer=payload.offer.to_ref() if payload.offer else None,
        want=payload.want.to_ref() if payload.want else None,
        is_manual=payload.is_manual,
        note=payload.note,
    )
    return TradeRequestResponse.model_validate(request)


@router.get("/received", response_model=list[TradeRequestResponse])
async def list_received(user_id: CurrentUser, negotiator: Negotiator) -> list[TradeRequestResponse]:
    return [TradeRequestResponse.model_validate(r) for r in await negotiator.list_received(user_id)]


@router.get("/sent", response_model=list[TradeRequestResponse])
async def list_sent(user_id: CurrentUser, negotiator: Negotiator) -> list[TradeRequestResponse]:
    return [TradeRequestResponse.model_validate(r) for r in await negotiator.list_sent(user_id)]


@router.post("/{request_id}/accept", response_model=AcceptedRequestResponse)
async def accept_trade_request(
    request_id: int,
    user_id: CurrentUser,
    negotiator: Negotiator,
) -> AcceptedRequestResponse:
    """Accept a request addressed to the caller and open its private trade."""
    request, trade = await negotiator.accept(request_id, user_id)
    return AcceptedRequestResponse(
        request=TradeRequestResponse.model_validate(request),
        trade=TradeResponse.model_validate(trade),
    )


@router.post("/{request_id}/reject", response_model=TradeRequestResponse)
async def reject_trade_request(
    request_id: int,
    user_id: CurrentUser,
    negotiator: Negotiator,
) -> TradeRequestResponse:
    return TradeRequestResponse.model_validate(await negotiator.reject(request_id, user_id))


@router.post("/{request_id}/cancel", response_model=TradeRequestResponse)
async def cancel_trade_request(
    request_id: int,
    user_id: CurrentUser,
    negotiator: Negotiator,
) -> TradeRequestResponse:
    return TradeRequestResponse.model_validate(await negotiator.cancel(request_id, user_id))
