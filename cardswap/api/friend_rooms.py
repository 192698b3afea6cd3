"""
Friend trade room API endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from cardswap.api.dependencies import CurrentUser, get_friend_room_flow
from cardswap.api.schemas import InviteResponse, TradeResponse
from cardswap.services.friend_rooms import FriendRoomInviteFlow

router = APIRouter(prefix="/friend-trade-rooms", tags=["friend-trade-rooms"])

Rooms = Annotated[FriendRoomInviteFlow, Depends(get_friend_room_flow)]


class InviteRequest(BaseModel):
    to_user_id: str = Field(..., min_length=1)


class InviteListResponse(BaseModel):
    received: list[InviteResponse]
    sent: list[InviteResponse]


class AcceptedInviteResponse(BaseModel):
    invite: InviteResponse
    trade: TradeResponse


@router.post("/invites", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
async def send_invite(payload: InviteRequest, user_id: CurrentUser, rooms: Rooms) -> InviteResponse:
    """Invite a friend into a private trade room."""
    return InviteResponse.model_validate(await rooms.invite(user_id, payload.to_user_id))


@router.get("/invites", response_model=InviteListResponse)
async def list_invites(user_id: CurrentUser, rooms: Rooms) -> InviteListResponse:
    received, sent = await rooms.list_invites(user_id)
    return InviteListResponse(
        received=[InviteResponse.model_validate(i) for i in received],
        sent=[InviteResponse.model_validate(i) for i in sent],
    )


@router.post("/invites/{invite_id}/accept", response_model=AcceptedInviteResponse)
async def accept_invite(invite_id: int, user_id: CurrentUser, rooms: Rooms) -> AcceptedInviteResponse:
    """Accept an invite and open the private trade room."""
    invite, trade = await rooms.accept(invite_id, user_id)
    return AcceptedInviteResponse(
        invite=InviteResponse.model_validate(invite),
        trade=TradeResponse.model_validate(trade),
    )


@router.post("/invites/{invite_id}/reject", response_model=InviteResponse)
async def reject_invite(invite_id: int, user_id: CurrentUser, rooms: Rooms) -> InviteResponse:
    return InviteResponse.model_validate(await rooms.reject(invite_id, user_id))
