"""
Collection API endpoints.

Read-only view of a user's ownership records. Collections change only
through pack openings and completed trades.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardswap.db import list_ownership
from cardswap.db.database import get_session
from cardswap.models.card import Bucket

router = APIRouter(prefix="/collection", tags=["collection"])


class OwnershipRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    card_id: str
    bucket: Bucket
    quantity: int
    tradeable: bool


class CollectionResponse(BaseModel):
    """Response model for collection data."""

    user_id: str
    records: list[OwnershipRecordResponse] = Field(default_factory=list)
    total_cards: int = 0
    unique_cards: int = 0


@router.get("/{user_id}", response_model=CollectionResponse)
async def get_user_collection(
    user_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    bucket: Bucket | None = None,
) -> CollectionResponse:
    """
    Get a user's ownership records.

    Totals count the `collection` bucket only; wishlist entries are not owned.
    """
    records = await list_ownership(session, user_id, bucket)
    owned = [r for r in records if r.bucket == Bucket.COLLECTION.value]
    return CollectionResponse(
        user_id=user_id,
        records=[OwnershipRecordResponse.model_validate(r) for r in records],
        total_cards=sum(r.quantity for r in owned),
        unique_cards=len(owned),
    )
