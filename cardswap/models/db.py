"""
SQLAlchemy ORM models for persistent storage.

Statuses and buckets are stored as their enum string values.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Partial unique indexes backing the uniqueness rules across processes
ACTIVE_ROOM_CODE_INDEX = "uq_trades_active_room_code"
PENDING_REQUEST_INDEX = "uq_trade_requests_pending_key"
PENDING_INVITE_INDEX = "uq_room_invites_pending_pair"

_ACTIVE_TRADE = text("status IN ('pending', 'accepted')")
_PENDING = text("status = 'pending'")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserDB(Base):
    """
    Directory entry for a user.

    Identity and profile data are owned elsewhere; the core only needs to
    know that a user id exists.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserDB(id={self.id}, username={self.username})>"


class FriendshipDB(Base):
    """Directed friendship edge. Mutual friends have both edges."""

    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("user_id", "friend_id", name="uq_friendship"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    friend_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )


class CardDB(Base):
    """Catalog entry for a card. Populated by the catalog sync, read here."""

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    rarity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    set_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<CardDB(id={self.id}, rarity={self.rarity})>"


class CardOwnershipDB(Base):
    """
    How many copies of a card a user holds in one bucket.

    A record whose quantity would reach zero is deleted instead.
    """

    __tablename__ = "card_ownership"
    __table_args__ = (
        UniqueConstraint("owner_id", "card_id", "bucket", name="uq_owner_card_bucket"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    card_id: Mapped[str] = mapped_column(String(64), index=True)
    bucket: Mapped[str] = mapped_column(String(20), default="collection")
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    tradeable: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<CardOwnershipDB(owner={self.owner_id}, card={self.card_id}, qty={self.quantity})>"


class TradeDB(Base):
    """
    A negotiated exchange between two users.

    private_room_code is only unique among trades that are still pending
    or accepted; terminal trades keep their code for history.
    """

    __tablename__ = "trades"
    __table_args__ = (
        Index(
            ACTIVE_ROOM_CODE_INDEX,
            "private_room_code",
            unique=True,
            postgresql_where=_ACTIVE_TRADE,
            sqlite_where=_ACTIVE_TRADE,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    initiator_user_id: Mapped[str] = mapped_column(String(64), index=True)
    receiver_user_id: Mapped[str] = mapped_column(String(64), index=True)

    # Lists of {"card_id": str, "quantity": int}
    initiator_cards: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    receiver_cards: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    trade_type: Mapped[str] = mapped_column(String(20), default="public")
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    private_room_code: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    request_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def participants(self) -> tuple[str, str]:
        return self.initiator_user_id, self.receiver_user_id

    def __repr__(self) -> str:
        return f"<TradeDB(id={self.id}, status={self.status}, type={self.trade_type})>"


class TradeRequestDB(Base):
    """A one-sided proposal that produces a Trade when accepted."""

    __tablename__ = "trade_requests"
    __table_args__ = (
        Index(
            PENDING_REQUEST_INDEX,
            "pending_key",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[str] = mapped_column(String(64), index=True)
    to_user_id: Mapped[str] = mapped_column(String(64), index=True)

    offer_card_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    offer_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    want_card_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    want_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_manual: Mapped[bool] = mapped_column(Boolean, default=False)
    note: Mapped[str] = mapped_column(Text, default="")
    # Equivalence key of the request, see request_pending_key
    pending_key: Mapped[str] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    trade_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<TradeRequestDB(id={self.id}, {self.from_user_id}->{self.to_user_id})>"


class FriendTradeRoomInviteDB(Base):
    """Friend-only invite that opens a private trade room when accepted."""

    __tablename__ = "friend_trade_room_invites"
    __table_args__ = (
        Index(
            PENDING_INVITE_INDEX,
            "pending_key",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[str] = mapped_column(String(64), index=True)
    to_user_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    trade_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    private_room_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Unordered user pair, see invite_pending_key
    pending_key: Mapped[str] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<FriendTradeRoomInviteDB(id={self.id}, status={self.status})>"


class PackTokenStateDB(Base):
    """Per-user pack opening token bucket."""

    __tablename__ = "pack_token_state"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tokens: Mapped[int] = mapped_column(Integer)
    last_refill_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<PackTokenStateDB(user={self.user_id}, tokens={self.tokens})>"


class PackOpenDB(Base):
    """Audit record of one opened pack."""

    __tablename__ = "pack_opens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    card_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
