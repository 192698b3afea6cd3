from dataclasses import dataclass
from enum import Enum
from typing import Any

from cardswap.models.failure import InvalidCardRefError


class Rarity(str, Enum):
    """Card rarities, declared lowest to highest."""

    COMMON = "Common"
    UNCOMMON = "Uncommon"
    RARE = "Rare"
    HOLO_RARE = "Holo Rare"
    RARE_HOLO = "Rare Holo"
    ULTRA_RARE = "Ultra Rare"
    SECRET_RARE = "Secret Rare"

    @classmethod
    def rank(cls, rarity: "str | Rarity | None") -> int:
        """
        Position of a rarity in the ordering.

        Unknown or missing rarities rank below Common.
        """
        if rarity is None:
            return -1
        try:
            member = rarity if isinstance(rarity, Rarity) else cls(rarity)
        except ValueError:
            return -1
        return list(cls).index(member)


class Bucket(str, Enum):
    """Which part of a user's holdings an ownership record lives in."""

    COLLECTION = "collection"
    WISHLIST = "wishlist"


@dataclass(frozen=True)
class Card:
    """A catalog card as seen by pack selection."""

    card_id: str
    name: str = ""
    rarity: str | None = None

    @property
    def rarity_rank(self) -> int:
        return Rarity.rank(self.rarity)


@dataclass(frozen=True)
class CardRef:
    """
    A reference to some copies of one card, as carried by trades.

    Validated on construction so malformed references never reach
    settlement.
    """

    card_id: str
    quantity: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.card_id, str) or not self.card_id.strip():
            raise InvalidCardRefError("card_id must be a non-empty string")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidCardRefError(f"quantity for '{self.card_id}' must be an integer")
        if self.quantity < 1:
            raise InvalidCardRefError(f"quantity for '{self.card_id}' must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        return {"card_id": self.card_id, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: Any) -> "CardRef":
        if not isinstance(data, dict):
            raise InvalidCardRefError("expected an object with card_id and quantity")
        return cls(card_id=data.get("card_id", ""), quantity=data.get("quantity", 1))


def refs_to_json(refs: list[CardRef]) -> list[dict[str, Any]]:
    """Serialize card references for a JSON column."""
    return [ref.to_dict() for ref in refs]


def refs_from_json(data: list[dict[str, Any]] | None) -> list[CardRef]:
    """Deserialize card references from a JSON column."""
    return [CardRef.from_dict(item) for item in data or []]


def aggregate_refs(refs: list[CardRef]) -> dict[str, int]:
    """Sum quantities per card id, so repeated references are checked together."""
    totals: dict[str, int] = {}
    for ref in refs:
        totals[ref.card_id] = totals.get(ref.card_id, 0) + ref.quantity
    return totals
