from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class PackTokenState:
    """Stored token bucket state for one user."""

    tokens: int
    last_refill_at: datetime


@dataclass(frozen=True)
class TokenSnapshot:
    """
    Token bucket state recomputed at a point in time.

    next_allowed_at is None exactly when the bucket is full.
    """

    tokens: int
    last_refill_at: datetime
    next_allowed_at: datetime | None

    def to_state(self) -> PackTokenState:
        return PackTokenState(tokens=self.tokens, last_refill_at=self.last_refill_at)
