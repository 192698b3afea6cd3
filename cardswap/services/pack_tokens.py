"""
Pack token bucket: per-user rate limiting of pack openings.

Each user holds up to `capacity` tokens. Opening a pack consumes one.
Tokens regenerate one per `refill_interval` of elapsed wall-clock time,
computed lazily on read; there is no background timer.

INVARIANTS:
- Tokens never exceed capacity and never go below zero
- Refills advance last_refill_at by whole intervals, never snapped to now,
  so partial progress toward the next token is kept
- next_allowed_at is None exactly when the bucket is full
- The emptiness check and the decrement come from the same recomputed
  snapshot, taken under a per-user lock and a row lock
- Running out of tokens is an expected outcome, never retried and never
  logged as a fault
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardswap.config import settings
from cardswap.db.operations import get_pack_state, init_pack_state, save_pack_state
from cardswap.models.failure import RateLimitedError
from cardswap.models.pack import PackTokenState, TokenSnapshot
from cardswap.services.locks import KeyedLock, get_keyed_lock, pack_key

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION DEFAULTS
# =============================================================================

DEFAULT_CAPACITY = 2
DEFAULT_REFILL_INTERVAL = timedelta(hours=12)


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# =============================================================================
# PURE STATE COMPUTATION
# =============================================================================


def compute_state(
    state: PackTokenState,
    now: datetime,
    capacity: int = DEFAULT_CAPACITY,
    refill_interval: timedelta = DEFAULT_REFILL_INTERVAL,
) -> TokenSnapshot:
    """
    Recompute a bucket at time `now`.

    Pure function of the stored state and the given time. Calling it twice
    with the same `now` yields the same snapshot, and feeding a snapshot
    back in at the same `now` adds nothing.
    """
    last_refill_at = ensure_utc(state.last_refill_at)
    now = ensure_utc(now)
    tokens = max(0, min(capacity, state.tokens))

    elapsed_refills = (now - last_refill_at) // refill_interval
    if elapsed_refills > 0:
        tokens = min(capacity, tokens + elapsed_refills)
        last_refill_at = last_refill_at + elapsed_refills * refill_interval

    next_allowed_at = None if tokens == capacity else last_refill_at + refill_interval
    return TokenSnapshot(
        tokens=tokens,
        last_refill_at=last_refill_at,
        next_allowed_at=next_allowed_at,
    )


# =============================================================================
# PERSISTENT BUCKET
# =============================================================================


@dataclass
class PackTokenBucket:
    """
    Token bucket persisted per user.

    The methods taking a session run inside the caller's unit of work and
    expect the caller to hold `pack_key(user_id)`. The session-factory
    variants open their own unit of work and take the lock themselves.
    """

    capacity: int = DEFAULT_CAPACITY
    refill_interval: timedelta = DEFAULT_REFILL_INTERVAL

    async def snapshot(self, session: AsyncSession, user_id: str, now: datetime) -> TokenSnapshot:
        """
        Read and recompute a user's bucket, initializing it full if absent.

        Persists the recomputed refill progress.
        """
        stored = await get_pack_state(session, user_id, for_update=True)
        if stored is None:
            stored = await init_pack_state(session, user_id, self.capacity, now)
        state = PackTokenState(tokens=stored.tokens, last_refill_at=stored.last_refill_at)

        snap = compute_state(state, now, self.capacity, self.refill_interval)
        if snap.tokens != stored.tokens or snap.last_refill_at != ensure_utc(
            stored.last_refill_at
        ):
            await save_pack_state(session, user_id, snap.tokens, snap.last_refill_at)
        return snap

    async def try_consume_in(
        self, session: AsyncSession, user_id: str, now: datetime
    ) -> tuple[bool, TokenSnapshot]:
        """
        Consume one token if available.

        Returns:
            Tuple of (consumed, snapshot after the attempt).
        """
        snap = await self.snapshot(session, user_id, now)
        if snap.tokens == 0:
            logger.info(
                "PACK_RATE_LIMITED",
                extra={
                    "user_id": user_id,
                    "next_allowed_at": snap.next_allowed_at.isoformat()
                    if snap.next_allowed_at
                    else None,
                },
            )
            return False, snap

        remaining = snap.tokens - 1
        await save_pack_state(session, user_id, remaining, snap.last_refill_at)
        after = compute_state(
            PackTokenState(tokens=remaining, last_refill_at=snap.last_refill_at),
            now,
            self.capacity,
            self.refill_interval,
        )
        logger.debug(
            "PACK_TOKEN_CONSUMED",
            extra={"user_id": user_id, "tokens_left": after.tokens},
        )
        return True, after

    async def consume_in(self, session: AsyncSession, user_id: str, now: datetime) -> TokenSnapshot:
        """
        Consume one token or fail.

        Raises:
            RateLimitedError: if the bucket is empty
        """
        consumed, snap = await self.try_consume_in(session, user_id, now)
        if not consumed:
            raise RateLimitedError(snap.next_allowed_at)
        return snap


class PackTokenService:
    """Token bucket operations as self-contained units of work."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bucket: PackTokenBucket | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.bucket = bucket or bucket_from_settings()
        self.locks = locks or get_keyed_lock()
        self.clock = clock

    async def get_state(self, user_id: str, now: datetime | None = None) -> TokenSnapshot:
        now = now or self.clock()
        async with self.locks.hold(pack_key(user_id)):
            async with self.session_factory() as session, session.begin():
                return await self.bucket.snapshot(session, user_id, now)

    async def try_consume(self, user_id: str, now: datetime | None = None) -> bool:
        """Consume a token if one is available. Never raises for an empty bucket."""
        now = now or self.clock()
        async with self.locks.hold(pack_key(user_id)):
            async with self.session_factory() as session, session.begin():
                consumed, _ = await self.bucket.try_consume_in(session, user_id, now)
                return consumed


def bucket_from_settings() -> PackTokenBucket:
    return PackTokenBucket(
        capacity=settings.pack_token_capacity,
        refill_interval=timedelta(hours=settings.pack_refill_hours),
    )
