"""Tests for opening packs into a user's collection."""

import random

import pytest

from cardswap.db.operations import count_pack_opens_since, list_ownership, owned_quantity
from cardswap.models.failure import NotFoundError, RateLimitedError
from cardswap.services.pack_opening import PackOpeningService
from cardswap.services.pack_tokens import PackTokenBucket


@pytest.fixture
async def catalog(seed) -> None:
    await seed.cards(
        ("pikachu", "Common"),
        ("bulbasaur", "Common"),
        ("squirtle", "Common"),
        ("charmander", "Uncommon"),
        ("charizard", "Rare Holo"),
    )
    await seed.cards(("mew", "Secret Rare"), set_id="promo")


@pytest.fixture
def packs(session_factory, clock) -> PackOpeningService:
    return PackOpeningService(
        session_factory,
        bucket=PackTokenBucket(),
        clock=clock,
        rng=random.Random(42),
        pack_size=4,
    )


class TestOpenPack:
    async def test_adds_pulled_cards_to_collection(self, packs, catalog, session_factory) -> None:
        opened = await packs.open_pack("alice")

        assert len(opened.cards) == 4
        assert opened.cards[-1].rarity in ("Rare Holo", "Secret Rare")
        async with session_factory() as session:
            records = await list_ownership(session, "alice")
        assert sum(r.quantity for r in records) == 4
        assert all(r.bucket == "collection" for r in records)

    async def test_repeated_cards_stack(self, session_factory, seed, clock) -> None:
        """Only one card in the pool: every slot is the same card."""
        await seed.cards(("only", "Rare"))
        packs = PackOpeningService(session_factory, bucket=PackTokenBucket(), clock=clock)

        opened = await packs.open_pack("alice")

        assert [c.card_id for c in opened.cards] == ["only", "only"]
        async with session_factory() as session:
            assert await owned_quantity(session, "alice", "only") == 2

    async def test_consumes_one_token(self, packs, catalog) -> None:
        opened = await packs.open_pack("alice")

        assert opened.tokens.tokens == 1

    async def test_rate_limited_after_capacity(self, packs, catalog, clock) -> None:
        await packs.open_pack("alice")
        await packs.open_pack("alice")

        with pytest.raises(RateLimitedError) as exc_info:
            await packs.open_pack("alice")

        assert exc_info.value.next_allowed_at is not None
        assert exc_info.value.next_allowed_at > clock.now

    async def test_rate_limited_open_grants_nothing(self, packs, catalog, session_factory) -> None:
        await packs.open_pack("alice")
        await packs.open_pack("alice")
        async with session_factory() as session:
            before = sum(r.quantity for r in await list_ownership(session, "alice"))

        with pytest.raises(RateLimitedError):
            await packs.open_pack("alice")

        async with session_factory() as session:
            after = sum(r.quantity for r in await list_ownership(session, "alice"))
        assert after == before

    async def test_refill_allows_opening_again(self, packs, catalog, clock) -> None:
        await packs.open_pack("alice")
        await packs.open_pack("alice")

        clock.advance(hours=12)

        opened = await packs.open_pack("alice")
        assert opened.tokens.tokens == 0

    async def test_empty_pool_keeps_token(self, packs, catalog) -> None:
        with pytest.raises(NotFoundError):
            await packs.open_pack("alice", set_id="missing-set")

        status = await packs.status("alice")
        assert status.tokens == 2

    async def test_set_restricted_pool(self, packs, catalog) -> None:
        opened = await packs.open_pack("alice", set_id="promo")

        assert {c.card_id for c in opened.cards} == {"mew"}

    async def test_records_audit_row(self, packs, catalog, session_factory, clock) -> None:
        await packs.open_pack("alice")

        async with session_factory() as session:
            assert await count_pack_opens_since(session, "alice", clock.now) == 1


class TestPackStatus:
    async def test_new_user_is_full(self, packs) -> None:
        status = await packs.status("alice")

        assert status.tokens == 2
        assert status.capacity == 2
        assert status.next_allowed_at is None
        assert status.opened_last_24h == 0

    async def test_counts_opens_in_last_24_hours(self, packs, catalog, clock) -> None:
        await packs.open_pack("alice")
        clock.advance(hours=13)
        await packs.open_pack("alice")

        status = await packs.status("alice")
        assert status.opened_last_24h == 2

        clock.advance(hours=12)
        status = await packs.status("alice")
        assert status.opened_last_24h == 1
