"""Tests for pack content selection."""

import random

import pytest

from cardswap.models.card import Card, Rarity
from cardswap.services.pack_selector import select_pack


def _pool(commons: int, rares: int = 0) -> list[Card]:
    cards = [Card(f"c{i}", rarity="Common") for i in range(commons)]
    cards += [Card(f"r{i}", rarity="Rare") for i in range(rares)]
    return cards


class TestSelectPack:
    def test_full_pack_size(self) -> None:
        pack = select_pack(_pool(20, 5), rng=random.Random(1))

        assert len(pack) == 10

    def test_first_slots_are_distinct(self) -> None:
        pack = select_pack(_pool(20, 5), rng=random.Random(2))

        first = [card.card_id for card in pack[:-1]]
        assert len(set(first)) == len(first)

    @pytest.mark.parametrize("seed", range(20))
    def test_hit_slot_meets_minimum_rarity(self, seed: int) -> None:
        pack = select_pack(_pool(30, 2), rng=random.Random(seed))

        assert pack[-1].rarity_rank >= Rarity.rank(Rarity.RARE)

    def test_hit_slot_respects_custom_minimum(self) -> None:
        pool = _pool(10, 3) + [Card("secret", rarity="Secret Rare")]

        pack = select_pack(pool, min_rarity=Rarity.SECRET_RARE, rng=random.Random(3))

        assert pack[-1].card_id == "secret"

    def test_hit_falls_back_to_full_pool(self) -> None:
        """No card qualifies: the hit comes from the whole pool."""
        pool = _pool(12)

        pack = select_pack(pool, rng=random.Random(4))

        assert len(pack) == 10
        assert pack[-1] in pool

    def test_small_pool_does_not_raise(self) -> None:
        """A pool of 2 gives both cards plus a hit."""
        pool = [Card("a", rarity="Common"), Card("b", rarity="Rare")]

        pack = select_pack(pool, rng=random.Random(5))

        assert len(pack) == 3
        assert {card.card_id for card in pack[:2]} == {"a", "b"}
        assert pack[-1].card_id == "b"

    def test_empty_pool_gives_empty_pack(self) -> None:
        assert select_pack([], rng=random.Random(6)) == []

    def test_zero_pack_size(self) -> None:
        assert select_pack(_pool(5), pack_size=0) == []

    def test_pack_of_one_is_only_the_hit(self) -> None:
        pack = select_pack(_pool(5, 1), pack_size=1, rng=random.Random(7))

        assert [card.card_id for card in pack] == ["r0"]

    def test_hit_may_duplicate_an_earlier_slot(self) -> None:
        """The hit is drawn from the full pool, so a single rare shows up twice."""
        pool = _pool(8, 1)

        pack = select_pack(pool, rng=random.Random(8))

        ids = [card.card_id for card in pack]
        assert ids.count("r0") == 2

    def test_does_not_mutate_pool(self) -> None:
        pool = _pool(15, 3)
        before = list(pool)

        select_pack(pool, rng=random.Random(9))

        assert pool == before
