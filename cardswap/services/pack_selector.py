"""
Pack content selection.

A pack is `pack_size - 1` distinct draws from the pool followed by one
"hit" slot drawn from the cards at or above a minimum rarity.

The hit slot is drawn from the full pool, not from what is left after the
other draws, so it can repeat a card already in the pack (an extra copy of
a good pull).
"""

import random

from cardswap.models.card import Card, Rarity

DEFAULT_PACK_SIZE = 10
DEFAULT_MIN_HIT_RARITY = Rarity.RARE.value


def select_pack(
    pool: list[Card],
    pack_size: int = DEFAULT_PACK_SIZE,
    min_rarity: str | Rarity = DEFAULT_MIN_HIT_RARITY,
    rng: random.Random | None = None,
) -> list[Card]:
    """
    Turn a candidate pool into one pack.

    Returns exactly `pack_size` cards, fewer only when the pool has fewer
    than `pack_size - 1` cards. An empty pool gives an empty pack.
    """
    if not pool or pack_size < 1:
        return []

    rng = rng or random.Random()

    working = list(pool)
    pack: list[Card] = []
    for _ in range(pack_size - 1):
        if not working:
            break
        pack.append(working.pop(rng.randrange(len(working))))

    min_rank = Rarity.rank(min_rarity)
    hits = [card for card in pool if card.rarity_rank >= min_rank]
    pack.append(rng.choice(hits or pool))
    return pack
