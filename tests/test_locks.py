"""Tests for the in-process keyed locks."""

import asyncio

from cardswap.services.locks import KeyedLock, get_keyed_lock, pair_key, reset_keyed_lock


class TestKeyedLock:
    async def test_same_key_serializes(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("trade:1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLock()

        async with locks.hold("trade:1"):
            async with locks.hold("trade:2"):
                assert locks.is_held("trade:1")
                assert locks.is_held("trade:2")

    async def test_released_keys_are_dropped(self) -> None:
        locks = KeyedLock()

        async with locks.hold("owner:a", "owner:b"):
            assert len(locks) == 2

        assert len(locks) == 0
        assert not locks.is_held("owner:a")

    async def test_released_on_error(self) -> None:
        locks = KeyedLock()

        try:
            async with locks.hold("pack:alice"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert not locks.is_held("pack:alice")

    async def test_opposite_key_order_does_not_deadlock(self) -> None:
        locks = KeyedLock()

        async def worker(first: str, second: str) -> None:
            async with locks.hold(first, second):
                await asyncio.sleep(0)

        await asyncio.wait_for(
            asyncio.gather(worker("owner:a", "owner:b"), worker("owner:b", "owner:a")),
            timeout=1,
        )

    async def test_duplicate_keys_acquired_once(self) -> None:
        locks = KeyedLock()

        async with locks.hold("owner:a", "owner:a"):
            assert len(locks) == 1


class TestPairKey:
    def test_ordered_pairs_differ(self) -> None:
        assert pair_key("request", "a", "b") != pair_key("request", "b", "a")

    def test_unordered_pairs_match(self) -> None:
        assert pair_key("invite", "a", "b", ordered=False) == pair_key(
            "invite", "b", "a", ordered=False
        )


class TestKeyedLockSingleton:
    def test_singleton_and_reset(self) -> None:
        first = get_keyed_lock()

        assert get_keyed_lock() is first

        reset_keyed_lock()
        assert get_keyed_lock() is not first
