"""Tests for the pack API endpoints."""

import pytest


@pytest.fixture
async def catalog(seed) -> None:
    await seed.cards(
        ("pikachu", "Common"),
        ("bulbasaur", "Common"),
        ("squirtle", "Uncommon"),
        ("charizard", "Rare Holo"),
    )
    await seed.cards(("mew", "Secret Rare"), set_id="promo")


class TestPackStatus:
    async def test_fresh_user_has_full_bucket(self, client, headers) -> None:
        response = await client.get("/packs/status", headers=headers("alice"))

        assert response.status_code == 200
        data = response.json()
        assert data["tokens"] == data["capacity"] == 2
        assert data["next_allowed_at"] is None
        assert data["opened_last_24h"] == 0

    async def test_requires_caller_identity(self, client) -> None:
        response = await client.get("/packs/status")

        assert response.status_code == 401
        assert response.json()["failure"]["kind"] == "unauthenticated"


class TestOpenPack:
    async def test_open_pack(self, client, catalog, headers) -> None:
        response = await client.post("/packs/open", headers=headers("alice"))

        assert response.status_code == 200
        data = response.json()
        assert data["tokens"] == 1
        assert data["next_allowed_at"] is not None
        # the whole pool of five, then the hit
        assert len(data["cards"]) == 6

        collection = (await client.get("/collection/alice")).json()
        assert collection["total_cards"] == 6

    async def test_open_from_one_set(self, client, catalog, headers) -> None:
        response = await client.post(
            "/packs/open", json={"set_id": "promo"}, headers=headers("alice")
        )

        assert [c["card_id"] for c in response.json()["cards"]] == ["mew", "mew"]

    async def test_empty_bucket_is_rate_limited(self, client, catalog, headers) -> None:
        for _ in range(2):
            assert (await client.post("/packs/open", headers=headers("alice"))).status_code == 200

        response = await client.post("/packs/open", headers=headers("alice"))

        assert response.status_code == 429
        body = response.json()
        assert body["failure"]["kind"] == "rate_limited"
        assert body["data"]["next_allowed_at"] is not None

    async def test_refill_after_waiting(self, client, catalog, headers, clock) -> None:
        for _ in range(2):
            await client.post("/packs/open", headers=headers("alice"))

        clock.advance(hours=12)
        response = await client.post("/packs/open", headers=headers("alice"))

        assert response.status_code == 200
        status = (await client.get("/packs/status", headers=headers("alice"))).json()
        assert status["opened_last_24h"] == 3

    async def test_buckets_are_per_user(self, client, catalog, headers) -> None:
        for _ in range(2):
            await client.post("/packs/open", headers=headers("alice"))

        response = await client.post("/packs/open", headers=headers("bob"))

        assert response.status_code == 200

    async def test_unknown_set(self, client, catalog, headers) -> None:
        response = await client.post(
            "/packs/open", json={"set_id": "nowhere"}, headers=headers("alice")
        )

        assert response.status_code == 404

    async def test_failed_open_keeps_tokens(self, client, headers) -> None:
        """An empty catalog is checked before a token is spent."""
        await client.post("/packs/open", headers=headers("alice"))

        status = (await client.get("/packs/status", headers=headers("alice"))).json()
        assert status["tokens"] == 2
