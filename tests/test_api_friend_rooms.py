"""Tests for the friend trade room API endpoints."""

import pytest


@pytest.fixture
async def users(seed) -> None:
    await seed.users("alice", "bob", "carol")
    await seed.friends("alice", "bob")


async def _invite(client, headers, from_user: str = "alice", to_user: str = "bob"):
    return await client.post(
        "/friend-trade-rooms/invites", json={"to_user_id": to_user}, headers=headers(from_user)
    )


class TestInvites:
    async def test_invite_friend(self, client, users, headers) -> None:
        response = await _invite(client, headers)

        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        assert response.json()["private_room_code"] is None

    async def test_invite_stranger(self, client, users, headers) -> None:
        response = await _invite(client, headers, to_user="carol")

        assert response.status_code == 403
        assert response.json()["failure"]["kind"] == "not_friends"

    async def test_invite_self(self, client, users, headers) -> None:
        response = await _invite(client, headers, to_user="alice")

        assert response.status_code == 400
        assert response.json()["failure"]["kind"] == "self_invite"

    async def test_duplicate_either_direction(self, client, users, headers) -> None:
        await _invite(client, headers)

        response = await _invite(client, headers, from_user="bob", to_user="alice")

        assert response.status_code == 409
        assert response.json()["failure"]["kind"] == "duplicate_invite"

    async def test_list(self, client, users, headers) -> None:
        created = (await _invite(client, headers)).json()

        bob = (await client.get("/friend-trade-rooms/invites", headers=headers("bob"))).json()
        alice = (await client.get("/friend-trade-rooms/invites", headers=headers("alice"))).json()

        assert [i["id"] for i in bob["received"]] == [created["id"]]
        assert bob["sent"] == []
        assert [i["id"] for i in alice["sent"]] == [created["id"]]


class TestRespond:
    async def test_accept_opens_room(self, client, users, headers) -> None:
        created = (await _invite(client, headers)).json()

        response = await client.post(
            f"/friend-trade-rooms/invites/{created['id']}/accept", headers=headers("bob")
        )

        assert response.status_code == 200
        data = response.json()
        assert data["invite"]["status"] == "accepted"
        assert data["invite"]["private_room_code"] == data["trade"]["private_room_code"]
        assert data["trade"]["trade_type"] == "private"
        assert data["trade"]["initiator_user_id"] == "alice"
        assert data["trade"]["initiator_cards"] == []

    async def test_inviter_cannot_accept(self, client, users, headers) -> None:
        created = (await _invite(client, headers)).json()

        response = await client.post(
            f"/friend-trade-rooms/invites/{created['id']}/accept", headers=headers("alice")
        )

        assert response.status_code == 403

    async def test_reject(self, client, users, headers) -> None:
        created = (await _invite(client, headers)).json()

        response = await client.post(
            f"/friend-trade-rooms/invites/{created['id']}/reject", headers=headers("bob")
        )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

    async def test_accept_after_reject(self, client, users, headers) -> None:
        created = (await _invite(client, headers)).json()
        await client.post(
            f"/friend-trade-rooms/invites/{created['id']}/reject", headers=headers("bob")
        )

        response = await client.post(
            f"/friend-trade-rooms/invites/{created['id']}/accept", headers=headers("bob")
        )

        assert response.status_code == 409

    async def test_missing_invite(self, client, users, headers) -> None:
        response = await client.post(
            "/friend-trade-rooms/invites/41/reject", headers=headers("bob")
        )

        assert response.status_code == 404
