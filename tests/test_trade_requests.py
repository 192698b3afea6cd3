"""Tests for trade request negotiation."""

import pytest

from cardswap.db.operations import owned_quantity
from cardswap.models.card import CardRef
from cardswap.models.failure import (
    DuplicateRequestError,
    ForbiddenError,
    InsufficientOwnershipError,
    InvalidCardRefError,
    InvalidTransitionError,
    NotFoundError,
    RecipientNotFoundError,
    SelfTradeNotAllowedError,
)
from cardswap.models.trade import TradeStatus, TradeType
from cardswap.services import trade_requests
from cardswap.services.notifications import NotificationKind
from cardswap.services.trade_requests import TradeRequestNegotiator
from cardswap.services.trade_state import TradeStateMachine


@pytest.fixture
async def users(seed) -> None:
    await seed.users("alice", "bob", "carol")
    await seed.give("alice", "pikachu", 2)
    await seed.give("bob", "charizard", 1)


@pytest.fixture
def negotiator(session_factory, notifier, clock, make_codes) -> TradeRequestNegotiator:
    return TradeRequestNegotiator(
        session_factory,
        notifier=notifier,
        room_codes=make_codes("REQROOM001", "REQROOM002"),
        clock=clock,
    )


async def _propose(negotiator, **overrides):
    proposal = {
        "offer": CardRef("pikachu"),
        "want": CardRef("charizard"),
    }
    proposal.update(overrides)
    return await negotiator.create("alice", "bob", **proposal)


class TestCreate:
    async def test_creates_pending_request(self, negotiator, users, notifier) -> None:
        request = await _propose(negotiator)

        assert request.status == "pending"
        assert request.offer_card_id == "pikachu"
        assert request.want_card_id == "charizard"
        assert notifier.kinds() == [NotificationKind.TRADE_REQUEST_RECEIVED]
        assert notifier.events[0].user_id == "bob"

    async def test_self_request(self, negotiator, users) -> None:
        with pytest.raises(SelfTradeNotAllowedError):
            await negotiator.create("alice", "alice", want=CardRef("charizard"))

    async def test_unknown_recipient(self, negotiator, users) -> None:
        with pytest.raises(RecipientNotFoundError):
            await negotiator.create("alice", "ghost", want=CardRef("charizard"))

    async def test_card_request_needs_wanted_card(self, negotiator, users) -> None:
        with pytest.raises(InvalidCardRefError):
            await negotiator.create("alice", "bob", offer=CardRef("pikachu"))

    async def test_duplicate_pending_request(self, negotiator, users) -> None:
        first = await _propose(negotiator)

        with pytest.raises(DuplicateRequestError) as exc_info:
            await _propose(negotiator)

        assert exc_info.value.existing_id == first.id

    async def test_different_want_is_not_duplicate(self, negotiator, users) -> None:
        await _propose(negotiator)

        second = await _propose(negotiator, want=CardRef("blastoise"))

        assert second.want_card_id == "blastoise"

    async def test_reverse_direction_is_not_duplicate(self, negotiator, users) -> None:
        await _propose(negotiator)

        reverse = await negotiator.create("bob", "alice", want=CardRef("charizard"))

        assert reverse.from_user_id == "bob"

    async def test_duplicate_manual_request(self, negotiator, users) -> None:
        await negotiator.create("alice", "bob", is_manual=True, note="any holo?")

        with pytest.raises(DuplicateRequestError):
            await negotiator.create("alice", "bob", is_manual=True, note="something else")

    async def test_request_allowed_again_after_rejection(self, negotiator, users) -> None:
        first = await _propose(negotiator)
        await negotiator.reject(first.id, "bob")

        second = await _propose(negotiator)

        assert second.id != first.id

    async def test_duplicate_committed_after_check(self, negotiator, users, monkeypatch) -> None:
        """An equivalent request slipping past the check trips the index instead."""
        first = await _propose(negotiator)
        real_find = trade_requests.find_pending_request
        lookups = []

        async def stale_then_real(*args):
            lookups.append(args[1:])
            if len(lookups) == 1:
                return None
            return await real_find(*args)

        monkeypatch.setattr(trade_requests, "find_pending_request", stale_then_real)

        with pytest.raises(DuplicateRequestError) as exc_info:
            await _propose(negotiator)

        assert exc_info.value.existing_id == first.id
        assert len(lookups) == 2
        assert [r.id for r in await negotiator.list_sent("alice")] == [first.id]

    async def test_offer_must_be_owned(self, negotiator, users) -> None:
        with pytest.raises(InsufficientOwnershipError) as exc_info:
            await _propose(negotiator, offer=CardRef("pikachu", 3))

        assert exc_info.value.shortfalls == [("alice", "pikachu", 3, 2)]

    async def test_want_only_request(self, negotiator, users) -> None:
        request = await _propose(negotiator, offer=None)

        assert request.offer_card_id is None


class TestAccept:
    async def test_opens_private_trade(self, negotiator, users, notifier) -> None:
        created = await _propose(negotiator)

        request, trade = await negotiator.accept(created.id, "bob")

        assert request.status == "accepted"
        assert request.trade_id == trade.id
        assert request.finished_at is not None
        assert trade.trade_type == "private"
        assert trade.private_room_code == "REQROOM001"
        assert trade.request_id == created.id
        assert trade.initiator_user_id == "alice"
        assert trade.receiver_user_id == "bob"
        assert trade.initiator_cards == [{"card_id": "pikachu", "quantity": 1}]
        assert trade.receiver_cards == [{"card_id": "charizard", "quantity": 1}]
        assert notifier.kinds()[-1] == NotificationKind.TRADE_REQUEST_ACCEPTED
        assert notifier.events[-1].user_id == "alice"

    async def test_redraws_code_taken_after_check(
        self, session_factory, users, make_codes, monkeypatch
    ) -> None:
        async def never_in_use(session, code):
            return False

        monkeypatch.setattr("cardswap.services.trade_state.room_code_in_use", never_in_use)
        trades = TradeStateMachine(session_factory, room_codes=make_codes("SHARED0001"))
        await trades.create_trade("carol", "bob", [], [], trade_type=TradeType.PRIVATE)
        negotiator = TradeRequestNegotiator(
            session_factory, room_codes=make_codes("SHARED0001", "REQROOM009")
        )
        created = await _propose(negotiator)

        request, trade = await negotiator.accept(created.id, "bob")

        assert trade.private_room_code == "REQROOM009"
        assert request.status == "accepted"
        assert request.trade_id == trade.id

    async def test_default_policy_keeps_confirmation_step(self, negotiator, users) -> None:
        created = await _propose(negotiator)

        _, trade = await negotiator.accept(created.id, "bob")

        assert trade.status == TradeStatus.PENDING.value

    async def test_pending_policy_trade_completes_after_accept(
        self, negotiator, users, session_factory
    ) -> None:
        created = await _propose(negotiator)
        _, trade = await negotiator.accept(created.id, "bob")
        trades = TradeStateMachine(session_factory)

        with pytest.raises(InvalidTransitionError):
            await trades.transition(trade.id, "alice", TradeStatus.COMPLETED)

        await trades.transition(trade.id, "bob", TradeStatus.ACCEPTED)
        await trades.transition(trade.id, "alice", TradeStatus.COMPLETED)

        async with session_factory() as session:
            assert await owned_quantity(session, "bob", "pikachu") == 1
            assert await owned_quantity(session, "alice", "charizard") == 1

    async def test_accepted_policy_trade_is_ready_to_complete(
        self, session_factory, users, make_codes
    ) -> None:
        negotiator = TradeRequestNegotiator(
            session_factory,
            room_codes=make_codes("REQROOM009"),
            accept_status=TradeStatus.ACCEPTED,
        )
        created = await _propose(negotiator)

        _, trade = await negotiator.accept(created.id, "bob")

        assert trade.status == TradeStatus.ACCEPTED.value
        done = await TradeStateMachine(session_factory).transition(
            trade.id, "bob", TradeStatus.COMPLETED
        )
        assert done.status == "completed"

    async def test_only_recipient_may_accept(self, negotiator, users) -> None:
        created = await _propose(negotiator)

        for outsider in ("alice", "carol"):
            with pytest.raises(ForbiddenError):
                await negotiator.accept(created.id, outsider)

    async def test_accept_twice(self, negotiator, users) -> None:
        created = await _propose(negotiator)
        await negotiator.accept(created.id, "bob")

        with pytest.raises(InvalidTransitionError):
            await negotiator.accept(created.id, "bob")

    async def test_missing_request(self, negotiator, users) -> None:
        with pytest.raises(NotFoundError):
            await negotiator.accept(404, "bob")

    async def test_manual_request_opens_empty_side(self, negotiator, users) -> None:
        created = await negotiator.create("alice", "bob", is_manual=True, note="trade me")

        _, trade = await negotiator.accept(created.id, "bob")

        assert trade.initiator_cards == []
        assert trade.receiver_cards == []


class TestRejectAndCancel:
    async def test_reject(self, negotiator, users, notifier) -> None:
        created = await _propose(negotiator)

        rejected = await negotiator.reject(created.id, "bob")

        assert rejected.status == "rejected"
        assert rejected.finished_at is not None
        assert notifier.kinds()[-1] == NotificationKind.TRADE_REQUEST_REJECTED

    async def test_sender_cannot_reject(self, negotiator, users) -> None:
        created = await _propose(negotiator)

        with pytest.raises(ForbiddenError):
            await negotiator.reject(created.id, "alice")

    async def test_rejected_request_cannot_be_accepted(self, negotiator, users) -> None:
        created = await _propose(negotiator)
        await negotiator.reject(created.id, "bob")

        with pytest.raises(InvalidTransitionError):
            await negotiator.accept(created.id, "bob")

    async def test_sender_cancels(self, negotiator, users) -> None:
        created = await _propose(negotiator)

        cancelled = await negotiator.cancel(created.id, "alice")

        assert cancelled.status == "cancelled"

    async def test_recipient_cannot_cancel(self, negotiator, users) -> None:
        created = await _propose(negotiator)

        with pytest.raises(ForbiddenError):
            await negotiator.cancel(created.id, "bob")


class TestListing:
    async def test_received_and_sent(self, negotiator, users) -> None:
        first = await _propose(negotiator)
        second = await negotiator.create("carol", "bob", want=CardRef("charizard"))

        received = await negotiator.list_received("bob")
        sent = await negotiator.list_sent("alice")

        assert {r.id for r in received} == {first.id, second.id}
        assert [r.id for r in sent] == [first.id]
