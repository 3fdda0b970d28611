"""Tests for the matching orchestrator: transactions, races, notifications."""
import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import delete, func, select

from reelmatch.models import ConversationRoom, MatchRequest, RoomMembership
from reelmatch.schemas.match import MatchState
from reelmatch.services.ledger_service import ReferentialIntegrityError
from reelmatch.services.matching_service import FALLBACK_ITEM_TITLE, MatchingService
from reelmatch.services.notification_service import NotificationDispatcher
from reelmatch.services.resolver_service import MutualMatchResolver

from tests.factories import RecordingDispatcher


async def _count(session_factory, model):
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


class _ExplodingResolver(MutualMatchResolver):
    """Resolves normally, then fails before the transaction can commit."""

    def __init__(self, exc):
        self.exc = exc

    async def try_resolve(self, db_session, user_a_id, user_b_id, item_id):
        await super().try_resolve(db_session, user_a_id, user_b_id, item_id)
        raise self.exc


class TestRequestMatch:
    @pytest.mark.asyncio
    async def test_one_sided_request(self, db, service, make_user):
        a, b = await make_user("A"), await make_user("B")
        outcome = await service.request_match(db, a, b, 1)

        assert outcome.matched is False
        assert outcome.room_id is None
        assert outcome.already_existed is False
        assert outcome.to_response().model_dump() == {"matched": False, "room_id": None}

    @pytest.mark.asyncio
    async def test_reciprocation_creates_room(self, db, service, session_factory, make_user):
        a, b = await make_user("A"), await make_user("B")
        await service.request_match(db, a, b, 1)
        outcome = await service.request_match(db, b, a, 1)

        assert outcome.matched is True
        assert outcome.room_created is True
        assert await _count(session_factory, ConversationRoom) == 1
        assert await _count(session_factory, RoomMembership) == 2
        assert await _count(session_factory, MatchRequest) == 0

    @pytest.mark.asyncio
    async def test_second_discoverer_gets_same_room(self, db, service, session_factory, make_user):
        a, b = await make_user("A"), await make_user("B")
        await service.request_match(db, a, b, 1)
        created = await service.request_match(db, b, a, 1)

        repeat_b = await service.request_match(db, b, a, 1)
        repeat_a = await service.request_match(db, a, b, 1)
        other_item = await service.request_match(db, a, b, 42)

        for outcome in (repeat_b, repeat_a, other_item):
            assert outcome.matched is True
            assert outcome.room_created is False
            assert outcome.room_id == created.room_id
        assert await _count(session_factory, ConversationRoom) == 1
        assert await _count(session_factory, MatchRequest) == 0

    @pytest.mark.asyncio
    async def test_request_on_matched_pair_reports_room_not_ledger_row(
        self, db, service, make_user
    ):
        a, b = await make_user("A"), await make_user("B")
        await service.request_match(db, a, b, 1)
        await service.request_match(db, b, a, 1)

        outcome = await service.request_match(db, a, b, 7)

        assert outcome.matched is True
        assert outcome.room_existed is True
        assert outcome.already_existed is False
        assert outcome.notifications == []

    @pytest.mark.asyncio
    async def test_concurrent_reciprocal_requests_create_one_room(
        self, session_factory, make_user
    ):
        a, b = await make_user("A"), await make_user("B")
        service = MatchingService(dispatcher=RecordingDispatcher())

        async def request(requestor, target):
            async with session_factory() as session:
                return await service.request_match(session, requestor, target, 1)

        results = await asyncio.gather(request(a, b), request(b, a))

        assert sum(r.room_created for r in results) == 1
        matched = [r for r in results if r.matched]
        assert len(matched) >= 1
        assert len({r.room_id for r in matched}) == 1
        assert await _count(session_factory, ConversationRoom) == 1
        assert await _count(session_factory, RoomMembership) == 2
        assert await _count(session_factory, MatchRequest) == 0

        async with session_factory() as session:
            status_a = await service.status(session, a, b)
            status_b = await service.status(session, b, a)
        assert status_a.state == status_b.state == MatchState.MATCHED
        assert status_a.room_id == status_b.room_id == matched[0].room_id

    @pytest.mark.asyncio
    async def test_many_concurrent_rounds_never_duplicate_rooms(
        self, session_factory, make_user
    ):
        a, b = await make_user("A"), await make_user("B")
        service = MatchingService()

        async def request(requestor, target):
            async with session_factory() as session:
                return await service.request_match(session, requestor, target, 1)

        calls = [request(a, b) if i % 2 else request(b, a) for i in range(8)]
        results = await asyncio.gather(*calls)

        room_ids = {r.room_id for r in results if r.matched}
        assert len(room_ids) == 1
        assert await _count(session_factory, ConversationRoom) == 1

    @pytest.mark.asyncio
    async def test_failure_inside_transaction_rolls_back(
        self, db, session_factory, make_user
    ):
        a, b = await make_user("A"), await make_user("B")
        await MatchingService().request_match(db, b, a, 1)

        failing = MatchingService(resolver=_ExplodingResolver(RuntimeError("boom")))
        async with session_factory() as session:
            with pytest.raises(RuntimeError):
                await failing.request_match(session, a, b, 1)

        assert await _count(session_factory, ConversationRoom) == 0
        assert await _count(session_factory, RoomMembership) == 0
        async with session_factory() as session:
            rows = (await session.execute(select(MatchRequest))).scalars().all()
        assert [(r.requestor_id, r.target_user_id, r.item_id) for r in rows] == [(b, a, 1)]

    @pytest.mark.asyncio
    async def test_cancellation_rolls_back(self, db, session_factory, make_user):
        a, b = await make_user("A"), await make_user("B")
        await MatchingService().request_match(db, b, a, 1)

        cancelled = MatchingService(
            resolver=_ExplodingResolver(asyncio.CancelledError())
        )
        async with session_factory() as session:
            with pytest.raises(asyncio.CancelledError):
                await cancelled.request_match(session, a, b, 1)

        assert await _count(session_factory, ConversationRoom) == 0
        assert await _count(session_factory, MatchRequest) == 1

    @pytest.mark.asyncio
    async def test_unknown_target_raises_referential_error(
        self, db, service, session_factory, make_user
    ):
        a = await make_user("A")
        with pytest.raises(ReferentialIntegrityError):
            await service.request_match(db, a, uuid.uuid4(), 1)
        assert await _count(session_factory, MatchRequest) == 0

    @pytest.mark.asyncio
    async def test_works_inside_an_open_transaction(self, db, service, session_factory, make_user):
        """A route that read through the session first still commits the request."""
        a, b = await make_user("A"), await make_user("B")
        assert await service.identity_provider.exists(db, b)
        assert db.in_transaction()

        await service.request_match(db, a, b, 1)

        assert await _count(session_factory, MatchRequest) == 1


class TestDecline:
    @pytest.mark.asyncio
    async def test_decline_then_status_is_none(self, db, service, make_user):
        a, b = await make_user("A"), await make_user("B")
        await service.request_match(db, a, b, 1)

        assert await service.decline(db, b, a, 1) is True

        status_b = await service.status(db, b, a)
        status_a = await service.status(db, a, b)
        assert status_b.state == MatchState.NONE
        assert status_a.state == MatchState.NONE

    @pytest.mark.asyncio
    async def test_decline_keeps_decliners_outgoing_request(self, db, service, make_user):
        a, b = await make_user("A"), await make_user("B")
        await service.request_match(db, a, b, 1)
        await service.request_match(db, b, a, 2)

        await service.decline(db, b, a, 1)

        status_b = await service.status(db, b, a)
        assert status_b.state == MatchState.PENDING_SENT
        assert status_b.outgoing_item_ids == [2]


class TestOrphanedRoom:
    """Status and requests agree once a membership row has been removed."""

    async def _match_then_drop(self, db, service, session_factory, a, b):
        await service.request_match(db, a, b, 1)
        outcome = await service.request_match(db, b, a, 1)
        async with session_factory() as session:
            await session.execute(delete(RoomMembership).where(RoomMembership.user_id == b))
            await session.commit()
        return outcome.room_id

    @pytest.mark.asyncio
    async def test_request_is_recorded_when_status_says_none(
        self, db, service, session_factory, dispatcher, make_user
    ):
        a, b = await make_user("A"), await make_user("B")
        await self._match_then_drop(db, service, session_factory, a, b)

        before = await service.status(db, a, b)
        await db.commit()
        outcome = await service.request_match(db, a, b, 2)
        after = await service.status(db, a, b)

        assert before.state == MatchState.NONE
        assert before.can_match is True
        assert outcome.matched is False
        assert outcome.room_existed is False
        assert after.state == MatchState.PENDING_SENT
        assert dispatcher.types_for(b)[-1] == "match_request"

    @pytest.mark.asyncio
    async def test_reciprocation_reuses_the_room(
        self, db, service, session_factory, dispatcher, make_user
    ):
        a, b = await make_user("A"), await make_user("B")
        room_id = await self._match_then_drop(db, service, session_factory, a, b)

        await service.request_match(db, a, b, 2)
        outcome = await service.request_match(db, b, a, 2)

        assert outcome.matched is True
        assert outcome.room_created is True
        assert outcome.room_id == room_id
        assert await _count(session_factory, ConversationRoom) == 1
        assert await _count(session_factory, RoomMembership) == 2
        for viewer, other in ((a, b), (b, a)):
            status = await service.status(db, viewer, other)
            assert status.state == MatchState.MATCHED
            assert status.room_id == room_id
        assert [m.room_id for m in await service.active_matches(db, a)] == [room_id]
        assert dispatcher.types_for(a)[-1] == "mutual_match"


class TestNotifications:
    @pytest.mark.asyncio
    async def test_new_request_notifies_target(self, db, dispatcher, service, make_user, like):
        a, b = await make_user("Ana"), await make_user("Ben")
        await like(a, 1, title="Inception")

        await service.request_match(db, a, b, 1)

        assert len(dispatcher.sent) == 1
        recipient, payload = dispatcher.sent[0]
        assert recipient == b
        assert payload.type == "match_request"
        assert payload.user.id == a
        assert payload.user.display_name == "Ana"
        assert payload.item_title == "Inception"
        assert payload.room_id is None

    @pytest.mark.asyncio
    async def test_repeated_request_sends_nothing(self, db, dispatcher, service, make_user):
        a, b = await make_user("A"), await make_user("B")
        await service.request_match(db, a, b, 1)
        await service.request_match(db, a, b, 1)

        assert dispatcher.types_for(b) == ["match_request"]

    @pytest.mark.asyncio
    async def test_mutual_match_notifies_both_once(self, db, dispatcher, service, make_user):
        a, b = await make_user("Ana"), await make_user("Ben")
        await service.request_match(db, a, b, 1)
        outcome = await service.request_match(db, b, a, 1)
        await service.request_match(db, a, b, 1)  # rediscovery

        mutual = [(uid, p) for uid, p in dispatcher.sent if p.type == "mutual_match"]
        assert {uid for uid, _ in mutual} == {a, b}
        for uid, payload in mutual:
            assert payload.room_id == outcome.room_id
            assert payload.user.id == (b if uid == a else a)
            assert payload.item_title == FALLBACK_ITEM_TITLE

    @pytest.mark.asyncio
    async def test_dispatcher_failure_does_not_fail_the_match(
        self, db, session_factory, make_user
    ):
        a, b = await make_user("A"), await make_user("B")
        broken = NotificationDispatcher()
        broken.notify = AsyncMock(side_effect=ConnectionError("redis down"))
        service = MatchingService(dispatcher=broken)

        await service.request_match(db, a, b, 1)
        outcome = await service.request_match(db, b, a, 1)

        assert outcome.matched is True
        assert broken.notify.await_count == 3
        assert await _count(session_factory, ConversationRoom) == 1

    @pytest.mark.asyncio
    async def test_slow_dispatcher_is_bounded(self, db, session_factory, make_user):
        a, b = await make_user("A"), await make_user("B")

        class Slow(NotificationDispatcher):
            async def notify(self, user_id, payload):
                await asyncio.sleep(5)

        service = MatchingService(dispatcher=Slow(), notification_timeout=0.05)
        outcome = await service.request_match(db, a, b, 1)

        assert outcome.matched is False
        assert await _count(session_factory, MatchRequest) == 1


class TestCandidates:
    @pytest.mark.asyncio
    async def test_enriched_with_name_and_status(self, db, service, make_user, like):
        me = await make_user("Me")
        pending = await make_user("Pending")
        fresh = await make_user("Fresh")
        for uid in (me, pending, fresh):
            await like(uid, 1)
        await like(me, 2)
        await like(pending, 2)

        await service.request_match(db, me, pending, 1)
        candidates = await service.candidates(db, me, 10)

        assert [c.other_user_id for c in candidates] == [pending, fresh]
        assert candidates[0].display_name == "Pending"
        assert candidates[0].match_status == MatchState.PENDING_SENT
        assert candidates[0].request_sent_at is not None
        assert candidates[1].match_status == MatchState.NONE
        assert candidates[1].request_sent_at is None

    @pytest.mark.asyncio
    async def test_matched_candidates_still_listed(self, db, service, make_user, like):
        a, b = await make_user("A"), await make_user("B")
        await like(a, 1)
        await like(b, 1)
        await service.request_match(db, a, b, 1)
        await service.request_match(db, b, a, 1)

        candidates = await service.candidates(db, a, 10)
        assert candidates[0].match_status == MatchState.MATCHED
