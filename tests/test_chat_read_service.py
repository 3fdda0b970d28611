"""Tests for the chat read model."""
import pytest

from reelmatch.services.chat_read_service import ChatMessageStore

from tests.factories import at


async def _room(db, service, a, b):
    await service.request_match(db, a, b, 1)
    outcome = await service.request_match(db, b, a, 1)
    return outcome.room_id


class TestSingleRoom:
    @pytest.mark.asyncio
    async def test_empty_room(self, db, service, make_user):
        a, b = await make_user("A"), await make_user("B")
        room_id = await _room(db, service, a, b)
        store = ChatMessageStore()

        assert await store.last_message(db, room_id) is None
        assert await store.count_from(db, room_id, a) == 0

    @pytest.mark.asyncio
    async def test_last_message_and_count(self, db, service, make_user, post_message):
        a, b = await make_user("A"), await make_user("B")
        room_id = await _room(db, service, a, b)
        await post_message(room_id, a, "first", 1)
        await post_message(room_id, b, "second", 2)
        await post_message(room_id, a, "third", 3)
        store = ChatMessageStore()

        last = await store.last_message(db, room_id)

        assert last.text == "third"
        assert last.sender_id == a
        assert last.sent_at == at(3)
        assert await store.count_from(db, room_id, a) == 2
        assert await store.count_from(db, room_id, b) == 1


class TestBatched:
    @pytest.mark.asyncio
    async def test_rooms_are_kept_apart(self, db, service, make_user, post_message):
        me, ana, ben = await make_user("Me"), await make_user("Ana"), await make_user("Ben")
        with_ana = await _room(db, service, me, ana)
        with_ben = await _room(db, service, me, ben)
        await post_message(with_ana, ana, "hi", 1)
        await post_message(with_ana, ana, "there", 2)
        store = ChatMessageStore()

        latest = await store.last_messages(db, [with_ana, with_ben])
        counts = await store.counts_by_sender(db, [with_ana, with_ben])

        assert list(latest) == [with_ana]
        assert latest[with_ana].text == "there"
        assert counts == {(with_ana, ana): 2}

    @pytest.mark.asyncio
    async def test_no_rooms(self, db):
        store = ChatMessageStore()
        assert await store.last_messages(db, []) == {}
        assert await store.counts_by_sender(db, []) == {}
