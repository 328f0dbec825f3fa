"""Tests for the Redis-backed stores (messages, rooms, users, files, sessions)."""
import pytest

from roomchat.store import (
    FileRecord,
    FileStore,
    Message,
    MessageStore,
    MessageType,
    RoomStore,
    SessionStore,
    UserStore,
)


async def _seed(store: MessageStore, room_id: str, timestamps):
    messages = []
    for i, ts in enumerate(timestamps):
        message = Message(room=room_id, sender="u1", content=f"m{i}", timestamp=ts)
        messages.append(await store.create(message))
    return messages


class TestMessageStore:
    @pytest.mark.asyncio
    async def test_create_and_get_round_trip(self, fake_redis):
        store = MessageStore(fake_redis)
        message = Message(
            room="r1",
            sender="u1",
            type=MessageType.TEXT,
            content="hello @wayneAI",
            mentions=["wayneAI"],
            metadata={"k": 1},
        )
        await store.create(message)

        loaded = await store.get(message.id)
        assert loaded.content == "hello @wayneAI"
        assert loaded.mentions == ["wayneAI"]
        assert loaded.metadata == {"k": 1}
        assert loaded.readers == []
        assert loaded.reactions == {}
        assert loaded.isDeleted is False
        assert await store.room_message_ids("r1") == [message.id]

    @pytest.mark.asyncio
    async def test_get_missing_message(self, fake_redis):
        assert await MessageStore(fake_redis).get("nope") is None

    @pytest.mark.asyncio
    async def test_colliding_timestamps_are_made_unique(self, fake_redis):
        store = MessageStore(fake_redis)
        seeded = await _seed(store, "r1", [100, 200, 200, 200, 150, 400])

        assert [m.timestamp for m in seeded] == [100, 200, 201, 202, 203, 400]
        assert (await store.get(seeded[3].id)).timestamp == 202

    @pytest.mark.asyncio
    async def test_pages_walk_backward_without_gaps_or_repeats(self, fake_redis):
        store = MessageStore(fake_redis)
        seeded = await _seed(store, "r1", [100, 200, 200, 200, 300, 400])

        page1, more1, oldest1 = await store.page_before("r1", None, 3)
        assert [m.content for m in page1] == ["m3", "m4", "m5"]
        assert more1 is True
        assert oldest1 == 202

        page2, more2, oldest2 = await store.page_before("r1", oldest1, 3)
        assert [m.content for m in page2] == ["m0", "m1", "m2"]
        assert more2 is False
        assert oldest2 == 100

        assert [m.id for m in page1 + page2] == [m.id for m in seeded[3:] + seeded[:3]]

    @pytest.mark.asyncio
    async def test_same_timestamp_burst_pages_completely(self, fake_redis):
        store = MessageStore(fake_redis)
        seeded = await _seed(store, "r1", [100, 500, 500, 500, 500, 500])

        served = []
        before, has_more = None, True
        while has_more:
            page, has_more, before = await store.page_before("r1", before, 2)
            assert len(page) <= 2
            served = [m.content for m in page] + served

        assert served == [m.content for m in seeded]

    @pytest.mark.asyncio
    async def test_pages_never_exceed_limit(self, fake_redis):
        store = MessageStore(fake_redis)
        await _seed(store, "r1", list(range(1000, 1100, 5)))

        before = None
        while True:
            page, has_more, before = await store.page_before("r1", before, 4)
            assert len(page) <= 4
            if not has_more:
                break

    @pytest.mark.asyncio
    async def test_empty_room_page(self, fake_redis):
        page, has_more, oldest = await MessageStore(fake_redis).page_before("empty", None, 30)
        assert page == []
        assert has_more is False
        assert oldest is None

    @pytest.mark.asyncio
    async def test_soft_deleted_messages_are_skipped_but_move_cursor(self, fake_redis):
        store = MessageStore(fake_redis)
        seeded = await _seed(store, "r1", [100, 200, 300])
        assert await store.soft_delete(seeded[2].id) is True

        page, has_more, oldest = await store.page_before("r1", None, 2)
        assert [m.id for m in page] == [seeded[1].id]
        assert has_more is True
        assert oldest == 200

    @pytest.mark.asyncio
    async def test_soft_delete_missing_message(self, fake_redis):
        assert await MessageStore(fake_redis).soft_delete("missing") is False

    @pytest.mark.asyncio
    async def test_mark_read_counts_new_readers(self, fake_redis):
        store = MessageStore(fake_redis)
        a, b = await _seed(store, "r1", [1, 2])

        assert await store.mark_read([a.id, b.id], "u2") == 2
        assert await store.mark_read([a.id, b.id], "u2") == 0
        assert await store.mark_read([], "u2") == 0
        assert (await store.get(a.id)).readers == ["u2"]

    @pytest.mark.asyncio
    async def test_reaction_add_is_idempotent(self, fake_redis):
        store = MessageStore(fake_redis)
        (message,) = await _seed(store, "r1", [1])

        assert await store.add_reaction(message.id, "👍", "u1") is True
        assert await store.add_reaction(message.id, "👍", "u1") is False
        await store.add_reaction(message.id, "👍", "u2")
        await store.add_reaction(message.id, "🎉", "u1")

        assert await store.get_reactions(message.id) == {"🎉": ["u1"], "👍": ["u1", "u2"]}

    @pytest.mark.asyncio
    async def test_removing_last_reactor_drops_reaction(self, fake_redis):
        store = MessageStore(fake_redis)
        (message,) = await _seed(store, "r1", [1])
        await store.add_reaction(message.id, "👍", "u1")

        assert await store.remove_reaction(message.id, "👍", "u1") is True
        assert await store.remove_reaction(message.id, "👍", "u1") is False
        assert await store.get_reactions(message.id) == {}
        assert await fake_redis.smembers(f"message:{message.id}:reaction_keys") == set()


class TestRoomStore:
    @pytest.mark.asyncio
    async def test_creator_is_first_participant(self, fake_redis):
        rooms = RoomStore(fake_redis)
        room = await rooms.create_room("general", "u1", password_hash="hash")

        loaded = await rooms.get_room(room.id)
        assert loaded.name == "general"
        assert loaded.hasPassword is True
        assert loaded.participants == ["u1"]
        assert await rooms.get_password_hash(room.id) == "hash"
        assert await rooms.is_participant(room.id, "u1") is True

    @pytest.mark.asyncio
    async def test_participant_changes(self, fake_redis):
        rooms = RoomStore(fake_redis)
        room = await rooms.create_room("general", "u1")

        assert await rooms.add_participant(room.id, "u2") is True
        assert await rooms.add_participant(room.id, "u2") is False
        assert await rooms.get_participants(room.id) == ["u1", "u2"]
        assert await rooms.remove_participant(room.id, "u1") is True
        assert await rooms.get_participants(room.id) == ["u2"]
        assert await rooms.get_password_hash(room.id) is None

    @pytest.mark.asyncio
    async def test_participant_changes_queue_on_transaction(self, fake_redis):
        rooms = RoomStore(fake_redis)
        room = await rooms.create_room("general", "u1")

        async with fake_redis.pipeline(transaction=True) as pipe:
            assert await rooms.add_participant(room.id, "u2", pipe=pipe) is None
            assert await rooms.remove_participant(room.id, "u1", pipe=pipe) is None
            assert await rooms.get_participants(room.id) == ["u1"]
            await pipe.execute()

        assert await rooms.get_participants(room.id) == ["u2"]

    @pytest.mark.asyncio
    async def test_missing_room(self, fake_redis):
        assert await RoomStore(fake_redis).get_room("nope") is None


class TestUserStore:
    @pytest.mark.asyncio
    async def test_lookup_by_id_and_email(self, fake_redis):
        users = UserStore(fake_redis)
        alice = await users.create_user("Alice", " Alice@Example.com ")

        assert (await users.get_user_by_id(alice.id)).name == "Alice"
        assert (await users.get_user_by_email("alice@example.com")).id == alice.id
        assert await users.get_user_by_email("bob@example.com") is None

    @pytest.mark.asyncio
    async def test_batch_lookup_keeps_order_and_skips_unknown(self, fake_redis):
        users = UserStore(fake_redis)
        alice = await users.create_user("Alice", "alice@example.com")
        bob = await users.create_user("Bob", "bob@example.com")

        found = await users.get_users_by_ids([bob.id, "ghost", alice.id])
        assert [u.id for u in found] == [bob.id, alice.id]
        assert found[0].projection() == {
            "_id": bob.id,
            "name": "Bob",
            "email": "bob@example.com",
            "profileImage": "",
        }

    @pytest.mark.asyncio
    async def test_touch_last_active(self, fake_redis):
        users = UserStore(fake_redis)
        alice = await users.create_user("Alice", "alice@example.com")
        await users.touch_last_active(alice.id)
        assert (await users.get_user_by_id(alice.id)).lastActive > 0


class TestFileAndSessionStores:
    @pytest.mark.asyncio
    async def test_file_record(self, fake_redis):
        files = FileStore(fake_redis)
        record = await files.save(FileRecord(
            filename="a1.png", originalname="cat.png", mimetype="image/png", size=42, user="u1",
        ))
        loaded = await files.get(record.id)
        assert loaded.user == "u1"
        assert loaded.projection()["size"] == 42
        assert await files.get("missing") is None

    @pytest.mark.asyncio
    async def test_session_replaced_on_new_login(self, fake_redis):
        sessions = SessionStore(fake_redis)
        first = await sessions.create_session("u1")
        second = await sessions.create_session("u1")

        assert await sessions.validate("u1", second) is True
        assert await sessions.validate("u1", first) is False
        assert await sessions.validate("u1", "") is False

        await sessions.remove_session("u1")
        assert await sessions.get_session("u1") is None
