"""Tests for reaction aggregation."""
import pytest

from chat_helpers import FakeWebSocket
from roomchat.chat.errors import AuthorizationError, NotFoundError, ValidationError
from roomchat.chat.manager import ConnectionManager, LiveConnection
from roomchat.chat.reactions import ReactionAggregator
from roomchat.store import Message, MessageStore, User


@pytest.fixture
def manager():
    return ConnectionManager()


@pytest.fixture
def store(fake_redis):
    return MessageStore(fake_redis)


@pytest.fixture
def aggregator(store, manager):
    return ReactionAggregator(store, manager)


@pytest.fixture
def room_socket(manager):
    connection = LiveConnection(FakeWebSocket(), User(id="u9", name="W", email="w@example.com"))
    manager.add(connection)
    manager.attach(connection, "r1")
    return connection.websocket


class TestReactionAggregator:
    @pytest.mark.asyncio
    async def test_add_twice_counts_once(self, aggregator, store, room_socket):
        message = await store.create(Message(room="r1", sender="u1", content="hi"))

        await aggregator.apply("u2", message.id, "👍", "add", "r1")
        reactions = await aggregator.apply("u2", message.id, "👍", "add", "r1")

        assert reactions == {"👍": ["u2"]}
        updates = room_socket.events("messageReactionUpdate")
        assert len(updates) == 2
        assert updates[-1] == {"messageId": message.id, "reactions": {"👍": ["u2"]}}

    @pytest.mark.asyncio
    async def test_remove(self, aggregator, store, room_socket):
        message = await store.create(Message(room="r1", sender="u1", content="hi"))
        await aggregator.apply("u2", message.id, "👍", "add", "r1")

        assert await aggregator.apply("u2", message.id, "👍", "remove", "r1") == {}
        assert room_socket.events("messageReactionUpdate")[-1]["reactions"] == {}

    @pytest.mark.asyncio
    async def test_missing_message(self, aggregator):
        with pytest.raises(NotFoundError):
            await aggregator.apply("u2", "missing", "👍", "add", "r1")

    @pytest.mark.asyncio
    async def test_deleted_message(self, aggregator, store):
        message = await store.create(Message(room="r1", sender="u1", content="hi"))
        await store.soft_delete(message.id)

        with pytest.raises(NotFoundError):
            await aggregator.apply("u2", message.id, "👍", "add", "r1")

    @pytest.mark.asyncio
    async def test_reacting_outside_your_room(self, aggregator, store, room_socket):
        message = await store.create(Message(room="r1", sender="u1", content="hi"))

        with pytest.raises(AuthorizationError):
            await aggregator.apply("u2", message.id, "👍", "add", "r2")
        with pytest.raises(AuthorizationError):
            await aggregator.apply("u2", message.id, "👍", "add", None)
        assert room_socket.sent == []

    @pytest.mark.asyncio
    async def test_unknown_action(self, aggregator, store):
        message = await store.create(Message(room="r1", sender="u1", content="hi"))

        with pytest.raises(ValidationError):
            await aggregator.apply("u2", message.id, "👍", "toggle", "r1")
