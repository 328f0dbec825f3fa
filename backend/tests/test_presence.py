"""Tests for the presence registry and duplicate-login arbitration."""
import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from chat_helpers import FakeWebSocket
from roomchat.chat.errors import AuthenticationError
from roomchat.chat.manager import ConnectionManager, ConnectionState, LiveConnection
from roomchat.chat.presence import (
    DUPLICATE_LOGIN_REASON,
    DuplicateLoginArbiter,
    PresenceRegistry,
)
from roomchat.store import User


def _connection(user: User, connection_id: str, user_agent: str = "agent") -> LiveConnection:
    websocket = FakeWebSocket(user_agent=user_agent, host="10.0.0.7")
    return LiveConnection(
        websocket, user, ip_address="10.0.0.7", user_agent=user_agent, connection_id=connection_id
    )


@pytest.fixture
def alice():
    return User(id="alice", name="Alice", email="alice@example.com")


class TestPresenceRegistry:
    @pytest.mark.asyncio
    async def test_register_returns_previous_connection(self, fake_redis):
        registry = PresenceRegistry(fake_redis)

        assert await registry.register("alice", "c1") is None
        assert await registry.register("alice", "c2") == "c1"
        assert await registry.current("alice") == "c2"

    @pytest.mark.asyncio
    async def test_stale_connection_cannot_release_newer_entry(self, fake_redis):
        registry = PresenceRegistry(fake_redis)
        await registry.register("alice", "c1")
        await registry.register("alice", "c2")

        assert await registry.release("alice", "c1") is False
        assert await registry.current("alice") == "c2"

        assert await registry.release("alice", "c2") is True
        assert await registry.current("alice") is None

    @pytest.mark.asyncio
    async def test_release_retries_when_entry_changes_concurrently(self, fake_redis):
        registry = PresenceRegistry(fake_redis)
        await registry.register("alice", "c1")

        original_get = fake_redis.get
        calls = {"n": 0}

        async def racing_get(name):
            value = await original_get(name)
            calls["n"] += 1
            if calls["n"] == 1:
                # Another writer touches the key between WATCH and EXEC.
                fake_redis._touch(name)
            return value

        fake_redis.get = racing_get

        assert await registry.release("alice", "c1") is True
        assert calls["n"] == 2
        assert await original_get("connected_user:alice") is None


class TestDuplicateLoginArbiter:
    @pytest.mark.asyncio
    async def test_first_login_supersedes_nothing(self, fake_redis, alice):
        manager = ConnectionManager()
        arbiter = DuplicateLoginArbiter(PresenceRegistry(fake_redis), manager, grace_seconds=0.01)

        assert await arbiter.claim(_connection(alice, "c1")) is None

    @pytest.mark.asyncio
    async def test_superseded_connection_is_warned_then_closed(self, fake_redis, alice):
        manager = ConnectionManager()
        terminated = []

        async def on_terminated(connection):
            terminated.append(connection.connection_id)

        arbiter = DuplicateLoginArbiter(
            PresenceRegistry(fake_redis), manager, grace_seconds=0.05, on_terminated=on_terminated
        )
        old = _connection(alice, "c1")
        manager.add(old)
        await arbiter.claim(old)

        new = _connection(alice, "c2", user_agent="phone")
        assert await arbiter.claim(new) == "c1"

        warning = old.websocket.events("duplicate_login")[0]
        assert warning["type"] == "new_login_attempt"
        assert warning["deviceInfo"] == "phone"
        assert warning["ipAddress"] == "10.0.0.7"
        assert old.state is ConnectionState.MARKED_FOR_TERMINATION

        await asyncio.sleep(0.1)

        assert old.state is ConnectionState.TERMINATED
        ended = old.websocket.events("session_ended")
        assert len(ended) == 1
        assert ended[0]["reason"] == DUPLICATE_LOGIN_REASON
        assert old.websocket.closed == (1000, None)
        assert terminated == ["c1"]
        assert new.state is ConnectionState.ACTIVE

    @pytest.mark.asyncio
    async def test_cancel_stops_pending_termination(self, fake_redis, alice):
        manager = ConnectionManager()
        arbiter = DuplicateLoginArbiter(PresenceRegistry(fake_redis), manager, grace_seconds=0.05)
        old = _connection(alice, "c1")
        manager.add(old)
        await arbiter.claim(old)
        await arbiter.claim(_connection(alice, "c2"))

        arbiter.cancel("c1")
        await asyncio.sleep(0.1)

        assert old.websocket.events("session_ended") == []
        assert old.websocket.closed is None

    @pytest.mark.asyncio
    async def test_remote_connection_is_only_superseded_in_registry(self, fake_redis, alice):
        registry = PresenceRegistry(fake_redis)
        await registry.register("alice", "held-elsewhere")
        arbiter = DuplicateLoginArbiter(registry, ConnectionManager(), grace_seconds=0.01)

        assert await arbiter.claim(_connection(alice, "c2")) == "held-elsewhere"
        assert await registry.current("alice") == "c2"
        assert arbiter._timers == {}

    @pytest.mark.asyncio
    async def test_registry_failure_rejects_login(self, fake_redis, alice):
        registry = PresenceRegistry(fake_redis)
        registry.register = AsyncMock(side_effect=RedisConnectionError("down"))
        arbiter = DuplicateLoginArbiter(registry, ConnectionManager())

        with pytest.raises(AuthenticationError) as exc_info:
            await arbiter.claim(_connection(alice, "c1"))
        assert exc_info.value.message == "Authentication error"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_timers(self, fake_redis, alice):
        manager = ConnectionManager()
        arbiter = DuplicateLoginArbiter(PresenceRegistry(fake_redis), manager, grace_seconds=10)
        old = _connection(alice, "c1")
        manager.add(old)
        await arbiter.claim(old)
        await arbiter.claim(_connection(alice, "c2"))

        await arbiter.shutdown()

        assert arbiter._timers == {}
        assert old.state is ConnectionState.MARKED_FOR_TERMINATION
