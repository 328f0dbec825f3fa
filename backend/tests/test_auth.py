"""Tests for auth module (JWT + session id)."""
from datetime import timedelta

import jwt
import pytest

from roomchat.auth.service import AuthService
from roomchat.chat.errors import AuthenticationError
from roomchat.store import SessionStore, UserStore

SECRET = "test-secret"


@pytest.fixture
def users(fake_redis):
    return UserStore(fake_redis)


@pytest.fixture
def sessions(fake_redis):
    return SessionStore(fake_redis)


@pytest.fixture
def auth(users, sessions):
    return AuthService(users, sessions, secret_key=SECRET)


class TestTokens:
    def test_round_trip(self, auth):
        token = auth.create_token("u1")
        assert auth.decode_token(token) == "u1"

    def test_expired_token(self, auth):
        token = auth.create_token("u1", expires_in=timedelta(seconds=-1))

        with pytest.raises(AuthenticationError) as exc_info:
            auth.decode_token(token)
        assert exc_info.value.message == "Token expired"

    def test_wrong_secret(self, auth):
        token = jwt.encode({"user": {"id": "u1"}}, "other-secret", algorithm="HS256")

        with pytest.raises(AuthenticationError) as exc_info:
            auth.decode_token(token)
        assert exc_info.value.message == "Invalid token"

    def test_garbage_token(self, auth):
        with pytest.raises(AuthenticationError) as exc_info:
            auth.decode_token("not-a-jwt")
        assert exc_info.value.message == "Invalid token"

    def test_payload_without_user_id(self, auth):
        token = jwt.encode({"user": {}}, SECRET, algorithm="HS256")

        with pytest.raises(AuthenticationError) as exc_info:
            auth.decode_token(token)
        assert exc_info.value.message == "Invalid token"


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_valid_credentials(self, auth, users, sessions):
        alice = await users.create_user("Alice", "alice@example.com")
        session_id = await sessions.create_session(alice.id)

        user = await auth.authenticate(auth.create_token(alice.id), session_id)

        assert user.id == alice.id
        assert (await users.get_user_by_id(alice.id)).lastActive > 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token, session_id", [(None, "s"), ("t", None), ("", "")])
    async def test_missing_credentials(self, auth, token, session_id):
        with pytest.raises(AuthenticationError) as exc_info:
            await auth.authenticate(token, session_id)
        assert exc_info.value.message == "Authentication error"

    @pytest.mark.asyncio
    async def test_stale_session(self, auth, users, sessions):
        alice = await users.create_user("Alice", "alice@example.com")
        old_session = await sessions.create_session(alice.id)
        await sessions.create_session(alice.id)

        with pytest.raises(AuthenticationError) as exc_info:
            await auth.authenticate(auth.create_token(alice.id), old_session)
        assert exc_info.value.message == "Invalid session"

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth, sessions):
        session_id = await sessions.create_session("ghost")

        with pytest.raises(AuthenticationError) as exc_info:
            await auth.authenticate(auth.create_token("ghost"), session_id)
        assert exc_info.value.message == "User not found"
