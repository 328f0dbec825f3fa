"""Token and session authentication for chat connections.

A client connects with two query parameters:

    token      JWT signed with the shared secret, payload {"user": {"id": ...}}
    sessionId  the user's active session id

Both must be valid and the user must exist. Every failure is reported as
an AuthenticationError carrying the message sent back to the client.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from roomchat.chat.errors import AuthenticationError
from roomchat.store import SessionStore, User, UserStore

logger = logging.getLogger(__name__)


class AuthService:
    """Validates chat credentials.

    Args:
        users: User store.
        sessions: Session store.
        secret_key: JWT signing secret.
        algorithm: JWT algorithm (default HS256).
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        secret_key: str,
        algorithm: str = "HS256",
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.secret_key = secret_key
        self.algorithm = algorithm

    def create_token(self, user_id: str, expires_in: Optional[timedelta] = None) -> str:
        """Issue a token for ``user_id`` (used by the login flow and tests)."""
        now = datetime.now(timezone.utc)
        payload = {
            "user": {"id": user_id},
            "iat": now,
            "exp": now + (expires_in or timedelta(hours=24)),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> str:
        """Return the user id carried by ``token``.

        Raises:
            AuthenticationError: "Token expired" or "Invalid token".
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token") from e

        user = payload.get("user")
        user_id = user.get("id") if isinstance(user, dict) else None
        if not user_id:
            raise AuthenticationError("Invalid token")
        return str(user_id)

    async def authenticate(self, token: Optional[str], session_id: Optional[str]) -> User:
        """Validate connection credentials and return the user.

        On success the user's ``lastActive`` is refreshed.
        """
        if not token or not session_id:
            raise AuthenticationError("Authentication error")

        user_id = self.decode_token(token)

        if not await self.sessions.validate(user_id, session_id):
            logger.info("Rejected stale session for user %s", user_id)
            raise AuthenticationError("Invalid session")

        user = await self.users.get_user_by_id(user_id)
        if user is None:
            raise AuthenticationError("User not found")

        await self.users.touch_last_active(user_id)
        return user
