"""Active login session per user.

A user has at most one session id; logging in again replaces it.
"""
import logging
import uuid
from typing import Optional

from redis.asyncio import Redis as AsyncRedis

from .keys import USER_SESSION_KEY

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, redis: AsyncRedis) -> None:
        self.redis = redis

    async def create_session(self, user_id: str) -> str:
        session_id = uuid.uuid4().hex
        await self.redis.set(USER_SESSION_KEY.format(user_id=user_id), session_id)
        logger.info("Session created for user %s", user_id)
        return session_id

    async def get_session(self, user_id: str) -> Optional[str]:
        return await self.redis.get(USER_SESSION_KEY.format(user_id=user_id))

    async def validate(self, user_id: str, session_id: str) -> bool:
        if not session_id:
            return False
        return await self.get_session(user_id) == session_id

    async def remove_session(self, user_id: str) -> None:
        await self.redis.delete(USER_SESSION_KEY.format(user_id=user_id))
