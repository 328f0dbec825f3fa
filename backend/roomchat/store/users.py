"""User records kept in Redis hashes.

Only the lookups the chat coordinator needs are provided here; account
creation through HTTP lives outside this service.
"""
import logging
import time
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from redis.asyncio import Redis as AsyncRedis

from .keys import USER_EMAIL_KEY, USER_KEY

logger = logging.getLogger(__name__)

UNKNOWN_SENDER = {"_id": "unknown", "name": "unknown", "email": "", "profileImage": ""}


class User(BaseModel):
    """A registered chat user.

    Attributes:
        id: Unique user identifier.
        name: Display name shown in the chat UI.
        email: Login email (lower-cased).
        profileImage: Optional avatar URL.
        lastActive: Epoch milliseconds of the last authenticated activity.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    email: str
    profileImage: str = ""
    lastActive: int = 0

    def projection(self) -> dict:
        """Public projection embedded in messages and participant lists."""
        return {
            "_id": self.id,
            "name": self.name,
            "email": self.email,
            "profileImage": self.profileImage,
        }


def _from_hash(user_id: str, data: Dict[str, str]) -> Optional[User]:
    if not data:
        return None
    return User(
        id=user_id,
        name=data.get("name", ""),
        email=data.get("email", ""),
        profileImage=data.get("profileImage", ""),
        lastActive=int(data.get("lastActive") or 0),
    )


class UserStore:
    """Redis-backed user lookups."""

    def __init__(self, redis: AsyncRedis) -> None:
        self.redis = redis

    async def create_user(self, name: str, email: str, profile_image: str = "") -> User:
        user = User(name=name, email=email.lower().strip(), profileImage=profile_image)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                USER_KEY.format(user_id=user.id),
                mapping={
                    "name": user.name,
                    "email": user.email,
                    "profileImage": user.profileImage,
                    "lastActive": str(user.lastActive),
                },
            )
            pipe.set(USER_EMAIL_KEY.format(email=user.email), user.id)
            await pipe.execute()
        logger.info("Created user %s (%s)", user.id, user.email)
        return user

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        data = await self.redis.hgetall(USER_KEY.format(user_id=user_id))
        return _from_hash(user_id, data)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        user_id = await self.redis.get(USER_EMAIL_KEY.format(email=email.lower().strip()))
        if not user_id:
            return None
        return await self.get_user_by_id(user_id)

    async def get_users_by_ids(self, user_ids: List[str]) -> List[User]:
        """Fetch several users in one round trip, skipping unknown ids.

        The result keeps the order of ``user_ids``.
        """
        if not user_ids:
            return []
        async with self.redis.pipeline(transaction=False) as pipe:
            for user_id in user_ids:
                pipe.hgetall(USER_KEY.format(user_id=user_id))
            rows = await pipe.execute()
        users = []
        for user_id, data in zip(user_ids, rows):
            user = _from_hash(user_id, data)
            if user is not None:
                users.append(user)
        return users

    async def touch_last_active(self, user_id: str) -> None:
        await self.redis.hset(
            USER_KEY.format(user_id=user_id),
            "lastActive",
            str(int(time.time() * 1000)),
        )
