"""Persisted chat rooms.

The participant set kept here is canonical for listing a room's members.
Password hashing happens in the HTTP layer; this store only keeps the hash.
"""
import logging
import time
import uuid
from typing import List, Optional

from pydantic import BaseModel, Field
from redis.asyncio import Redis as AsyncRedis
from redis.asyncio.client import Pipeline

from .keys import ROOM_KEY, ROOM_LIST_KEY, ROOM_PARTICIPANTS_KEY

logger = logging.getLogger(__name__)


class Room(BaseModel):
    """A chat room record.

    Attributes:
        id: Unique room identifier.
        name: Room display name.
        creator: User id of the creator.
        hasPassword: Whether joining through HTTP requires a password.
        createdAt: Epoch milliseconds.
        participants: Canonical participant ids.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    creator: str
    hasPassword: bool = False
    createdAt: int = Field(default_factory=lambda: int(time.time() * 1000))
    participants: List[str] = Field(default_factory=list)


class RoomStore:
    """Redis-backed room records and participant sets."""

    def __init__(self, redis: AsyncRedis) -> None:
        self.redis = redis

    async def create_room(
        self, name: str, creator_id: str, password_hash: Optional[str] = None
    ) -> Room:
        """Create a room with its creator as the first participant.

        Args:
            name: Room display name.
            creator_id: User id of the creator.
            password_hash: Already-computed password hash, if any.

        Returns:
            The created Room.
        """
        room = Room(
            name=name,
            creator=creator_id,
            hasPassword=bool(password_hash),
            participants=[creator_id],
        )
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                ROOM_KEY.format(room_id=room.id),
                mapping={
                    "name": room.name,
                    "creator": room.creator,
                    "hasPassword": "1" if room.hasPassword else "0",
                    "password": password_hash or "",
                    "createdAt": str(room.createdAt),
                },
            )
            pipe.sadd(ROOM_PARTICIPANTS_KEY.format(room_id=room.id), creator_id)
            pipe.zadd(ROOM_LIST_KEY, {room.id: room.createdAt})
            await pipe.execute()
        logger.info("Created room %s (%s) by %s", room.id, room.name, creator_id)
        return room

    async def get_room(self, room_id: str) -> Optional[Room]:
        data = await self.redis.hgetall(ROOM_KEY.format(room_id=room_id))
        if not data:
            return None
        participants = await self.get_participants(room_id)
        return Room(
            id=room_id,
            name=data.get("name", ""),
            creator=data.get("creator", ""),
            hasPassword=data.get("hasPassword") == "1",
            createdAt=int(data.get("createdAt") or 0),
            participants=participants,
        )

    async def get_password_hash(self, room_id: str) -> Optional[str]:
        value = await self.redis.hget(ROOM_KEY.format(room_id=room_id), "password")
        return value or None

    async def add_participant(
        self, room_id: str, user_id: str, pipe: Optional[Pipeline] = None
    ) -> Optional[bool]:
        """Add a user to the room's canonical participants.

        Args:
            room_id: Room to update.
            user_id: User to add.
            pipe: Transaction to queue the write on instead of running it now.

        Returns:
            Whether the user was newly added, or None when only queued on ``pipe``.
        """
        key = ROOM_PARTICIPANTS_KEY.format(room_id=room_id)
        if pipe is not None:
            pipe.sadd(key, user_id)
            return None
        return bool(await self.redis.sadd(key, user_id))

    async def remove_participant(
        self, room_id: str, user_id: str, pipe: Optional[Pipeline] = None
    ) -> Optional[bool]:
        key = ROOM_PARTICIPANTS_KEY.format(room_id=room_id)
        if pipe is not None:
            pipe.srem(key, user_id)
            return None
        return bool(await self.redis.srem(key, user_id))

    async def get_participants(self, room_id: str) -> List[str]:
        members = await self.redis.smembers(ROOM_PARTICIPANTS_KEY.format(room_id=room_id))
        return sorted(members)

    async def is_participant(self, room_id: str, user_id: str) -> bool:
        return bool(
            await self.redis.sismember(ROOM_PARTICIPANTS_KEY.format(room_id=room_id), user_id)
        )
