"""Message persistence and paging over Redis.

Each message is a hash under ``message:{id}``. Per room, message ids are
appended to a list (the canonical order) and added to a sorted set scored
by timestamp, which is what paging walks.

Paging contract:
    - Timestamps are unique and strictly increasing within a room. A message
      created at or before the room's newest timestamp is moved to newest + 1.
    - Pages walk strictly backward from an exclusive ``before`` cursor, so
      ``before = oldestTimestamp`` never skips or repeats a message.
    - Messages are returned oldest first.
"""
import json
import logging
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import WatchError

from .keys import (
    MESSAGE_KEY,
    MESSAGE_REACTION_KEY,
    MESSAGE_REACTION_KEYS_KEY,
    MESSAGE_READERS_KEY,
    ROOM_MESSAGES_KEY,
    ROOM_TIMELINE_KEY,
)

logger = logging.getLogger(__name__)

SYSTEM_SENDER = "system"
AI_SENDER = "ai"


def now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Data Models
# =============================================================================


class MessageType(str, Enum):
    """Type of chat message."""
    TEXT = "text"
    FILE = "file"
    SYSTEM = "system"
    AI = "ai"


class Message(BaseModel):
    """A persisted chat message.

    Only ``readers``, ``reactions`` and ``isDeleted`` change after creation.

    Attributes:
        id: Generated message id.
        room: Room the message belongs to.
        sender: Sender user id, or ``system`` / ``ai``.
        type: Message type.
        content: Message text.
        file: File id for file messages.
        aiType: AI persona for AI messages.
        timestamp: Epoch milliseconds.
        mentions: AI types mentioned in the content.
        readers: User ids that have read the message.
        reactions: Reaction key -> user ids.
        metadata: Free-form extra data (file info, AI usage).
        isDeleted: Soft-delete flag.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    room: str
    sender: str
    type: MessageType = MessageType.TEXT
    content: str = ""
    file: Optional[str] = None
    aiType: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    mentions: List[str] = Field(default_factory=list)
    readers: List[str] = Field(default_factory=list)
    reactions: Dict[str, List[str]] = Field(default_factory=dict)
    metadata: dict = Field(default_factory=dict)
    isDeleted: bool = False

    def to_hash(self) -> Dict[str, str]:
        return {
            "room": self.room,
            "sender": self.sender,
            "type": self.type.value,
            "content": self.content,
            "file": self.file or "",
            "aiType": self.aiType or "",
            "timestamp": str(self.timestamp),
            "mentions": json.dumps(self.mentions),
            "metadata": json.dumps(self.metadata),
            "isDeleted": "1" if self.isDeleted else "0",
        }

    @classmethod
    def from_hash(cls, message_id: str, data: Dict[str, str]) -> "Message":
        return cls(
            id=message_id,
            room=data.get("room", ""),
            sender=data.get("sender", ""),
            type=MessageType(data.get("type") or MessageType.TEXT.value),
            content=data.get("content", ""),
            file=data.get("file") or None,
            aiType=data.get("aiType") or None,
            timestamp=int(data.get("timestamp") or 0),
            mentions=json.loads(data.get("mentions") or "[]"),
            metadata=json.loads(data.get("metadata") or "{}"),
            isDeleted=data.get("isDeleted") == "1",
        )


# =============================================================================
# Message Store
# =============================================================================


class MessageStore:
    """Redis-backed message facade used by the chat coordinator."""

    def __init__(self, redis: AsyncRedis) -> None:
        self.redis = redis

    async def create(self, message: Message) -> Message:
        """Persist a new message and index it in its room.

        Args:
            message: The message to store. Its id is kept; its timestamp is
                bumped past the room's newest message when it would tie or
                go backward.

        Returns:
            The same message (for chaining).
        """
        timeline = ROOM_TIMELINE_KEY.format(room_id=message.room)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(timeline)
                    newest = await pipe.zrevrangebyscore(
                        timeline, "+inf", "-inf", start=0, num=1, withscores=True
                    )
                    if newest and message.timestamp <= int(newest[0][1]):
                        message.timestamp = int(newest[0][1]) + 1
                    pipe.multi()
                    pipe.hset(MESSAGE_KEY.format(message_id=message.id), mapping=message.to_hash())
                    pipe.rpush(ROOM_MESSAGES_KEY.format(room_id=message.room), message.id)
                    pipe.zadd(timeline, {message.id: message.timestamp})
                    await pipe.execute()
                    break
                except WatchError:
                    logger.debug("Timeline of room %s changed during create, retrying", message.room)
                    continue
        logger.debug("Stored %s message %s in room %s", message.type.value, message.id, message.room)
        return message

    async def get(self, message_id: str) -> Optional[Message]:
        data = await self.redis.hgetall(MESSAGE_KEY.format(message_id=message_id))
        if not data:
            return None
        message = Message.from_hash(message_id, data)
        message.readers = sorted(
            await self.redis.smembers(MESSAGE_READERS_KEY.format(message_id=message_id))
        )
        message.reactions = await self.get_reactions(message_id)
        return message

    async def get_many(self, message_ids: List[str]) -> List[Message]:
        messages = []
        for message_id in message_ids:
            message = await self.get(message_id)
            if message is not None:
                messages.append(message)
        return messages

    async def room_message_ids(self, room_id: str) -> List[str]:
        """All message ids of a room in append order."""
        return await self.redis.lrange(ROOM_MESSAGES_KEY.format(room_id=room_id), 0, -1)

    async def page_before(
        self, room_id: str, before: Optional[int], limit: int
    ) -> Tuple[List[Message], bool, Optional[int]]:
        """Fetch one page of history older than ``before``.

        Args:
            room_id: Room to page through.
            before: Exclusive upper bound in epoch ms, or None for the newest page.
            limit: Maximum number of messages in the page.

        Returns:
            Tuple of (messages oldest first, has_more, oldest timestamp scanned).
            Soft-deleted messages are skipped but still move the cursor.
        """
        timeline = ROOM_TIMELINE_KEY.format(room_id=room_id)
        upper = f"({before}" if before is not None else "+inf"
        page = await self.redis.zrevrangebyscore(
            timeline, upper, "-inf", start=0, num=limit, withscores=True
        )
        if not page:
            return [], False, None

        oldest = int(page[-1][1])
        remaining = await self.redis.zcount(timeline, "-inf", f"({oldest}")
        messages = await self.get_many([message_id for message_id, _ in reversed(page)])
        return [m for m in messages if not m.isDeleted], remaining > 0, oldest

    async def mark_read(self, message_ids: List[str], user_id: str) -> int:
        if not message_ids:
            return 0
        async with self.redis.pipeline(transaction=False) as pipe:
            for message_id in message_ids:
                pipe.sadd(MESSAGE_READERS_KEY.format(message_id=message_id), user_id)
            results = await pipe.execute()
        return sum(int(r) for r in results)

    async def add_reaction(self, message_id: str, reaction: str, user_id: str) -> bool:
        """Add ``user_id`` to a reaction set. Adding twice is a no-op."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.sadd(
                MESSAGE_REACTION_KEY.format(message_id=message_id, reaction=reaction), user_id
            )
            pipe.sadd(MESSAGE_REACTION_KEYS_KEY.format(message_id=message_id), reaction)
            added, _ = await pipe.execute()
        return bool(added)

    async def remove_reaction(self, message_id: str, reaction: str, user_id: str) -> bool:
        reaction_key = MESSAGE_REACTION_KEY.format(message_id=message_id, reaction=reaction)
        removed = await self.redis.srem(reaction_key, user_id)
        if not await self.redis.scard(reaction_key):
            await self.redis.srem(MESSAGE_REACTION_KEYS_KEY.format(message_id=message_id), reaction)
        return bool(removed)

    async def get_reactions(self, message_id: str) -> Dict[str, List[str]]:
        reactions = sorted(
            await self.redis.smembers(MESSAGE_REACTION_KEYS_KEY.format(message_id=message_id))
        )
        if not reactions:
            return {}
        async with self.redis.pipeline(transaction=False) as pipe:
            for reaction in reactions:
                pipe.smembers(MESSAGE_REACTION_KEY.format(message_id=message_id, reaction=reaction))
            members = await pipe.execute()
        return {
            reaction: sorted(users)
            for reaction, users in zip(reactions, members)
            if users
        }

    async def soft_delete(self, message_id: str) -> bool:
        key = MESSAGE_KEY.format(message_id=message_id)
        if not await self.redis.exists(key):
            return False
        await self.redis.hset(key, "isDeleted", "1")
        return True
