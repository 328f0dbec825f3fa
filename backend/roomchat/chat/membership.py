"""Room membership tracking.

A user is in at most one room. The per-user mapping ``user_room:{userId}``
is authoritative and the room's online set mirrors it. Both sides change
in the same pipelined transaction, so they never disagree:

    user_room[u] == r   <=>   u in room_users[r]

The room's canonical participant set gains the user on join and loses
them on leave, in that same transaction.

Joining another room leaves the current one first. Leaving a room the user
is not recorded in is a logged no-op.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from redis.asyncio import Redis as AsyncRedis

from roomchat.store import Room, RoomStore, User, UserStore
from roomchat.store.keys import ROOM_USERS_KEY, USER_ROOM_KEY

from .broadcast import BroadcastPipeline
from .errors import NotFoundError
from .manager import ConnectionManager, LiveConnection
from .schemas import PARTICIPANTS_UPDATE

logger = logging.getLogger(__name__)

JOINED_NOTICE = "{name} joined the room"
LEFT_NOTICE = "{name} left the room"
DISCONNECTED_NOTICE = "{name} disconnected"


@dataclass
class JoinOutcome:
    """Result of a join.

    Attributes:
        room: The joined room.
        already_member: True when the user was already in this room.
        previous_room: Room that was left to join this one, if any.
    """
    room: Room
    already_member: bool
    previous_room: Optional[str] = None


class MembershipTracker:
    """Mutates and announces room membership.

    Args:
        redis: Shared Redis client.
        rooms: Room store.
        users: User store, for participant projections.
        manager: Local fan-out.
        broadcaster: Posts system notices.
    """

    def __init__(
        self,
        redis: AsyncRedis,
        rooms: RoomStore,
        users: UserStore,
        manager: ConnectionManager,
        broadcaster: BroadcastPipeline,
    ) -> None:
        self.redis = redis
        self.rooms = rooms
        self.users = users
        self.manager = manager
        self.broadcaster = broadcaster

    async def current_room(self, user_id: str) -> Optional[str]:
        return await self.redis.get(USER_ROOM_KEY.format(user_id=user_id))

    async def online_users(self, room_id: str) -> List[str]:
        return sorted(await self.redis.smembers(ROOM_USERS_KEY.format(room_id=room_id)))

    async def join(self, connection: LiveConnection, room_id: str) -> JoinOutcome:
        """Put the connection's user in ``room_id``.

        The connection is attached for fan-out in every case, including a
        re-join of the current room. Announcing the join is left to
        :meth:`announce_join` so the caller can answer the joiner first.

        Raises:
            NotFoundError: If the room does not exist.
        """
        user = connection.user
        room = await self.rooms.get_room(room_id)
        if room is None:
            raise NotFoundError("Room not found")

        current = await self.current_room(user.id)
        if current == room_id:
            logger.info(f"[Membership] User {user.id} already in room {room_id}")
            self.manager.attach(connection, room_id)
            return JoinOutcome(room=room, already_member=True)

        if current:
            await self.leave(connection, current, notice=LEFT_NOTICE)

        async with self.redis.pipeline(transaction=True) as pipe:
            await self.rooms.add_participant(room_id, user.id, pipe=pipe)
            pipe.sadd(ROOM_USERS_KEY.format(room_id=room_id), user.id)
            pipe.set(USER_ROOM_KEY.format(user_id=user.id), room_id)
            await pipe.execute()

        self.manager.attach(connection, room_id)
        room.participants = await self.rooms.get_participants(room_id)
        logger.info(f"[Membership] User {user.id} joined room {room_id}")
        return JoinOutcome(room=room, already_member=False, previous_room=current)

    async def announce_join(self, room_id: str, user: User) -> None:
        await self.broadcaster.post_system_message(room_id, JOINED_NOTICE.format(name=user.name))
        await self.broadcast_participants(room_id)

    async def leave(
        self,
        connection: LiveConnection,
        room_id: str,
        notice: Optional[str] = LEFT_NOTICE,
    ) -> bool:
        """Take the connection's user out of ``room_id``.

        Args:
            connection: The leaving connection.
            room_id: Room to leave.
            notice: System notice template, or None to leave silently.

        Returns:
            True if the user was in the room, False for a no-op.
        """
        user = connection.user
        current = await self.current_room(user.id)
        if current != room_id:
            logger.info(f"[Membership] User {user.id} is not in room {room_id}, nothing to leave")
            self.manager.detach(connection, room_id)
            return False

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(USER_ROOM_KEY.format(user_id=user.id))
            pipe.srem(ROOM_USERS_KEY.format(room_id=room_id), user.id)
            await self.rooms.remove_participant(room_id, user.id, pipe=pipe)
            await pipe.execute()

        self.manager.detach(connection, room_id)
        logger.info(f"[Membership] User {user.id} left room {room_id}")

        if notice:
            await self.broadcaster.post_system_message(room_id, notice.format(name=user.name))
        await self.broadcast_participants(room_id)
        return True

    async def participants(self, room_id: str) -> List[dict]:
        """Public projections of the room's canonical participants."""
        user_ids = await self.rooms.get_participants(room_id)
        return [user.projection() for user in await self.users.get_users_by_ids(user_ids)]

    async def broadcast_participants(self, room_id: str) -> None:
        await self.manager.broadcast(room_id, PARTICIPANTS_UPDATE, await self.participants(room_id))
