"""Local WebSocket registry and room fan-out.

This module tracks the live connections held by *this* process and fans
events out to the sockets attached to a room. It is not authoritative:
presence and membership live in Redis (see presence.py / membership.py).

Key features:
    - One LiveConnection per accepted socket, with a two-phase termination
      state (active -> marked_for_termination -> terminated)
    - Per-connection FIFO lock for events that must apply in order
    - Tracked background tasks per connection
    - Concurrent room broadcast with asyncio.gather()
    - Automatic dead connection cleanup

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Awaitable, Dict, List, Optional, Set

from fastapi import WebSocket

from roomchat.store import User

from .schemas import SESSION_ENDED, envelope

logger = logging.getLogger(__name__)


# =============================================================================
# Live Connection
# =============================================================================


class ConnectionState(str, Enum):
    """Lifecycle of a live connection.

    Attributes:
        ACTIVE: Normal operation.
        MARKED_FOR_TERMINATION: Superseded by a newer login, waiting for the
            grace window to expire.
        TERMINATED: Closed by the server; no further events are handled.
    """
    ACTIVE = "active"
    MARKED_FOR_TERMINATION = "marked_for_termination"
    TERMINATED = "terminated"


class LiveConnection:
    """One authenticated WebSocket held by this process.

    Attributes:
        websocket: The accepted WebSocket.
        user: Authenticated user.
        connection_id: Unique id registered in the presence registry.
        ip_address: Remote address, reported to a superseded device.
        user_agent: Client user agent, reported to a superseded device.
        state: Current ConnectionState.
        close_reason: Why the server closed the connection, if it did.
        room_id: Room this socket is attached to for local fan-out.
        order_lock: Serializes joinRoom / leaveRoom / chatMessage / disconnect.
    """

    def __init__(
        self,
        websocket: WebSocket,
        user: User,
        ip_address: str = "",
        user_agent: str = "",
        connection_id: Optional[str] = None,
    ) -> None:
        self.websocket = websocket
        self.user = user
        self.connection_id = connection_id or uuid.uuid4().hex
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.state = ConnectionState.ACTIVE
        self.close_reason: Optional[str] = None
        self.room_id: Optional[str] = None
        self.disconnect_handled = False
        self.order_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def is_active(self) -> bool:
        return self.state is ConnectionState.ACTIVE

    async def send(self, event: str, data) -> bool:
        """Send one event frame, returning False if the socket is gone."""
        try:
            await self.websocket.send_json(envelope(event, data))
            return True
        except Exception as e:
            logger.debug(f"Failed to send {event} to connection {self.connection_id}: {e}")
            return False

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        """Run ``coro`` as a task owned by this connection."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> List[asyncio.Task]:
        return [t for t in self._tasks if not t.done()]

    def mark_for_termination(self, reason: str) -> None:
        if self.state is ConnectionState.ACTIVE:
            self.state = ConnectionState.MARKED_FOR_TERMINATION
            self.close_reason = reason

    async def terminate(self, reason: str, message: str) -> None:
        """Tell the client why, then close the socket."""
        if self.state is ConnectionState.TERMINATED:
            return
        self.state = ConnectionState.TERMINATED
        self.close_reason = reason
        await self.send(SESSION_ENDED, {"reason": reason, "message": message})
        try:
            await self.websocket.close(code=1000)
        except Exception as e:
            logger.debug(f"Close failed for connection {self.connection_id}: {e}")


# =============================================================================
# Connection Manager
# =============================================================================


class ConnectionManager:
    """Registry of the live connections on this process.

    Note:
        Rooms here only list sockets attached on this process. Who is in a
        room is decided by the membership tracker in Redis.
    """

    def __init__(self) -> None:
        # connection_id -> LiveConnection
        self.connections: Dict[str, LiveConnection] = {}

        # room_id -> set of connection ids attached for fan-out
        self.room_connections: Dict[str, Set[str]] = {}

    def add(self, connection: LiveConnection) -> None:
        self.connections[connection.connection_id] = connection

    def remove(self, connection: LiveConnection) -> None:
        self.detach(connection)
        self.connections.pop(connection.connection_id, None)

    def get(self, connection_id: str) -> Optional[LiveConnection]:
        return self.connections.get(connection_id)

    def connections_for_user(self, user_id: str) -> List[LiveConnection]:
        return [c for c in self.connections.values() if c.user_id == user_id]

    def attach(self, connection: LiveConnection, room_id: str) -> None:
        """Attach a connection to a room for fan-out, leaving any other room."""
        if connection.room_id and connection.room_id != room_id:
            self.detach(connection)
        self.room_connections.setdefault(room_id, set()).add(connection.connection_id)
        connection.room_id = room_id

    def detach(self, connection: LiveConnection, room_id: Optional[str] = None) -> None:
        room_id = room_id or connection.room_id
        if not room_id:
            return
        members = self.room_connections.get(room_id)
        if members is not None:
            members.discard(connection.connection_id)
            if not members:
                del self.room_connections[room_id]
        if connection.room_id == room_id:
            connection.room_id = None

    def get_room_connections(self, room_id: str) -> List[LiveConnection]:
        return [
            self.connections[cid]
            for cid in self.room_connections.get(room_id, set())
            if cid in self.connections
        ]

    def get_room_size(self, room_id: str) -> int:
        """Get the number of attached connections in a room."""
        return len(self.room_connections.get(room_id, ()))

    async def broadcast(
        self,
        room_id: str,
        event: str,
        data,
        exclude: Optional[LiveConnection] = None,
    ) -> None:
        """Broadcast an event to every connection attached to a room.

        Uses asyncio.gather() for concurrent delivery. Connections that fail
        to receive are detached from the room.

        Args:
            room_id: Room to broadcast to.
            event: Event name.
            data: JSON-serializable payload.
            exclude: Optional connection to skip (usually the sender).
        """
        connections = [
            conn for conn in self.get_room_connections(room_id)
            if conn is not exclude
        ]
        if not connections:
            return

        results = await asyncio.gather(
            *[conn.send(event, data) for conn in connections],
            return_exceptions=True
        )

        # Remove failed connections
        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        self._cleanup_connections(room_id, failed_connections)

    def _cleanup_connections(
        self, room_id: str, failed_connections: List[LiveConnection]
    ) -> None:
        for conn in failed_connections:
            self.detach(conn, room_id)
            logger.debug(f"Removed dead connection {conn.connection_id} from room {room_id}")

    async def close_all(self) -> None:
        for conn in list(self.connections.values()):
            for task in conn.pending_tasks:
                task.cancel()
        self.connections.clear()
        self.room_connections.clear()
