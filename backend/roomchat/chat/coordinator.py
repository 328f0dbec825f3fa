"""Chat coordinator: connection lifecycle and per-event dispatch.

The coordinator owns the collaborators of one chat process and turns
inbound socket events into calls on them. Every event runs in its own task;
``joinRoom``, ``leaveRoom``, ``chatMessage`` and the disconnect handler take
the connection's FIFO lock so they apply in the order they were received.

Errors never escape an event task. ChatErrors become an ``error`` event (a
``joinRoomError`` for joins), Redis failures become TransientStoreError,
and anything else is logged and reported as INTERNAL_ERROR.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type

from fastapi import WebSocket
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from roomchat.ai_provider import AIGenerationService
from roomchat.auth.service import AuthService
from roomchat.config import RoomChatConfig
from roomchat.store import FileStore, MessageStore, RoomStore, SessionStore, UserStore

from .ai_stream import AIStreamOrchestrator
from .broadcast import BroadcastPipeline
from .enrichment import MessageEnricher
from .errors import (
    INTERNAL_ERROR,
    AuthenticationError,
    AuthorizationError,
    ChatError,
    TransientStoreError,
    ValidationError,
)
from .history import HistoryLoader
from .manager import ConnectionManager, ConnectionState, LiveConnection
from .membership import DISCONNECTED_NOTICE, LEFT_NOTICE, MembershipTracker
from .presence import DuplicateLoginArbiter, PresenceRegistry
from .reactions import ReactionAggregator
from .schemas import (
    ERROR,
    JOIN_ROOM_ERROR,
    JOIN_ROOM_SUCCESS,
    MESSAGE_LOAD_START,
    MESSAGES_READ,
    PREVIOUS_MESSAGES_LOADED,
    ChatMessageEvent,
    FetchPreviousMessagesEvent,
    ForceLoginEvent,
    JoinRoomEvent,
    LeaveRoomEvent,
    MarkMessagesAsReadEvent,
    MessageReactionEvent,
)

logger = logging.getLogger(__name__)

CLIENT_DISCONNECT = "client disconnect"
FORCE_LOGOUT_REASON = "force_logout"
FORCE_LOGOUT_MESSAGE = "Your session was ended from another device."

Handler = Callable[[LiveConnection, BaseModel], Awaitable[None]]


class ChatCoordinator:
    """Wires stores, presence, membership, history, broadcast and AI together.

    Args:
        redis: Shared async Redis client.
        config: Full roomchat configuration.
        generator: AI generation service, or None to disable AI replies.
    """

    def __init__(
        self,
        redis: AsyncRedis,
        config: RoomChatConfig,
        generator: Optional[AIGenerationService] = None,
    ) -> None:
        self.redis = redis
        self.config = config
        self.settings = config.chat

        self.users = UserStore(redis)
        self.rooms = RoomStore(redis)
        self.messages = MessageStore(redis)
        self.files = FileStore(redis)
        self.sessions = SessionStore(redis)
        self.auth = AuthService(
            self.users,
            self.sessions,
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.auth.jwt_algorithm,
        )

        self.manager = ConnectionManager()
        self.presence = PresenceRegistry(redis)
        self.arbiter = DuplicateLoginArbiter(
            self.presence,
            self.manager,
            grace_seconds=self.settings.duplicate_login_grace_seconds,
            on_terminated=self.handle_disconnect,
        )
        self.enricher = MessageEnricher(self.users, self.files)
        self.ai: Optional[AIStreamOrchestrator] = None
        if generator is not None and config.ai.enabled:
            self.ai = AIStreamOrchestrator(generator, self.messages, self.manager)
        self.broadcaster = BroadcastPipeline(
            self.messages,
            self.files,
            self.enricher,
            self.manager,
            ai_types=config.ai.mentions,
            ai=self.ai,
        )
        self.membership = MembershipTracker(
            redis, self.rooms, self.users, self.manager, self.broadcaster
        )
        self.history = HistoryLoader(self.messages, self.enricher, self.settings)
        self.reactions = ReactionAggregator(self.messages, self.manager)

        # event type -> (handler, payload schema, ordered)
        self._handlers: Dict[str, Tuple[Handler, Type[BaseModel], bool]] = {
            "joinRoom": (self._handle_join_room, JoinRoomEvent, True),
            "leaveRoom": (self._handle_leave_room, LeaveRoomEvent, True),
            "chatMessage": (self._handle_chat_message, ChatMessageEvent, True),
            "fetchPreviousMessages": (
                self._handle_fetch_previous, FetchPreviousMessagesEvent, False
            ),
            "markMessagesAsRead": (self._handle_mark_read, MarkMessagesAsReadEvent, False),
            "messageReaction": (self._handle_reaction, MessageReactionEvent, False),
            "force_login": (self._handle_force_login, ForceLoginEvent, False),
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> Optional[LiveConnection]:
        """Authenticate, register and accept a socket.

        Rejected sockets are closed with code 1008 before any shared state
        changes.

        Returns:
            The LiveConnection, or None if the socket was rejected.
        """
        token = websocket.query_params.get("token")
        session_id = websocket.query_params.get("sessionId")
        try:
            user = await self.auth.authenticate(token, session_id)
        except AuthenticationError as e:
            logger.warning(f"[WS] Rejected connection: {e.message}")
            await websocket.close(code=1008, reason=e.message)
            return None
        except RedisError as e:
            logger.error(f"[WS] Rejected connection, store unavailable: {e}")
            await websocket.close(code=1008, reason="Authentication error")
            return None

        connection = LiveConnection(
            websocket,
            user,
            ip_address=websocket.client.host if websocket.client else "",
            user_agent=websocket.headers.get("user-agent", ""),
        )
        try:
            await self.arbiter.claim(connection)
        except AuthenticationError as e:
            await websocket.close(code=1008, reason=e.message)
            return None

        try:
            await websocket.accept()
        except Exception as e:
            logger.warning(f"[WS] Accept failed for {connection.connection_id}: {e}")
            self.arbiter.cancel(connection.connection_id)
            try:
                await self.presence.release(connection.user_id, connection.connection_id)
            except RedisError as release_error:
                logger.error(
                    f"[WS] Could not release presence of {connection.connection_id}: {release_error}"
                )
            return None

        self.manager.add(connection)
        logger.info(
            f"[WS] User {user.id} connected as {connection.connection_id} "
            f"({len(self.manager.connections)} live connections)"
        )
        return connection

    async def handle_disconnect(
        self, connection: LiveConnection, reason: Optional[str] = None
    ) -> None:
        """Release presence and membership held by a closed connection.

        Runs at most once per connection. Membership is only touched while
        the connection is still the user's authoritative one; a superseded
        connection just cleans up locally.
        """
        if connection.disconnect_handled:
            return
        connection.disconnect_handled = True
        reason = connection.close_reason or reason or CLIENT_DISCONNECT
        self.arbiter.cancel(connection.connection_id)
        if connection.state is not ConnectionState.TERMINATED:
            connection.state = ConnectionState.TERMINATED

        async with connection.order_lock:
            try:
                released = await self.presence.release(connection.user_id, connection.connection_id)
                if not released:
                    logger.info(
                        f"[WS] Connection {connection.connection_id} was superseded; "
                        "leaving membership to the newer connection"
                    )
                else:
                    room_id = await self.membership.current_room(connection.user_id)
                    if room_id:
                        exempt = reason in self.settings.exempt_disconnect_reasons
                        await self.membership.leave(
                            connection,
                            room_id,
                            notice=None if exempt else DISCONNECTED_NOTICE,
                        )
            except Exception:
                logger.exception(
                    f"[WS] Disconnect handling failed for user {connection.user_id}"
                )
            finally:
                self.history.forget_user(connection.user_id)
                self.manager.remove(connection)

        logger.info(
            f"[WS] User {connection.user_id} disconnected ({reason}), "
            f"{len(self.manager.connections)} live connections"
        )

    async def shutdown(self) -> None:
        await self.arbiter.shutdown()
        if self.ai is not None:
            await self.ai.shutdown()
        await self.history.shutdown()
        await self.manager.close_all()

    # =========================================================================
    # Event dispatch
    # =========================================================================

    async def dispatch(self, connection: LiveConnection, frame: dict) -> None:
        """Validate and handle one inbound frame."""
        event_type = frame.get("type")
        entry = self._handlers.get(event_type)
        if entry is None:
            await connection.send(
                ERROR, ValidationError(f"Unknown event type: {event_type}").to_payload()
            )
            return

        handler, schema, ordered = entry
        try:
            payload = schema.model_validate(frame.get("data") or {})
        except PydanticValidationError as e:
            logger.debug(f"[WS] Invalid {event_type} payload: {e}")
            await self._report(
                connection, event_type, ValidationError(f"Invalid {event_type} payload")
            )
            return

        if ordered:
            async with connection.order_lock:
                await self._run(connection, event_type, handler, payload)
        else:
            await self._run(connection, event_type, handler, payload)

    async def _run(
        self,
        connection: LiveConnection,
        event_type: str,
        handler: Handler,
        payload: BaseModel,
    ) -> None:
        if connection.state is ConnectionState.TERMINATED:
            logger.debug(f"[WS] Ignoring {event_type} on terminated connection")
            return
        try:
            await handler(connection, payload)
        except ChatError as e:
            await self._report(connection, event_type, e)
        except RedisError as e:
            logger.warning(f"[WS] Store failure during {event_type}: {e}")
            await self._report(connection, event_type, TransientStoreError())
        except Exception:
            logger.exception(f"[WS] Unexpected error handling {event_type}")
            await self._report(
                connection, event_type, ChatError("Internal server error", INTERNAL_ERROR)
            )

    async def _report(self, connection: LiveConnection, event_type: str, error: ChatError) -> None:
        if event_type == "joinRoom":
            await connection.send(JOIN_ROOM_ERROR, {"message": error.message})
        else:
            await connection.send(ERROR, error.to_payload())

    async def _require_room(self, connection: LiveConnection, room_id: str) -> None:
        current = await self.membership.current_room(connection.user_id)
        if current != room_id:
            raise AuthorizationError("You are not a member of this room")

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_join_room(self, connection: LiveConnection, event: JoinRoomEvent) -> None:
        outcome = await self.membership.join(connection, event.roomId)
        page = await self.history.fetch_page(event.roomId, connection.user_id)
        participants = await self.membership.participants(event.roomId)
        await connection.send(JOIN_ROOM_SUCCESS, {
            "roomId": event.roomId,
            "participants": participants,
            **page,
        })
        if not outcome.already_member:
            await self.membership.announce_join(event.roomId, connection.user)

    async def _handle_leave_room(self, connection: LiveConnection, event: LeaveRoomEvent) -> None:
        await self.membership.leave(connection, event.roomId, notice=LEFT_NOTICE)
        self.history.forget_room(event.roomId, connection.user_id)

    async def _handle_chat_message(
        self, connection: LiveConnection, event: ChatMessageEvent
    ) -> None:
        await self._require_room(connection, event.room)
        await self.broadcaster.submit(
            event.room,
            connection.user_id,
            event.type,
            content=event.content,
            file_id=event.fileData.id if event.fileData else None,
        )
        await self.users.touch_last_active(connection.user_id)

    async def _handle_fetch_previous(
        self, connection: LiveConnection, event: FetchPreviousMessagesEvent
    ) -> None:
        await self._require_room(connection, event.roomId)
        if self.history.is_loading(event.roomId, connection.user_id):
            logger.info(f"[WS] Load already in progress for {connection.user_id} in {event.roomId}")
            return
        await connection.send(MESSAGE_LOAD_START, {"roomId": event.roomId})
        page = await self.history.request_page(event.roomId, connection.user_id, event.before)
        if page is None:
            return
        await connection.send(PREVIOUS_MESSAGES_LOADED, page)

    async def _handle_mark_read(
        self, connection: LiveConnection, event: MarkMessagesAsReadEvent
    ) -> None:
        if not isinstance(event.messageIds, list) or not event.messageIds:
            return
        message_ids = [str(mid) for mid in event.messageIds]
        await self._require_room(connection, event.roomId)
        await self.messages.mark_read(message_ids, connection.user_id)
        await self.manager.broadcast(
            event.roomId,
            MESSAGES_READ,
            {"userId": connection.user_id, "messageIds": message_ids},
            exclude=connection,
        )

    async def _handle_reaction(
        self, connection: LiveConnection, event: MessageReactionEvent
    ) -> None:
        current = await self.membership.current_room(connection.user_id)
        await self.reactions.apply(
            connection.user_id, event.messageId, event.reaction, event.type, current
        )

    async def _handle_force_login(
        self, connection: LiveConnection, event: ForceLoginEvent
    ) -> None:
        if self.auth.decode_token(event.token) != connection.user_id:
            raise AuthenticationError("Invalid token")
        logger.info(f"[WS] Force logout of connection {connection.connection_id}")
        await connection.terminate(FORCE_LOGOUT_REASON, FORCE_LOGOUT_MESSAGE)
        await self.handle_disconnect(connection)


# =============================================================================
# Process-wide coordinator
# =============================================================================

_coordinator: Optional[ChatCoordinator] = None


def get_coordinator() -> Optional[ChatCoordinator]:
    """Get the global chat coordinator instance."""
    return _coordinator


def set_coordinator(coordinator: Optional[ChatCoordinator]) -> None:
    """Set the global chat coordinator instance."""
    global _coordinator
    _coordinator = coordinator
