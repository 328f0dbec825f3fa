"""WebSocket endpoint for real-time chat.

Clients connect to ``/ws/chat?token=<jwt>&sessionId=<id>``. Frames in both
directions are JSON objects ``{"type": <event>, "data": <payload>}``.

Inbound events:
    joinRoom, leaveRoom, chatMessage, fetchPreviousMessages,
    markMessagesAsRead, messageReaction, force_login

Each frame is handled in its own task owned by the connection, so a slow
history load never blocks the receive loop. Ordering between membership
and message events is enforced by the coordinator.
"""
import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .coordinator import CLIENT_DISCONNECT, get_coordinator
from .errors import ValidationError
from .schemas import ERROR

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket):
    """Serve one authenticated chat connection until it closes.

    Args:
        websocket: The incoming WebSocket.

    Note:
        Authentication failures close the socket with code 1008 before it is
        accepted. Disconnect cleanup is shielded so it completes even when the
        endpoint task is cancelled.
    """
    coordinator = get_coordinator()
    if coordinator is None:
        logger.error("[WS] Chat coordinator not initialised, refusing connection")
        await websocket.close(code=1011)
        return

    connection = await coordinator.connect(websocket)
    if connection is None:
        return

    reason = CLIENT_DISCONNECT
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                frame = None
            if not isinstance(frame, dict):
                await connection.send(
                    ERROR, ValidationError("Invalid message format").to_payload()
                )
                continue
            connection.spawn(coordinator.dispatch(connection, frame))
    except WebSocketDisconnect as e:
        logger.debug(f"[WS] Client closed connection {connection.connection_id} (code={e.code})")
    except RuntimeError as e:
        # Raised by Starlette when receiving on a socket the server already closed.
        logger.debug(f"[WS] Receive loop ended for {connection.connection_id}: {e}")
        reason = connection.close_reason or reason
    finally:
        await asyncio.shield(
            asyncio.ensure_future(coordinator.handle_disconnect(connection, reason))
        )
