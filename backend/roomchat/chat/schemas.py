"""Wire schemas for the chat WebSocket.

Frames in both directions are ``{"type": <event>, "data": <payload>}``.
Inbound payloads are validated with the models below before dispatch.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Outbound event names
# =============================================================================

JOIN_ROOM_SUCCESS = "joinRoomSuccess"
JOIN_ROOM_ERROR = "joinRoomError"
MESSAGE = "message"
PARTICIPANTS_UPDATE = "participantsUpdate"
PREVIOUS_MESSAGES_LOADED = "previousMessagesLoaded"
MESSAGE_LOAD_START = "messageLoadStart"
ERROR = "error"
DUPLICATE_LOGIN = "duplicate_login"
SESSION_ENDED = "session_ended"
AI_MESSAGE_START = "aiMessageStart"
AI_MESSAGE_COMPLETE = "aiMessageComplete"
AI_MESSAGE_ERROR = "aiMessageError"
MESSAGE_REACTION_UPDATE = "messageReactionUpdate"
MESSAGES_READ = "messagesRead"


def envelope(event: str, data) -> dict:
    return {"type": event, "data": data}


# =============================================================================
# Inbound events
# =============================================================================


class InboundEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JoinRoomEvent(InboundEvent):
    roomId: str = Field(..., min_length=1)


class LeaveRoomEvent(InboundEvent):
    roomId: str = Field(..., min_length=1)


class FileReference(InboundEvent):
    """Reference to an already-uploaded file."""
    id: str = Field(..., alias="_id", min_length=1)


class ChatMessageEvent(InboundEvent):
    room: str = Field(..., min_length=1)
    type: str = "text"
    content: Optional[str] = ""
    fileData: Optional[FileReference] = None


class FetchPreviousMessagesEvent(InboundEvent):
    roomId: str = Field(..., min_length=1)
    before: Optional[int] = None


class MarkMessagesAsReadEvent(InboundEvent):
    roomId: str = Field(..., min_length=1)
    messageIds: Any = None


class MessageReactionEvent(InboundEvent):
    messageId: str = Field(..., min_length=1)
    reaction: str = Field(..., min_length=1)
    type: Literal["add", "remove"]


class ForceLoginEvent(InboundEvent):
    token: str = Field(..., min_length=1)
