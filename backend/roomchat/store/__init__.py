"""Redis-backed stores for users, rooms, messages, files and sessions.

Usage:
    from roomchat.store import MessageStore, RoomStore, UserStore

    messages = MessageStore(redis)
    page, has_more = await messages.page_before(room_id, before=None, limit=30)
"""
from .files import FileRecord, FileStore
from .messages import AI_SENDER, SYSTEM_SENDER, Message, MessageStore, MessageType, now_ms
from .rooms import Room, RoomStore
from .sessions import SessionStore
from .users import UNKNOWN_SENDER, User, UserStore

__all__ = [
    "AI_SENDER",
    "SYSTEM_SENDER",
    "UNKNOWN_SENDER",
    "FileRecord",
    "FileStore",
    "Message",
    "MessageStore",
    "MessageType",
    "Room",
    "RoomStore",
    "SessionStore",
    "User",
    "UserStore",
    "now_ms",
]
