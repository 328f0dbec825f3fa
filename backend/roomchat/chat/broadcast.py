"""Message submission and room fan-out.

``submit`` validates a user message, persists it, enriches it and
broadcasts it to the room. AI mentions found in the text are handed to
the AI orchestrator, once per distinct AI type, with the mention removed
from the query.
"""
import logging
import re
from typing import List, Optional

from roomchat.store import (
    SYSTEM_SENDER,
    FileStore,
    Message,
    MessageStore,
    MessageType,
)

from .ai_stream import AIStreamOrchestrator
from .enrichment import MessageEnricher
from .errors import NotFoundError, UnsupportedMessageTypeError, ValidationError
from .manager import ConnectionManager
from .schemas import MESSAGE

logger = logging.getLogger(__name__)


class BroadcastPipeline:
    """Persists and fans out chat messages.

    Args:
        messages: Message store.
        files: File metadata store.
        enricher: Builds client payloads.
        manager: Local fan-out.
        ai_types: Mentionable AI types.
        ai: Orchestrator for mentions, or None when AI is disabled.
    """

    def __init__(
        self,
        messages: MessageStore,
        files: FileStore,
        enricher: MessageEnricher,
        manager: ConnectionManager,
        ai_types: List[str],
        ai: Optional[AIStreamOrchestrator] = None,
    ) -> None:
        self.messages = messages
        self.files = files
        self.enricher = enricher
        self.manager = manager
        self.ai_types = list(ai_types)
        self.ai = ai
        # Longest names first so "@wayneAI" is never read as "@wayne"
        alternatives = "|".join(
            re.escape(name) for name in sorted(self.ai_types, key=len, reverse=True)
        )
        self._mention_re = re.compile(rf"@({alternatives})(?!\w)") if alternatives else None

    # =========================================================================
    # Mentions
    # =========================================================================

    def extract_mentions(self, content: str) -> List[str]:
        """Distinct AI types mentioned in ``content``, in order of appearance."""
        if not content or self._mention_re is None:
            return []
        found: List[str] = []
        for match in self._mention_re.finditer(content):
            if match.group(1) not in found:
                found.append(match.group(1))
        return found

    @staticmethod
    def strip_mention(content: str, ai_type: str) -> str:
        return re.sub(rf"@{re.escape(ai_type)}(?!\w)", "", content).strip()

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(
        self,
        room_id: str,
        sender_id: str,
        message_type: str,
        content: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> Optional[dict]:
        """Persist and broadcast a user message.

        Args:
            room_id: Target room.
            sender_id: Authenticated sender.
            message_type: ``text`` or ``file``.
            content: Message text (optional caption for files).
            file_id: Id of an already-uploaded file owned by the sender.

        Returns:
            The broadcast payload, or None when an empty text was ignored.

        Raises:
            ValidationError: If a file message has no file reference.
            NotFoundError: If the file is missing or owned by someone else.
            UnsupportedMessageTypeError: For any other message type.
        """
        content = (content or "").strip()

        if message_type == MessageType.TEXT.value:
            if not content:
                logger.debug(f"[Broadcast] Ignoring empty text from {sender_id} in room {room_id}")
                return None
            message = Message(room=room_id, sender=sender_id, type=MessageType.TEXT, content=content)

        elif message_type == MessageType.FILE.value:
            if not file_id:
                raise ValidationError("Invalid file data")
            record = await self.files.get(file_id)
            if record is None or record.user != sender_id:
                raise NotFoundError("File not found or access denied")
            message = Message(
                room=room_id,
                sender=sender_id,
                type=MessageType.FILE,
                content=content,
                file=record.id,
                metadata={
                    "fileType": record.mimetype,
                    "fileSize": record.size,
                    "originalName": record.originalname,
                },
            )

        else:
            raise UnsupportedMessageTypeError(message_type)

        mentions = self.extract_mentions(content)
        message.mentions = mentions
        await self.messages.create(message)

        payload = await self.enricher.enrich(message)
        logger.info(
            f"[Broadcast] {message.type.value} message {message.id} to "
            f"{self.manager.get_room_size(room_id)} connections in room {room_id}"
        )
        await self.manager.broadcast(room_id, MESSAGE, payload)

        if mentions and self.ai is not None:
            for ai_type in mentions:
                self.ai.start(room_id, ai_type, self.strip_mention(content, ai_type))
        return payload

    async def post_system_message(self, room_id: str, content: str) -> dict:
        """Persist and broadcast a system notice (joins, leaves, disconnects)."""
        message = Message(
            room=room_id,
            sender=SYSTEM_SENDER,
            type=MessageType.SYSTEM,
            content=content,
        )
        await self.messages.create(message)
        payload = await self.enricher.enrich(message)
        await self.manager.broadcast(room_id, MESSAGE, payload)
        return payload
