"""AI reply orchestration for ``@mention`` messages.

Each mention runs as its own task through three states:

    Started    aiMessageStart is broadcast before generation is awaited
    Completed  the reply is persisted as an ``ai`` message and
               aiMessageComplete is broadcast
    Failed     aiMessageError is broadcast and nothing is persisted

The streaming session id (``<aiType>-<epoch ms>``) only exists on the wire;
the persisted message gets its own id.
"""
import asyncio
import logging
from typing import Optional, Set

from roomchat.ai_provider import AIGenerationService, AIProviderError, GenerationResult
from roomchat.store import AI_SENDER, Message, MessageStore, MessageType, now_ms

from .manager import ConnectionManager
from .schemas import AI_MESSAGE_COMPLETE, AI_MESSAGE_ERROR, AI_MESSAGE_START

logger = logging.getLogger(__name__)

GENERATION_FAILED = "AI reply generation failed"
SAVE_FAILED = "Failed to save AI reply"


class AIStreamOrchestrator:
    """Runs AI replies and broadcasts their lifecycle to the room.

    Args:
        generator: AI generation service.
        messages: Message store for completed replies.
        manager: Local fan-out.
    """

    def __init__(
        self,
        generator: AIGenerationService,
        messages: MessageStore,
        manager: ConnectionManager,
    ) -> None:
        self.generator = generator
        self.messages = messages
        self.manager = manager
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def start(self, room_id: str, ai_type: str, query: str) -> asyncio.Task:
        """Schedule a reply without waiting for it."""
        task = asyncio.ensure_future(self.run(room_id, ai_type, query))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self, room_id: str, ai_type: str, query: str) -> Optional[Message]:
        """Generate, persist and broadcast one reply.

        Returns:
            The persisted AI message, or None if generation failed.
        """
        started_at = now_ms()
        stream_id = f"{ai_type}-{started_at}"
        await self.manager.broadcast(room_id, AI_MESSAGE_START, {
            "messageId": stream_id,
            "aiType": ai_type,
            "timestamp": started_at,
        })

        try:
            result = await self.generator.generate(query, ai_type)
        except AIProviderError as e:
            logger.warning(f"[AI] {ai_type} failed in room {room_id}: {e.message}")
            await self._fail(room_id, stream_id, ai_type, GENERATION_FAILED)
            return None
        except Exception:
            logger.exception(f"[AI] Unexpected error generating {ai_type} reply in room {room_id}")
            await self._fail(room_id, stream_id, ai_type, GENERATION_FAILED)
            return None

        try:
            message = await self._persist(room_id, query, result)
        except Exception as e:
            logger.error(f"[AI] Could not persist {ai_type} reply in room {room_id}: {e}")
            await self._fail(room_id, stream_id, ai_type, SAVE_FAILED)
            return None

        await self.manager.broadcast(room_id, AI_MESSAGE_COMPLETE, {
            "messageId": stream_id,
            "_id": message.id,
            "content": message.content,
            "aiType": ai_type,
            "timestamp": message.timestamp,
            "isComplete": True,
            "query": query,
            "reactions": {},
        })
        return message

    async def _persist(self, room_id: str, query: str, result: GenerationResult) -> Message:
        message = Message(
            room=room_id,
            sender=AI_SENDER,
            type=MessageType.AI,
            content=result.content,
            aiType=result.ai_type,
            metadata={
                "query": query,
                "generationTime": result.generation_time_ms,
                "completionTokens": result.completion_tokens,
                "totalTokens": result.total_tokens,
            },
        )
        return await self.messages.create(message)

    async def _fail(self, room_id: str, stream_id: str, ai_type: str, error: str) -> None:
        await self.manager.broadcast(room_id, AI_MESSAGE_ERROR, {
            "messageId": stream_id,
            "error": error,
            "aiType": ai_type,
        })

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
