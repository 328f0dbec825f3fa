"""AI reply generation for chat mentions.

AIGenerationService wraps the active provider for use from the event
loop: the blocking SDK call runs in a worker thread, and the outcome is
reported both through optional callbacks and as the return value.

Usage:
    service = AIGenerationService(provider)
    result = await service.generate("How do I rebase?", "wayneAI")
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .base import AIProvider
from .errors import ProviderCallError, ProviderNotAvailableError
from .prompts import build_user_prompt, get_persona_prompt

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """A finished AI reply.

    Attributes:
        content: Reply text.
        ai_type: Persona that answered.
        generation_time_ms: Wall time of the provider call.
        completion_tokens: Tokens generated.
        total_tokens: Prompt plus completion tokens.
    """
    content: str
    ai_type: str
    generation_time_ms: int
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class GenerationCallbacks:
    """Lifecycle hooks. Exactly one of on_complete / on_error is called."""
    on_start: Optional[Callable[[], None]] = None
    on_complete: Optional[Callable[[GenerationResult], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


class AIGenerationService:
    """Generates persona replies with the active provider.

    Args:
        provider: Provider to call, or None when AI is unavailable.
        max_tokens: Upper bound on reply length.
    """

    def __init__(self, provider: Optional[AIProvider], max_tokens: int = 1024) -> None:
        self.provider = provider
        self.max_tokens = max_tokens

    async def generate(
        self,
        query: str,
        ai_type: str,
        callbacks: Optional[GenerationCallbacks] = None,
    ) -> GenerationResult:
        """Generate one reply.

        Raises:
            ProviderNotAvailableError: If no provider is configured.
            ProviderCallError: If the provider call fails.
        """
        callbacks = callbacks or GenerationCallbacks()
        if callbacks.on_start:
            callbacks.on_start()

        try:
            if self.provider is None:
                raise ProviderNotAvailableError()

            started = time.monotonic()
            try:
                response = await asyncio.to_thread(
                    self.provider.generate,
                    build_user_prompt(query),
                    get_persona_prompt(ai_type),
                    self.max_tokens,
                )
            except Exception as e:
                logger.error(f"[AI] {self.provider.name} call failed for {ai_type}: {e}")
                raise ProviderCallError(str(e), self.provider.name) from e

            result = GenerationResult(
                content=response.text,
                ai_type=ai_type,
                generation_time_ms=int((time.monotonic() - started) * 1000),
                completion_tokens=response.completion_tokens,
                total_tokens=response.total_tokens,
            )
        except Exception as e:
            if callbacks.on_error:
                callbacks.on_error(e)
            raise

        logger.info(
            f"[AI] {ai_type} replied in {result.generation_time_ms}ms "
            f"({result.total_tokens} tokens)"
        )
        if callbacks.on_complete:
            callbacks.on_complete(result)
        return result
