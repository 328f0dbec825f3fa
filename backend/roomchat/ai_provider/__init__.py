"""AI Provider module for chat AI replies.

This module provides a unified interface for AI providers with three
implementations: OpenAIProvider, ClaudeDirectProvider and MockProvider.

Usage:
    from roomchat.ai_provider import AIGenerationService, MockProvider

    service = AIGenerationService(MockProvider())
    result = await service.generate("hello", "wayneAI")
"""
from .base import AIProvider, ProviderResponse
from .claude_direct import ClaudeDirectProvider
from .errors import AIProviderError, ProviderCallError, ProviderNotAvailableError
from .generation import AIGenerationService, GenerationCallbacks, GenerationResult
from .mock_provider import MockProvider
from .openai_provider import OpenAIProvider
from .prompts import PERSONA_PROMPTS, get_persona_prompt

__all__ = [
    "AIProvider",
    "ProviderResponse",
    "ClaudeDirectProvider",
    "OpenAIProvider",
    "MockProvider",
    "AIGenerationService",
    "GenerationCallbacks",
    "GenerationResult",
    "PERSONA_PROMPTS",
    "get_persona_prompt",
    "AIProviderError",
    "ProviderNotAvailableError",
    "ProviderCallError",
]
