"""AIProvider abstract interface for LLM integrations.

This module defines the abstract base class for all AI provider implementations.
Each provider must implement health_check() and generate().

Usage:
    from roomchat.ai_provider import AIProvider, ClaudeDirectProvider

    provider = ClaudeDirectProvider(api_key="...")
    if provider.health_check():
        response = provider.generate("Hello", system="You are helpful.")
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class ProviderResponse:
    """Text returned by a provider call together with its token usage.

    Attributes:
        text: The model's response text.
        completion_tokens: Tokens generated by the model.
        total_tokens: Prompt plus completion tokens.
    """
    text: str
    completion_tokens: int = 0
    total_tokens: int = 0


class AIProvider(ABC):
    """Abstract base class for AI provider implementations.

    All AI providers (OpenAI, Claude Direct, Mock) must implement this
    interface so the chat can switch between them through configuration.

    Methods:
        health_check: Verify the provider is operational.
        generate: Produce a single reply to a prompt.
    """

    name: str = "base"

    @abstractmethod
    def health_check(self) -> bool:
        """Check if the AI provider is healthy and operational.

        Returns:
            bool: True if the provider is operational, False otherwise.
        """
        pass

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int = 1024,
    ) -> ProviderResponse:
        """Call the model with a user prompt and return its reply.

        This is a blocking call; callers on the event loop run it in a
        worker thread.

        Args:
            prompt:     The user-turn prompt to send to the model.
            system:     Optional system-role instruction.
            max_tokens: Maximum tokens in the response.

        Returns:
            ProviderResponse: The reply text and token usage.

        Raises:
            Exception: If the API call fails.
        """
        pass
