"""Mock provider for running the chat without LLM calls.

The MockProvider answers deterministically and never touches the network,
which keeps local development and tests reproducible. Prompts containing
the word ``fail`` raise, so the error path can be exercised as well.
"""
from typing import Optional

from .base import AIProvider, ProviderResponse


class MockProvider(AIProvider):
    """Deterministic provider that echoes the prompt.

    Args:
        reply_prefix: Text placed before the echoed prompt.
    """

    name = "mock"

    def __init__(self, reply_prefix: Optional[str] = None) -> None:
        self.reply_prefix = reply_prefix or "Mock reply"
        self.calls = []

    def health_check(self) -> bool:
        return True

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int = 1024,
    ) -> ProviderResponse:
        self.calls.append({"prompt": prompt, "system": system, "max_tokens": max_tokens})
        if "fail" in prompt.lower().split():
            raise RuntimeError("Mock provider asked to fail")

        text = f"{self.reply_prefix}: {prompt}" if prompt else self.reply_prefix
        completion_tokens = len(text.split())
        prompt_tokens = len(prompt.split()) + len((system or "").split())
        return ProviderResponse(
            text=text,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
