"""Provider resolver for AI provider selection.

This module resolves which AI provider answers chat mentions, based on
configuration and a health check.

Usage:
    from roomchat.ai_provider.resolver import ProviderResolver
    from roomchat.config import get_config

    resolver = ProviderResolver(get_config())
    provider = resolver.resolve()
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from roomchat.config import RoomChatConfig

from .base import AIProvider
from .claude_direct import ClaudeDirectProvider
from .mock_provider import MockProvider
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Supported AI provider types."""
    MOCK = "mock"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass
class AIStatus:
    """Overall AI status."""
    enabled: bool
    provider: str
    configured: bool
    healthy: bool
    model: Optional[str]


class ProviderResolver:
    """Creates and health-checks the configured AI provider.

    Attributes:
        config: Full roomchat configuration.
        active_provider: The resolved provider, if healthy.
    """

    def __init__(self, config: RoomChatConfig) -> None:
        self.config = config
        self.ai_config = config.ai
        self.active_provider: Optional[AIProvider] = None
        self._configured = False
        self._healthy = False

    def _is_configured(self, provider_type: ProviderType) -> bool:
        """Check if a provider has its API key configured."""
        secrets = self.config.secrets
        if provider_type == ProviderType.OPENAI:
            return bool(secrets.openai.api_key)
        elif provider_type == ProviderType.ANTHROPIC:
            return bool(secrets.anthropic.api_key)
        return True

    def _create_provider(self, provider_type: ProviderType) -> Optional[AIProvider]:
        """Create a provider instance for the given type."""
        model = self.ai_config.model
        try:
            if provider_type == ProviderType.OPENAI:
                return OpenAIProvider(api_key=self.config.secrets.openai.api_key, model=model)
            elif provider_type == ProviderType.ANTHROPIC:
                return ClaudeDirectProvider(api_key=self.config.secrets.anthropic.api_key, model=model)
            elif provider_type == ProviderType.MOCK:
                return MockProvider()
            else:
                logger.warning(f"Unknown provider type: {provider_type}")
                return None
        except Exception as e:
            logger.error(f"Failed to create provider {provider_type}: {e}")
            return None

    def resolve(self) -> Optional[AIProvider]:
        """Resolve the configured provider.

        Returns:
            The active AIProvider or None if AI is disabled or unhealthy.
        """
        if not self.ai_config.enabled:
            logger.info("[AI] Disabled, skipping provider resolution")
            return None

        provider_type = ProviderType(self.ai_config.provider)
        self._configured = self._is_configured(provider_type)
        if not self._configured:
            logger.warning(f"[AI] Provider {provider_type.value} skipped (not configured)")
            return None

        provider = self._create_provider(provider_type)
        if provider is None:
            return None

        try:
            self._healthy = provider.health_check()
        except Exception as e:
            logger.error(f"[AI] Provider {provider_type.value} health check error: {e}")
            self._healthy = False

        if not self._healthy:
            logger.warning(f"[AI] Provider {provider_type.value} health check failed")
            return None

        self.active_provider = provider
        logger.info(f"[AI] Active provider: {provider_type.value}")
        return provider

    def get_active_provider(self) -> Optional[AIProvider]:
        return self.active_provider

    def get_status(self) -> AIStatus:
        return AIStatus(
            enabled=self.ai_config.enabled,
            provider=self.ai_config.provider,
            configured=self._configured,
            healthy=self._healthy,
            model=self.ai_config.model,
        )


# Global resolver instance (initialized on startup)
_resolver: Optional[ProviderResolver] = None


def get_resolver() -> Optional[ProviderResolver]:
    """Get the global provider resolver instance."""
    return _resolver


def set_resolver(resolver: Optional[ProviderResolver]) -> None:
    """Set the global provider resolver instance."""
    global _resolver
    _resolver = resolver
