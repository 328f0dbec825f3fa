"""roomchat application configuration.

Loads settings from two YAML files:
  * roomchat.settings.yaml  : non-secret configuration
  * roomchat.secrets.yaml   : secrets (never committed)

Both files are optional; missing files fall back to the model defaults.
The paths can be overridden with ROOMCHAT_SETTINGS / ROOMCHAT_SECRETS.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path(os.getenv("ROOMCHAT_SETTINGS", "roomchat.settings.yaml"))
SECRETS_FILE  = Path(os.getenv("ROOMCHAT_SECRETS", "roomchat.secrets.yaml"))


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"


class OpenAISecrets(BaseModel):
    api_key: Optional[str] = None


class AnthropicSecrets(BaseModel):
    api_key: Optional[str] = None


class Secrets(BaseModel):
    jwt:       JWTSecrets       = Field(default_factory=JWTSecrets)
    openai:    OpenAISecrets    = Field(default_factory=OpenAISecrets)
    anthropic: AnthropicSecrets = Field(default_factory=AnthropicSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingSettings(BaseModel):
    level: str = "info"


class RedisSettings(BaseModel):
    url: str = "redis://localhost:6379/0"


class AuthSettings(BaseModel):
    jwt_algorithm: str = "HS256"


class ChatSettings(BaseModel):
    """Timing and paging knobs for the chat coordinator.

    Durations are in seconds. The defaults mirror the production values:
    30 messages per page, a 10s hard timeout per history fetch, three
    retries with exponential backoff from 2s capped at 10s, a 300ms grace
    before a finished page request may be repeated, and a 10s window
    before a superseded login is forcibly closed.
    """
    batch_size:                    int   = 30
    load_timeout_seconds:          float = 10.0
    max_retries:                   int   = 3
    retry_base_delay_seconds:      float = 2.0
    retry_max_delay_seconds:       float = 10.0
    load_release_delay_seconds:    float = 0.3
    duplicate_login_grace_seconds: float = 10.0
    exempt_disconnect_reasons:     List[str] = Field(
        default_factory=lambda: ["duplicate_login", "force_logout"]
    )

    @field_validator("batch_size")
    @classmethod
    def _positive_batch(cls, value: int) -> int:
        if value < 1:
            raise ValueError("batch_size must be at least 1")
        return value


class AISettings(BaseModel):
    enabled:    bool = True
    provider:   Literal["mock", "openai", "anthropic"] = "mock"
    model:      Optional[str] = None
    max_tokens: int = 1024
    mentions:   List[str] = Field(default_factory=lambda: ["wayneAI", "consultingAI"])


class RoomChatConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    redis:   RedisSettings   = Field(default_factory=RedisSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    ai:      AISettings      = Field(default_factory=AISettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> RoomChatConfig:
    """Load and merge settings + secrets into a single *RoomChatConfig*."""
    settings_data = _load_yaml(settings_path or SETTINGS_FILE)
    secrets_data  = _load_yaml(secrets_path or SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in RoomChatConfig
    settings_data["secrets"] = secrets_data

    config = RoomChatConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, redis=%s, ai.provider=%s)",
        config.server.host,
        config.server.port,
        config.redis.url,
        config.ai.provider,
    )
    return config


_config: Optional[RoomChatConfig] = None


def get_config() -> RoomChatConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: Optional[RoomChatConfig]) -> None:
    """Replace the cached configuration (``None`` forces a reload)."""
    global _config
    _config = config
