"""roomchat Backend Application.

This is the main entry point for the roomchat backend service, a real-time
chat coordinator with room membership, paginated history and AI replies.

Modules:
    - chat: WebSocket chat coordinator and its components
    - store: Redis-backed users, rooms, messages, files and sessions
    - ai_provider: AI provider resolution and reply generation
    - auth: JWT + session authentication for chat connections
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from roomchat.ai_provider import AIGenerationService
from roomchat.ai_provider.resolver import ProviderResolver, set_resolver
from roomchat.ai_provider.router import router as ai_router
from roomchat.chat.coordinator import ChatCoordinator, get_coordinator, set_coordinator
from roomchat.chat.router import router as chat_router
from roomchat.config import get_config
from roomchat.core.redis import close_async_redis_client, get_async_redis_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# urllib3/httpx/httpcore log every TCP connection and TLS handshake.
for _noisy in (
    "urllib3",
    "httpx",
    "httpcore",
    "openai",
    "anthropic",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _build_generator(config) -> AIGenerationService:
    resolver = ProviderResolver(config)
    provider = resolver.resolve()
    set_resolver(resolver)
    if provider:
        logger.info(f"AI active: provider={provider.name}")
    else:
        logger.warning("No healthy AI provider found, AI replies will fail")
    return AIGenerationService(provider, max_tokens=config.ai.max_tokens)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in roomchat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    owns_coordinator = get_coordinator() is None
    if owns_coordinator:
        generator = None
        if config.ai.enabled:
            logger.info("AI features enabled, resolving providers...")
            generator = _build_generator(config)
        else:
            logger.info("AI features disabled, skipping provider resolution")

        redis = await get_async_redis_client(config.redis.url)
        set_coordinator(ChatCoordinator(redis, config, generator=generator))
        logger.info(
            f"Chat coordinator ready on http://{config.server.host}:{config.server.port}"
        )

    yield  # Application runs here

    # Shutdown
    coordinator = get_coordinator()
    if coordinator is not None:
        await coordinator.shutdown()
    if owns_coordinator:
        set_coordinator(None)
        set_resolver(None)
        await close_async_redis_client()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="roomchat API",
    description="Real-time chat rooms with history paging and AI replies",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(chat_router)
app.include_router(ai_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
