"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from redis_double import FakeRedis
from roomchat.ai_provider import AIGenerationService, MockProvider
from roomchat.chat.coordinator import ChatCoordinator, set_coordinator
from roomchat.config import ChatSettings, RoomChatConfig, set_config


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def chat_config():
    """Configuration with the production timings shrunk for tests."""
    return RoomChatConfig(
        chat=ChatSettings(
            batch_size=30,
            load_timeout_seconds=1.0,
            max_retries=3,
            retry_base_delay_seconds=0.001,
            retry_max_delay_seconds=0.005,
            load_release_delay_seconds=0.01,
            duplicate_login_grace_seconds=0.1,
        ),
    )


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def coordinator(fake_redis, chat_config, mock_provider):
    coordinator = ChatCoordinator(
        fake_redis,
        chat_config,
        generator=AIGenerationService(mock_provider),
    )
    set_config(chat_config)
    set_coordinator(coordinator)
    yield coordinator
    set_coordinator(None)
    set_config(None)


@pytest.fixture
def api_client(coordinator):
    """TestClient for the app, sharing one event loop across sockets.

    The lifespan sees the coordinator installed by the fixture and does not
    try to reach a real Redis.
    """
    from roomchat.main import app

    with TestClient(app) as client:
        yield client
