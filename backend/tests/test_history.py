"""Tests for the paginated history loader (timeouts, retries, in-flight dedup)."""
import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from roomchat.chat.enrichment import MessageEnricher
from roomchat.chat.errors import HistoryLoadError, HistoryTimeoutError, TransientStoreError
from roomchat.chat.history import HistoryLoader
from roomchat.config import ChatSettings
from roomchat.store import FileStore, Message, MessageStore, UserStore


@pytest.fixture
def settings():
    return ChatSettings(
        batch_size=2,
        load_timeout_seconds=0.05,
        max_retries=3,
        retry_base_delay_seconds=0.001,
        retry_max_delay_seconds=0.004,
        load_release_delay_seconds=0.02,
    )


@pytest.fixture
def store(fake_redis):
    return MessageStore(fake_redis)


@pytest.fixture
def loader(fake_redis, store, settings):
    enricher = MessageEnricher(UserStore(fake_redis), FileStore(fake_redis))
    return HistoryLoader(store, enricher, settings)


async def _seed(store, room_id, count):
    for i in range(count):
        await store.create(Message(room=room_id, sender="system", content=f"m{i}", timestamp=1000 + i))


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_page_payload(self, loader, store):
        await _seed(store, "r1", 3)

        page = await loader.fetch_page("r1", "u1")

        assert [m["content"] for m in page["messages"]] == ["m1", "m2"]
        assert page["hasMore"] is True
        assert page["oldestTimestamp"] == 1001

        older = await loader.fetch_page("r1", "u1", before=page["oldestTimestamp"])
        assert [m["content"] for m in older["messages"]] == ["m0"]
        assert older["hasMore"] is False

    @pytest.mark.asyncio
    async def test_served_messages_are_marked_read(self, loader, store):
        await _seed(store, "r1", 2)

        page = await loader.fetch_page("r1", "u1")
        await asyncio.sleep(0.01)

        for payload in page["messages"]:
            assert (await store.get(payload["_id"])).readers == ["u1"]

    @pytest.mark.asyncio
    async def test_timeout_abandons_the_wait(self, loader, store):
        release = asyncio.Event()

        async def slow_page(*args):
            await release.wait()
            return [], False, None

        store.page_before = slow_page

        with pytest.raises(HistoryTimeoutError):
            await loader.fetch_page("r1", "u1")

        release.set()
        await asyncio.sleep(0.01)

    @pytest.mark.asyncio
    async def test_store_failure_is_transient(self, loader, store):
        store.page_before = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(TransientStoreError):
            await loader.fetch_page("r1", "u1")


class TestLoadPage:
    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, loader, store):
        store.page_before = AsyncMock(side_effect=[
            RedisConnectionError("down"),
            RedisConnectionError("down"),
            ([], False, None),
        ])

        page = await loader.load_page("r1", "u1")

        assert page == {"messages": [], "hasMore": False, "oldestTimestamp": None}
        assert store.page_before.await_count == 3
        assert loader.retry_count("r1", "u1") == 0

    @pytest.mark.asyncio
    async def test_fourth_consecutive_failure_is_terminal(self, loader, store):
        store.page_before = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(HistoryLoadError) as exc_info:
            await loader.load_page("r1", "u1")

        assert exc_info.value.error_type == "LOAD_ERROR"
        assert store.page_before.await_count == 4
        assert loader.retry_count("r1", "u1") == 0

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, loader, store):
        calls = {"n": 0}

        async def flaky_page(*args):
            calls["n"] += 1
            if calls["n"] == 1:
                await asyncio.sleep(0.2)
            return [], False, None

        store.page_before = flaky_page

        page = await loader.load_page("r1", "u1")

        assert page["messages"] == []
        assert calls["n"] == 2
        await asyncio.sleep(0.2)

    @pytest.mark.asyncio
    async def test_forget_user_drops_retry_counters(self, loader):
        loader._retries[("r1", "u1")] = 2
        loader._retries[("r1", "u2")] = 1

        loader.forget_user("u1")

        assert loader.retry_count("r1", "u1") == 0
        assert loader.retry_count("r1", "u2") == 1


class TestRequestPage:
    @pytest.mark.asyncio
    async def test_duplicate_request_is_dropped(self, loader, store):
        release = asyncio.Event()

        async def slow_page(*args):
            await release.wait()
            return [], False, None

        store.page_before = slow_page
        loader.settings.load_timeout_seconds = 1.0

        first = asyncio.ensure_future(loader.request_page("r1", "u1"))
        await asyncio.sleep(0)
        assert loader.is_loading("r1", "u1")

        assert await loader.request_page("r1", "u1") is None

        release.set()
        assert (await first)["messages"] == []

    @pytest.mark.asyncio
    async def test_marker_released_after_delay(self, loader, store):
        await _seed(store, "r1", 1)

        await loader.request_page("r1", "u1")
        assert loader.is_loading("r1", "u1")

        await asyncio.sleep(0.05)
        assert not loader.is_loading("r1", "u1")
        assert await loader.request_page("r1", "u1") is not None

    @pytest.mark.asyncio
    async def test_marker_released_after_terminal_failure(self, loader, store):
        store.page_before = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(HistoryLoadError):
            await loader.request_page("r1", "u1")

        await asyncio.sleep(0.05)
        assert not loader.is_loading("r1", "u1")
