"""Paginated history loading with timeout and retry discipline.

Three layers, each wrapping the one below:

    fetch_page    one store read bounded by a hard timeout. The timeout
                  only abandons the wait; the read itself runs to completion
                  in the background and its result is dropped.
    load_page     retries fetch_page on timeouts and store failures with
                  exponential backoff. The retry counter is kept per
                  (room, user) and cleared on success or on the terminal
                  failure.
    request_page  allows a single in-flight request per (room, user).
                  Duplicates are dropped. The marker is released a short
                  delay after the request completes.

Each served page also marks its messages as read for the requesting user,
without waiting for that write.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from redis.exceptions import RedisError

from roomchat.config import ChatSettings
from roomchat.store import MessageStore

from .enrichment import MessageEnricher
from .errors import HistoryLoadError, HistoryTimeoutError, TransientStoreError

logger = logging.getLogger(__name__)

PageKey = Tuple[str, str]


def _consume_result(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("[History] Abandoned fetch failed: %s", task.exception())


class HistoryLoader:
    """Serves history pages to connected users.

    Args:
        messages: Message store.
        enricher: Turns stored messages into client payloads.
        settings: Chat timing and paging settings.
    """

    def __init__(
        self,
        messages: MessageStore,
        enricher: MessageEnricher,
        settings: ChatSettings,
    ) -> None:
        self.messages = messages
        self.enricher = enricher
        self.settings = settings
        self._in_flight: Set[PageKey] = set()
        self._retries: Dict[PageKey, int] = {}
        self._background: Set[asyncio.Task] = set()

    # =========================================================================
    # Introspection
    # =========================================================================

    def is_loading(self, room_id: str, user_id: str) -> bool:
        return (room_id, user_id) in self._in_flight

    def retry_count(self, room_id: str, user_id: str) -> int:
        return self._retries.get((room_id, user_id), 0)

    def forget_user(self, user_id: str) -> None:
        """Drop retry counters of a user that disconnected."""
        for key in [k for k in self._retries if k[1] == user_id]:
            del self._retries[key]

    def forget_room(self, room_id: str, user_id: str) -> None:
        """Drop the retry counter and in-flight marker of a room the user left."""
        key = (room_id, user_id)
        self._retries.pop(key, None)
        self._in_flight.discard(key)

    # =========================================================================
    # Loading
    # =========================================================================

    async def fetch_page(
        self,
        room_id: str,
        user_id: str,
        before: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> dict:
        """Read one page with a hard timeout.

        Returns:
            dict with ``messages`` (oldest first), ``hasMore`` and
            ``oldestTimestamp`` (None for an empty page).

        Raises:
            HistoryTimeoutError: If the read does not finish in time.
            TransientStoreError: If the store read fails.
        """
        limit = page_size or self.settings.batch_size
        read = asyncio.ensure_future(self.messages.page_before(room_id, before, limit))
        read.add_done_callback(_consume_result)
        try:
            messages, has_more, oldest = await asyncio.wait_for(
                asyncio.shield(read), self.settings.load_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "[History] Load timed out for room %s user %s (before=%s)",
                room_id, user_id, before,
            )
            raise HistoryTimeoutError()
        except RedisError as e:
            logger.warning(f"[History] Store read failed for room {room_id}: {e}")
            raise TransientStoreError() from e

        payload = await self.enricher.enrich_many(messages)
        unread = [m.id for m in messages if user_id not in m.readers]
        if unread:
            self._spawn(self._mark_read(unread, user_id))

        return {
            "messages": payload,
            "hasMore": has_more,
            "oldestTimestamp": oldest,
        }

    async def load_page(
        self,
        room_id: str,
        user_id: str,
        before: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> dict:
        """Fetch a page, retrying transient failures.

        Raises:
            HistoryLoadError: Once ``max_retries`` retries have also failed.
        """
        key = (room_id, user_id)
        while True:
            try:
                page = await self.fetch_page(room_id, user_id, before, page_size)
            except (HistoryTimeoutError, TransientStoreError) as e:
                attempt = self._retries.get(key, 0)
                if attempt >= self.settings.max_retries:
                    self._retries.pop(key, None)
                    logger.error(
                        "[History] Giving up on room %s user %s after %d retries",
                        room_id, user_id, attempt,
                    )
                    raise HistoryLoadError() from e
                self._retries[key] = attempt + 1
                delay = min(
                    self.settings.retry_base_delay_seconds * (2 ** attempt),
                    self.settings.retry_max_delay_seconds,
                )
                logger.info(
                    "[History] Retry %d/%d for room %s user %s in %.2fs",
                    attempt + 1, self.settings.max_retries, room_id, user_id, delay,
                )
                await asyncio.sleep(delay)
                continue

            self._retries.pop(key, None)
            return page

    async def request_page(
        self,
        room_id: str,
        user_id: str,
        before: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> Optional[dict]:
        """Load a page unless one is already loading for this room and user.

        Returns:
            The page, or None when the request was dropped as a duplicate.
        """
        key = (room_id, user_id)
        if key in self._in_flight:
            logger.info("[History] Dropping duplicate load for room %s user %s", room_id, user_id)
            return None

        self._in_flight.add(key)
        try:
            return await self.load_page(room_id, user_id, before, page_size)
        finally:
            asyncio.get_running_loop().call_later(
                self.settings.load_release_delay_seconds,
                self._in_flight.discard,
                key,
            )

    # =========================================================================
    # Background work
    # =========================================================================

    async def _mark_read(self, message_ids: List[str], user_id: str) -> None:
        try:
            await self.messages.mark_read(message_ids, user_id)
        except Exception as e:
            logger.warning(f"[History] Failed to mark {len(message_ids)} messages read: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def shutdown(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
