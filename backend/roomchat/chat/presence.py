"""Presence registry and duplicate-login arbitration.

The registry maps each user to the single connection id that is currently
authoritative for them. A newer login overwrites the entry atomically;
a disconnect only clears the entry while it still names the disconnecting
connection, so a stale socket never evicts its replacement.

When a newer login supersedes a connection held by this process, the old
connection is warned, marked for termination and closed after a grace
window. Connections held by other processes are only superseded in the
registry.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError, WatchError

from roomchat.store.keys import CONNECTED_USER_KEY

from .errors import AuthenticationError
from .manager import ConnectionManager, ConnectionState, LiveConnection
from .schemas import DUPLICATE_LOGIN

logger = logging.getLogger(__name__)

DUPLICATE_LOGIN_REASON = "duplicate_login"
DUPLICATE_LOGIN_MESSAGE = "Your session was ended because your account logged in on another device."


class PresenceRegistry:
    """Redis map of user id -> authoritative connection id."""

    def __init__(self, redis: AsyncRedis) -> None:
        self.redis = redis

    async def register(self, user_id: str, connection_id: str) -> Optional[str]:
        """Make ``connection_id`` authoritative and return the one it replaced."""
        previous = await self.redis.set(
            CONNECTED_USER_KEY.format(user_id=user_id), connection_id, get=True
        )
        return previous

    async def current(self, user_id: str) -> Optional[str]:
        return await self.redis.get(CONNECTED_USER_KEY.format(user_id=user_id))

    async def release(self, user_id: str, connection_id: str) -> bool:
        """Delete the entry only if it still names ``connection_id``.

        Returns:
            True if the entry was removed, False if another connection owns it.
        """
        key = CONNECTED_USER_KEY.format(user_id=user_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    if await pipe.get(key) != connection_id:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("[Presence] Entry for %s changed during release, retrying", user_id)
                    continue


class DuplicateLoginArbiter:
    """Resolves a new login against the connection it replaces.

    Args:
        registry: Presence registry.
        manager: Local connection registry.
        grace_seconds: How long a superseded connection stays open.
        on_terminated: Called after a superseded connection is closed.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        manager: ConnectionManager,
        grace_seconds: float = 10.0,
        on_terminated: Optional[Callable[[LiveConnection], Awaitable[None]]] = None,
    ) -> None:
        self.registry = registry
        self.manager = manager
        self.grace_seconds = grace_seconds
        self.on_terminated = on_terminated
        # connection_id -> pending termination timer
        self._timers: Dict[str, asyncio.Task] = {}

    async def claim(self, connection: LiveConnection) -> Optional[str]:
        """Register a freshly authenticated connection.

        Raises:
            AuthenticationError: If the registry cannot be reached.

        Returns:
            The superseded connection id, if any.
        """
        try:
            previous = await self.registry.register(connection.user_id, connection.connection_id)
        except RedisError as e:
            logger.error(f"[Presence] Registry unavailable for user {connection.user_id}: {e}")
            raise AuthenticationError("Authentication error") from e

        if not previous or previous == connection.connection_id:
            return None

        old = self.manager.get(previous)
        if old is None:
            logger.info(
                f"[Presence] User {connection.user_id} superseded connection {previous} "
                "not held by this process"
            )
            return previous

        if old.state is ConnectionState.ACTIVE:
            await self._supersede(old, connection)
        return previous

    async def _supersede(self, old: LiveConnection, new: LiveConnection) -> None:
        logger.info(
            f"[Presence] Duplicate login for user {new.user_id}: "
            f"{old.connection_id} -> {new.connection_id}"
        )
        await old.send(DUPLICATE_LOGIN, {
            "type": "new_login_attempt",
            "deviceInfo": new.user_agent,
            "ipAddress": new.ip_address,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        old.mark_for_termination(DUPLICATE_LOGIN_REASON)
        self._timers[old.connection_id] = asyncio.ensure_future(self._expire(old))

    async def _expire(self, old: LiveConnection) -> None:
        try:
            await asyncio.sleep(self.grace_seconds)
        finally:
            self._timers.pop(old.connection_id, None)
        if old.state is not ConnectionState.MARKED_FOR_TERMINATION:
            return
        logger.info(f"[Presence] Grace window over, closing {old.connection_id}")
        await old.terminate(DUPLICATE_LOGIN_REASON, DUPLICATE_LOGIN_MESSAGE)
        if self.on_terminated is not None:
            await self.on_terminated(old)

    def cancel(self, connection_id: str) -> None:
        timer = self._timers.pop(connection_id, None)
        if timer is not None:
            timer.cancel()

    async def shutdown(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
