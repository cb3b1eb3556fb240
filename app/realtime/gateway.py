"""
Per-connection relay from the Redis broadcast channels to an SSE feed.

A gateway subscribes to the global channel and to its user's channel, and
forwards every notification that belongs to that user. Notifications without
a user are treated as belonging to the default (demo) user.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from app.schemas import ChangeNotification
from app.store.redis_client import GLOBAL_CHANNEL, user_channel

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = ": heartbeat\n\n"


def sse_frame(data: str) -> str:
    return f"data: {data}\n\n"


class StreamGateway:
    def __init__(self, client: redis.Redis, user_id: str, default_user: str = "demo", heartbeat_seconds: float = 30.0):
        self.redis = client
        self.user_id = user_id
        self.default_user = default_user
        self.heartbeat_seconds = heartbeat_seconds
        self.channels = [GLOBAL_CHANNEL, user_channel(user_id)]
        self._pubsub = None

    async def open(self) -> "StreamGateway":
        self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(*self.channels)
        logger.info(f"Stream opened for {self.user_id}")
        return self

    async def close(self) -> None:
        if self._pubsub is None:
            return
        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.unsubscribe(*self.channels)
        finally:
            await pubsub.aclose()
        logger.info(f"Stream closed for {self.user_id}")

    async def __aenter__(self) -> "StreamGateway":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def accepts(self, note: ChangeNotification) -> bool:
        return (note.user or self.default_user) == self.user_id

    async def next_notification(self, timeout: float) -> Optional[ChangeNotification]:
        """Wait up to ``timeout`` seconds for a notification for this user.

        Returns None when the wait ends without one; foreign and unparseable
        messages are consumed and skipped.
        """
        if self._pubsub is None:
            raise RuntimeError("gateway is not open")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            message = await self._pubsub.get_message(timeout=remaining)
            if message is None:
                continue
            if message.get("type") != "message":
                continue
            try:
                note = ChangeNotification.model_validate_json(message["data"])
            except ValidationError:
                logger.debug(f"Skipping unparseable message on {message.get('channel')}")
                continue
            if self.accepts(note):
                return note

    async def frames(self, is_disconnected: Callable[[], Awaitable[bool]]) -> AsyncIterator[str]:
        """SSE frames until the client goes away; a heartbeat after every idle interval.

        Subscribes on first iteration, so an unconsumed generator holds no connection.
        """
        if self._pubsub is None:
            await self.open()
        try:
            while not await is_disconnected():
                note = await self.next_notification(self.heartbeat_seconds)
                yield sse_frame(note.model_dump_json()) if note else HEARTBEAT_FRAME
        except asyncio.CancelledError:
            logger.debug(f"Stream for {self.user_id} cancelled")
            raise
        finally:
            await self.close()
