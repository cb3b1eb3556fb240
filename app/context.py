import itertools
import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterator, Optional

import redis.asyncio as redis

from app.realtime.gateway import StreamGateway
from app.realtime.publisher import Publisher
from app.settings import Settings
from app.store.redis_client import connect
from app.store.schedule_store import ScheduleStore
from app.store.user_store import UserStore

logger = logging.getLogger(__name__)

PALETTE = ["#6C5CE7", "#10B981", "#F59E0B", "#3B82F6", "#EC4899", "#EF4444", "#8B5CF6", "#14B8A6"]


def new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:8]}"


@dataclass
class AppContext:
    """Everything a request handler needs, built once at start-up and passed explicitly."""

    settings: Settings
    redis: redis.Redis
    publisher: Publisher
    schedules: ScheduleStore
    users: UserStore
    _colors: Iterator[str] = field(default_factory=lambda: itertools.cycle(PALETTE), repr=False)

    @classmethod
    def build(cls, settings: Settings, client: Optional[redis.Redis] = None) -> "AppContext":
        client = client if client is not None else connect(settings.REDIS_URL)
        publisher = Publisher(client)
        return cls(
            settings=settings,
            redis=client,
            publisher=publisher,
            schedules=ScheduleStore(client, publisher, serialize_writes=settings.SERIALIZE_WRITES),
            users=UserStore(client),
        )

    def next_color(self) -> str:
        return next(self._colors)

    def gateway(self, user_id: str) -> StreamGateway:
        return StreamGateway(
            self.redis,
            user_id,
            default_user=self.settings.DEFAULT_USER_ID,
            heartbeat_seconds=self.settings.HEARTBEAT_SECONDS,
        )

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info("Redis connection closed")
