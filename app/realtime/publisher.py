import logging
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.schemas import ChangeNotification, ScheduleEvent
from app.store.redis_client import GLOBAL_CHANNEL, user_channel

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Publisher:
    """Broadcasts schedule change notifications; holds no state besides the client."""

    def __init__(self, client: redis.Redis):
        self.redis = client

    @staticmethod
    def channel_for(user_id: Optional[str]) -> str:
        return user_channel(user_id) if user_id else GLOBAL_CHANNEL

    async def publish(self, kind: str, user_id: Optional[str], event: ScheduleEvent) -> int:
        """Send one notification. Returns the receiver count, 0 if the publish failed."""
        note = ChangeNotification(type=kind, user=user_id, event=event, timestamp=_now_iso())
        channel = self.channel_for(user_id)
        try:
            receivers = await self.redis.publish(channel, note.model_dump_json())
        except RedisError as e:
            # The store write already happened; live clients catch up on next load
            logger.warning(f"Publish {kind} {event.id} on {channel} failed: {e}")
            return 0
        logger.debug(f"Published {kind} {event.id} on {channel} to {receivers} subscriber(s)")
        return receivers
