"""
Per-user, per-day event store.

Each day is one JSON array under ``schedule:{user}:{date}``, kept sorted by
start time. Every mutation rewrites the whole array and then broadcasts a
change notification through the Publisher.
"""

import asyncio
import json
import logging
from collections import defaultdict
from contextlib import asynccontextmanager, nullcontext
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from app.realtime.publisher import Publisher
from app.schemas import ScheduleEvent
from app.store.redis_client import schedule_key
from app.tools.calendar import sort_by_start

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._users: Dict[Tuple[str, str], int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Tuple[str, str]):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class ScheduleStore:
    def __init__(self, client: redis.Redis, publisher: Publisher, serialize_writes: bool = True):
        self.redis = client
        self.publisher = publisher
        self._locks: Optional[KeyedLocks] = KeyedLocks() if serialize_writes else None

    def _guard(self, user_id: str, date: str):
        if self._locks is None:
            return nullcontext()
        return self._locks.hold((user_id, date))

    # ---------------- Reads ----------------

    async def read(self, user_id: str, date: str) -> List[ScheduleEvent]:
        raw = await self.redis.get(schedule_key(user_id, date))
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Corrupt schedule blob for {user_id} on {date}; treating as empty")
            return []
        if not isinstance(items, list):
            logger.error(f"Schedule blob for {user_id} on {date} is not a list; treating as empty")
            return []
        events: List[ScheduleEvent] = []
        for item in items:
            try:
                events.append(ScheduleEvent.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed event in {user_id}/{date}: {e.errors()[:1]}")
        return events

    async def _write(self, user_id: str, date: str, events: List[ScheduleEvent]) -> None:
        payload = json.dumps([e.model_dump() for e in events])
        await self.redis.set(schedule_key(user_id, date), payload)

    # ---------------- Mutations ----------------

    async def add(self, user_id: str, event: ScheduleEvent) -> ScheduleEvent:
        async with self._guard(user_id, event.date):
            events = await self.read(user_id, event.date)
            events.append(event)
            await self._write(user_id, event.date, sort_by_start(events))
        logger.info(f"Added {event.id} '{event.title}' at {event.start} for {user_id} on {event.date}")
        await self.publisher.publish("add", user_id, event)
        return event

    async def remove(self, user_id: str, date: str, event_id: str) -> Optional[ScheduleEvent]:
        """Remove one event; None (and no side effects) when it is not there."""
        async with self._guard(user_id, date):
            events = await self.read(user_id, date)
            target = next((e for e in events if e.id == event_id), None)
            if target is None:
                logger.info(f"Remove {event_id} for {user_id} on {date}: not found")
                return None
            await self._write(user_id, date, [e for e in events if e.id != event_id])
        logger.info(f"Removed {event_id} '{target.title}' for {user_id} on {date}")
        await self.publisher.publish("remove", user_id, target)
        return target

    async def move(self, user_id: str, date: str, event_id: str, start: str, end: Optional[str] = None, new_date: Optional[str] = None) -> Optional[ScheduleEvent]:
        """Remove then re-add with new times. Bad clock values raise before anything changes."""
        current = next((e for e in await self.read(user_id, date) if e.id == event_id), None)
        if current is None:
            return None
        moved = ScheduleEvent.model_validate({**current.model_dump(), "start": start, "end": end or current.end, "date": new_date or current.date})
        if await self.remove(user_id, date, event_id) is None:
            return None
        return await self.add(user_id, moved)

    async def replace_day(self, user_id: str, date: str, events: List[ScheduleEvent]) -> List[ScheduleEvent]:
        """Overwrite a whole day, broadcasting the removal of the old events and the new additions."""
        fresh = sort_by_start(e.model_copy(update={"date": date}) for e in events)
        async with self._guard(user_id, date):
            old = await self.read(user_id, date)
            await self._write(user_id, date, fresh)
        logger.info(f"Replaced {user_id} on {date}: {len(old)} -> {len(fresh)} events")
        for e in old:
            await self.publisher.publish("remove", user_id, e)
        for e in fresh:
            await self.publisher.publish("add", user_id, e)
        return fresh
