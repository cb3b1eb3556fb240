import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError

from app.schemas import OnboardingSurvey, Persona, UserProfile, UserUpdate
from app.store.redis_client import USERS_INDEX, conversation_key, persona_key, user_key

logger = logging.getLogger(__name__)


def _new_user_id() -> str:
    return f"usr_{uuid.uuid4().hex[:12]}"


class UserStore:
    """User profiles (no TTL), cached personas and avatar conversation mappings."""

    def __init__(self, client: redis.Redis):
        self.redis = client

    async def create(self, survey: OnboardingSurvey) -> UserProfile:
        user = UserProfile(
            id=_new_user_id(),
            name=survey.name or "friend",
            type=survey.type,
            workStyle=survey.workStyle,
            rhythm=survey.rhythm,
            wakeUpTime=survey.wakeUpTime,
            nonNegotiables=list(survey.nonNegotiables),
            struggle=survey.struggle,
            timeSlots=dict(survey.timeSlots),
            createdAt=datetime.now(timezone.utc).isoformat(),
        )
        await self.redis.set(user_key(user.id), user.model_dump_json())
        await self.redis.rpush(USERS_INDEX, user.id)
        logger.info(f"Created user {user.id} ({user.name})")
        return user

    async def get(self, user_id: str) -> Optional[UserProfile]:
        raw = await self.redis.get(user_key(user_id))
        if not raw:
            return None
        try:
            return UserProfile.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Stored profile for {user_id} is invalid: {e.errors()[:1]}")
            return None

    async def update(self, user_id: str, changes: UserUpdate) -> Optional[UserProfile]:
        user = await self.get(user_id)
        if user is None:
            return None
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return user
        updated = UserProfile.model_validate({**user.model_dump(), **fields})
        await self.redis.set(user_key(user_id), updated.model_dump_json())
        logger.info(f"Updated user {user_id}: {sorted(fields)}")
        return updated

    async def list_ids(self) -> list:
        return await self.redis.lrange(USERS_INDEX, 0, -1)

    # ---------------- Persona cache ----------------

    async def get_persona(self, user_id: str) -> Optional[Persona]:
        raw = await self.redis.get(persona_key(user_id))
        if not raw:
            return None
        try:
            return Persona.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            logger.warning(f"Discarding unreadable cached persona for {user_id}")
            return None

    async def save_persona(self, persona: Persona, ttl_seconds: int) -> None:
        await self.redis.set(persona_key(persona.userId), persona.model_dump_json(), ex=ttl_seconds)

    # ---------------- Avatar conversations ----------------

    async def bind_conversation(self, conversation_id: str, user_id: str, ttl_seconds: int) -> None:
        await self.redis.set(conversation_key(conversation_id), user_id, ex=ttl_seconds)

    async def user_for_conversation(self, conversation_id: Optional[str]) -> Optional[str]:
        if not conversation_id:
            return None
        return await self.redis.get(conversation_key(conversation_id))
