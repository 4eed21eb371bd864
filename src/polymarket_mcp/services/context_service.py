import json
import logging

from ..models import ConversationState
from ..settings import get_settings
from .redis import REDIS_ERRORS, RedisCrudService, get_redis_crud_service

logger = logging.getLogger(__name__)

CONVERSATION_KEY_PREFIX = "conversation:"


class ConversationStore:
    """Persists chat histories in Redis so a client can resume with the same session_id."""

    def __init__(self, redis_crud: RedisCrudService, ttl_seconds: int) -> None:
        self._redis = redis_crud
        self._ttl = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{CONVERSATION_KEY_PREFIX}{session_id}"

    async def load(self, session_id: str) -> ConversationState | None:
        """Return the stored conversation, or None when missing or unreadable."""
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return ConversationState.from_json(raw)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Invalid conversation data for %s: %s", session_id, e)
            return None

    async def save(self, state: ConversationState) -> bool:
        return await self._redis.set(
            self._key(state.session_id), state.to_json(), ttl_seconds=self._ttl
        )

    async def delete(self, session_id: str) -> bool:
        return await self._redis.delete(self._key(session_id))

    async def close(self) -> None:
        await self._redis.close()


_store_instance: ConversationStore | None = None


async def get_conversation_store_async() -> ConversationStore | None:
    """Return the conversation store once Redis is reachable; None when Redis is not configured."""
    global _store_instance
    if _store_instance is not None:
        return _store_instance
    redis_crud = get_redis_crud_service()
    if redis_crud is None:
        return None
    try:
        await redis_crud.connect()
    except (*REDIS_ERRORS, ConnectionError, TimeoutError) as e:
        logger.warning("Conversation store unavailable (Redis): %s", e)
        return None
    _store_instance = ConversationStore(redis_crud, get_settings().context_ttl_seconds)
    return _store_instance


async def close_conversation_store() -> None:
    """Close the Redis connection behind the store. Idempotent."""
    global _store_instance
    if _store_instance is not None:
        await _store_instance.close()
        _store_instance = None
        logger.debug("Conversation store (Redis) closed")
