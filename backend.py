import json
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, MESSAGE_HISTORY_LIMIT
from redis_keys import REDIS_MESSAGES_KEY
from schemas.messages import ChatMessage
from logging_config import get_logger

logger = get_logger(__name__)


def create_redis_client() -> aioredis.Redis:
    # Connections are opened lazily by the pool; nothing touches the network here
    return aioredis.Redis(
        host=REDIS_HOST,
        port=REDIS_PORT,
        password=REDIS_PASSWORD,
        db=REDIS_DB,
        decode_responses=True,
    )


class RedisBackend:
    """Append-only per-room message log kept in Redis lists.

    Each room owns one list at ``room:messages:{room_id}``. Elements are JSON
    message records and are never rewritten or removed.
    """

    def __init__(self, redis_client: Optional[aioredis.Redis] = None, history_limit: int = MESSAGE_HISTORY_LIMIT):
        self.redis_client = redis_client if redis_client is not None else create_redis_client()
        self.history_limit = history_limit
        logger.info(f"Initializing RedisBackend for {REDIS_HOST}:{REDIS_PORT} (history limit: {history_limit or 'none'})")

    @staticmethod
    def get_messages_key(room_id: str) -> str:
        return REDIS_MESSAGES_KEY.format(slug=room_id)

    async def ping(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def append(self, message: ChatMessage) -> int:
        """Persist one message. Storage errors propagate to the caller."""
        key = self.get_messages_key(message.room_id)
        record = message.model_dump_json(by_alias=True, exclude_none=True)
        length = await self.redis_client.rpush(key, record)
        logger.debug(f"Stored message {message.id} in room {message.room_id} (log length: {length})")
        return length

    async def history(self, room_id: str) -> list[ChatMessage]:
        """Stored messages of a room, oldest first.

        A room with no log, or a log that cannot be read, replays as empty.
        """
        key = self.get_messages_key(room_id)
        start = -self.history_limit if self.history_limit > 0 else 0
        try:
            records = await self.redis_client.lrange(key, start, -1)
        except Exception as e:
            logger.error(f"Error loading history for room {room_id}: {e}", exc_info=True)
            return []

        messages = []
        for record in records:
            try:
                messages.append(ChatMessage.model_validate(json.loads(record)))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Skipping unreadable message record in room {room_id}: {e}")

        # Appends run concurrently, so list order can trail timestamp order.
        # sort() is stable: equal timestamps keep insertion order.
        messages.sort(key=lambda m: m.timestamp)
        logger.debug(f"Loaded {len(messages)} messages for room {room_id}")
        return messages

    async def has_history(self, room_id: str) -> bool:
        try:
            return bool(await self.redis_client.exists(self.get_messages_key(room_id)))
        except Exception as e:
            logger.warning(f"Could not check history for room {room_id}: {e}")
            return False

    async def count(self, room_id: str) -> int:
        try:
            return int(await self.redis_client.llen(self.get_messages_key(room_id)))
        except Exception as e:
            logger.warning(f"Could not count messages for room {room_id}: {e}")
            return 0

    async def close(self) -> None:
        try:
            await self.redis_client.aclose()
        except Exception as e:
            logger.debug(f"Error closing Redis client: {e}")
