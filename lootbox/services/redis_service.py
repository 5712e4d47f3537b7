"""Redis Service - Per-actor locks serializing balance-changing operations."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from lootbox.config import settings
from lootbox.database import get_redis


logger = logging.getLogger(__name__)


# =============================================================================
# Redis Key Naming Convention
# =============================================================================
#
# All keys are namespaced under "lootbox:" prefix.
#
# Key patterns:
# - lootbox:lock:{operation}:{actor_id} - Lock token held while an actor's
#                                         balance-changing operation runs
#
# TTL rules:
# - Locks expire after OPEN_LOCK_TTL_SECONDS so a crashed worker cannot
#   wedge an actor forever.
#
# =============================================================================


class RedisKeys:
    """Redis key builders."""

    @staticmethod
    def actor_lock(operation: str, actor_id: str) -> str:
        return f"lootbox:lock:{operation}:{actor_id}"


# Compare-and-delete so a lock is only released by its holder
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisService:
    """
    Redis service for ephemeral concurrency control.

    MongoDB remains the source of truth; Redis only holds short-lived locks.
    """

    def __init__(self, redis_client=None):
        self._redis = redis_client
        self.lock_ttl_seconds = settings.open_lock_ttl_seconds

    @property
    def redis(self):
        return self._redis or get_redis()

    async def acquire_actor_lock(self, operation: str, actor_id: str) -> Optional[str]:
        """
        Try to take the actor's lock for an operation.

        Returns the lock token, or None if another operation holds it.
        Uses atomic SET NX EX to prevent race conditions.
        """
        token = str(uuid.uuid4())
        acquired = await self.redis.set(
            RedisKeys.actor_lock(operation, actor_id),
            token,
            nx=True,
            ex=self.lock_ttl_seconds,
        )
        return token if acquired else None

    async def release_actor_lock(self, operation: str, actor_id: str, token: str) -> None:
        await self.redis.eval(
            RELEASE_LOCK_SCRIPT, 1, RedisKeys.actor_lock(operation, actor_id), token
        )

    @asynccontextmanager
    async def actor_lock(self, operation: str, actor_id: str) -> AsyncIterator[bool]:
        """Context manager yielding whether the lock was obtained."""
        token = await self.acquire_actor_lock(operation, actor_id)
        try:
            yield token is not None
        finally:
            if token is not None:
                try:
                    await self.release_actor_lock(operation, actor_id, token)
                except Exception as e:
                    # Lock expires via TTL anyway
                    logger.error(f"Failed to release {operation} lock for {actor_id}: {e}")
