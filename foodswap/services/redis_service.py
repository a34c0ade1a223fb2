"""Redis Service - Redis key management for ephemeral swap coordination state."""

import logging
from datetime import timedelta
from typing import Optional

import redis.asyncio as redis

from foodswap.config import settings

logger = logging.getLogger(__name__)


# =============================================================================
# Redis Key Naming Convention
# =============================================================================
#
# All keys are namespaced under "foodswap:" prefix.
#
# Key patterns:
# - foodswap:lock:food:{food_item_id}        - Reservation lock held while a
#                                               request is being created
# - foodswap:idem:{user_id}:{key}            - Transaction id for a client
#                                               idempotency key
# - foodswap:lock:job:{job_name}             - Scheduled job mutual exclusion
#
# TTL rules:
# - Food lock: FOOD_LOCK_TTL_SECONDS (30s), released explicitly on success
# - Idempotency key: IDEMPOTENCY_TTL_HOURS (24h)
# - Job lock: the job interval
#
# =============================================================================


class RedisKeys:
    """Redis key builders with documentation."""

    @staticmethod
    def food_lock(food_item_id: str) -> str:
        """Lock taken while a swap request for the item is in flight."""
        return f"foodswap:lock:food:{food_item_id}"

    @staticmethod
    def idempotency(user_id: str, key: str) -> str:
        """Maps a requester's idempotency key to the transaction it created."""
        return f"foodswap:idem:{user_id}:{key}"

    @staticmethod
    def job_lock(job_name: str) -> str:
        """Keeps two workers from running the same sweep concurrently."""
        return f"foodswap:lock:job:{job_name}"


class RedisService:
    """
    Redis operations for swap coordination.

    Redis is an optimization on top of the conditional store updates: losing
    Redis never makes the swap flow incorrect, only more race-prone.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    # =========================================================================
    # Food Reservation Locks
    # =========================================================================

    async def acquire_food_lock(
        self, food_item_id: str, token: str, ttl_seconds: Optional[int] = None
    ) -> bool:
        """Take the reservation lock. Returns False if someone else holds it."""
        ttl = ttl_seconds or settings.food_lock_ttl_seconds
        acquired = await self.client.set(
            RedisKeys.food_lock(food_item_id), token, nx=True, ex=ttl
        )
        return bool(acquired)

    async def release_food_lock(self, food_item_id: str, token: str) -> None:
        """Release the lock if we still hold it."""
        key = RedisKeys.food_lock(food_item_id)
        holder = await self.client.get(key)
        if holder == token:
            await self.client.delete(key)

    # =========================================================================
    # Idempotency Keys
    # =========================================================================

    async def remember_idempotency_key(
        self, user_id: str, key: str, transaction_id: str
    ) -> None:
        await self.client.set(
            RedisKeys.idempotency(user_id, key),
            transaction_id,
            ex=timedelta(hours=settings.idempotency_ttl_hours),
        )

    async def get_idempotent_transaction(self, user_id: str, key: str) -> Optional[str]:
        return await self.client.get(RedisKeys.idempotency(user_id, key))

    # =========================================================================
    # Job Locks
    # =========================================================================

    async def acquire_job_lock(self, job_name: str, token: str, ttl_seconds: int) -> bool:
        acquired = await self.client.set(
            RedisKeys.job_lock(job_name), token, nx=True, ex=ttl_seconds
        )
        return bool(acquired)

    async def release_job_lock(self, job_name: str, token: str) -> None:
        """Release the lock if we still hold it.

        A sweep that outlived the TTL must not free the next holder's lock.
        """
        key = RedisKeys.job_lock(job_name)
        holder = await self.client.get(key)
        if holder == token:
            await self.client.delete(key)
        else:
            logger.warning(f"Job lock for {job_name} expired before release")
