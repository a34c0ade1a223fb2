"""
Expiry Reaper - Background sweeps over completed and stuck transactions.

``cleanup_expired_chats`` deletes the chat rooms of completed transactions
once their retention window has passed. ``reconcile_food_items`` repairs
food items left out of step with their transaction by a partial failure.
Both are safe to run repeatedly and from several workers.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from redis.exceptions import RedisError

from foodswap.config import settings
from foodswap.errors import FoodSwapError
from foodswap.models.food_item import FoodStatus
from foodswap.models.transaction import (
    OPEN_TRANSACTION_STATUSES,
    Transaction,
    TransactionStatus,
)
from foodswap.services.chat_service import ChatService
from foodswap.services.food_service import FoodService
from foodswap.services.redis_service import RedisService
from foodswap.store.base import (
    FOOD_ITEMS,
    TRANSACTIONS,
    Eq,
    Gt,
    In,
    Lt,
    Ne,
    OrderBy,
    Predicate,
    ResourceStore,
)
from foodswap.utils.retry import with_retry
from foodswap.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

# Open transactions younger than this may still be mid-creation
RECONCILE_GRACE_MINUTES = 10


class ExpiryReaper:
    """Periodic cleanup. Runs without a user identity."""

    def __init__(
        self,
        store: ResourceStore,
        chat_service: ChatService,
        food_service: FoodService,
        redis_service: Optional[RedisService] = None,
    ):
        self.store = store
        self.chat = chat_service
        self.foods = food_service
        self.redis = redis_service

    async def cleanup_expired_chats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Purge the rooms of completed transactions past ``chat_expires_at``.

        Transactions whose room is already gone are excluded by the query,
        so a second run over the same data does nothing.
        """
        return await self._locked(
            "chat_reaper",
            settings.reaper_interval_minutes * 60,
            lambda: self._cleanup_expired_chats(now or utc_now()),
        )

    async def _cleanup_expired_chats(self, now: datetime) -> Dict[str, Any]:
        stats = {"checked": 0, "cleaned": 0, "failed": 0}

        predicates = [
            Eq("status", TransactionStatus.COMPLETED.value),
            Lt("chat_expires_at", now),
            Ne("chat_room_id", None),
        ]
        async for doc in self._scan(TRANSACTIONS, predicates):
            transaction = Transaction(**doc)
            stats["checked"] += 1

            try:
                await self.chat.purge_room(transaction.chat_room_id)
                await with_retry(
                    self.store.update,
                    TRANSACTIONS,
                    transaction.id,
                    {"chat_room_id": None, "updated_at": now},
                    label="clear chat reference",
                )
                stats["cleaned"] += 1
            except FoodSwapError as e:
                # Leave it for the next sweep
                stats["failed"] += 1
                logger.error(
                    f"Failed to clean chat {transaction.chat_room_id} of "
                    f"transaction {transaction.id}: {e}"
                )

        if stats["checked"]:
            logger.info(
                f"Chat reaper: {stats['cleaned']} cleaned, {stats['failed']} failed"
            )
        return stats

    async def reconcile_food_items(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Re-apply the food item status implied by each transaction.

        - pending/accepted transactions need their item ``requested``
        - completed transactions still holding a chat need their item ``completed``
        - ``requested`` items with no open transaction are completed if the
          transaction that reserved them completed, otherwise released
        """
        return await self._locked(
            "food_reconciler",
            settings.reconcile_interval_minutes * 60,
            lambda: self._reconcile_food_items(now or utc_now()),
        )

    async def _reconcile_food_items(self, now: datetime) -> Dict[str, Any]:
        stats = {"checked": 0, "repaired": 0, "failed": 0}
        cutoff = now - timedelta(minutes=RECONCILE_GRACE_MINUTES)

        open_transactions = [
            In("status", OPEN_TRANSACTION_STATUSES),
            Lt("requested_date", cutoff),
        ]
        async for doc in self._scan(TRANSACTIONS, open_transactions):
            await self._reconcile(Transaction(**doc), FoodStatus.REQUESTED, stats)

        completed_transactions = [
            Eq("status", TransactionStatus.COMPLETED.value),
            Ne("chat_room_id", None),
        ]
        async for doc in self._scan(TRANSACTIONS, completed_transactions):
            await self._reconcile(Transaction(**doc), FoodStatus.COMPLETED, stats)

        requested_items = [
            Eq("status", FoodStatus.REQUESTED.value),
            Lt("updated_at", cutoff),
        ]
        async for food in self._scan(FOOD_ITEMS, requested_items):
            await self._reconcile_orphan(food, stats)

        return stats

    async def _reconcile(
        self, transaction: Transaction, wanted: FoodStatus, stats: Dict[str, int]
    ) -> None:
        stats["checked"] += 1
        food = await self.store.get(FOOD_ITEMS, transaction.food_item_id)
        if not food or food["status"] == wanted.value:
            return

        # available -> requested, or requested -> completed
        from_status = (
            FoodStatus.AVAILABLE if wanted == FoodStatus.REQUESTED else FoodStatus.REQUESTED
        )
        if food["status"] != from_status.value:
            logger.warning(
                f"Food item {transaction.food_item_id} is {food['status']}, "
                f"cannot reconcile with transaction {transaction.id}"
            )
            return

        await self._repair(
            transaction.food_item_id, from_status, wanted, transaction.id, stats
        )

    async def _reconcile_orphan(self, food: Dict[str, Any], stats: Dict[str, int]) -> None:
        """A requested item whose reserving transaction is no longer open."""
        if await self.foods.has_open_transaction(food["id"]):
            return

        stats["checked"] += 1
        holder_id = food.get("reserved_by")
        holder = await self.store.get(TRANSACTIONS, holder_id) if holder_id else None

        if holder and holder["status"] == TransactionStatus.COMPLETED.value:
            wanted = FoodStatus.COMPLETED
        else:
            wanted = FoodStatus.AVAILABLE

        await self._repair(food["id"], FoodStatus.REQUESTED, wanted, holder_id, stats)

    async def _repair(
        self,
        food_item_id: str,
        from_status: FoodStatus,
        wanted: FoodStatus,
        transaction_id: Optional[str],
        stats: Dict[str, int],
    ) -> None:
        try:
            if await self.foods.transition_status(
                food_item_id, from_status, wanted, transaction_id=transaction_id
            ):
                stats["repaired"] += 1
                logger.info(
                    f"Reconciled food item {food_item_id} to {wanted.value} "
                    f"for transaction {transaction_id}"
                )
        except FoodSwapError as e:
            stats["failed"] += 1
            logger.error(f"Failed to reconcile {food_item_id}: {e}")

    async def _scan(
        self, collection: str, predicates: List[Predicate]
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield every matching document, one batch at a time, in id order."""
        last_id = None
        while True:
            page = list(predicates)
            if last_id is not None:
                page.append(Gt("id", last_id))

            docs = await self.store.query(
                collection, page, order_by=OrderBy("id"), limit=settings.reaper_batch_size
            )
            for doc in docs:
                yield doc

            if len(docs) < settings.reaper_batch_size:
                return
            last_id = docs[-1]["id"]

    async def _locked(
        self,
        job_name: str,
        ttl_seconds: int,
        sweep: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """Run ``sweep`` under a Redis job lock when Redis is configured."""
        if not self.redis:
            return await sweep()

        token = str(uuid.uuid4())
        try:
            acquired = await self.redis.acquire_job_lock(job_name, token, ttl_seconds)
        except RedisError as e:
            logger.warning(f"Job lock for {job_name} unavailable, running unlocked: {e}")
            return await sweep()

        if not acquired:
            logger.info(f"{job_name} already running elsewhere, skipped")
            return {"skipped": True}

        try:
            return await sweep()
        finally:
            try:
                await self.redis.release_job_lock(job_name, token)
            except RedisError as e:
                logger.warning(f"Could not release job lock for {job_name}: {e}")
