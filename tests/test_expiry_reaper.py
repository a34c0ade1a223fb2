"""
Tests for Expiry Reaper

Chat cleanup after the retention window, food item reconciliation, and the
Redis job lock.
"""

from datetime import timedelta

import pytest

from conftest import OTHER, OWNER, REQUESTER, seed_food_item
from foodswap.config import settings
from foodswap.errors import FoodSwapError
from foodswap.services.expiry_reaper import ExpiryReaper
from foodswap.services.redis_service import RedisKeys
from foodswap.store.base import (
    CHAT_MESSAGES,
    CHAT_PARTICIPANTS,
    CHAT_ROOMS,
    FOOD_ITEMS,
    TRANSACTIONS,
)
from foodswap.utils.timezone_utils import utc_now


@pytest.fixture
def reaper(store, chat_service, food_service):
    return ExpiryReaper(store, chat_service, food_service)


async def completed_swap(transaction_service, identity, food_item_id="food-1"):
    identity.user = REQUESTER
    tx = await transaction_service.create_transaction(
        food_item_id, OWNER.id, OWNER.name, "please"
    )
    identity.user = OWNER
    await transaction_service.accept_transaction(tx.id)
    return await transaction_service.complete_transaction(tx.id, "/photo")


class TestChatCleanup:
    """Tests for cleanup_expired_chats."""

    @pytest.mark.asyncio
    async def test_room_kept_inside_retention_window(
        self, store, identity, transaction_service, reaper, food_item
    ):
        tx = await completed_swap(transaction_service, identity)

        stats = await reaper.cleanup_expired_chats(now=tx.completed_date + timedelta(hours=5))

        assert stats["cleaned"] == 0
        assert tx.chat_room_id in store.collections[CHAT_ROOMS]

    @pytest.mark.asyncio
    async def test_expired_room_is_purged_and_reference_cleared(
        self, store, identity, transaction_service, reaper, food_item
    ):
        tx = await completed_swap(transaction_service, identity)

        stats = await reaper.cleanup_expired_chats(now=tx.completed_date + timedelta(hours=7))

        assert stats == {"checked": 1, "cleaned": 1, "failed": 0}
        assert store.all(CHAT_ROOMS) == []
        assert store.all(CHAT_MESSAGES) == []
        assert store.all(CHAT_PARTICIPANTS) == []

        doc = store.collections[TRANSACTIONS][tx.id]
        assert doc["chat_room_id"] is None
        # The transaction itself is never deleted
        assert doc["status"] == "completed"
        assert doc["completion_photo"] == "/photo"

    @pytest.mark.asyncio
    async def test_second_sweep_is_a_no_op(
        self, identity, transaction_service, reaper, food_item
    ):
        tx = await completed_swap(transaction_service, identity)
        later = tx.completed_date + timedelta(hours=7)

        await reaper.cleanup_expired_chats(now=later)
        stats = await reaper.cleanup_expired_chats(now=later)

        assert stats == {"checked": 0, "cleaned": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_open_transactions_are_never_reaped(
        self, store, identity, transaction_service, reaper, food_item
    ):
        identity.user = REQUESTER
        tx = await transaction_service.create_transaction(
            "food-1", OWNER.id, OWNER.name
        )

        stats = await reaper.cleanup_expired_chats(now=utc_now() + timedelta(days=30))

        assert stats["checked"] == 0
        assert tx.chat_room_id in store.collections[CHAT_ROOMS]

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_retried_next_sweep(
        self, store, identity, transaction_service, reaper, food_item
    ):
        tx = await completed_swap(transaction_service, identity)
        later = tx.completed_date + timedelta(hours=7)

        store.fail(CHAT_ROOMS, "delete", FoodSwapError("store down"))
        stats = await reaper.cleanup_expired_chats(now=later)
        assert stats == {"checked": 1, "cleaned": 0, "failed": 1}
        assert store.collections[TRANSACTIONS][tx.id]["chat_room_id"] == tx.chat_room_id

        store.heal()
        stats = await reaper.cleanup_expired_chats(now=later)
        assert stats["cleaned"] == 1
        assert store.all(CHAT_ROOMS) == []

    @pytest.mark.asyncio
    async def test_engine_entry_point_delegates(
        self, store, identity, transaction_service, food_item
    ):
        tx = await completed_swap(transaction_service, identity)
        await store.update(
            TRANSACTIONS, tx.id, {"chat_expires_at": utc_now() - timedelta(minutes=1)}
        )

        stats = await transaction_service.cleanup_expired_chats()

        assert stats["cleaned"] == 1

    # =========================================================================
    # Job lock
    # =========================================================================

    @pytest.mark.asyncio
    async def test_sweep_skipped_while_another_worker_holds_lock(
        self, store, chat_service, food_service, redis_service, fake_redis
    ):
        reaper = ExpiryReaper(store, chat_service, food_service, redis_service)
        await redis_service.acquire_job_lock("chat_reaper", "other-worker", 60)

        assert await reaper.cleanup_expired_chats() == {"skipped": True}

    @pytest.mark.asyncio
    async def test_lock_released_after_sweep(
        self, store, chat_service, food_service, redis_service, fake_redis
    ):
        reaper = ExpiryReaper(store, chat_service, food_service, redis_service)

        stats = await reaper.cleanup_expired_chats()

        assert stats["checked"] == 0
        assert RedisKeys.job_lock("chat_reaper") not in fake_redis.data


class TestReconciliation:
    """Tests for reconcile_food_items."""

    @pytest.mark.asyncio
    async def test_stale_pending_transaction_re_reserves_item(
        self, store, identity, transaction_service, reaper, food_item
    ):
        identity.user = REQUESTER
        tx = await transaction_service.create_transaction("food-1", OWNER.id, OWNER.name)
        # Simulate the reserve step having been lost
        await store.update(FOOD_ITEMS, "food-1", {"status": "available"})

        stats = await reaper.reconcile_food_items(now=tx.requested_date + timedelta(hours=1))

        assert stats["repaired"] == 1
        assert store.collections[FOOD_ITEMS]["food-1"]["status"] == "requested"

    @pytest.mark.asyncio
    async def test_fresh_transaction_left_alone(
        self, store, identity, transaction_service, reaper, food_item
    ):
        identity.user = REQUESTER
        tx = await transaction_service.create_transaction("food-1", OWNER.id, OWNER.name)
        await store.update(FOOD_ITEMS, "food-1", {"status": "available"})

        stats = await reaper.reconcile_food_items(now=tx.requested_date + timedelta(minutes=1))

        assert stats["repaired"] == 0
        assert store.collections[FOOD_ITEMS]["food-1"]["status"] == "available"

    @pytest.mark.asyncio
    async def test_completed_transaction_completes_item(
        self, store, identity, transaction_service, reaper, food_item
    ):
        tx = await completed_swap(transaction_service, identity)
        await store.update(FOOD_ITEMS, "food-1", {"status": "requested"})

        stats = await reaper.reconcile_food_items(now=tx.completed_date)

        assert stats["repaired"] == 1
        assert store.collections[FOOD_ITEMS]["food-1"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_consistent_items_untouched(
        self, store, identity, transaction_service, reaper
    ):
        await seed_food_item(store)
        await seed_food_item(store, "food-2", title="Soup")
        await completed_swap(transaction_service, identity)
        identity.user = REQUESTER
        await transaction_service.create_transaction("food-2", OWNER.id, OWNER.name)

        stats = await reaper.reconcile_food_items(now=utc_now() + timedelta(hours=1))

        assert stats["checked"] == 2
        assert stats["repaired"] == 0

    @pytest.mark.asyncio
    async def test_every_stale_transaction_is_reached_beyond_one_batch(
        self, store, identity, transaction_service, reaper, monkeypatch
    ):
        monkeypatch.setattr(settings, "reaper_batch_size", 2)
        transactions = []
        for i in range(5):
            await seed_food_item(store, f"food-{i}", title=f"Item {i}")
            identity.user = REQUESTER if i % 2 else OTHER
            transactions.append(
                await transaction_service.create_transaction(f"food-{i}", OWNER.id, OWNER.name)
            )
            await store.update(FOOD_ITEMS, f"food-{i}", {"status": "available"})

        stats = await reaper.reconcile_food_items(now=utc_now() + timedelta(hours=1))

        assert stats["repaired"] == 5
        assert all(
            store.collections[FOOD_ITEMS][tx.food_item_id]["status"] == "requested"
            for tx in transactions
        )

    @pytest.mark.asyncio
    async def test_every_completed_transaction_is_reached_beyond_one_batch(
        self, store, identity, transaction_service, reaper, monkeypatch
    ):
        monkeypatch.setattr(settings, "reaper_batch_size", 2)
        for i in range(5):
            await seed_food_item(store, f"food-{i}", title=f"Item {i}")
            await completed_swap(transaction_service, identity, f"food-{i}")
            await store.update(FOOD_ITEMS, f"food-{i}", {"status": "requested"})

        stats = await reaper.reconcile_food_items(now=utc_now())

        assert stats["repaired"] == 5
        assert {doc["status"] for doc in store.all(FOOD_ITEMS)} == {"completed"}

    @pytest.mark.asyncio
    async def test_requested_item_without_open_transaction_is_released(
        self, store, identity, transaction_service, reaper, food_item
    ):
        tx = await transaction_service.create_transaction("food-1", OWNER.id, OWNER.name)
        # The swap was cancelled but the release step never landed
        await store.update(TRANSACTIONS, tx.id, {"status": "cancelled"})

        stats = await reaper.reconcile_food_items(now=utc_now() + timedelta(hours=1))

        assert stats["repaired"] == 1
        item = store.collections[FOOD_ITEMS]["food-1"]
        assert item["status"] == "available"
        assert item["reserved_by"] is None

    @pytest.mark.asyncio
    async def test_requested_item_of_reaped_completed_swap_is_completed(
        self, store, identity, transaction_service, reaper, food_item
    ):
        tx = await completed_swap(transaction_service, identity)
        await store.update(FOOD_ITEMS, "food-1", {"status": "requested"})
        await reaper.cleanup_expired_chats(now=tx.completed_date + timedelta(hours=7))

        stats = await reaper.reconcile_food_items(now=utc_now() + timedelta(hours=1))

        assert stats["repaired"] == 1
        assert store.collections[FOOD_ITEMS]["food-1"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_recent_requested_item_left_alone(
        self, store, identity, transaction_service, reaper, food_item
    ):
        tx = await transaction_service.create_transaction("food-1", OWNER.id, OWNER.name)
        await store.update(TRANSACTIONS, tx.id, {"status": "cancelled"})

        stats = await reaper.reconcile_food_items(now=utc_now())

        assert stats["checked"] == 0
        assert store.collections[FOOD_ITEMS]["food-1"]["status"] == "requested"


class TestSweepPaging:
    """Chat cleanup reaches rows past the first batch even when some keep failing."""

    @pytest.mark.asyncio
    async def test_failing_rows_do_not_starve_the_rest(
        self, store, identity, transaction_service, reaper, monkeypatch
    ):
        monkeypatch.setattr(settings, "reaper_batch_size", 2)
        swaps = []
        for i in range(5):
            await seed_food_item(store, f"food-{i}", title=f"Item {i}")
            swaps.append(await completed_swap(transaction_service, identity, f"food-{i}"))
        later = max(tx.completed_date for tx in swaps) + timedelta(hours=7)

        stats = await reaper.cleanup_expired_chats(now=later)

        assert stats == {"checked": 5, "cleaned": 5, "failed": 0}
        assert store.all(CHAT_ROOMS) == []
