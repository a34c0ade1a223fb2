"""
Food Service

Food item listing and status management.
"""

import logging
import uuid
from typing import List, Optional

from foodswap.errors import InvalidState, NotFound, PermissionDenied
from foodswap.models.food_item import (
    FOOD_STATUS_TRANSITIONS,
    FoodItem,
    FoodItemCreate,
    FoodStatus,
)
from foodswap.models.transaction import OPEN_TRANSACTION_STATUSES
from foodswap.services.identity import IdentityProvider
from foodswap.store.base import FOOD_ITEMS, TRANSACTIONS, Eq, In, OrderBy, ResourceStore
from foodswap.utils.retry import with_retry
from foodswap.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class FoodService:
    """
    Food item management service.

    Only the owner may change an item's status through the public methods.
    The transaction engine moves status with ``transition_status``, which
    is guarded by the expected current status instead of by ownership.
    """

    def __init__(self, store: ResourceStore, identity: IdentityProvider):
        self.store = store
        self.identity = identity

    async def create_food_item(self, data: FoodItemCreate) -> FoodItem:
        """List a new item as available, owned by the caller."""
        user = await self.identity.get_current_user()

        item = FoodItem(
            id=str(uuid.uuid4()),
            owner_id=user.id,
            owner_name=user.name,
            status=FoodStatus.AVAILABLE,
            **data.model_dump(),
        )

        await with_retry(
            self.store.create, FOOD_ITEMS, item.model_dump(), label="create food item"
        )
        logger.info(f"Food item {item.id} listed by {user.id}")
        return item

    async def get_food_item(self, food_item_id: str) -> FoodItem:
        """Get a food item or raise NotFound."""
        await self.identity.get_current_user()

        doc = await self.store.get(FOOD_ITEMS, food_item_id)
        if not doc:
            raise NotFound(
                "Food item not found",
                operation="get_food_item",
                entity_id=food_item_id,
            )
        return FoodItem(**doc)

    async def get_food_items(
        self, status: Optional[FoodStatus] = None, limit: int = 100
    ) -> List[FoodItem]:
        """List items, newest first, optionally filtered by status."""
        await self.identity.get_current_user()

        predicates = [Eq("status", FoodStatus(status).value)] if status else []
        docs = await self.store.query(
            FOOD_ITEMS,
            predicates,
            order_by=OrderBy("created_at", descending=True),
            limit=limit,
        )
        return [FoodItem(**doc) for doc in docs]

    async def get_user_food_items(self, user_id: str) -> List[FoodItem]:
        await self.identity.get_current_user()

        docs = await self.store.query(
            FOOD_ITEMS,
            [Eq("owner_id", user_id)],
            order_by=OrderBy("created_at", descending=True),
        )
        return [FoodItem(**doc) for doc in docs]

    async def update_food_item_status(
        self, food_item_id: str, status: FoodStatus
    ) -> FoodItem:
        """
        Owner-initiated status change.

        Only legal edges are accepted, and the write is conditional on the
        status the owner saw. Reserving is left to swap requests, and an
        item stays requested while a swap for it is open.
        """
        user = await self.identity.get_current_user()
        item = await self.get_food_item(food_item_id)

        if item.owner_id != user.id:
            raise PermissionDenied(
                "Only the owner can update this food item.",
                operation="update_food_item_status",
                entity_id=food_item_id,
            )

        if FoodStatus(status) == FoodStatus.REQUESTED:
            raise InvalidState(
                "Items are reserved by swap requests only.",
                operation="update_food_item_status",
                entity_id=food_item_id,
            )

        if item.status == FoodStatus.REQUESTED and await self.has_open_transaction(food_item_id):
            raise InvalidState(
                "This item has an open swap request. Finish or cancel it first.",
                operation="update_food_item_status",
                entity_id=food_item_id,
            )

        updated = await self.transition_status(food_item_id, item.status, status)
        if updated is None:
            raise InvalidState(
                "Food item status changed, please refresh and try again.",
                operation="update_food_item_status",
                entity_id=food_item_id,
            )
        return updated

    async def has_open_transaction(self, food_item_id: str) -> bool:
        docs = await self.store.query(
            TRANSACTIONS,
            [Eq("food_item_id", food_item_id), In("status", OPEN_TRANSACTION_STATUSES)],
            limit=1,
        )
        return bool(docs)

    async def delete_food_item(self, food_item_id: str) -> None:
        """Owner-initiated delete. Items reserved by an open swap cannot be deleted."""
        user = await self.identity.get_current_user()
        item = await self.get_food_item(food_item_id)

        if item.owner_id != user.id:
            raise PermissionDenied(
                "Only the owner can delete this food item.",
                operation="delete_food_item",
                entity_id=food_item_id,
            )

        if item.status == FoodStatus.REQUESTED:
            raise InvalidState(
                "This item has an open swap request. Cancel it first.",
                operation="delete_food_item",
                entity_id=food_item_id,
            )

        await with_retry(
            self.store.delete, FOOD_ITEMS, food_item_id, label="delete food item"
        )
        logger.info(f"Food item {food_item_id} deleted by {user.id}")

    async def transition_status(
        self,
        food_item_id: str,
        from_status: FoodStatus,
        to_status: FoodStatus,
        transaction_id: Optional[str] = None,
    ) -> Optional[FoodItem]:
        """
        Move an item from ``from_status`` to ``to_status``.

        When a transaction drives the move, its id is stamped in
        ``reserved_by`` and leaving ``requested`` also requires the item to
        be reserved by that transaction. A write that landed but whose reply
        was lost is recognized on re-read by that marker.

        Returns the updated item, or None if the item was no longer in
        ``from_status`` (someone else moved it first).
        """
        from_status = FoodStatus(from_status)
        to_status = FoodStatus(to_status)

        if to_status not in FOOD_STATUS_TRANSITIONS[from_status]:
            raise InvalidState(
                f"Food item cannot move from {from_status.value} to {to_status.value}",
                operation="transition_status",
                entity_id=food_item_id,
            )

        fields = {"status": to_status.value, "updated_at": utc_now()}
        expected = {"status": from_status.value}
        if to_status == FoodStatus.AVAILABLE:
            fields["reserved_by"] = None
        elif transaction_id is not None:
            fields["reserved_by"] = transaction_id
        if from_status == FoodStatus.REQUESTED and transaction_id is not None:
            expected["reserved_by"] = transaction_id

        doc = await with_retry(
            self.store.update,
            FOOD_ITEMS,
            food_item_id,
            fields,
            expected=expected,
            label=f"food item {food_item_id} -> {to_status.value}",
        )

        if doc is None and transaction_id is not None:
            current = await self.store.get(FOOD_ITEMS, food_item_id)
            if current is not None and self._already_moved(current, to_status, transaction_id):
                logger.info(
                    f"Food item {food_item_id} already {to_status.value} "
                    f"for transaction {transaction_id}"
                )
                return FoodItem(**current)

        if doc is None:
            logger.warning(
                f"Food item {food_item_id} was not {from_status.value}, "
                f"skipped move to {to_status.value}"
            )
            return None

        return FoodItem(**doc)

    @staticmethod
    def _already_moved(doc: dict, to_status: FoodStatus, transaction_id: str) -> bool:
        if doc.get("status") != to_status.value:
            return False
        # A released item carries no marker; available is the wanted end state
        if to_status == FoodStatus.AVAILABLE:
            return True
        return doc.get("reserved_by") == transaction_id
