"""
Transaction Service - The swap state machine.

A transaction moves pending -> accepted -> completed, or to cancelled from
either open state. Every move is a conditional update on the current
status, followed by side effects on the food item, the chat room and the
notification mailbox. There are no multi-document transactions, so the
writes are ordered to keep partial failures recoverable:

    create:   room -> transaction -> messages -> food item -> notification

The food item is flipped last so a failure before it leaves the item
``available`` rather than stuck ``requested`` with nothing to resolve it.
"""

import logging
import uuid
from typing import Any, Awaitable, Dict, List, Optional

from redis.exceptions import RedisError

from foodswap.config import settings
from foodswap.errors import (
    FoodSwapError,
    InvalidState,
    ItemUnavailable,
    NotFound,
    PartialFailure,
    PermissionDenied,
)
from foodswap.models.chat import MessageType
from foodswap.models.food_item import FoodItem, FoodStatus
from foodswap.models.notification import NotificationType
from foodswap.models.transaction import (
    CompletionProof,
    SwapResponse,
    Transaction,
    TransactionStatus,
)
from foodswap.models.user import CurrentUser
from foodswap.services.chat_service import ChatService
from foodswap.services.expiry_reaper import ExpiryReaper
from foodswap.services.food_service import FoodService
from foodswap.services.identity import IdentityProvider
from foodswap.services.notification_service import (
    FOOD_REQUEST_MESSAGE,
    REQUEST_ACCEPTED_MESSAGE,
    REQUEST_REJECTED_MESSAGE,
    NotificationService,
)
from foodswap.services.redis_service import RedisService
from foodswap.store.base import (
    COMPLETION_PROOFS,
    TRANSACTIONS,
    Eq,
    Ne,
    OrderBy,
    ResourceStore,
)
from foodswap.utils.retry import with_retry
from foodswap.utils.timezone_utils import hours_from, utc_now

logger = logging.getLogger(__name__)

# Per-party page size for get_user_transactions
USER_TRANSACTIONS_LIMIT = 50


class TransactionService:
    """
    Transaction engine.

    Both trigger surfaces (the transaction screen and the notification
    screen) go through the same accept/reject methods here, so the side
    effects of answering a request never depend on where it was answered.
    """

    def __init__(
        self,
        store: ResourceStore,
        identity: IdentityProvider,
        chat_service: ChatService,
        notification_service: NotificationService,
        food_service: FoodService,
        redis_service: Optional[RedisService] = None,
    ):
        self.store = store
        self.identity = identity
        self.chat = chat_service
        self.notifications = notification_service
        self.foods = food_service
        self.redis = redis_service
        self.reaper = ExpiryReaper(store, chat_service, food_service, redis_service)

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_transaction(
        self,
        food_item_id: str,
        owner_id: str,
        owner_name: str,
        request_message: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Transaction:
        """
        Request a food item.

        With an ``idempotency_key``, retrying after a failure resumes the
        earlier attempt instead of creating a second chat room.

        Raises:
            PermissionDenied: caller owns the item
            InvalidState: ``owner_id`` does not own the item
            ItemUnavailable: item is not available, or another request won
            PartialFailure: a step after the transaction was saved failed
        """
        user = await self.identity.get_current_user()

        if user.id == owner_id:
            raise PermissionDenied(
                "You cannot request your own food item",
                operation="create_transaction",
                entity_id=food_item_id,
            )

        if idempotency_key:
            existing = await self._find_by_idempotency_key(user.id, idempotency_key)
            if existing:
                logger.info(
                    f"Resuming transaction {existing.id} for idempotency key "
                    f"{idempotency_key}"
                )
                return await self._resume_creation(existing)

        food = await self.foods.get_food_item(food_item_id)

        if food.owner_id == user.id:
            raise PermissionDenied(
                "You cannot request your own food item",
                operation="create_transaction",
                entity_id=food_item_id,
            )
        if food.owner_id != owner_id:
            raise InvalidState(
                "Food item owner does not match the request",
                operation="create_transaction",
                entity_id=food_item_id,
            )
        if food.status != FoodStatus.AVAILABLE:
            raise ItemUnavailable(
                "This food item is no longer available",
                operation="create_transaction",
                entity_id=food_item_id,
            )

        lock_token = str(uuid.uuid4())
        if not await self._acquire_food_lock(food_item_id, lock_token):
            raise ItemUnavailable(
                "Someone else is requesting this food item right now",
                operation="create_transaction",
                entity_id=food_item_id,
            )

        try:
            return await self._create(
                user, food, owner_name or food.owner_name, request_message, idempotency_key
            )
        finally:
            await self._release_food_lock(food_item_id, lock_token)

    async def _create(
        self,
        user: CurrentUser,
        food: FoodItem,
        owner_name: str,
        request_message: Optional[str],
        idempotency_key: Optional[str],
    ) -> Transaction:
        transaction_id = str(uuid.uuid4())

        room = await self.chat.create_chat_room(
            f"Transaction: {food.title}",
            f"Transaction chat for {food.title}",
            True,
            [(user.id, user.name)],
            creator=(food.owner_id, owner_name),
            transaction_id=transaction_id,
            food_item_id=food.id,
        )

        now = utc_now()
        transaction = Transaction(
            id=transaction_id,
            food_item_id=food.id,
            food_title=food.title,
            owner_id=food.owner_id,
            owner_name=owner_name,
            requester_id=user.id,
            requester_name=user.name,
            chat_room_id=room.id,
            status=TransactionStatus.PENDING,
            request_message=request_message,
            requested_date=now,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )

        try:
            await with_retry(
                self.store.create,
                TRANSACTIONS,
                transaction.model_dump(),
                label="create transaction",
            )
        except FoodSwapError:
            logger.error(f"Transaction {transaction_id} not saved, removing room {room.id}")
            await self.chat.purge_room(room.id)
            raise

        if idempotency_key:
            await self._remember_idempotency_key(user.id, idempotency_key, transaction_id)

        await self._run_step(
            "create_transaction",
            "post_messages",
            transaction_id,
            self._post_request_messages(transaction),
        )

        await self._reserve_food_item(transaction)

        await self._run_step(
            "create_transaction",
            "notify_owner",
            transaction_id,
            self._notify_owner(transaction),
        )

        logger.info(
            f"Transaction {transaction_id} created: {user.id} requested {food.id}"
        )
        return transaction

    async def _post_request_messages(self, transaction: Transaction) -> None:
        await self.chat.post_system_message(
            transaction.chat_room_id,
            f'Transaction started for "{transaction.food_title}". '
            f"{transaction.requester_name} has requested this food item.",
        )
        if transaction.request_message:
            await self.chat.post_system_message(
                transaction.chat_room_id,
                transaction.request_message,
                message_type=MessageType.TEXT,
            )

    async def _reserve_food_item(self, transaction: Transaction) -> None:
        """
        Flip the food item available -> requested.

        RACE CONDITION FIX: The flip is conditional on the item still being
        available. The request that loses cancels its own transaction and
        removes its room, so at most one open transaction reserves an item.
        """
        try:
            updated = await self.foods.transition_status(
                transaction.food_item_id, FoodStatus.AVAILABLE, FoodStatus.REQUESTED,
                transaction_id=transaction.id,
            )
        except FoodSwapError as e:
            raise PartialFailure(
                "Your request was saved but the food item could not be reserved",
                operation="create_transaction",
                entity_id=transaction.id,
                step="reserve_food_item",
                cause=e,
            ) from e

        if updated is not None:
            return

        logger.warning(
            f"Transaction {transaction.id} lost the race for {transaction.food_item_id}"
        )
        await self._transition(
            transaction,
            TransactionStatus.PENDING,
            TransactionStatus.CANCELLED,
            {
                "cancelled_by": transaction.requester_id,
                "cancel_reason": "Food item is no longer available",
            },
            operation="create_transaction",
        )
        if transaction.chat_room_id:
            await self.chat.purge_room(transaction.chat_room_id)

        raise ItemUnavailable(
            "This food item is no longer available",
            operation="create_transaction",
            entity_id=transaction.food_item_id,
        )

    async def _notify_owner(self, transaction: Transaction) -> None:
        await self.notifications.create_notification(
            from_user_id=transaction.requester_id,
            to_user_id=transaction.owner_id,
            food_item_id=transaction.food_item_id,
            type=NotificationType.FOOD_REQUEST,
            message=transaction.request_message
            or FOOD_REQUEST_MESSAGE.format(
                requester_name=transaction.requester_name,
                food_title=transaction.food_title,
            ),
            transaction_id=transaction.id,
        )

    async def _resume_creation(self, transaction: Transaction) -> Transaction:
        """Re-run whichever trailing creation steps did not land."""
        if transaction.status != TransactionStatus.PENDING:
            return transaction

        food = await self.foods.get_food_item(transaction.food_item_id)
        # A requested item reserved by another transaction means this one lost
        if food.status == FoodStatus.AVAILABLE or (
            food.status == FoodStatus.REQUESTED and food.reserved_by != transaction.id
        ):
            await self._reserve_food_item(transaction)

        if not await self.notifications.has_request_for(transaction.id):
            await self._run_step(
                "create_transaction",
                "notify_owner",
                transaction.id,
                self._notify_owner(transaction),
            )

        return transaction

    # =========================================================================
    # Transitions
    # =========================================================================

    async def accept_transaction(
        self, transaction_id: str, response_message: Optional[str] = None
    ) -> Transaction:
        """
        Owner accepts a pending request.

        The food item is already ``requested`` and is left untouched.
        """
        user = await self.identity.get_current_user()
        transaction = await self._load(transaction_id, "accept_transaction")
        self._require_owner(transaction, user, "accept_transaction")
        self._require_status(transaction, TransactionStatus.PENDING, "accept_transaction")

        updated = await self._transition(
            transaction,
            TransactionStatus.PENDING,
            TransactionStatus.ACCEPTED,
            {"accepted_date": utc_now()},
            operation="accept_transaction",
        )

        if updated.chat_room_id:
            await self._run_step(
                "accept_transaction",
                "post_messages",
                transaction_id,
                self.chat.post_system_message(
                    updated.chat_room_id,
                    f"{updated.owner_name} has accepted the food request! "
                    f"You can now chat to arrange the pickup.",
                ),
            )

        await self._run_step(
            "accept_transaction",
            "notify_requester",
            transaction_id,
            self._notify_requester(
                updated,
                NotificationType.REQUEST_ACCEPTED,
                response_message
                or REQUEST_ACCEPTED_MESSAGE.format(food_title=updated.food_title),
            ),
        )

        logger.info(f"Transaction {transaction_id} accepted by {user.id}")
        return updated

    async def reject_transaction(
        self, transaction_id: str, reason: Optional[str] = None
    ) -> Transaction:
        """Owner declines a pending request and frees the food item."""
        user = await self.identity.get_current_user()
        transaction = await self._load(transaction_id, "reject_transaction")
        self._require_owner(transaction, user, "reject_transaction")
        self._require_status(transaction, TransactionStatus.PENDING, "reject_transaction")

        updated = await self._transition(
            transaction,
            TransactionStatus.PENDING,
            TransactionStatus.CANCELLED,
            {"cancelled_by": user.id, "cancel_reason": reason},
            operation="reject_transaction",
        )

        if updated.chat_room_id:
            text = f"{updated.owner_name} has declined the food request."
            if reason:
                text += f" Reason: {reason}"
            await self._run_step(
                "reject_transaction",
                "post_messages",
                transaction_id,
                self.chat.post_system_message(updated.chat_room_id, text),
            )

        await self._run_step(
            "reject_transaction",
            "release_food_item",
            transaction_id,
            self._release_food_item(updated),
        )

        await self._run_step(
            "reject_transaction",
            "notify_requester",
            transaction_id,
            self._notify_requester(
                updated,
                NotificationType.REQUEST_REJECTED,
                reason or REQUEST_REJECTED_MESSAGE.format(food_title=updated.food_title),
            ),
        )

        logger.info(f"Transaction {transaction_id} rejected by {user.id}")
        return updated

    async def complete_transaction(
        self, transaction_id: str, completion_photo_ref: str
    ) -> Transaction:
        """
        Owner marks an accepted swap as handed over, with photo proof.

        Starts the chat retention window.
        """
        user = await self.identity.get_current_user()
        transaction = await self._load(transaction_id, "complete_transaction")
        self._require_owner(transaction, user, "complete_transaction")
        self._require_status(transaction, TransactionStatus.ACCEPTED, "complete_transaction")

        if not completion_photo_ref:
            raise InvalidState(
                "A completion photo is required",
                operation="complete_transaction",
                entity_id=transaction_id,
            )

        completed_date = utc_now()
        updated = await self._transition(
            transaction,
            TransactionStatus.ACCEPTED,
            TransactionStatus.COMPLETED,
            {
                "completed_date": completed_date,
                "chat_expires_at": hours_from(completed_date, settings.chat_retention_hours),
                "completion_photo": completion_photo_ref,
            },
            operation="complete_transaction",
        )

        proof = CompletionProof(
            id=str(uuid.uuid4()),
            transaction_id=transaction_id,
            photo_ref=completion_photo_ref,
            uploaded_by=user.id,
            taken_at=completed_date,
        )
        await self._run_step(
            "complete_transaction",
            "record_proof",
            transaction_id,
            with_retry(
                self.store.create,
                COMPLETION_PROOFS,
                proof.model_dump(),
                label="record completion proof",
            ),
        )

        await self._run_step(
            "complete_transaction",
            "complete_food_item",
            transaction_id,
            self._complete_food_item(updated),
        )

        if updated.chat_room_id:
            await self._run_step(
                "complete_transaction",
                "post_messages",
                transaction_id,
                self._post_completion_messages(updated),
            )

        logger.info(f"Transaction {transaction_id} completed by {user.id}")
        return updated

    async def _post_completion_messages(self, transaction: Transaction) -> None:
        await self.chat.post_system_message(
            transaction.chat_room_id,
            f"Transaction completed! {transaction.owner_name} has provided the food "
            f"with photo proof. This chat will be automatically deleted in "
            f"{settings.chat_retention_hours} hours.",
        )
        await self.chat.post_system_message(
            transaction.chat_room_id,
            "Completion photo:",
            message_type=MessageType.COMPLETION_PHOTO,
            attachment_ref=transaction.completion_photo,
        )

    async def cancel_transaction(
        self, transaction_id: str, reason: Optional[str] = None
    ) -> Transaction:
        """
        Either party cancels an open swap.

        The food item goes back to ``available`` whoever cancels.
        """
        user = await self.identity.get_current_user()
        transaction = await self._load(transaction_id, "cancel_transaction")

        if not transaction.is_party(user.id):
            raise PermissionDenied(
                "You do not have permission to cancel this transaction",
                operation="cancel_transaction",
                entity_id=transaction_id,
            )

        current = TransactionStatus(transaction.status)
        if current in (TransactionStatus.COMPLETED, TransactionStatus.CANCELLED):
            raise InvalidState(
                "Cannot cancel a completed or already cancelled transaction",
                operation="cancel_transaction",
                entity_id=transaction_id,
            )

        updated = await self._transition(
            transaction,
            current,
            TransactionStatus.CANCELLED,
            {"cancelled_by": user.id, "cancel_reason": reason},
            operation="cancel_transaction",
        )

        if updated.chat_room_id:
            text = f"Transaction cancelled by {updated.name_of(user.id)}."
            if reason:
                text += f" Reason: {reason}"
            await self._run_step(
                "cancel_transaction",
                "post_messages",
                transaction_id,
                self.chat.post_system_message(updated.chat_room_id, text),
            )

        await self._run_step(
            "cancel_transaction",
            "release_food_item",
            transaction_id,
            self._release_food_item(updated),
        )

        logger.info(f"Transaction {transaction_id} cancelled by {user.id}")
        return updated

    # =========================================================================
    # Notification Entry Point
    # =========================================================================

    async def respond_to_notification(
        self,
        notification_id: str,
        response: SwapResponse,
        response_message: Optional[str] = None,
    ) -> Transaction:
        """
        Answer a food_request notification.

        Drives the same accept/reject path as the transaction screen, then
        marks the notification answered.
        """
        response = SwapResponse(response)
        notification = await self.notifications.get_notification(notification_id)

        if notification.type != NotificationType.FOOD_REQUEST:
            raise InvalidState(
                "This notification has already been responded to",
                operation="respond_to_notification",
                entity_id=notification_id,
            )
        if not notification.transaction_id:
            raise NotFound(
                "No swap request is linked to this notification",
                operation="respond_to_notification",
                entity_id=notification_id,
            )

        if response == SwapResponse.ACCEPTED:
            transaction = await self.accept_transaction(
                notification.transaction_id, response_message
            )
            new_type = NotificationType.REQUEST_ACCEPTED
            default_message = "Your request was accepted!"
        else:
            transaction = await self.reject_transaction(
                notification.transaction_id, response_message
            )
            new_type = NotificationType.REQUEST_REJECTED
            default_message = "Your request was declined"

        await self._run_step(
            "respond_to_notification",
            "update_notification",
            transaction.id,
            self.notifications.update_notification(
                notification_id,
                type=new_type,
                message=response_message or default_message,
                read=True,
                response_message=response_message,
            ),
        )
        return transaction

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_transaction(self, transaction_id: str) -> Transaction:
        """Get a transaction. Only its two parties may read it."""
        user = await self.identity.get_current_user()
        transaction = await self._load(transaction_id, "get_transaction")

        if not transaction.is_party(user.id):
            raise PermissionDenied(
                "You are not part of this transaction",
                operation="get_transaction",
                entity_id=transaction_id,
            )
        return transaction

    async def get_user_transactions(self) -> List[Transaction]:
        """Transactions the caller owns or requested, newest first."""
        user = await self.identity.get_current_user()

        by_id: Dict[str, Transaction] = {}
        for field in ("owner_id", "requester_id"):
            docs = await self.store.query(
                TRANSACTIONS,
                [Eq(field, user.id)],
                order_by=OrderBy("requested_date", descending=True),
                limit=USER_TRANSACTIONS_LIMIT,
            )
            for doc in docs:
                by_id[doc["id"]] = Transaction(**doc)

        return sorted(by_id.values(), key=lambda t: t.requested_date, reverse=True)

    async def get_transaction_by_food_item(self, food_item_id: str) -> Optional[Transaction]:
        """Latest non-cancelled transaction for a food item, if any."""
        await self.identity.get_current_user()

        docs = await self.store.query(
            TRANSACTIONS,
            [
                Eq("food_item_id", food_item_id),
                Ne("status", TransactionStatus.CANCELLED.value),
            ],
            order_by=OrderBy("requested_date", descending=True),
            limit=1,
        )
        return Transaction(**docs[0]) if docs else None

    async def cleanup_expired_chats(self) -> Dict[str, Any]:
        """Run one reaper sweep on behalf of the caller."""
        await self.identity.get_current_user()
        return await self.reaper.cleanup_expired_chats()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _load(self, transaction_id: str, operation: str) -> Transaction:
        doc = await self.store.get(TRANSACTIONS, transaction_id)
        if not doc:
            raise NotFound(
                "Transaction not found", operation=operation, entity_id=transaction_id
            )
        return Transaction(**doc)

    @staticmethod
    def _require_owner(transaction: Transaction, user: CurrentUser, operation: str) -> None:
        if transaction.owner_id != user.id:
            raise PermissionDenied(
                "Only the food owner can do this",
                operation=operation,
                entity_id=transaction.id,
            )

    @staticmethod
    def _require_status(
        transaction: Transaction, status: TransactionStatus, operation: str
    ) -> None:
        if transaction.status != status:
            raise InvalidState(
                f"Transaction is {transaction.status}, expected {status.value}",
                operation=operation,
                entity_id=transaction.id,
            )

    async def _transition(
        self,
        transaction: Transaction,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        fields: Dict[str, Any],
        operation: str,
    ) -> Transaction:
        """
        Conditional status write.

        RACE CONDITION FIX: Applies only if the status is still
        ``from_status``, so two concurrent transitions cannot both win.
        Each write carries a fresh ``status_token``; when a retried write
        finds the status already moved, the token tells whether the earlier
        attempt was ours.
        """
        token = str(uuid.uuid4())
        doc = await with_retry(
            self.store.update,
            TRANSACTIONS,
            transaction.id,
            {
                "status": to_status.value,
                "status_token": token,
                "updated_at": utc_now(),
                **fields,
            },
            expected={"status": from_status.value},
            label=f"transaction {transaction.id} -> {to_status.value}",
        )
        if doc is None:
            current = await self.store.get(TRANSACTIONS, transaction.id)
            if current and current.get("status_token") == token:
                logger.info(f"Transaction {transaction.id} already {to_status.value}")
                return Transaction(**current)

            raise InvalidState(
                f"Transaction is no longer {from_status.value}",
                operation=operation,
                entity_id=transaction.id,
            )
        return Transaction(**doc)

    async def _release_food_item(self, transaction: Transaction) -> None:
        released = await self.foods.transition_status(
            transaction.food_item_id, FoodStatus.REQUESTED, FoodStatus.AVAILABLE,
            transaction_id=transaction.id,
        )
        if released is None:
            logger.warning(
                f"Food item {transaction.food_item_id} was not requested when "
                f"transaction {transaction.id} ended"
            )

    async def _complete_food_item(self, transaction: Transaction) -> None:
        completed = await self.foods.transition_status(
            transaction.food_item_id, FoodStatus.REQUESTED, FoodStatus.COMPLETED,
            transaction_id=transaction.id,
        )
        if completed is None:
            logger.warning(
                f"Food item {transaction.food_item_id} was not requested at "
                f"completion of {transaction.id}, left for reconciliation"
            )

    async def _notify_requester(
        self, transaction: Transaction, type: NotificationType, message: str
    ) -> None:
        await self.notifications.create_notification(
            from_user_id=transaction.owner_id,
            to_user_id=transaction.requester_id,
            food_item_id=transaction.food_item_id,
            type=type,
            message=message,
            transaction_id=transaction.id,
        )

    async def _run_step(
        self, operation: str, step: str, transaction_id: str, awaitable: Awaitable
    ) -> Any:
        """Await a side effect, reporting a failure as a PartialFailure at ``step``."""
        try:
            return await awaitable
        except (PartialFailure, ItemUnavailable):
            raise
        except FoodSwapError as e:
            logger.error(
                f"{operation} for transaction {transaction_id} failed at {step}: {e}"
            )
            raise PartialFailure(
                f"The swap was updated but the {step.replace('_', ' ')} step failed. "
                f"Please try again.",
                operation=operation,
                entity_id=transaction_id,
                step=step,
                cause=e,
            ) from e

    async def _find_by_idempotency_key(
        self, user_id: str, key: str
    ) -> Optional[Transaction]:
        if self.redis:
            try:
                transaction_id = await self.redis.get_idempotent_transaction(user_id, key)
            except RedisError as e:
                logger.warning(f"Idempotency lookup in Redis failed: {e}")
                transaction_id = None
            if transaction_id:
                doc = await self.store.get(TRANSACTIONS, transaction_id)
                if doc:
                    return Transaction(**doc)

        docs = await self.store.query(
            TRANSACTIONS,
            [Eq("requester_id", user_id), Eq("idempotency_key", key)],
            limit=1,
        )
        return Transaction(**docs[0]) if docs else None

    async def _remember_idempotency_key(
        self, user_id: str, key: str, transaction_id: str
    ) -> None:
        if not self.redis:
            return
        try:
            await self.redis.remember_idempotency_key(user_id, key, transaction_id)
        except RedisError as e:
            logger.warning(f"Could not cache idempotency key in Redis: {e}")

    async def _acquire_food_lock(self, food_item_id: str, token: str) -> bool:
        """
        Take the reservation lock. Without Redis (or if Redis is down) the
        conditional food item update alone guards the race.
        """
        if not self.redis:
            return True
        try:
            return await self.redis.acquire_food_lock(food_item_id, token)
        except RedisError as e:
            logger.warning(f"Food lock unavailable, relying on conditional update: {e}")
            return True

    async def _release_food_lock(self, food_item_id: str, token: str) -> None:
        if not self.redis:
            return
        try:
            await self.redis.release_food_lock(food_item_id, token)
        except RedisError as e:
            logger.warning(f"Could not release food lock for {food_item_id}: {e}")
