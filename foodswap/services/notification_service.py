"""
Notification Service - In-app notification center for swap requests and
their responses.
"""

import logging
import uuid
from typing import List, Optional

from foodswap.errors import InvalidState, NotFound, PermissionDenied
from foodswap.models.notification import (
    MUTABLE_NOTIFICATION_FIELDS,
    NotificationType,
    SimpleNotification,
)
from foodswap.services.identity import IdentityProvider
from foodswap.store.base import NOTIFICATIONS, Eq, OrderBy, ResourceStore
from foodswap.utils.retry import with_retry
from foodswap.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# Message Templates
# =============================================================================

FOOD_REQUEST_MESSAGE = '{requester_name} would like to swap for your "{food_title}"'
REQUEST_ACCEPTED_MESSAGE = 'Your request for "{food_title}" was accepted!'
REQUEST_REJECTED_MESSAGE = 'Your request for "{food_title}" was declined'


class NotificationService:
    """
    Notification service for the in-app mailbox.

    Notifications are scoped to their recipient: reads, read-marking and
    deletes are only allowed for ``to_user_id``. Creation is open to any
    authenticated caller since the sender is usually the other party of a
    swap.
    """

    def __init__(self, store: ResourceStore, identity: IdentityProvider):
        self.store = store
        self.identity = identity

    async def create_notification(
        self,
        from_user_id: str,
        to_user_id: str,
        food_item_id: str,
        type: NotificationType,
        message: str,
        transaction_id: Optional[str] = None,
    ) -> SimpleNotification:
        """Single insert, unread. Not deduplicated."""
        await self.identity.get_current_user()

        notification = SimpleNotification(
            id=str(uuid.uuid4()),
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            food_item_id=food_item_id,
            type=type,
            message=message,
            read=False,
            transaction_id=transaction_id,
            created_at=utc_now(),
        )

        await with_retry(
            self.store.create,
            NOTIFICATIONS,
            notification.model_dump(),
            label="create notification",
        )

        logger.info(
            f"Notification {notification.id} ({notification.type}) "
            f"sent to {to_user_id}"
        )
        return notification

    async def get_user_notifications(
        self,
        limit: Optional[int] = 50,
        unread_only: bool = False,
        type: Optional[NotificationType] = None,
    ) -> List[SimpleNotification]:
        """Get the caller's notifications, newest first, optionally of one type."""
        user = await self.identity.get_current_user()

        predicates = [Eq("to_user_id", user.id)]
        if unread_only:
            predicates.append(Eq("read", False))
        if type:
            predicates.append(Eq("type", NotificationType(type).value))

        docs = await self.store.query(
            NOTIFICATIONS,
            predicates,
            order_by=OrderBy("created_at", descending=True),
            limit=limit,
        )
        return [SimpleNotification(**doc) for doc in docs]

    async def get_notification(self, notification_id: str) -> SimpleNotification:
        user = await self.identity.get_current_user()
        return await self._load_for_recipient(notification_id, user.id, "get_notification")

    async def get_unread_count(self) -> int:
        """Get count of unread notifications."""
        user = await self.identity.get_current_user()

        docs = await self.store.query(
            NOTIFICATIONS, [Eq("to_user_id", user.id), Eq("read", False)]
        )
        return len(docs)

    async def mark_notification_as_read(self, notification_id: str) -> SimpleNotification:
        """Mark a notification as read."""
        user = await self.identity.get_current_user()
        notification = await self._load_for_recipient(
            notification_id, user.id, "mark_notification_as_read"
        )
        if notification.read:
            return notification

        doc = await with_retry(
            self.store.update,
            NOTIFICATIONS,
            notification_id,
            {"read": True, "read_at": utc_now()},
            label="mark notification read",
        )
        return SimpleNotification(**doc)

    async def mark_all_read(self) -> int:
        """Mark all notifications as read. Returns count marked."""
        unread = await self.get_user_notifications(limit=None, unread_only=True)

        now = utc_now()
        for notification in unread:
            await with_retry(
                self.store.update,
                NOTIFICATIONS,
                notification.id,
                {"read": True, "read_at": now},
                label="mark notification read",
            )
        return len(unread)

    async def update_notification(self, notification_id: str, **updates) -> SimpleNotification:
        """
        Change the recipient-mutable fields of a notification.

        Only type, message, read and response_message may change. Setting
        ``read`` also stamps ``read_at``.
        """
        user = await self.identity.get_current_user()
        await self._load_for_recipient(notification_id, user.id, "update_notification")

        illegal = set(updates) - MUTABLE_NOTIFICATION_FIELDS
        if illegal:
            raise InvalidState(
                f"Notification fields cannot be changed: {', '.join(sorted(illegal))}",
                operation="update_notification",
                entity_id=notification_id,
            )

        fields = dict(updates)
        if "type" in fields:
            fields["type"] = NotificationType(fields["type"]).value

        now = utc_now()
        fields["updated_at"] = now
        if fields.get("read"):
            fields["read_at"] = now

        doc = await with_retry(
            self.store.update,
            NOTIFICATIONS,
            notification_id,
            fields,
            label="update notification",
        )
        return SimpleNotification(**doc)

    async def delete_notification(self, notification_id: str) -> None:
        user = await self.identity.get_current_user()
        await self._load_for_recipient(notification_id, user.id, "delete_notification")

        await with_retry(
            self.store.delete, NOTIFICATIONS, notification_id, label="delete notification"
        )

    async def has_request_for(self, transaction_id: str) -> bool:
        """Whether the owner was already sent the request for this transaction."""
        docs = await self.store.query(
            NOTIFICATIONS,
            [
                Eq("transaction_id", transaction_id),
                Eq("type", NotificationType.FOOD_REQUEST.value),
            ],
            limit=1,
        )
        return bool(docs)

    async def _load_for_recipient(
        self, notification_id: str, user_id: str, operation: str
    ) -> SimpleNotification:
        doc = await self.store.get(NOTIFICATIONS, notification_id)
        if not doc:
            raise NotFound(
                "Notification not found", operation=operation, entity_id=notification_id
            )

        notification = SimpleNotification(**doc)
        if notification.to_user_id != user_id:
            raise PermissionDenied(
                "This notification belongs to another user",
                operation=operation,
                entity_id=notification_id,
            )
        return notification
