"""
Notifications Router

In-app notification center and the swap request response endpoint.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from foodswap.dependencies import get_notification_service, get_transaction_service
from foodswap.models.notification import (
    NotificationType,
    RespondToNotificationRequest,
    SimpleNotification,
)
from foodswap.models.transaction import Transaction
from foodswap.services.notification_service import NotificationService
from foodswap.services.transaction_service import TransactionService


router = APIRouter()


class NotificationListResponse(BaseModel):
    """List of notifications with unread count."""
    notifications: List[SimpleNotification]
    unread_count: int


@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    limit: int = 50,
    unread_only: bool = False,
    type: Optional[NotificationType] = None,
    notification_service: NotificationService = Depends(get_notification_service),
):
    """Get the caller's notifications."""
    notifications = await notification_service.get_user_notifications(
        limit=limit, unread_only=unread_only, type=type
    )
    unread_count = await notification_service.get_unread_count()

    return NotificationListResponse(notifications=notifications, unread_count=unread_count)


@router.put("/read-all")
async def mark_all_read(
    notification_service: NotificationService = Depends(get_notification_service),
):
    """Mark all notifications as read."""
    count = await notification_service.mark_all_read()
    return {"message": f"Marked {count} notifications as read"}


@router.get("/{notification_id}", response_model=SimpleNotification)
async def get_notification(
    notification_id: str,
    notification_service: NotificationService = Depends(get_notification_service),
):
    return await notification_service.get_notification(notification_id)


@router.put("/{notification_id}/read", response_model=SimpleNotification)
async def mark_notification_read(
    notification_id: str,
    notification_service: NotificationService = Depends(get_notification_service),
):
    """Mark a notification as read."""
    return await notification_service.mark_notification_as_read(notification_id)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str,
    notification_service: NotificationService = Depends(get_notification_service),
):
    await notification_service.delete_notification(notification_id)


@router.post("/{notification_id}/respond", response_model=Transaction)
async def respond_to_notification(
    notification_id: str,
    data: RespondToNotificationRequest,
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    """Accept or reject the swap request behind a food_request notification."""
    return await transaction_service.respond_to_notification(
        notification_id, data.response, data.response_message
    )
