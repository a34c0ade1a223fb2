"""
Notification Model - Defines the swap notification schema for the in-app
mailbox.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Type of notification."""

    FOOD_REQUEST = "food_request"
    REQUEST_ACCEPTED = "request_accepted"
    REQUEST_REJECTED = "request_rejected"


# Fields a recipient's response may change. Everything else is immutable.
MUTABLE_NOTIFICATION_FIELDS = {"type", "message", "read", "response_message"}


class SimpleNotification(BaseModel):
    """
    Notification model for MongoDB.

    Recipient-scoped message from one user to another about a food item.
    Never deleted automatically.

    Fields:
    - id: Unique UUID
    - from_user_id / to_user_id: Sender and recipient
    - food_item_id: Item the notification is about
    - type: food_request, request_accepted or request_rejected
    - message: Text shown to the recipient
    - read / read_at: Read state
    - transaction_id: Linked transaction for food_request notifications
    - response_message: Owner's reply once the request is answered
    """

    id: str = Field(..., description="Unique notification ID")
    from_user_id: str = Field(..., description="Sender user ID")
    to_user_id: str = Field(..., description="Recipient user ID")
    food_item_id: str = Field(..., description="Food item ID")
    type: NotificationType
    message: str = Field(..., description="Notification text")
    read: bool = Field(default=False)
    transaction_id: Optional[str] = Field(None)
    response_message: Optional[str] = Field(None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    read_at: Optional[datetime] = Field(None)
    updated_at: Optional[datetime] = Field(None)

    class Config:
        use_enum_values = True


class RespondToNotificationRequest(BaseModel):
    """Owner's answer to a food request."""

    response: str = Field(..., pattern="^(accepted|rejected)$")
    response_message: Optional[str] = Field(None, max_length=500)
