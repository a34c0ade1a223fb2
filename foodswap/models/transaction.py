"""Transaction Model - Defines the food swap transaction schema for MongoDB persistence."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TransactionStatus(str, Enum):
    """Status of a food swap transaction."""
    PENDING = "pending"        # Requested, waiting for the owner
    ACCEPTED = "accepted"      # Owner accepted, pickup being arranged
    COMPLETED = "completed"    # Handed over with photo proof
    CANCELLED = "cancelled"    # Rejected or cancelled by either party


TERMINAL_STATUSES = {TransactionStatus.COMPLETED, TransactionStatus.CANCELLED}

# Stored values of the statuses that still hold the food item
OPEN_TRANSACTION_STATUSES = (TransactionStatus.PENDING.value, TransactionStatus.ACCEPTED.value)


class SwapResponse(str, Enum):
    """Owner's answer to a swap request notification."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Transaction(BaseModel):
    """
    Transaction model for MongoDB.

    One swap of one food item between its owner and a requester. Created
    when a non-owner requests the item and never deleted; only the chat room
    it references is reaped after ``chat_expires_at``.

    Fields:
    - id: Unique UUID
    - food_item_id / food_title: Item reference, title denormalized for display
    - owner_id / owner_name, requester_id / requester_name: The two parties
    - chat_room_id: Private coordination room, cleared by the reaper
    - status: pending, accepted, completed or cancelled
    - request_message: Optional message from the requester
    - completion_photo: Photo reference recorded at completion
    - requested_date / accepted_date / completed_date: Lifecycle stamps
    - chat_expires_at: completed_date + retention window, set only at completion
    - cancelled_by / cancel_reason: Who ended the swap and why
    - idempotency_key: Client-supplied key for safe retry of creation
    - status_token: Written with every status change so a retried write can
      recognize that it already landed
    """
    id: str = Field(..., description="Unique transaction ID")
    food_item_id: str = Field(..., description="Food item ID")
    food_title: str = Field(..., description="Food item title at request time")
    owner_id: str = Field(..., description="Owner user ID")
    owner_name: str = Field(..., description="Owner display name")
    requester_id: str = Field(..., description="Requester user ID")
    requester_name: str = Field(..., description="Requester display name")
    chat_room_id: Optional[str] = Field(None, description="Chat room ID")
    status: TransactionStatus = Field(default=TransactionStatus.PENDING)
    request_message: Optional[str] = Field(None)
    completion_photo: Optional[str] = Field(None)
    requested_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    accepted_date: Optional[datetime] = Field(None)
    completed_date: Optional[datetime] = Field(None)
    chat_expires_at: Optional[datetime] = Field(None)
    cancelled_by: Optional[str] = Field(None)
    cancel_reason: Optional[str] = Field(None)
    idempotency_key: Optional[str] = Field(None)
    status_token: Optional[str] = Field(None, description="Marker of the last status write")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        use_enum_values = True

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.owner_id, self.requester_id)

    def name_of(self, user_id: str) -> str:
        if user_id == self.owner_id:
            return self.owner_name
        return self.requester_name


class CompletionProof(BaseModel):
    """
    Immutable audit record of a completion photo.

    Kept apart from the mutable transaction row so several proofs can
    exist per transaction.
    """
    id: str = Field(..., description="Unique proof ID")
    transaction_id: str = Field(..., description="Transaction ID")
    photo_ref: str = Field(..., description="Photo reference")
    uploaded_by: str = Field(..., description="Uploader user ID")
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TransactionCreate(BaseModel):
    """Data required to request a food item."""
    food_item_id: str
    owner_id: str
    owner_name: str
    request_message: Optional[str] = Field(None, max_length=1000)
    idempotency_key: Optional[str] = Field(None, max_length=100)


class CompleteTransactionRequest(BaseModel):
    """Completion with an already uploaded photo reference."""
    completion_photo_ref: str = Field(..., min_length=1)


class CancelTransactionRequest(BaseModel):
    """Optional reason shown in the chat."""
    reason: Optional[str] = Field(None, max_length=500)
