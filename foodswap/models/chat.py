"""Chat Models - Chat rooms, their participants and messages."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """Type of chat message."""
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"                      # Posted by the transaction engine
    COMPLETION_PHOTO = "completion_photo"  # Carries the completion proof


class ParticipantRole(str, Enum):
    """Role of a participant in a room."""
    ADMIN = "admin"
    MEMBER = "member"


class ChatRoom(BaseModel):
    """
    Chat room model for MongoDB.

    ``participants`` / ``participant_names`` are a projection of the
    chat_participants rows kept for array-contains queries. They always have
    the same length and the creator is always first.

    ``last_message`` / ``last_message_time`` cache the newest message for
    room list previews and may lag behind the messages collection.
    """
    id: str = Field(..., description="Unique room ID")
    name: str = Field(..., description="Display name")
    description: str = Field("", description="Room description")
    created_by: str = Field(..., description="Creator user ID")
    created_by_name: str = Field(..., description="Creator display name")
    participants: List[str] = Field(default_factory=list)
    participant_names: List[str] = Field(default_factory=list)
    is_private: bool = Field(default=True)
    transaction_id: Optional[str] = Field(None, description="Owning transaction")
    food_item_id: Optional[str] = Field(None)
    last_message: Optional[str] = Field(None)
    last_message_time: Optional[datetime] = Field(None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChatParticipant(BaseModel):
    """Membership row, authoritative for who is in a room."""
    id: str = Field(..., description="Unique participant row ID")
    chat_room_id: str = Field(..., description="Room ID")
    user_id: str = Field(..., description="User ID")
    user_name: str = Field(..., description="Display name at join time")
    role: ParticipantRole = Field(default=ParticipantRole.MEMBER)
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        use_enum_values = True


class ChatMessage(BaseModel):
    """
    Chat message model for MongoDB.

    Append-only. The store does not guarantee insertion order, so readers
    sort by ``created_at``.
    """
    id: str = Field(..., description="Unique message ID")
    chat_room_id: str = Field(..., description="Room ID")
    sender_id: str = Field(..., description="Sender user ID")
    sender_name: str = Field(..., description="Sender display name")
    message: str = Field(..., description="Message text")
    message_type: MessageType = Field(default=MessageType.TEXT)
    attachment_ref: Optional[str] = Field(None, description="Image or photo reference")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        use_enum_values = True


class ParticipantSeed(BaseModel):
    """A participant to seed a room with."""
    user_id: str
    user_name: str


class CreateChatRoomRequest(BaseModel):
    """Data required to create a general room."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    is_private: bool = False
    participants: List[ParticipantSeed] = Field(default_factory=list)


class ChatMessageCreate(BaseModel):
    """Data required to send a chat message."""
    message: str = Field(..., min_length=1, max_length=1000)
    message_type: MessageType = MessageType.TEXT
    attachment_ref: Optional[str] = None
