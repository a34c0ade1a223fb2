"""
Chats Router

Chat rooms, membership and messages. Clients poll for new messages at the
interval published by /config.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from foodswap.config import settings
from foodswap.dependencies import get_chat_service, get_current_user
from foodswap.models.chat import (
    ChatMessage,
    ChatMessageCreate,
    ChatParticipant,
    ChatRoom,
    CreateChatRoomRequest,
)
from foodswap.models.user import CurrentUser
from foodswap.services.chat_service import ChatService


router = APIRouter()


class ChatConfigResponse(BaseModel):
    """Client polling configuration."""
    poll_interval_seconds: int
    retention_hours: int


@router.get("/config", response_model=ChatConfigResponse)
async def get_chat_config(current_user: CurrentUser = Depends(get_current_user)):
    return ChatConfigResponse(
        poll_interval_seconds=settings.chat_poll_interval_seconds,
        retention_hours=settings.chat_retention_hours,
    )


@router.post("", response_model=ChatRoom, status_code=status.HTTP_201_CREATED)
async def create_chat_room(
    data: CreateChatRoomRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Create a general room with the caller as admin."""
    return await chat_service.create_chat_room(
        data.name,
        data.description,
        data.is_private,
        [(p.user_id, p.user_name) for p in data.participants],
    )


@router.get("", response_model=List[ChatRoom])
async def list_my_chat_rooms(chat_service: ChatService = Depends(get_chat_service)):
    """Rooms the caller is in, most recently active first."""
    return await chat_service.get_user_chat_rooms()


@router.get("/{room_id}", response_model=ChatRoom)
async def get_chat_room(room_id: str, chat_service: ChatService = Depends(get_chat_service)):
    return await chat_service.get_chat_room(room_id)


@router.delete("/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat_room(room_id: str, chat_service: ChatService = Depends(get_chat_service)):
    """Delete a room and its messages. Creator only."""
    await chat_service.delete_chat_room(room_id)


@router.get("/{room_id}/messages", response_model=List[ChatMessage])
async def get_chat_messages(
    room_id: str,
    limit: int = 50,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Most recent messages, newest first."""
    return await chat_service.get_chat_messages(room_id, limit=limit)


@router.post(
    "/{room_id}/messages",
    response_model=ChatMessage,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    room_id: str,
    data: ChatMessageCreate,
    chat_service: ChatService = Depends(get_chat_service),
):
    return await chat_service.send_message(
        room_id, data.message, message_type=data.message_type, attachment_ref=data.attachment_ref
    )


@router.get("/{room_id}/participants", response_model=List[ChatParticipant])
async def get_chat_participants(
    room_id: str,
    chat_service: ChatService = Depends(get_chat_service),
):
    return await chat_service.get_chat_participants(room_id)


@router.post("/{room_id}/join", response_model=ChatRoom)
async def join_chat_room(room_id: str, chat_service: ChatService = Depends(get_chat_service)):
    return await chat_service.join_chat_room(room_id)


@router.post("/{room_id}/leave", response_model=ChatRoom)
async def leave_chat_room(room_id: str, chat_service: ChatService = Depends(get_chat_service)):
    return await chat_service.leave_chat_room(room_id)
