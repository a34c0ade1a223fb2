"""Chat Service - Chat rooms, membership and messages."""

import logging
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from foodswap.errors import AlreadyExists, InvalidState, NotFound, PermissionDenied
from foodswap.models.chat import (
    ChatMessage,
    ChatParticipant,
    ChatRoom,
    MessageType,
    ParticipantRole,
)
from foodswap.models.user import CurrentUser
from foodswap.services.identity import IdentityProvider
from foodswap.store.base import (
    CHAT_MESSAGES,
    CHAT_PARTICIPANTS,
    CHAT_ROOMS,
    Contains,
    Eq,
    OrderBy,
    ResourceStore,
)
from foodswap.utils.retry import with_retry
from foodswap.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

# Page size used when purging a room's rows
PURGE_BATCH_SIZE = 500

Member = Tuple[str, str]  # (user_id, user_name)


class ChatService:
    """
    Chat room management service.

    The chat_participants rows are the source of truth for membership. The
    room's ``participants`` / ``participant_names`` arrays are derived from
    them and rewritten as a pair in one document update, so they never
    drift apart in length.
    """

    def __init__(self, store: ResourceStore, identity: IdentityProvider):
        self.store = store
        self.identity = identity

    # =========================================================================
    # Rooms
    # =========================================================================

    async def create_chat_room(
        self,
        name: str,
        description: str,
        is_private: bool,
        participants: Sequence[Member] = (),
        *,
        creator: Optional[Member] = None,
        transaction_id: Optional[str] = None,
        food_item_id: Optional[str] = None,
    ) -> ChatRoom:
        """
        Create a room with the creator as admin and ``participants`` as members.

        Names travel with ids so the room arrays stay the same length. The
        creator defaults to the caller. Duplicate ids are ignored.
        """
        user = await self.identity.get_current_user()
        creator = creator or (user.id, user.name)

        members: List[Member] = [creator]
        seen = {creator[0]}
        for user_id, user_name in participants:
            if user_id in seen:
                continue
            seen.add(user_id)
            members.append((user_id, user_name or "Unknown User"))

        now = utc_now()
        room = ChatRoom(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            created_by=creator[0],
            created_by_name=creator[1],
            participants=[m[0] for m in members],
            participant_names=[m[1] for m in members],
            is_private=is_private,
            transaction_id=transaction_id,
            food_item_id=food_item_id,
            created_at=now,
            updated_at=now,
        )

        await with_retry(
            self.store.create, CHAT_ROOMS, room.model_dump(), label="create chat room"
        )

        for index, (user_id, user_name) in enumerate(members):
            role = ParticipantRole.ADMIN if index == 0 else ParticipantRole.MEMBER
            await self._add_participant_row(room.id, user_id, user_name, role)

        logger.info(f"Chat room {room.id} created with {len(members)} participants")
        return room

    async def get_chat_room(self, room_id: str) -> ChatRoom:
        """Get a room. Private rooms are visible to their participants only."""
        user = await self.identity.get_current_user()
        room = await self._load_room(room_id, "get_chat_room")

        if room.is_private and user.id not in room.participants:
            raise PermissionDenied(
                "You are not a participant of this chat",
                operation="get_chat_room",
                entity_id=room_id,
            )
        return room

    async def get_user_chat_rooms(self) -> List[ChatRoom]:
        """Rooms the caller participates in, most recently active first."""
        user = await self.identity.get_current_user()

        docs = await self.store.query(
            CHAT_ROOMS,
            [Contains("participants", user.id)],
            order_by=OrderBy("updated_at", descending=True),
        )
        return [ChatRoom(**doc) for doc in docs]

    async def delete_chat_room(self, room_id: str) -> None:
        """Creator-initiated delete of a room and everything in it."""
        user = await self.identity.get_current_user()
        room = await self._load_room(room_id, "delete_chat_room")

        if room.created_by != user.id:
            raise PermissionDenied(
                "Only the creator can delete this chat",
                operation="delete_chat_room",
                entity_id=room_id,
            )

        await self.purge_room(room_id)

    async def purge_room(self, room_id: str) -> Dict[str, int]:
        """
        Delete a room's messages, then its participant rows, then the room.

        Messages point at the room, so deleting children first means a
        partial failure leaves a room that can be purged again rather than
        unreachable messages. Purging a missing room is a no-op.
        """
        stats = {"messages": 0, "participants": 0, "rooms": 0}

        for collection, key in (
            (CHAT_MESSAGES, "messages"),
            (CHAT_PARTICIPANTS, "participants"),
        ):
            while True:
                docs = await self.store.query(
                    collection, [Eq("chat_room_id", room_id)], limit=PURGE_BATCH_SIZE
                )
                if not docs:
                    break
                for doc in docs:
                    if await with_retry(
                        self.store.delete, collection, doc["id"], label=f"purge {key}"
                    ):
                        stats[key] += 1

        if await with_retry(self.store.delete, CHAT_ROOMS, room_id, label="purge room"):
            stats["rooms"] = 1

        logger.info(
            f"Purged chat room {room_id}: {stats['messages']} messages, "
            f"{stats['participants']} participants"
        )
        return stats

    # =========================================================================
    # Membership
    # =========================================================================

    async def get_chat_participants(self, room_id: str) -> List[ChatParticipant]:
        await self.identity.get_current_user()
        return await self._participant_rows(room_id)

    async def join_chat_room(self, room_id: str) -> ChatRoom:
        """
        Join a public room. Idempotent.

        The participant row is checked and written first, then the room
        arrays are re-derived from the rows.
        """
        user = await self.identity.get_current_user()
        room = await self._load_room(room_id, "join_chat_room")

        rows = await self._participant_rows(room_id)
        if any(p.user_id == user.id for p in rows):
            return room

        if room.is_private:
            raise PermissionDenied(
                "This chat is private",
                operation="join_chat_room",
                entity_id=room_id,
            )

        try:
            await self._add_participant_row(
                room_id, user.id, user.name, ParticipantRole.MEMBER
            )
        except AlreadyExists:
            # A concurrent join by the same user wrote the row first
            logger.info(f"User {user.id} already joined room {room_id}")
        return await self._sync_room_members(room_id)

    async def leave_chat_room(self, room_id: str) -> ChatRoom:
        user = await self.identity.get_current_user()
        room = await self._load_room(room_id, "leave_chat_room")

        if room.created_by == user.id:
            raise InvalidState(
                "The creator cannot leave the chat, delete it instead",
                operation="leave_chat_room",
                entity_id=room_id,
            )

        for row in await self._participant_rows(room_id):
            if row.user_id == user.id:
                await with_retry(
                    self.store.delete, CHAT_PARTICIPANTS, row.id, label="leave chat"
                )

        return await self._sync_room_members(room_id)

    async def is_participant(self, room_id: str, user_id: str) -> bool:
        rows = await self.store.query(
            CHAT_PARTICIPANTS,
            [Eq("chat_room_id", room_id), Eq("user_id", user_id)],
            limit=1,
        )
        return bool(rows)

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(
        self,
        room_id: str,
        text: str,
        message_type: MessageType = MessageType.TEXT,
        attachment_ref: Optional[str] = None,
    ) -> ChatMessage:
        """
        Send a message as the caller.

        SECURITY: Only participants can send messages.
        """
        user = await self.identity.get_current_user()
        await self._load_room(room_id, "send_message")

        if not await self.is_participant(room_id, user.id):
            raise PermissionDenied(
                "You are not a participant of this chat",
                operation="send_message",
                entity_id=room_id,
            )

        return await self._append_message(room_id, user, text, message_type, attachment_ref)

    async def post_system_message(
        self,
        room_id: str,
        text: str,
        message_type: MessageType = MessageType.SYSTEM,
        attachment_ref: Optional[str] = None,
    ) -> ChatMessage:
        """Post on behalf of the transaction engine. No membership check."""
        user = await self.identity.get_current_user()
        return await self._append_message(room_id, user, text, message_type, attachment_ref)

    async def get_chat_messages(self, room_id: str, limit: int = 50) -> List[ChatMessage]:
        """
        Get the most recent ``limit`` messages, newest first.

        Reverse the result for chronological display.
        """
        user = await self.identity.get_current_user()
        room = await self._load_room(room_id, "get_chat_messages")

        if room.is_private and user.id not in room.participants:
            raise PermissionDenied(
                "You are not a participant of this chat",
                operation="get_chat_messages",
                entity_id=room_id,
            )

        docs = await self.store.query(
            CHAT_MESSAGES,
            [Eq("chat_room_id", room_id)],
            order_by=OrderBy("created_at", descending=True),
            limit=limit,
        )
        return [ChatMessage(**doc) for doc in docs]

    # =========================================================================
    # Internals
    # =========================================================================

    async def _load_room(self, room_id: str, operation: str) -> ChatRoom:
        doc = await self.store.get(CHAT_ROOMS, room_id)
        if not doc:
            raise NotFound("Chat room not found", operation=operation, entity_id=room_id)
        return ChatRoom(**doc)

    async def _participant_rows(self, room_id: str) -> List[ChatParticipant]:
        docs = await self.store.query(CHAT_PARTICIPANTS, [Eq("chat_room_id", room_id)])
        rows = [ChatParticipant(**doc) for doc in docs]
        # Admin first, then join order
        rows.sort(key=lambda p: (p.role != ParticipantRole.ADMIN, p.joined_at))
        return rows

    async def _add_participant_row(
        self, room_id: str, user_id: str, user_name: str, role: ParticipantRole
    ) -> ChatParticipant:
        participant = ChatParticipant(
            id=str(uuid.uuid4()),
            chat_room_id=room_id,
            user_id=user_id,
            user_name=user_name,
            role=role,
            joined_at=utc_now(),
        )
        await with_retry(
            self.store.create,
            CHAT_PARTICIPANTS,
            participant.model_dump(),
            label="add chat participant",
        )
        return participant

    async def _sync_room_members(self, room_id: str) -> ChatRoom:
        """Rewrite the room's member arrays from the participant rows."""
        rows = await self._participant_rows(room_id)
        doc = await with_retry(
            self.store.update,
            CHAT_ROOMS,
            room_id,
            {
                "participants": [p.user_id for p in rows],
                "participant_names": [p.user_name for p in rows],
                "updated_at": utc_now(),
            },
            label="sync chat members",
        )
        return ChatRoom(**doc)

    async def _append_message(
        self,
        room_id: str,
        sender: CurrentUser,
        text: str,
        message_type: MessageType,
        attachment_ref: Optional[str],
    ) -> ChatMessage:
        message = ChatMessage(
            id=str(uuid.uuid4()),
            chat_room_id=room_id,
            sender_id=sender.id,
            sender_name=sender.name,
            message=text,
            message_type=message_type,
            attachment_ref=attachment_ref,
            created_at=utc_now(),
        )

        await with_retry(
            self.store.create, CHAT_MESSAGES, message.model_dump(), label="send message"
        )

        # Preview cache is best-effort: the message itself has landed
        try:
            await with_retry(
                self.store.update,
                CHAT_ROOMS,
                room_id,
                {
                    "last_message": text,
                    "last_message_time": message.created_at,
                    "updated_at": message.created_at,
                },
                label="update room preview",
            )
        except NotFound:
            logger.warning(f"Chat room {room_id} vanished before preview update")

        return message
