"""FoodSwap Models Package"""

from foodswap.models.user import CurrentUser
from foodswap.models.food_item import FoodItem, FoodItemCreate, FoodStatus
from foodswap.models.transaction import (
    Transaction,
    TransactionStatus,
    CompletionProof,
    SwapResponse,
)
from foodswap.models.chat import (
    ChatRoom,
    ChatParticipant,
    ChatMessage,
    MessageType,
    ParticipantRole,
)
from foodswap.models.notification import SimpleNotification, NotificationType

__all__ = [
    "CurrentUser",
    "FoodItem", "FoodItemCreate", "FoodStatus",
    "Transaction", "TransactionStatus", "CompletionProof", "SwapResponse",
    "ChatRoom", "ChatParticipant", "ChatMessage", "MessageType", "ParticipantRole",
    "SimpleNotification", "NotificationType",
]
