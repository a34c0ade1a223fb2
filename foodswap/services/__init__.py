"""FoodSwap Services Package"""

from foodswap.services.identity import FirebaseTokenVerifier, StaticIdentity
from foodswap.services.storage_service import ObjectStorage
from foodswap.services.redis_service import RedisService
from foodswap.services.food_service import FoodService
from foodswap.services.chat_service import ChatService
from foodswap.services.notification_service import NotificationService
from foodswap.services.expiry_reaper import ExpiryReaper
from foodswap.services.transaction_service import TransactionService

__all__ = [
    "FirebaseTokenVerifier",
    "StaticIdentity",
    "ObjectStorage",
    "RedisService",
    "FoodService",
    "ChatService",
    "NotificationService",
    "ExpiryReaper",
    "TransactionService",
]
