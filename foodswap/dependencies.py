"""
Request Dependencies

FastAPI dependencies for authentication and for building the swap services
bound to the caller's identity.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from foodswap.database import get_redis, get_store
from foodswap.models.user import CurrentUser
from foodswap.services.chat_service import ChatService
from foodswap.services.food_service import FoodService
from foodswap.services.identity import FirebaseTokenVerifier, StaticIdentity
from foodswap.services.notification_service import NotificationService
from foodswap.services.redis_service import RedisService
from foodswap.services.storage_service import ObjectStorage
from foodswap.services.transaction_service import TransactionService
from foodswap.store.base import ResourceStore


@lru_cache()
def get_token_verifier() -> FirebaseTokenVerifier:
    return FirebaseTokenVerifier()


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> CurrentUser:
    """
    Get current authenticated user from Firebase token.

    SECURITY: This is the primary authentication gate.
    All protected endpoints should depend on this.

    Expects Authorization header: Bearer <firebase_id_token>
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization format. Use: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[7:]  # Remove "Bearer " prefix

    claims = get_token_verifier().verify_firebase_token(token)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser.from_claims(claims)


# =============================================================================
# Service Factories
# =============================================================================


def get_identity(user: CurrentUser = Depends(get_current_user)) -> StaticIdentity:
    return StaticIdentity(user)


def get_resource_store() -> ResourceStore:
    return get_store()


def get_redis_service() -> Optional[RedisService]:
    client = get_redis()
    return RedisService(client) if client else None


def get_food_service(
    store: ResourceStore = Depends(get_resource_store),
    identity: StaticIdentity = Depends(get_identity),
) -> FoodService:
    return FoodService(store, identity)


def get_chat_service(
    store: ResourceStore = Depends(get_resource_store),
    identity: StaticIdentity = Depends(get_identity),
) -> ChatService:
    return ChatService(store, identity)


def get_notification_service(
    store: ResourceStore = Depends(get_resource_store),
    identity: StaticIdentity = Depends(get_identity),
) -> NotificationService:
    return NotificationService(store, identity)


def get_transaction_service(
    store: ResourceStore = Depends(get_resource_store),
    identity: StaticIdentity = Depends(get_identity),
    redis_service: Optional[RedisService] = Depends(get_redis_service),
) -> TransactionService:
    """The engine and its collaborators share one identity per request."""
    return TransactionService(
        store,
        identity,
        ChatService(store, identity),
        NotificationService(store, identity),
        FoodService(store, identity),
        redis_service,
    )


def get_object_storage(
    store: ResourceStore = Depends(get_resource_store),
) -> ObjectStorage:
    return ObjectStorage(store)
