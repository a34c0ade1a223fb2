"""
FoodSwap Database Module

MongoDB and Redis connection management.
"""

from typing import Optional

import redis.asyncio as redis
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from foodswap.config import settings
from foodswap.store.base import ALL_COLLECTIONS
from foodswap.store.mongo import MongoResourceStore


# =============================================================================
# MongoDB Connection
# =============================================================================

class MongoDB:
    """MongoDB connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None
    store: Optional[MongoResourceStore] = None


mongo = MongoDB()


async def create_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the unique id indexes and the query indexes the services rely on."""
    for collection in ALL_COLLECTIONS:
        await db[collection].create_index("id", unique=True)

    # Food items
    await db.food_items.create_index("owner_id")
    await db.food_items.create_index([("status", 1), ("created_at", -1)])
    await db.food_items.create_index([("status", 1), ("id", 1)])

    # Transactions: per-party listings, per-item lookup, reaper sweep
    await db.transactions.create_index([("owner_id", 1), ("requested_date", -1)])
    await db.transactions.create_index([("requester_id", 1), ("requested_date", -1)])
    await db.transactions.create_index([("food_item_id", 1), ("requested_date", -1)])
    await db.transactions.create_index([("status", 1), ("chat_expires_at", 1)])
    await db.transactions.create_index([("status", 1), ("id", 1)])
    await db.transactions.create_index(
        [("requester_id", 1), ("idempotency_key", 1)],
        partialFilterExpression={"idempotency_key": {"$type": "string"}},
    )

    await db.completion_proofs.create_index("transaction_id")

    # Chat
    await db.chat_rooms.create_index([("participants", 1), ("updated_at", -1)])
    await db.chat_messages.create_index([("chat_room_id", 1), ("created_at", -1)])
    await db.chat_participants.create_index(
        [("chat_room_id", 1), ("user_id", 1)], unique=True
    )

    # Notifications
    await db.notifications.create_index([("to_user_id", 1), ("created_at", -1)])
    await db.notifications.create_index([("to_user_id", 1), ("read", 1)])


async def init_mongodb():
    """Initialize MongoDB connection and create indexes."""
    mongo.client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=True)
    mongo.db = mongo.client[settings.mongodb_database]
    mongo.store = MongoResourceStore(mongo.db)

    await create_indexes(mongo.db)


async def close_mongodb():
    """Close MongoDB connection."""
    if mongo.client:
        mongo.client.close()


def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    if mongo.db is None:
        raise RuntimeError("Database not initialized")
    return mongo.db


def get_store() -> MongoResourceStore:
    """Get the resource store bound to the database."""
    if mongo.store is None:
        raise RuntimeError("Database not initialized")
    return mongo.store


# =============================================================================
# Redis Connection
# =============================================================================

class RedisClient:
    """Redis connection manager."""

    client: Optional[redis.Redis] = None


redis_client = RedisClient()


async def init_redis():
    """Initialize Redis connection. Redis is optional."""
    if not settings.redis_url:
        return
    redis_client.client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
        socket_connect_timeout=5,
        retry_on_timeout=True,
        socket_keepalive=True
    )


async def close_redis():
    """Close Redis connection."""
    if redis_client.client:
        await redis_client.client.aclose()


def get_redis() -> Optional[redis.Redis]:
    """Get Redis client instance, or None when Redis is not configured."""
    return redis_client.client


# =============================================================================
# Combined Initialization
# =============================================================================

async def init_db():
    """Initialize all database connections."""
    await init_mongodb()
    await init_redis()


async def close_db():
    """Close all database connections."""
    await close_mongodb()
    await close_redis()
