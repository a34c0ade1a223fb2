"""
Shared fixtures: an in-memory resource store, a switchable identity and an
in-memory Redis, so the services run end to end without MongoDB.
"""

import asyncio
import copy
import uuid
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio

from foodswap.errors import AlreadyExists, NotFound
from foodswap.models.user import CurrentUser
from foodswap.services.chat_service import ChatService
from foodswap.services.food_service import FoodService
from foodswap.services.identity import StaticIdentity
from foodswap.services.notification_service import NotificationService
from foodswap.services.redis_service import RedisService
from foodswap.services.transaction_service import TransactionService
from foodswap.store.base import (
    CHAT_PARTICIPANTS,
    FOOD_ITEMS,
    Contains,
    Eq,
    Gt,
    In,
    Lt,
    Ne,
    OrderBy,
    Predicate,
    ResourceStore,
)
from foodswap.utils.timezone_utils import utc_now


OWNER = CurrentUser(id="owner-1", name="Owner", email="owner@example.com")
REQUESTER = CurrentUser(id="requester-1", name="Requester", email="req@example.com")
OTHER = CurrentUser(id="other-1", name="Other", email="other@example.com")


# =============================================================================
# In-memory Resource Store
# =============================================================================


def _matches(doc: Dict[str, Any], predicate: Predicate) -> bool:
    value = doc.get(predicate.field)
    if isinstance(predicate, Eq):
        return value == predicate.value
    if isinstance(predicate, Ne):
        return value != predicate.value
    if isinstance(predicate, In):
        return value in predicate.values
    if isinstance(predicate, Lt):
        return value is not None and value < predicate.value
    if isinstance(predicate, Gt):
        return value is not None and value > predicate.value
    if isinstance(predicate, Contains):
        return isinstance(value, list) and predicate.value in value
    raise TypeError(f"Unsupported predicate: {predicate!r}")


class InMemoryStore(ResourceStore):
    """
    Dict-backed ResourceStore.

    Every call yields to the event loop once so concurrent tasks interleave
    the way they would against a real database. ``fail`` makes a given
    operation raise, to simulate a store failure mid-flow. ``fail_after_write``
    applies the next matching write and then raises, the way a driver reports
    a timeout for a write the server did commit.

    Chat participants carry the same unique (chat_room_id, user_id) index the
    MongoDB collection has.
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._failures: Dict[tuple, Exception] = {}
        self._after_write: Dict[tuple, Exception] = {}

    def fail(self, collection: str, operation: str, exc: Exception):
        self._failures[(collection, operation)] = exc

    def fail_after_write(self, collection: str, operation: str, exc: Exception):
        self._after_write[(collection, operation)] = exc

    def heal(self):
        self._failures.clear()
        self._after_write.clear()

    async def _enter(self, collection: str, operation: str):
        await asyncio.sleep(0)
        exc = self._failures.get((collection, operation))
        if exc is not None:
            raise exc

    def _written(self, collection: str, operation: str):
        exc = self._after_write.pop((collection, operation), None)
        if exc is not None:
            raise exc

    def all(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self.collections[collection].values()]

    async def create(self, collection, fields, doc_id=None):
        await self._enter(collection, "create")
        doc = copy.deepcopy(dict(fields))
        doc["id"] = doc_id or fields.get("id") or str(uuid.uuid4())

        existing = self.collections[collection].get(doc["id"])
        if existing is not None:
            return copy.deepcopy(existing)
        if collection == CHAT_PARTICIPANTS and any(
            row["chat_room_id"] == doc.get("chat_room_id")
            and row["user_id"] == doc.get("user_id")
            for row in self.collections[collection].values()
        ):
            raise AlreadyExists(
                "chat_participants document conflicts with an existing one",
                operation="chat_participants.create",
                entity_id=doc["id"],
            )

        self.collections[collection][doc["id"]] = doc
        self._written(collection, "create")
        return copy.deepcopy(doc)

    async def get(self, collection, doc_id):
        await self._enter(collection, "get")
        doc = self.collections[collection].get(doc_id)
        return copy.deepcopy(doc) if doc else None

    async def update(self, collection, doc_id, fields, expected=None):
        await self._enter(collection, "update")
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            if expected is None:
                raise NotFound(f"{collection} document not found", entity_id=doc_id)
            return None
        if expected and any(doc.get(k) != v for k, v in expected.items()):
            return None
        doc.update(copy.deepcopy(fields))
        self._written(collection, "update")
        return copy.deepcopy(doc)

    async def delete(self, collection, doc_id):
        await self._enter(collection, "delete")
        return self.collections[collection].pop(doc_id, None) is not None

    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ):
        await self._enter(collection, "query")
        docs = [
            doc
            for doc in self.collections[collection].values()
            if all(_matches(doc, p) for p in predicates)
        ]
        if order_by is not None:
            docs.sort(
                key=lambda d: (d.get(order_by.field) is not None, d.get(order_by.field)),
                reverse=order_by.descending,
            )
        if limit:
            docs = docs[:limit]
        return [copy.deepcopy(doc) for doc in docs]


# =============================================================================
# In-memory Redis
# =============================================================================


class FakeRedis:
    """The handful of redis.asyncio.Redis calls RedisService makes."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Any] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def identity():
    """Starts as the requester. Tests switch users with ``identity.user = ...``."""
    return StaticIdentity(REQUESTER)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_service(fake_redis):
    return RedisService(fake_redis)


@pytest.fixture
def food_service(store, identity):
    return FoodService(store, identity)


@pytest.fixture
def chat_service(store, identity):
    return ChatService(store, identity)


@pytest.fixture
def notification_service(store, identity):
    return NotificationService(store, identity)


@pytest.fixture
def transaction_service(store, identity, chat_service, notification_service, food_service):
    return TransactionService(
        store, identity, chat_service, notification_service, food_service
    )


async def seed_food_item(
    store: InMemoryStore,
    food_item_id: str = "food-1",
    owner: CurrentUser = OWNER,
    status: str = "available",
    title: str = "Banana Bread",
) -> Dict[str, Any]:
    now = utc_now()
    return await store.create(
        FOOD_ITEMS,
        {
            "id": food_item_id,
            "title": title,
            "description": "Half a loaf",
            "image_ref": None,
            "expiry_date": now + timedelta(days=1),
            "status": status,
            "owner_id": owner.id,
            "owner_name": owner.name,
            "latitude": None,
            "longitude": None,
            "location": None,
            "category": "baked",
            "reserved_by": None,
            "created_at": now,
            "updated_at": now,
        },
    )


@pytest_asyncio.fixture
async def food_item(store):
    return await seed_food_item(store)
