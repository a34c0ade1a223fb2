"""MongoDB implementation of the resource store (motor)."""

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    WTimeoutError,
)

from foodswap.errors import AlreadyExists, NotFound, TransientError
from foodswap.store.base import (
    Contains,
    Eq,
    In,
    Gt,
    Lt,
    Ne,
    OrderBy,
    Predicate,
    ResourceStore,
)

logger = logging.getLogger(__name__)

# Never return Mongo's internal _id; documents are keyed by "id"
_PROJECTION = {"_id": 0}


def build_filter(predicates: Sequence[Predicate]) -> Dict[str, Any]:
    """Translate predicates into a MongoDB filter document."""
    query: Dict[str, Dict[str, Any]] = {}

    for predicate in predicates:
        clause = query.setdefault(predicate.field, {})
        if isinstance(predicate, Eq):
            clause["$eq"] = predicate.value
        elif isinstance(predicate, Ne):
            clause["$ne"] = predicate.value
        elif isinstance(predicate, In):
            clause["$in"] = list(predicate.values)
        elif isinstance(predicate, Lt):
            clause["$lt"] = predicate.value
        elif isinstance(predicate, Gt):
            clause["$gt"] = predicate.value
        elif isinstance(predicate, Contains):
            clause["$elemMatch"] = {"$eq": predicate.value}
        else:
            raise TypeError(f"Unsupported predicate: {predicate!r}")

    return query


@contextmanager
def _translate_errors(operation: str, collection: str, doc_id: Optional[str] = None):
    """Re-raise driver connectivity failures as TransientError."""
    try:
        yield
    except (ConnectionFailure, ExecutionTimeout, WTimeoutError) as e:
        logger.warning(f"[store] {operation} on {collection} failed: {e}")
        raise TransientError(
            f"Database unavailable during {operation}",
            operation=f"{collection}.{operation}",
            entity_id=doc_id,
        ) from e


class MongoResourceStore(ResourceStore):
    """
    Resource store backed by a motor database.

    Conditional updates use find_one_and_update with the expected values in
    the filter, so the check and the write are a single atomic operation on
    one document.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def create(
        self, collection: str, fields: Dict[str, Any], doc_id: Optional[str] = None
    ) -> Dict[str, Any]:
        doc = dict(fields)
        doc["id"] = doc_id or fields.get("id") or str(uuid.uuid4())

        try:
            with _translate_errors("create", collection, doc["id"]):
                # insert_one adds _id to the dict it is given
                await self.db[collection].insert_one(dict(doc))
        except DuplicateKeyError as e:
            # A retried insert whose first attempt landed hits the id index
            existing = await self.get(collection, doc["id"])
            if existing is not None:
                logger.info(f"[store] {collection} {doc['id']} already created")
                return existing
            raise AlreadyExists(
                f"{collection} document conflicts with an existing one",
                operation=f"{collection}.create",
                entity_id=doc["id"],
            ) from e

        return doc

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with _translate_errors("get", collection, doc_id):
            return await self.db[collection].find_one({"id": doc_id}, _PROJECTION)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        query: Dict[str, Any] = {"id": doc_id}
        if expected:
            query.update({k: {"$eq": v} for k, v in expected.items()})

        with _translate_errors("update", collection, doc_id):
            result = await self.db[collection].find_one_and_update(
                query,
                {"$set": fields},
                projection=_PROJECTION,
                return_document=ReturnDocument.AFTER,
            )

        if result is None and expected is None:
            raise NotFound(
                f"{collection} document not found",
                operation=f"{collection}.update",
                entity_id=doc_id,
            )
        return result

    async def delete(self, collection: str, doc_id: str) -> bool:
        with _translate_errors("delete", collection, doc_id):
            result = await self.db[collection].delete_one({"id": doc_id})
        return result.deleted_count > 0

    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with _translate_errors("query", collection):
            cursor = self.db[collection].find(build_filter(predicates), _PROJECTION)
            if order_by is not None:
                cursor = cursor.sort(order_by.field, -1 if order_by.descending else 1)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=limit)
