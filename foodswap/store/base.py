"""
Resource Store - Generic document store interface.

The swap services only ever talk to this interface. It offers
create/get/update/delete by id plus simple predicate queries, and no
multi-document transactions. A conditional ``update`` (``expected=``) is the
only concurrency primitive.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


# =============================================================================
# Collections
# =============================================================================

FOOD_ITEMS = "food_items"
TRANSACTIONS = "transactions"
COMPLETION_PROOFS = "completion_proofs"
CHAT_ROOMS = "chat_rooms"
CHAT_MESSAGES = "chat_messages"
CHAT_PARTICIPANTS = "chat_participants"
NOTIFICATIONS = "notifications"
STORED_FILES = "stored_files"

ALL_COLLECTIONS = (
    FOOD_ITEMS,
    TRANSACTIONS,
    COMPLETION_PROOFS,
    CHAT_ROOMS,
    CHAT_MESSAGES,
    CHAT_PARTICIPANTS,
    NOTIFICATIONS,
    STORED_FILES,
)


# =============================================================================
# Query Predicates
# =============================================================================


@dataclass(frozen=True)
class Eq:
    """field == value"""
    field: str
    value: Any


@dataclass(frozen=True)
class Ne:
    """field != value"""
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    """field in values"""
    field: str
    values: tuple


@dataclass(frozen=True)
class Lt:
    """field < value (timestamps and numbers)"""
    field: str
    value: Any


@dataclass(frozen=True)
class Gt:
    """field > value (timestamps and numbers)"""
    field: str
    value: Any


@dataclass(frozen=True)
class Contains:
    """Array field contains value"""
    field: str
    value: Any


Predicate = Any  # One of Eq, Ne, In, Lt, Gt, Contains


@dataclass(frozen=True)
class OrderBy:
    """Sort order for a query."""
    field: str
    descending: bool = False


class ResourceStore(ABC):
    """
    Document store used by every service.

    Documents are plain dicts. Each one carries its identity in the ``id``
    field.
    """

    @abstractmethod
    async def create(
        self, collection: str, fields: Dict[str, Any], doc_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Insert a document and return it.

        The id is ``doc_id``, else ``fields["id"]``, else a generated UUID.
        """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document, or None if it does not exist."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Set ``fields`` on a document and return the updated document.

        With ``expected``, the update only applies while every listed field
        still has the given value; None is returned when it does not.
        Without ``expected``, a missing document raises NotFound.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns False if it was already gone."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return documents matching every predicate."""
