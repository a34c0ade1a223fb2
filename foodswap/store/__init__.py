"""FoodSwap Store Package"""

from foodswap.store.base import (
    ResourceStore,
    Eq,
    Ne,
    In,
    Lt,
    Gt,
    Contains,
    OrderBy,
)
from foodswap.store.mongo import MongoResourceStore

__all__ = [
    "ResourceStore",
    "MongoResourceStore",
    "Eq",
    "Ne",
    "In",
    "Lt",
    "Gt",
    "Contains",
    "OrderBy",
]
