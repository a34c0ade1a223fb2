"""FoodSwap Routers Package"""

from foodswap.routers import (
    foods,
    transactions,
    chats,
    notifications,
    files,
    scheduler,
)

__all__ = [
    "foods",
    "transactions",
    "chats",
    "notifications",
    "files",
    "scheduler",
]
