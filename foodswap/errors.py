"""
Error taxonomy for the swap lifecycle.

Every service error carries the operation that failed and the entity it was
acting on, so the HTTP layer can render a message naming the attempted action.
"""

from typing import Optional


class FoodSwapError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "error"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        entity_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "operation": self.operation,
            "entity_id": self.entity_id,
        }


class Unauthenticated(FoodSwapError):
    """No valid session. Never retried."""

    status_code = 401
    code = "unauthenticated"


class PermissionDenied(FoodSwapError):
    """Caller is not the party the operation requires."""

    status_code = 403
    code = "permission_denied"


class NotFound(FoodSwapError):
    """Referenced food item, transaction, room or notification is missing."""

    status_code = 404
    code = "not_found"


class InvalidState(FoodSwapError):
    """Operation is not allowed from the entity's current state."""

    status_code = 409
    code = "invalid_state"


class ItemUnavailable(InvalidState):
    """The food item is no longer available. The user may pick another one."""

    code = "item_unavailable"


class TransientError(FoodSwapError):
    """Store or storage call failed for infrastructure reasons."""

    status_code = 503
    code = "transient"


class PartialFailure(FoodSwapError):
    """
    A multi-step operation failed after some of its writes landed.

    ``step`` names the first step that did not complete. Earlier steps are not
    rolled back.
    """

    status_code = 500
    code = "partial_failure"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        entity_id: Optional[str] = None,
        step: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, operation=operation, entity_id=entity_id)
        self.step = step
        self.cause = cause

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["step"] = self.step
        return data


class AlreadyExists(InvalidState):
    """A unique key is already taken by another document."""

    code = "already_exists"
