"""User Model - The authenticated caller as seen by the swap services."""

from typing import Optional

from pydantic import BaseModel, Field


class CurrentUser(BaseModel):
    """
    Identity of the caller.

    Built from verified Firebase token claims. The swap services never look
    users up in a profile collection; names are denormalized onto the records
    that need them at write time.
    """
    id: str = Field(..., description="Firebase UID")
    name: str = Field(..., description="Display name, falls back to email")
    email: Optional[str] = Field(None)

    @classmethod
    def from_claims(cls, claims: dict) -> "CurrentUser":
        """Build a user from decoded Firebase ID token claims."""
        email = claims.get("email")
        name = claims.get("name") or email or "Unknown User"
        return cls(id=claims["uid"], name=name, email=email)
