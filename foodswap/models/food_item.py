"""Food Item Model - A listed item of surplus food."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FoodStatus(str, Enum):
    """Availability of a food item."""
    AVAILABLE = "available"
    REQUESTED = "requested"    # Reserved by an open transaction
    COMPLETED = "completed"    # Handed over


# Legal status edges. requested -> available happens on reject/cancel.
FOOD_STATUS_TRANSITIONS = {
    FoodStatus.AVAILABLE: {FoodStatus.REQUESTED},
    FoodStatus.REQUESTED: {FoodStatus.COMPLETED, FoodStatus.AVAILABLE},
    FoodStatus.COMPLETED: set(),
}


class FoodItem(BaseModel):
    """
    Food item model for MongoDB.

    Fields:
    - id: Unique UUID
    - title / description: Listing text
    - image_ref: Opaque object storage reference
    - expiry_date: When the food goes off
    - status: available, requested or completed
    - owner_id / owner_name: Lister (name denormalized for display)
    - latitude / longitude / location: Optional pickup position
    - category: Optional food category
    - reserved_by: Transaction that moved the item to requested or completed
    """
    id: str = Field(..., description="Unique food item ID")
    title: str = Field(..., description="Listing title")
    description: str = Field("", description="Listing description")
    image_ref: Optional[str] = Field(None, description="Image reference")
    expiry_date: datetime = Field(..., description="Expiry timestamp")
    status: FoodStatus = Field(default=FoodStatus.AVAILABLE)
    owner_id: str = Field(..., description="Owner user ID")
    owner_name: str = Field(..., description="Owner display name")
    latitude: Optional[float] = Field(None)
    longitude: Optional[float] = Field(None)
    location: Optional[str] = Field(None)
    category: Optional[str] = Field(None)
    reserved_by: Optional[str] = Field(None, description="Transaction holding the reservation")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        use_enum_values = True


class FoodItemCreate(BaseModel):
    """Data required to list a food item."""
    title: str = Field(..., min_length=1, max_length=120)
    description: str = Field("", max_length=2000)
    image_ref: Optional[str] = None
    expiry_date: datetime
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    location: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = Field(None, max_length=50)
