"""
Foods Router

Food listings and their status.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from foodswap.dependencies import get_food_service, get_transaction_service
from foodswap.models.food_item import FoodItem, FoodItemCreate, FoodStatus
from foodswap.models.transaction import Transaction
from foodswap.services.food_service import FoodService
from foodswap.services.transaction_service import TransactionService


router = APIRouter()


class FoodStatusUpdate(BaseModel):
    """Owner-initiated status change."""
    status: FoodStatus


@router.post("", response_model=FoodItem, status_code=status.HTTP_201_CREATED)
async def create_food_item(
    data: FoodItemCreate,
    food_service: FoodService = Depends(get_food_service),
):
    """List a food item."""
    return await food_service.create_food_item(data)


@router.get("", response_model=List[FoodItem])
async def list_food_items(
    status: Optional[FoodStatus] = None,
    limit: int = 100,
    food_service: FoodService = Depends(get_food_service),
):
    """List food items, newest first."""
    return await food_service.get_food_items(status=status, limit=limit)


@router.get("/user/{user_id}", response_model=List[FoodItem])
async def list_user_food_items(
    user_id: str,
    food_service: FoodService = Depends(get_food_service),
):
    return await food_service.get_user_food_items(user_id)


@router.get("/{food_item_id}", response_model=FoodItem)
async def get_food_item(
    food_item_id: str,
    food_service: FoodService = Depends(get_food_service),
):
    return await food_service.get_food_item(food_item_id)


@router.put("/{food_item_id}/status", response_model=FoodItem)
async def update_food_item_status(
    food_item_id: str,
    data: FoodStatusUpdate,
    food_service: FoodService = Depends(get_food_service),
):
    """Change an item's status. Owner only."""
    return await food_service.update_food_item_status(food_item_id, data.status)


@router.delete("/{food_item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_food_item(
    food_item_id: str,
    food_service: FoodService = Depends(get_food_service),
):
    """Remove a listing. Owner only."""
    await food_service.delete_food_item(food_item_id)


@router.get("/{food_item_id}/transaction", response_model=Optional[Transaction])
async def get_food_item_transaction(
    food_item_id: str,
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    """Latest non-cancelled transaction for the item, or null."""
    return await transaction_service.get_transaction_by_food_item(food_item_id)
