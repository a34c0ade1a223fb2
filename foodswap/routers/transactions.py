"""
Transactions Router

Swap requests and their lifecycle: accept, reject, complete, cancel.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel, Field

from foodswap.dependencies import get_transaction_service
from foodswap.models.transaction import (
    CancelTransactionRequest,
    CompleteTransactionRequest,
    Transaction,
    TransactionCreate,
)
from foodswap.services.transaction_service import TransactionService


router = APIRouter()


class RejectTransactionRequest(BaseModel):
    """Optional reason passed on to the requester."""
    reason: Optional[str] = Field(None, max_length=500)


@router.post("", response_model=Transaction, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: TransactionCreate,
    idempotency_key: Optional[str] = Header(None),
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    """
    Request a food item.

    Send the same Idempotency-Key header (or body field) when retrying a
    failed request so it resumes instead of starting over.
    """
    return await transaction_service.create_transaction(
        data.food_item_id,
        data.owner_id,
        data.owner_name,
        request_message=data.request_message,
        idempotency_key=data.idempotency_key or idempotency_key,
    )


@router.get("", response_model=List[Transaction])
async def list_my_transactions(
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    """Transactions where the caller is owner or requester."""
    return await transaction_service.get_user_transactions()


@router.get("/{transaction_id}", response_model=Transaction)
async def get_transaction(
    transaction_id: str,
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    return await transaction_service.get_transaction(transaction_id)


@router.post("/{transaction_id}/accept", response_model=Transaction)
async def accept_transaction(
    transaction_id: str,
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    return await transaction_service.accept_transaction(transaction_id)


@router.post("/{transaction_id}/reject", response_model=Transaction)
async def reject_transaction(
    transaction_id: str,
    data: Optional[RejectTransactionRequest] = None,
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    return await transaction_service.reject_transaction(
        transaction_id, data.reason if data else None
    )


@router.post("/{transaction_id}/complete", response_model=Transaction)
async def complete_transaction(
    transaction_id: str,
    data: CompleteTransactionRequest,
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    """Mark the swap handed over. Upload the photo to /files/completion-photos first."""
    return await transaction_service.complete_transaction(
        transaction_id, data.completion_photo_ref
    )


@router.post("/{transaction_id}/cancel", response_model=Transaction)
async def cancel_transaction(
    transaction_id: str,
    data: Optional[CancelTransactionRequest] = None,
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    return await transaction_service.cancel_transaction(
        transaction_id, data.reason if data else None
    )


@router.post("/cleanup-expired-chats")
async def cleanup_expired_chats(
    transaction_service: TransactionService = Depends(get_transaction_service),
):
    """Run one chat expiry sweep now."""
    return await transaction_service.cleanup_expired_chats()
