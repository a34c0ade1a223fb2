"""
Files Router

Image uploads for food listings and completion proofs, and serving them back.
"""

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from pydantic import BaseModel

from foodswap.config import settings
from foodswap.dependencies import get_current_user, get_object_storage
from foodswap.models.user import CurrentUser
from foodswap.services.storage_service import (
    ALLOWED_CONTENT_TYPES,
    COMPLETION_PHOTOS_BUCKET,
    FOOD_IMAGES_BUCKET,
    ObjectStorage,
)


router = APIRouter()

BUCKETS = {FOOD_IMAGES_BUCKET, COMPLETION_PHOTOS_BUCKET}


class UploadResponse(BaseModel):
    """Reference to pass as image_ref / completion_photo_ref."""
    ref: str


def _require_bucket(bucket: str):
    if bucket not in BUCKETS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown bucket")


@router.post("/{bucket}", response_model=UploadResponse)
async def upload_file(
    bucket: str,
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """
    Upload a food image or completion photo.
    Max size: 2MB. Format: JPEG, PNG, WebP.
    """
    _require_bucket(bucket)

    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid image format: {file.content_type}. Use JPEG, PNG, or WebP.",
        )

    content = await file.read()

    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Image too large. Max size is 2MB.",
        )

    ref = await storage.upload(
        bucket,
        content,
        file.filename or "upload",
        content_type=file.content_type,
        uploaded_by=current_user.id,
    )
    return UploadResponse(ref=ref)


@router.get("/{bucket}/{file_id}")
async def get_file(bucket: str, file_id: str, storage: ObjectStorage = Depends(get_object_storage)):
    """Serve a stored image."""
    _require_bucket(bucket)

    stored = await storage.download(bucket, file_id)
    if not stored:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return Response(content=stored["data"], media_type=stored["content_type"])
