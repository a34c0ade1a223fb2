"""
Storage Service

Object storage for food images and completion photos.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from foodswap.config import settings
from foodswap.store.base import STORED_FILES, ResourceStore
from foodswap.utils.retry import with_retry
from foodswap.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

FOOD_IMAGES_BUCKET = "food-images"
COMPLETION_PHOTOS_BUCKET = "completion-photos"

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}


class ObjectStorage:
    """
    Stores uploaded binaries in a separate collection to keep item and
    transaction documents light.

    The returned reference is the API path the file is served from. Callers
    treat it as an opaque string.
    """

    def __init__(self, store: ResourceStore):
        self.store = store

    @staticmethod
    def reference_for(bucket: str, file_id: str) -> str:
        return f"{settings.api_v1_str}/files/{bucket}/{file_id}"

    async def upload(
        self,
        bucket: str,
        data: bytes,
        name: str,
        content_type: str = "application/octet-stream",
        uploaded_by: Optional[str] = None,
    ) -> str:
        """Store the bytes and return their reference."""
        file_id = str(uuid.uuid4())

        await with_retry(
            self.store.create,
            STORED_FILES,
            {
                "id": file_id,
                "bucket": bucket,
                "name": name,
                "content_type": content_type,
                "size": len(data),
                "data": data,
                "uploaded_by": uploaded_by,
                "created_at": utc_now(),
            },
            label=f"upload {bucket}/{name}",
        )

        logger.info(f"Stored {len(data)} bytes in {bucket}/{file_id}")
        return self.reference_for(bucket, file_id)

    async def download(self, bucket: str, file_id: str) -> Optional[Dict[str, Any]]:
        """
        Get stored file data.
        Returns dict with 'data' (bytes) and 'content_type' (str).
        """
        doc = await self.store.get(STORED_FILES, file_id)
        if not doc or doc.get("bucket") != bucket:
            return None
        return {"data": doc["data"], "content_type": doc["content_type"]}
