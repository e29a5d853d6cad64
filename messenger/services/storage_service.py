"""Media storage using Firebase Storage

Uploads profile pictures and message attachments and resolves download URLs
for blob paths. The conversation store only ever sees the resulting URL
strings.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from messenger.errors import MediaUploadFailed, MediaUrlFailed

logger = logging.getLogger(__name__)

PROFILE_PICTURES_PREFIX = "images"
MESSAGE_PHOTOS_PREFIX = "message_images"
MESSAGE_VIDEOS_PREFIX = "message_videos"

SIGNED_URL_TTL = timedelta(hours=1)


class MediaStorage:
    """Thin async wrapper around a Firebase Storage bucket"""

    def __init__(self, bucket=None):
        self._bucket = bucket

    @property
    def bucket(self):
        if self._bucket is None:
            # import here to avoid module-level dependency at import time
            from firebase_admin import storage as fb_storage

            from messenger.services.firebase_service import FirebaseService

            FirebaseService()
            self._bucket = fb_storage.bucket()
        return self._bucket

    def _blob_url(self, blob) -> str:
        try:
            blob.make_public()
            return blob.public_url
        except Exception as e:
            logger.debug("Could not make %s public (%s); signing instead", blob.name, e)
            return blob.generate_signed_url(expiration=SIGNED_URL_TTL)

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Upload bytes to ``path`` and return a fetchable URL

        Raises:
            MediaUploadFailed: If the upload itself fails
            MediaUrlFailed: If the object was stored but no URL could be made
        """
        def _upload() -> str:
            blob = self.bucket.blob(path)
            try:
                blob.upload_from_string(data, content_type=content_type)
            except Exception as e:
                raise MediaUploadFailed(f"Failed to upload {path}: {e}") from e
            try:
                return self._blob_url(blob)
            except Exception as e:
                raise MediaUrlFailed(f"Failed to get download url for {path}: {e}") from e

        url = await asyncio.to_thread(_upload)
        logger.info("Uploaded %s (%d bytes)", path, len(data))
        return url

    async def upload_profile_picture(self, data: bytes, file_name: str) -> str:
        """Uploads picture to storage and returns the url to download it"""
        return await self.upload(f"{PROFILE_PICTURES_PREFIX}/{file_name}", data, "image/png")

    async def upload_message_photo(self, data: bytes, file_name: str) -> str:
        """Upload image that will be sent in a conversation message"""
        return await self.upload(f"{MESSAGE_PHOTOS_PREFIX}/{file_name}", data, "image/png")

    async def upload_message_video(self, data: bytes, file_name: str) -> str:
        """Upload video that will be sent in a conversation message"""
        return await self.upload(f"{MESSAGE_VIDEOS_PREFIX}/{file_name}", data, "video/quicktime")

    async def download_url(self, path: str) -> str:
        """Returns the url for the provided path string"""
        def _resolve() -> str:
            try:
                blob = self.bucket.blob(path)
                if not blob.exists():
                    raise MediaUrlFailed(f"No object stored at {path}")
                return self._blob_url(blob)
            except MediaUrlFailed:
                raise
            except Exception as e:
                raise MediaUrlFailed(f"Failed to get download url for {path}: {e}") from e

        return await asyncio.to_thread(_resolve)
