"""
Media upload and URL resolution endpoints
"""

import logging
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from messenger.dependencies import CurrentUser, get_current_user, get_media_storage
from messenger.errors import MediaUploadFailed, MediaUrlFailed
from messenger.services.storage_service import MediaStorage
from messenger.utils.identity import profile_picture_filename

router = APIRouter(prefix="/api/v1/media", tags=["media"])
logger = logging.getLogger(__name__)

# Limit size (e.g., 50MB)
MAX_UPLOAD_BYTES = 50 * 1024 * 1024


async def _read_upload(file: UploadFile, expected_prefix: str) -> bytes:
    if not (file.content_type or "").startswith(expected_prefix):
        raise HTTPException(status_code=400, detail=f"Invalid file type. Please upload {expected_prefix}*.")
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 50MB)")
    return content


def _message_file_name(current_user: CurrentUser, file: UploadFile, default_ext: str) -> str:
    ext = Path(file.filename or "").suffix or default_ext
    return f"{current_user.identity}_{uuid.uuid4().hex}{ext}"


@router.post("/profile-picture")
async def upload_profile_picture(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
):
    """Upload the current user's profile picture"""
    content = await _read_upload(file, "image/")
    try:
        url = await storage.upload_profile_picture(content, profile_picture_filename(current_user.email))
    except (MediaUploadFailed, MediaUrlFailed) as e:
        logger.error(f"Profile picture upload failed: {e}")
        raise HTTPException(status_code=502, detail="Upload failed")
    return {"url": url}


@router.post("/messages/photo")
async def upload_message_photo(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
):
    """Upload an image to send in a conversation; returns the URL to put in the message"""
    content = await _read_upload(file, "image/")
    try:
        url = await storage.upload_message_photo(content, _message_file_name(current_user, file, ".png"))
    except (MediaUploadFailed, MediaUrlFailed) as e:
        logger.error(f"Message photo upload failed: {e}")
        raise HTTPException(status_code=502, detail="Upload failed")
    return {"url": url}


@router.post("/messages/video")
async def upload_message_video(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
):
    """Upload a video to send in a conversation; returns the URL to put in the message"""
    content = await _read_upload(file, "video/")
    try:
        url = await storage.upload_message_video(content, _message_file_name(current_user, file, ".mov"))
    except (MediaUploadFailed, MediaUrlFailed) as e:
        logger.error(f"Message video upload failed: {e}")
        raise HTTPException(status_code=502, detail="Upload failed")
    return {"url": url}


@router.get("/url")
async def get_download_url(
    path: str = Query(..., description="Storage path, e.g. images/{file}.png"),
    current_user: CurrentUser = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
):
    """Resolve a storage path to a download URL"""
    try:
        return {"url": await storage.download_url(path)}
    except MediaUrlFailed as e:
        logger.info(f"Could not resolve {path}: {e}")
        raise HTTPException(status_code=404, detail="No downloadable object at this path")
