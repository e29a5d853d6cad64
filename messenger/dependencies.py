"""
FastAPI dependency injection for authentication and services
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import messenger.services.auth_service as auth_module
from messenger.config import settings
from messenger.services.conversation_service import ConversationService
from messenger.services.document_store import DocumentStore
from messenger.services.storage_service import MediaStorage
from messenger.services.user_directory import UserDirectory
from messenger.utils.identity import safe_email

logger = logging.getLogger(__name__)

# Security scheme for Firebase ID tokens
security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """The signed-in caller, as resolved from the bearer token"""

    email: str
    name: Optional[str] = None

    @property
    def identity(self) -> str:
        return safe_email(self.email)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Dependency to get the current user from a Firebase ID token

    Every store call takes the caller's identity explicitly; a request
    that cannot name its user never reaches the store.

    Raises:
        HTTPException: If the token is missing, invalid or has no email claim
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None or not credentials.credentials:
        raise credentials_exception

    try:
        decoded_token = await asyncio.to_thread(auth_module.verify_id_token, credentials.credentials)
    except ValueError as e:
        logger.info("Rejected bearer token: %s", e)
        raise credentials_exception

    if not decoded_token or not decoded_token.get("email"):
        logger.info("Bearer token carries no email claim")
        raise credentials_exception

    return CurrentUser(email=decoded_token["email"], name=decoded_token.get("name"))


@lru_cache
def get_document_store() -> DocumentStore:
    """Process-wide document store chosen by STORE_BACKEND"""
    if settings.STORE_BACKEND == "memory":
        from messenger.services.memory_store import MemoryStore

        logger.info("Using in-memory document store")
        return MemoryStore()

    from messenger.services.firebase_service import RealtimeDatabaseStore

    return RealtimeDatabaseStore()


def get_conversation_service(
    store: DocumentStore = Depends(get_document_store),
) -> ConversationService:
    return ConversationService(store)


def get_user_directory(
    store: DocumentStore = Depends(get_document_store),
) -> UserDirectory:
    return UserDirectory(store)


@lru_cache
def get_media_storage() -> MediaStorage:
    return MediaStorage()
