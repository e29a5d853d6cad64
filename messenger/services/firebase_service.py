"""
Firebase service for Realtime Database and Storage access
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Tuple

import firebase_admin
from firebase_admin import credentials, db as rtdb, exceptions as firebase_exceptions

from messenger.config import settings
from messenger.errors import FetchFailed, WriteFailed, TransientStoreError
from messenger.services.document_store import DocumentStore, SnapshotCallback, Subscription

logger = logging.getLogger(__name__)

# Backend failures worth retrying
TRANSIENT_ERRORS = (
    firebase_exceptions.UnavailableError,
    firebase_exceptions.DeadlineExceededError,
    firebase_exceptions.InternalError,
    firebase_exceptions.ResourceExhaustedError,
    firebase_exceptions.UnknownError,
)


class FirebaseService:
    """Service owning the Firebase Admin SDK app"""

    _instance = None
    _initialized = False

    def __new__(cls):
        """Singleton pattern to ensure only one Firebase instance"""
        if cls._instance is None:
            cls._instance = super(FirebaseService, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize Firebase Admin SDK"""
        if not FirebaseService._initialized:
            self._initialize_firebase()
            FirebaseService._initialized = True

    def _initialize_firebase(self):
        """Initialize Firebase Admin SDK with credentials"""
        options = {
            "databaseURL": settings.FIREBASE_DATABASE_URL,
            "storageBucket": settings.FIREBASE_STORAGE_BUCKET,
        }
        try:
            # Check if already initialized
            firebase_admin.get_app()
            logger.info("Firebase already initialized")
        except ValueError:
            if settings.DEV_MODE and settings.FIREBASE_EMULATOR_HOST:
                # Use emulator for development
                os.environ["FIREBASE_DATABASE_EMULATOR_HOST"] = settings.FIREBASE_EMULATOR_HOST
                firebase_admin.initialize_app(options=options)
                logger.info("Firebase initialized with emulator: %s", settings.FIREBASE_EMULATOR_HOST)
            else:
                if settings.FIREBASE_CREDENTIALS_JSON:
                    try:
                        cred = credentials.Certificate(json.loads(settings.FIREBASE_CREDENTIALS_JSON))
                        logger.info("Firebase initialized with credentials from FIREBASE_CREDENTIALS_JSON")
                    except json.JSONDecodeError as e:
                        logger.error("Error parsing FIREBASE_CREDENTIALS_JSON: %s", e)
                        raise
                else:
                    # Fallback to file path
                    cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
                    logger.info(
                        "Firebase initialized with credentials from %s",
                        settings.FIREBASE_CREDENTIALS_PATH,
                    )

                firebase_admin.initialize_app(cred, options)
            logger.info("Firebase Admin SDK initialization successful.")


class RealtimeDatabaseStore(DocumentStore):
    """
    Document store backed by the Firebase Realtime Database.

    Blocking SDK calls run in worker threads to keep the event loop free.
    """

    def __init__(self, firebase: FirebaseService = None, **kwargs):
        super().__init__(**kwargs)
        # Constructing the service initializes the SDK once per process
        self.firebase = firebase or FirebaseService()

    @staticmethod
    def _translate(e: firebase_exceptions.FirebaseError, failure: type, path: str) -> Exception:
        if isinstance(e, TRANSIENT_ERRORS):
            return TransientStoreError(f"{path}: {e}")
        return failure(f"{path}: {e}")

    async def _get(self, path: str) -> Tuple[Any, str]:
        ref = rtdb.reference(path)
        try:
            value, etag = await asyncio.to_thread(ref.get, etag=True)
        except firebase_exceptions.FirebaseError as e:
            raise self._translate(e, FetchFailed, path) from e
        return value, etag

    async def _set(self, path: str, value: Any) -> None:
        ref = rtdb.reference(path)
        try:
            # The SDK refuses to set None; deleting is the equivalent
            if value is None:
                await asyncio.to_thread(ref.delete)
            else:
                await asyncio.to_thread(ref.set, value)
        except firebase_exceptions.FirebaseError as e:
            raise self._translate(e, WriteFailed, path) from e

    async def _set_if_unchanged(self, path: str, etag: str, value: Any) -> bool:
        ref = rtdb.reference(path)
        try:
            success, _, _ = await asyncio.to_thread(ref.set_if_unchanged, etag, value)
        except firebase_exceptions.FirebaseError as e:
            raise self._translate(e, WriteFailed, path) from e
        return success

    def listen(self, path: str, callback: SnapshotCallback) -> Subscription:
        ref = rtdb.reference(path)

        def on_event(event: rtdb.Event) -> None:
            # Events carry deltas; listeners are promised full snapshots
            try:
                callback(ref.get())
            except firebase_exceptions.FirebaseError as e:
                logger.error("Failed to refresh snapshot of %s after %s: %s", path, event.event_type, e)

        registration = ref.listen(on_event)
        return Subscription(path, registration.close)
