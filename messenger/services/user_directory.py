"""
User directory: per-user records and the flat list of registered users
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from messenger.errors import FetchFailed, NotFound, StoreError
from messenger.models.user import DirectoryEntry, UserRecord
from messenger.services.conversation_service import user_path
from messenger.services.document_store import DocumentStore
from messenger.utils.identity import safe_email
from messenger.utils.sparse import stored_list

logger = logging.getLogger(__name__)

DIRECTORY_PATH = "directory/users"


def _parse_directory(value: Any) -> List[DirectoryEntry]:
    try:
        items = stored_list(value)
    except TypeError as e:
        raise FetchFailed(f"{DIRECTORY_PATH}: {e}") from e

    entries: Dict[str, DirectoryEntry] = {}
    for item in items:
        try:
            entry = DirectoryEntry.model_validate(item)
        except ValidationError as e:
            logger.warning("Dropping unreadable directory entry: %s", e)
            continue
        entries.setdefault(entry.email, entry)
    return list(entries.values())


class UserDirectory:
    """Registers users and answers existence and lookup queries"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def user_exists(self, identity: str) -> bool:
        """Checks if a user record exists for a given email or safe identity"""
        value = await self.store.get(user_path(safe_email(identity)))
        return isinstance(value, dict)

    async def register_user(self, identity: str, first_name: str, last_name: str) -> bool:
        """
        Insert a new user record and add the user to the directory

        Re-registering keeps the user's conversations and does not duplicate
        the directory entry. The record and the directory are written
        separately; a failure between the two leaves a record that is not
        listed yet.

        Args:
            identity: Email or safe identity of the user
            first_name: User's first name
            last_name: User's last name

        Returns:
            True if both writes succeeded
        """
        key = safe_email(identity)
        entry = DirectoryEntry(name=f"{first_name} {last_name}".strip(), email=key)

        def merge_record(current: Any) -> Dict[str, Any]:
            record = dict(current) if isinstance(current, dict) else {}
            record["first_name"] = first_name
            record["last_name"] = last_name
            return record

        def add_entry(current: Any) -> List[Dict[str, str]]:
            entries = _parse_directory(current) if current is not None else []
            if all(existing.email != key for existing in entries):
                entries.append(entry)
            return [existing.to_stored() for existing in entries]

        try:
            await self.store.update(user_path(key), merge_record)
        except StoreError as e:
            logger.error("Failed to write user record for %s: %s", key, e)
            return False

        try:
            await self.store.update(DIRECTORY_PATH, add_entry)
        except StoreError as e:
            logger.error("User %s stored but not added to the directory: %s", key, e)
            return False

        logger.info("Registered user %s", key)
        return True

    async def get_user(self, identity: str) -> UserRecord:
        """
        Get a user's record

        Raises:
            NotFound: If no record exists
            FetchFailed: If the record cannot be read as a user
        """
        key = safe_email(identity)
        value = await self.store.get(user_path(key))
        if not isinstance(value, dict):
            raise NotFound(f"No user record for {key}")
        try:
            return UserRecord.model_validate(value)
        except ValidationError as e:
            raise FetchFailed(f"User record for {key} is unreadable: {e}") from e

    async def list_all_users(self) -> List[DirectoryEntry]:
        """
        Gets all users from the directory

        Raises:
            FetchFailed: If the directory does not exist or is malformed
        """
        value = await self.store.get(DIRECTORY_PATH)
        if value is None:
            raise FetchFailed("The user directory is empty")
        return _parse_directory(value)

    async def search_users(
        self, term: str, exclude_identity: Optional[str] = None
    ) -> List[DirectoryEntry]:
        """Directory entries whose name starts with ``term`` (case-insensitive)"""
        excluded = safe_email(exclude_identity) if exclude_identity else None
        prefix = term.strip().lower()
        return [
            entry
            for entry in await self.list_all_users()
            if entry.email != excluded and entry.name.lower().startswith(prefix)
        ]
