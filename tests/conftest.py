from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Tuple

import pytest

from messenger.errors import TransientStoreError, WriteFailed
from messenger.models.message import Location, Message, MessageKind
from messenger.services.conversation_service import ConversationService
from messenger.services.memory_store import MemoryStore
from messenger.services.user_directory import UserDirectory

T0 = datetime(2024, 1, 20, 10, 0, tzinfo=timezone.utc)


class FailingStore(MemoryStore):
    """MemoryStore whose writes under chosen path prefixes fail a number of times"""

    def __init__(self, **kwargs):
        kwargs.setdefault("write_retry_backoff_seconds", 0)
        super().__init__(**kwargs)
        self.failures: Dict[str, Tuple[int, Callable[[str], Exception]]] = {}
        self.write_attempts: Dict[str, int] = {}

    def fail_writes(self, prefix: str, times: int = 1, error: Callable[[str], Exception] = WriteFailed):
        self.failures[prefix] = (times, error)

    def fail_transiently(self, prefix: str, times: int = 1):
        self.fail_writes(prefix, times, TransientStoreError)

    def _maybe_fail(self, path: str) -> None:
        self.write_attempts[path] = self.write_attempts.get(path, 0) + 1
        for prefix, (times, error) in list(self.failures.items()):
            if path.startswith(prefix) and times > 0:
                self.failures[prefix] = (times - 1, error)
                raise error(f"injected failure writing {path}")

    async def _set(self, path, value):
        self._maybe_fail(path)
        await super()._set(path, value)

    async def _set_if_unchanged(self, path, etag, value):
        self._maybe_fail(path)
        return await super()._set_if_unchanged(path, etag, value)


class RacingStore(MemoryStore):
    """MemoryStore where another writer changes a path right after it is read"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.races: Dict[str, Tuple[int, Callable]] = {}

    def race(self, path: str, competing_write: Callable, times: int = 1):
        self.races[path] = (times, competing_write)

    async def _get(self, path):
        value, etag = await super()._get(path)
        times, competing_write = self.races.get(path, (0, None))
        if times > 0:
            self.races[path] = (times - 1, competing_write)
            await super()._set(path, competing_write(value))
        return value, etag


def make_message(
    message_id: str,
    text: str = "",
    sender_email: str = "a@x.com",
    sender_name: str = "Alice A",
    sent_at: datetime = T0,
    kind: MessageKind = MessageKind.TEXT,
    media_url: str = None,
    location: Location = None,
) -> Message:
    return Message(
        message_id=message_id,
        kind=kind,
        sender_email=sender_email,
        sender_name=sender_name,
        sent_at=sent_at,
        text=text if kind in (MessageKind.TEXT, MessageKind.EMOJI) else None,
        media_url=media_url,
        location=location,
    )


def later(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def store():
    return MemoryStore(write_retry_backoff_seconds=0)


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def conversations(store):
    return ConversationService(store, reconcile_on_read=False)


@pytest.fixture
def directory(store):
    return UserDirectory(store)


class LostAckStore(MemoryStore):
    """MemoryStore whose conditional writes land but report a timeout a number of times"""

    def __init__(self, **kwargs):
        kwargs.setdefault("write_retry_backoff_seconds", 0)
        super().__init__(**kwargs)
        self.lost_acks: Dict[str, int] = {}

    def lose_ack(self, path: str, times: int = 1):
        self.lost_acks[path] = times

    async def _set_if_unchanged(self, path, etag, value):
        written = await super()._set_if_unchanged(path, etag, value)
        if written and self.lost_acks.get(path, 0) > 0:
            self.lost_acks[path] -= 1
            raise TransientStoreError(f"deadline exceeded writing {path}")
        return written
