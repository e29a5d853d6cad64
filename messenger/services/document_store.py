"""
Path-addressed JSON document store

The conversation and directory services read and write whole documents at
slash-separated paths (``user/{id}/conversations``, ``conversation/{id}``...).
Every read-modify-write goes through ``DocumentStore.update``, which guards
the write with the ETag of the value it was computed from, retries against a
fresh read when another writer got there first, and retries transient
backend failures with exponential backoff.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Tuple, TypeVar

from messenger.config import settings
from messenger.errors import Conflict, FetchFailed, TransientStoreError, WriteFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

SnapshotCallback = Callable[[Any], None]


class Subscription:
    """
    Handle for a live listener registered on a path.

    ``close`` stops delivery; it is safe to call more than once.
    """

    def __init__(self, path: str, close: Callable[[], None]):
        self.path = path
        self._close = close
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._close()
        logger.debug("Closed subscription on %s", self.path)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class DocumentStore(ABC):
    """Base class for document store backends"""

    def __init__(
        self,
        write_retry_attempts: Optional[int] = None,
        write_retry_backoff_seconds: Optional[float] = None,
        conflict_retry_attempts: Optional[int] = None,
    ):
        self.write_retry_attempts = (
            write_retry_attempts if write_retry_attempts is not None
            else settings.WRITE_RETRY_ATTEMPTS
        )
        self.write_retry_backoff_seconds = (
            write_retry_backoff_seconds if write_retry_backoff_seconds is not None
            else settings.WRITE_RETRY_BACKOFF_SECONDS
        )
        self.conflict_retry_attempts = (
            conflict_retry_attempts if conflict_retry_attempts is not None
            else settings.CONFLICT_RETRY_ATTEMPTS
        )

    # ============================================
    # BACKEND PRIMITIVES
    # ============================================

    @abstractmethod
    async def _get(self, path: str) -> Tuple[Any, str]:
        """Return (value, etag) at path; value is None when absent"""

    @abstractmethod
    async def _set(self, path: str, value: Any) -> None:
        """Unconditionally replace the value at path (None deletes it)"""

    @abstractmethod
    async def _set_if_unchanged(self, path: str, etag: str, value: Any) -> bool:
        """Replace the value at path only if its current etag matches"""

    @abstractmethod
    def listen(self, path: str, callback: SnapshotCallback) -> Subscription:
        """
        Register a callback receiving the full value at path.

        The callback fires once with the current value, then after every
        change. It may be invoked from a backend thread.
        """

    # ============================================
    # RETRYING OPERATIONS
    # ============================================

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        failure: type,
    ) -> T:
        """
        Run ``operation``, retrying transient failures with exponential backoff.

        Raises:
            failure: When the last attempt still fails
        """
        attempts = max(1, self.write_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except TransientStoreError as e:
                if attempt == attempts:
                    logger.error("%s failed after %d attempts: %s", description, attempts, e)
                    raise failure(f"{description} failed: {e}") from e
                delay = self.write_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    description, attempt, attempts, delay, e,
                )
                await asyncio.sleep(delay)

    async def get(self, path: str) -> Any:
        value, _ = await self.get_with_etag(path)
        return value

    async def get_with_etag(self, path: str) -> Tuple[Any, str]:
        return await self._with_retry(lambda: self._get(path), f"Read of {path}", FetchFailed)

    async def set(self, path: str, value: Any) -> None:
        await self._with_retry(lambda: self._set(path, value), f"Write of {path}", WriteFailed)

    async def update(self, path: str, mutate: Callable[[Any], Any]) -> Any:
        """
        Optimistic read-modify-write of the value at ``path``.

        ``mutate`` receives the current value (None when absent) and returns
        the value to store. It may raise to abort without writing; it is
        called again with fresh data whenever the conditional write loses a
        race.

        Returns:
            The value that was written

        Raises:
            Conflict: When every attempt lost a race with another writer
            FetchFailed / WriteFailed: When the backend keeps failing
        """
        attempts = max(1, self.conflict_retry_attempts)
        for attempt in range(1, attempts + 1):
            current, etag = await self.get_with_etag(path)
            new_value = mutate(current)
            written = await self._with_retry(
                lambda: self._set_if_unchanged(path, etag, new_value),
                f"Conditional write of {path}",
                WriteFailed,
            )
            if written:
                return new_value
            logger.info("Stale write to %s (attempt %d/%d), re-reading", path, attempt, attempts)
        raise Conflict(f"{path} kept changing; gave up after {attempts} attempts")

    # ============================================
    # STREAMING
    # ============================================

    async def watch(
        self, path: str, transform: Callable[[Any], T] = lambda value: value
    ) -> AsyncIterator[T]:
        """
        Async iterator over snapshots at ``path``.

        Leaving the iteration (break, cancellation, generator close) closes
        the underlying subscription.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_snapshot(value: Any) -> None:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(queue.put_nowait, value)

        subscription = self.listen(path, on_snapshot)
        try:
            while True:
                value = await queue.get()
                yield transform(value)
        finally:
            subscription.close()
