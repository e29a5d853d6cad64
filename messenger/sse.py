"""Server-Sent Events support for live conversation and message snapshots."""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterator, Callable, List

from fastapi import Request

from messenger.utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """SSE event types."""

    CONNECTED = "connected"
    CONVERSATIONS = "conversations"
    MESSAGES = "messages"
    HEARTBEAT = "heartbeat"


@dataclass
class SSEEvent:
    """An SSE event to send to clients."""

    event: str
    data: Any
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def encode(self) -> str:
        """Encode as SSE format."""
        lines = [
            f"id: {self.id}",
            f"event: {self.event}",
            f"data: {json.dumps(self.data)}",
            "",  # Empty line to end the event
        ]
        return "\n".join(lines) + "\n"


async def snapshot_stream(
    snapshots: AsyncIterator[List[Any]],
    request: Request,
    event: EventType,
    serialize: Callable[[Any], Any],
    heartbeat_interval: int = 30,
) -> AsyncGenerator[str, None]:
    """Generate one SSE event per snapshot until the client disconnects.

    Sends heartbeat pings every heartbeat_interval seconds to keep connection alive.
    Closing the stream closes the underlying store subscription.
    """
    pending = None
    try:
        yield SSEEvent(
            event=EventType.CONNECTED.value,
            data={"timestamp": format_timestamp(utc_now())},
        ).encode()

        while True:
            if await request.is_disconnected():
                break

            if pending is None:
                pending = asyncio.ensure_future(snapshots.__anext__())
            done, _ = await asyncio.wait({pending}, timeout=heartbeat_interval)
            if not done:
                yield SSEEvent(
                    event=EventType.HEARTBEAT.value,
                    data={"timestamp": format_timestamp(utc_now())},
                ).encode()
                continue

            try:
                snapshot = pending.result()
            except StopAsyncIteration:
                break
            finally:
                pending = None
            yield SSEEvent(
                event=event.value,
                data=[serialize(item) for item in snapshot],
            ).encode()
    finally:
        if pending is not None and not pending.done():
            # Cancelling the pending read unwinds the snapshot generator
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)
        await snapshots.aclose()
        logger.debug("Closed %s stream", event.value)
