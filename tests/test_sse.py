import asyncio
import json

import pytest

from messenger.sse import EventType, SSEEvent, snapshot_stream


class FakeRequest:
    """Reports a disconnect after a given number of checks"""

    def __init__(self, connected_checks):
        self.connected_checks = connected_checks
        self.checks = 0

    async def is_disconnected(self):
        self.checks += 1
        return self.checks > self.connected_checks


def parse(chunk):
    fields = dict(line.split(": ", 1) for line in chunk.strip().split("\n"))
    return fields["event"], json.loads(fields["data"])


def test_encode():
    chunk = SSEEvent(event="messages", data=[{"id": "m1"}], id="abc").encode()
    assert chunk == 'id: abc\nevent: messages\ndata: [{"id": "m1"}]\n\n'


@pytest.mark.asyncio
async def test_one_event_per_snapshot():
    closed = []

    async def snapshots():
        try:
            yield [1]
            yield [1, 2]
        finally:
            closed.append(True)

    chunks = [
        chunk
        async for chunk in snapshot_stream(
            snapshots(), FakeRequest(10), EventType.MESSAGES, serialize=lambda n: n * 10
        )
    ]

    events = [parse(chunk) for chunk in chunks]
    assert events[0][0] == "connected"
    assert events[1:] == [("messages", [10]), ("messages", [10, 20])]
    assert closed == [True]


@pytest.mark.asyncio
async def test_heartbeat_while_idle_and_stop_on_disconnect():
    closed = []

    async def snapshots():
        try:
            await asyncio.Event().wait()
            yield []
        finally:
            closed.append(True)

    chunks = [
        chunk
        async for chunk in snapshot_stream(
            snapshots(),
            FakeRequest(1),
            EventType.CONVERSATIONS,
            serialize=lambda item: item,
            heartbeat_interval=0.01,
        )
    ]

    assert [parse(chunk)[0] for chunk in chunks] == ["connected", "heartbeat"]
    assert closed == [True]
