"""View events pushed from a session to whatever renders it."""

import asyncio
from typing import Any

from classhub.schemas.realtime import ViewEvent


class EventStream:
    """Unbounded queue of view events for one session."""

    def __init__(self):
        self._queue: asyncio.Queue[ViewEvent] = asyncio.Queue()

    def emit(self, type: str, **payload: Any) -> ViewEvent:
        event = ViewEvent(type=type, payload=payload)
        self._queue.put_nowait(event)
        return event

    async def next(self) -> ViewEvent:
        return await self._queue.get()

    def drain_nowait(self) -> list[ViewEvent]:
        """Pop every queued event without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events
