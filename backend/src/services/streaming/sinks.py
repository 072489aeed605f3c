"""
Stream Sinks.

A sink is the output end of one client connection attached to an
active stream. The registry writes events into it synchronously; the
HTTP layer drains it asynchronously.
"""
import asyncio
import logging
import threading
from typing import AsyncIterator, Optional, Protocol

from .types import StreamEvent

logger = logging.getLogger(__name__)


class SinkClosedError(Exception):
    """Raised when writing to a sink that can no longer accept events."""


class StreamSink(Protocol):
    """Protocol for subscriber output channels."""

    def send(self, event: StreamEvent) -> None: ...
    def close(self) -> None: ...


class QueueSink:
    """
    Sink backed by an asyncio queue.

    ``send`` never blocks: it raises SinkClosedError once the sink is
    closed, or when the reader has fallen ``max_pending`` events behind.
    ``close`` is idempotent and ends the ``events()`` iterator after the
    already queued events are drained.

    The sink belongs to the event loop it was created on. Writes from
    other threads are handed to that loop with ``call_soon_threadsafe``
    and keep their order; the ``max_pending`` check is approximate for them.
    """

    def __init__(self, max_pending: int = 0, name: Optional[str] = None):
        self._queue: asyncio.Queue[Optional[StreamEvent]] = asyncio.Queue()
        self._max_pending = max_pending
        self._closed = False
        self._lock = threading.Lock()
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self.name = name or f"sink-{id(self):x}"

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: StreamEvent) -> None:
        with self._lock:
            if self._closed:
                raise SinkClosedError(f"{self.name} is closed")
            if self._max_pending and self._queue.qsize() >= self._max_pending:
                raise SinkClosedError(
                    f"{self.name} is {self._queue.qsize()} events behind"
                )
            self._put(event)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            # Queue is unbounded, the sentinel always fits
            self._put(None)

    def _put(self, item: Optional[StreamEvent]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self._queue.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield queued events until the sink is closed."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def sse(self) -> AsyncIterator[str]:
        """Yield queued events serialized as SSE frames."""
        async for event in self.events():
            yield event.to_sse()
