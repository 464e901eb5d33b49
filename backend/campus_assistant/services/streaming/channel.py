"""
Event Channel.

Single-producer single-consumer FIFO between a slow producer (chat
generation, ingestion) and a fast consumer (the connection relay).
"""
import asyncio
from typing import AsyncIterator, Generic, Optional, TypeVar

T = TypeVar("T")

_CLOSED = object()


class ChannelClosedError(Exception):
    """Raised when writing to a closed channel."""


class EventChannel(Generic[T]):
    """
    Async FIFO with a close-once, drain-then-EOF discipline.

    Consumer side:
        while await channel.wait_to_read():
            item = channel.try_read()
            while item is not None:
                ...
                item = channel.try_read()

    capacity=0 means unbounded; otherwise write() waits for free space.
    Closing queues a sentinel behind the buffered items, so everything
    written before close() is still delivered.
    """

    def __init__(self, capacity: int = 0):
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._capacity = capacity
        self._closed = False
        self._drained = False
        self._peeked: Optional[T] = None
        self._has_peeked = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        """True once the producer has closed the channel."""
        return self._closed

    @property
    def completed(self) -> bool:
        """True once the consumer has observed end-of-stream."""
        return self._drained

    # ==================== Producer ====================

    async def write(self, item: T) -> None:
        """Append an item, waiting for space when the channel is bounded."""
        if self._closed:
            raise ChannelClosedError("Channel is closed")
        await self._queue.put(item)

    def try_write(self, item: T) -> bool:
        """Append without waiting. False if the channel is full or closed."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> bool:
        """
        Mark the end of the stream.

        Returns True on the first call, False if already closed.
        """
        if self._closed:
            return False
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # A full bounded queue has data ahead of EOF; the reader
            # notices the closed flag once it has drained the buffer.
            pass
        return True

    # ==================== Consumer ====================

    async def wait_to_read(self) -> bool:
        """
        Wait until an item is available or the stream ended.

        Returns True if try_read() will return an item, False on EOF.
        """
        if self._has_peeked:
            return True
        if self._drained:
            return False
        if self._closed and self._queue.empty():
            self._drained = True
            return False

        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            return False

        self._peeked = item
        self._has_peeked = True
        return True

    def try_read(self) -> Optional[T]:
        """Take the next buffered item without waiting, or None."""
        if self._has_peeked:
            item = self._peeked
            self._peeked = None
            self._has_peeked = False
            return item
        if self._drained:
            return None

        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

        if item is _CLOSED:
            self._drained = True
            return None
        return item

    async def __aiter__(self) -> AsyncIterator[T]:
        while await self.wait_to_read():
            item = self.try_read()
            while item is not None:
                yield item
                item = self.try_read()
