"""
Tests for the EventChannel producer/consumer contract.

Covers:
- FIFO delivery and close-then-drain end of stream
- Non-blocking reads and writes
- Bounded capacity with producer backpressure
"""
import asyncio

import pytest

from campus_assistant.services.streaming import ChannelClosedError, EventChannel


async def drain(channel: EventChannel) -> list:
    items = []
    while await channel.wait_to_read():
        item = channel.try_read()
        while item is not None:
            items.append(item)
            item = channel.try_read()
    return items


class TestUnboundedChannel:
    """Tests for the default unbounded channel."""

    @pytest.mark.asyncio
    async def test_items_are_read_in_write_order(self):
        """Test items written before close are all read, in order."""
        channel = EventChannel()
        for i in range(5):
            await channel.write(i)
        channel.close()

        assert await drain(channel) == [0, 1, 2, 3, 4]
        assert channel.completed is True

    @pytest.mark.asyncio
    async def test_end_of_stream_is_repeatable(self):
        """Test wait_to_read keeps reporting EOF after the drain."""
        channel = EventChannel()
        channel.close()

        assert await channel.wait_to_read() is False
        assert await channel.wait_to_read() is False
        assert channel.try_read() is None

    @pytest.mark.asyncio
    async def test_try_read_on_empty_open_channel(self):
        """Test try_read returns None without waiting."""
        channel = EventChannel()
        assert channel.try_read() is None
        assert channel.completed is False

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test only the first close reports True."""
        channel = EventChannel()
        assert channel.close() is True
        assert channel.close() is False
        assert channel.closed is True

    @pytest.mark.asyncio
    async def test_write_after_close_raises(self):
        """Test the producer cannot write to a closed channel."""
        channel = EventChannel()
        channel.close()

        with pytest.raises(ChannelClosedError):
            await channel.write("late")
        assert channel.try_write("late") is False

    @pytest.mark.asyncio
    async def test_reader_wakes_up_for_concurrent_producer(self):
        """Test a waiting reader is resumed by writes and by close."""
        channel = EventChannel()

        async def produce():
            for i in range(3):
                await asyncio.sleep(0.01)
                await channel.write(i)
            channel.close()

        producer = asyncio.create_task(produce())
        items = await drain(channel)
        await producer

        assert items == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_async_iteration(self):
        """Test async for yields every item and stops at EOF."""
        channel = EventChannel()
        channel.try_write("a")
        channel.try_write("b")
        channel.close()

        assert [item async for item in channel] == ["a", "b"]


class TestBoundedChannel:
    """Tests for a channel with a fixed capacity."""

    def test_negative_capacity_rejected(self):
        """Test capacity must not be negative."""
        with pytest.raises(ValueError):
            EventChannel(-1)

    @pytest.mark.asyncio
    async def test_try_write_fails_when_full(self):
        """Test try_write reports a full buffer instead of waiting."""
        channel = EventChannel(1)
        assert channel.try_write(1) is True
        assert channel.try_write(2) is False

    @pytest.mark.asyncio
    async def test_producer_waits_for_consumer(self):
        """Test write suspends while the buffer is full."""
        channel = EventChannel(1)
        await channel.write(1)

        blocked = asyncio.create_task(channel.write(2))
        await asyncio.sleep(0.01)
        assert not blocked.done()

        assert await channel.wait_to_read() is True
        assert channel.try_read() == 1
        await asyncio.wait_for(blocked, timeout=1)
        assert channel.try_read() == 2

    @pytest.mark.asyncio
    async def test_close_on_full_buffer_still_drains(self):
        """Test closing a full channel loses nothing and still ends the stream."""
        channel = EventChannel(2)
        await channel.write("x")
        await channel.write("y")
        channel.close()

        assert await drain(channel) == ["x", "y"]

    @pytest.mark.asyncio
    async def test_fifo_under_backpressure(self):
        """Test ordering holds when the producer repeatedly blocks."""
        channel = EventChannel(1)

        async def produce():
            for i in range(10):
                await channel.write(i)
            channel.close()

        producer = asyncio.create_task(produce())
        items = await drain(channel)
        await producer

        assert items == list(range(10))
