"""Bounded multi-producer, single-consumer record channel.

Producers hold ``ChannelSender`` halves. The consumer sees end-of-stream
once every registered sender has closed and the queue is drained.
"""

from __future__ import annotations

import asyncio

from core.errors import ChannelClosedError, OpenSensorConfigError
from core.types import Record

_END = object()


class Channel:
    """Bounded FIFO between transducers and one sensor.

    Args:
        capacity: Maximum number of buffered records.

    Raises:
        OpenSensorConfigError: If capacity is below 1.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise OpenSensorConfigError(
                f"Invalid channel capacity {capacity}: must be >= 1."
            )
        self._capacity = capacity
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=capacity)
        self._open_senders = 0
        self._senders_done = False
        self._finished = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def open_senders(self) -> int:
        return self._open_senders

    def qsize(self) -> int:
        """Number of buffered items."""
        return self._queue.qsize()

    def sender(self) -> ChannelSender:
        """Register and return a new producer half.

        Raises:
            ChannelClosedError: If every earlier sender has already closed.
        """
        if self._senders_done:
            raise ChannelClosedError(
                "Channel is closed: all of its senders have finished. Create a new channel."
            )
        self._open_senders += 1
        return ChannelSender(self)

    async def receive(self) -> Record | None:
        """Wait for the next record.

        Returns:
            The next record, or ``None`` once all senders have closed and
            every buffered record has been received.
        """
        if self._finished:
            return None
        if self._senders_done and self._queue.empty():
            self._finished = True
            return None
        return self._unwrap(await self._queue.get())

    def receive_nowait(self) -> Record | None:
        """Return a buffered record, or ``None`` when nothing is buffered."""
        if self._finished or self._queue.empty():
            return None
        return self._unwrap(self._queue.get_nowait())

    def _unwrap(self, item: object) -> Record | None:
        if item is _END:
            self._finished = True
            return None
        return item  # type: ignore[return-value]

    def _release(self) -> None:
        self._open_senders -= 1
        if self._open_senders > 0:
            return
        self._senders_done = True
        # Wakes a receiver blocked on an empty queue; a full queue is drained first.
        if not self._queue.full():
            self._queue.put_nowait(_END)


class ChannelSender:
    """Producer half of a channel. Closing is synchronous and idempotent."""

    def __init__(self, channel: Channel) -> None:
        self._channel = channel
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, record: Record) -> None:
        """Enqueue a record, waiting while the channel is full.

        Raises:
            ChannelClosedError: If this sender was already closed.
        """
        if self._closed:
            raise ChannelClosedError(
                f"Cannot send record {record.producer_id}:{record.sequence}: sender is closed."
            )
        await self._channel._queue.put(record)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._release()
