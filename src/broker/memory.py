"""In-process broker with Kafka-like consumer group semantics.

Each topic is one ordered partition. Consumers of a group start after the
group's committed offset, so uncommitted messages are delivered again to
the next consumer. Used by tests, demos, and single-process pipelines.
"""

from __future__ import annotations

import asyncio
from typing import Mapping

from broker.base import BrokerMessage
from core.errors import BrokerError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)
_PARTITION = 0


class InMemoryBroker:
    """Ordered in-memory log per topic with per-group committed offsets."""

    def __init__(self) -> None:
        self._logs: dict[str, list[BrokerMessage]] = {}
        self._committed: dict[tuple[str, str], dict[int, int]] = {}
        self._appended: asyncio.Condition | None = None
        self._appended_loop: asyncio.AbstractEventLoop | None = None

    async def append(self, topic: str, payload: bytes, key: str | None = None) -> int:
        log = self._logs.setdefault(topic, [])
        message = BrokerMessage(
            topic=topic,
            partition=_PARTITION,
            offset=len(log),
            payload=bytes(payload),
            key=key,
        )
        log.append(message)
        condition = self._condition()
        async with condition:
            condition.notify_all()
        return message.offset

    def consumer(self, topic: str, group_id: str) -> InMemoryConsumer:
        start = self.committed(group_id, topic).get(_PARTITION, -1) + 1
        return InMemoryConsumer(self, topic, group_id, start)

    def messages(self, topic: str) -> list[BrokerMessage]:
        """Return every message appended to a topic, in order."""
        return list(self._logs.get(topic, ()))

    def committed(self, group_id: str, topic: str) -> dict[int, int]:
        """Return the group's committed offset per partition."""
        return dict(self._committed.get((group_id, topic), {}))

    def _condition(self) -> asyncio.Condition:
        # Conditions bind to one event loop; the broker may outlive several.
        loop = asyncio.get_running_loop()
        if self._appended is None or self._appended_loop is not loop:
            self._appended = asyncio.Condition()
            self._appended_loop = loop
        return self._appended

    def _read(self, topic: str, start: int, max_records: int) -> list[BrokerMessage]:
        return self._logs.get(topic, [])[start : start + max_records]

    def _commit(self, group_id: str, topic: str, positions: Mapping[int, int]) -> None:
        committed = self._committed.setdefault((group_id, topic), {})
        for partition, offset in positions.items():
            if partition != _PARTITION or offset >= len(self._logs.get(topic, ())):
                raise BrokerError(
                    f"Cannot commit {topic}[{partition}]@{offset}: no such message."
                )
            committed[partition] = max(offset, committed.get(partition, -1))
        _LOGGER.debug(
            "broker_offsets_committed",
            topic=topic,
            group_id=group_id,
            positions=dict(positions),
        )


class InMemoryConsumer:
    """Consumer of one topic within one group."""

    def __init__(self, broker: InMemoryBroker, topic: str, group_id: str, start: int) -> None:
        self._broker = broker
        self._topic = topic
        self._group_id = group_id
        self._next_offset = start
        self._closed = False

    @property
    def topic(self) -> str:
        return self._topic

    async def poll(self, max_records: int, timeout_seconds: float) -> list[BrokerMessage]:
        """Return up to ``max_records`` messages, waiting up to the timeout for one."""
        if self._closed:
            raise BrokerError(f"Consumer of '{self._topic}' is closed.")
        messages = self._broker._read(self._topic, self._next_offset, max_records)
        if not messages and timeout_seconds > 0:
            condition = self._broker._condition()
            try:
                async with condition:
                    await asyncio.wait_for(
                        condition.wait_for(self._has_pending),
                        timeout=timeout_seconds,
                    )
            except asyncio.TimeoutError:
                return []
            messages = self._broker._read(self._topic, self._next_offset, max_records)
        self._next_offset += len(messages)
        return messages

    async def commit(self, positions: Mapping[int, int]) -> None:
        self._broker._commit(self._group_id, self._topic, positions)

    async def close(self) -> None:
        self._closed = True

    def _has_pending(self) -> bool:
        return bool(self._broker._read(self._topic, self._next_offset, 1))
