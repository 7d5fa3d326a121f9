"""Broker contracts used by sensors and archivers.

Producers append to a topic and get the acknowledged offset back.
Consumers poll ordered messages and commit, per partition, the last
offset that is durably archived. Delivery is at-least-once: anything
after the committed offset is delivered again to the next consumer of
the same group.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol


@dataclass(frozen=True)
class BrokerMessage:
    """One message read from a topic partition."""

    topic: str
    partition: int
    offset: int
    payload: bytes
    key: str | None = None


class BrokerProducer(Protocol):
    """Write side of a broker."""

    async def append(self, topic: str, payload: bytes, key: str | None = None) -> int: ...


class BrokerConsumer(Protocol):
    """Read side of a broker, bound to one topic and consumer group."""

    async def poll(self, max_records: int, timeout_seconds: float) -> list[BrokerMessage]: ...

    async def commit(self, positions: Mapping[int, int]) -> None: ...

    async def close(self) -> None: ...


class Broker(BrokerProducer, Protocol):
    """Broker that can also open consumers."""

    def consumer(self, topic: str, group_id: str) -> BrokerConsumer: ...
