"""Sensor: validate channel records and forward them to the broker.

A sensor is the single consumer of one channel. Each record is validated
against its kind, then appended to the kind's topic with bounded retries.
Rejections and forwarding failures are counted and logged; neither stops
the sensor.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from broker.base import BrokerProducer
from core.constants import DEFAULT_FORWARD_ATTEMPTS
from core.errors import BrokerError, ForwardingFailure, ValidationError
from core.logging_config import get_logger
from core.types import Record, RetryPolicy
from produce.channel import Channel
from produce.validation import validate_record
from reflect.record_kind import RecordKind

_LOGGER = get_logger(__name__)


class SensorState(Enum):
    """Lifecycle states of a sensor."""

    IDLE = "idle"
    RECEIVING = "receiving"
    VALIDATING = "validating"
    FORWARDING = "forwarding"
    CLOSED = "closed"


@dataclass
class SensorStats:
    """Counters collected over one sensor run."""

    received: int = 0
    forwarded: int = 0
    rejections: dict[str, int] = field(default_factory=dict)
    forward_failures: list[ForwardingFailure] = field(default_factory=list)

    @property
    def rejected(self) -> int:
        return sum(self.rejections.values())


class Sensor:
    """Consumer half of a channel that forwards valid records to a broker.

    Args:
        kind: Kind of every record on the channel.
        channel: Channel to drain.
        broker: Broker producer receiving accepted records.
        retry_policy: Forwarding retry policy.
        clock: Nanosecond wall clock for timestamp validation.
        sleep: Coroutine used for backoff delays.
    """

    def __init__(
        self,
        kind: RecordKind,
        channel: Channel,
        broker: BrokerProducer,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], int] = time.time_ns,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._kind = kind
        self._channel = channel
        self._broker = broker
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=DEFAULT_FORWARD_ATTEMPTS)
        self._clock = clock
        self._sleep = sleep
        self._state = SensorState.IDLE
        self._stats = SensorStats()

    @property
    def state(self) -> SensorState:
        return self._state

    @property
    def stats(self) -> SensorStats:
        return self._stats

    async def run(self, stop_event: asyncio.Event | None = None) -> SensorStats:
        """Forward records until every sender has closed and the channel is drained.

        Args:
            stop_event: When set, the sensor forwards what is buffered and what
                senders still deliver, then ends once every sender has closed.

        Returns:
            Counters for this run.
        """
        self._state = SensorState.RECEIVING
        try:
            while True:
                record = await self._next_record(stop_event)
                if record is None:
                    break
                await self._handle(record)
            # After a stop request, senders finish their in-flight record and close.
            while (record := await self._channel.receive()) is not None:
                await self._handle(record)
        finally:
            self._state = SensorState.CLOSED
        _LOGGER.info(
            "sensor_closed",
            kind=self._kind.name,
            received=self._stats.received,
            forwarded=self._stats.forwarded,
            rejected=self._stats.rejected,
            forward_failures=len(self._stats.forward_failures),
        )
        return self._stats

    async def _next_record(self, stop_event: asyncio.Event | None) -> Record | None:
        if stop_event is None:
            return await self._channel.receive()
        if stop_event.is_set():
            return None
        receive = asyncio.ensure_future(self._channel.receive())
        stop = asyncio.ensure_future(stop_event.wait())
        done, _ = await asyncio.wait({receive, stop}, return_when=asyncio.FIRST_COMPLETED)
        if receive in done:
            stop.cancel()
            return receive.result()
        receive.cancel()
        await asyncio.wait({receive})
        return None

    async def _handle(self, record: Record) -> None:
        self._stats.received += 1
        self._state = SensorState.VALIDATING
        try:
            validate_record(self._kind, record, now_ns=self._clock())
        except ValidationError as error:
            self._stats.rejections[error.reason] = self._stats.rejections.get(error.reason, 0) + 1
            _LOGGER.warning(
                "sensor_record_rejected",
                kind=self._kind.name,
                producer_id=record.producer_id,
                sequence=record.sequence,
                reason=error.reason,
                detail=str(error),
            )
            self._state = SensorState.RECEIVING
            return
        self._state = SensorState.FORWARDING
        try:
            await self._forward(record)
        except ForwardingFailure as failure:
            self._stats.forward_failures.append(failure)
            _LOGGER.error(
                "sensor_forward_failed",
                kind=self._kind.name,
                producer_id=failure.producer_id,
                sequence=failure.sequence,
                attempts=failure.attempts,
                error=str(failure),
            )
        else:
            self._stats.forwarded += 1
        self._state = SensorState.RECEIVING

    async def _forward(self, record: Record) -> None:
        policy = self._retry_policy
        last_error: BrokerError | None = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                await self._broker.append(self._kind.topic, record.payload, record.key)
                return
            except BrokerError as error:
                last_error = error
                if attempt == policy.max_attempts:
                    break
                delay = policy.delay_for(attempt)
                _LOGGER.warning(
                    "sensor_forward_retry",
                    kind=self._kind.name,
                    key=record.key,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(error),
                )
                await self._sleep(delay)
        raise ForwardingFailure(
            f"Record {record.key} of kind '{self._kind.name}' was not acknowledged after "
            f"{policy.max_attempts} attempts: {last_error}. Check broker availability.",
            producer_id=record.producer_id,
            sequence=record.sequence,
            attempts=policy.max_attempts,
        )
