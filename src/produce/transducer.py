"""Transducers turn a data source into a stream of records.

A transducer owns one sender half of a channel and closes it on every
exit path, so the sensor can tell when all of its sources are done.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable, Mapping

from core.errors import SourceError
from core.logging_config import get_logger
from core.types import Record
from produce.channel import ChannelSender
from reflect.record_kind import RecordKind

_LOGGER = get_logger(__name__)


class Transducer(ABC):
    """Base class for record producers.

    Args:
        kind: Record kind this transducer emits.
        source_id: Producer identifier stamped on every record.
        clock: Nanosecond wall clock used for record timestamps.
    """

    def __init__(
        self,
        kind: RecordKind,
        source_id: str,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._kind = kind
        self._source_id = source_id
        self._clock = clock
        self._sequence = -1

    @property
    def kind(self) -> RecordKind:
        return self._kind

    @property
    def source_id(self) -> str:
        return self._source_id

    def next_sequence(self) -> int:
        """Return the next strictly increasing sequence number."""
        self._sequence += 1
        return self._sequence

    def make_record(self, payload: bytes, timestamp_ns: int | None = None) -> Record:
        """Wrap a payload as the next record of this transducer."""
        return Record(
            kind=self._kind.name,
            producer_id=self._source_id,
            sequence=self.next_sequence(),
            timestamp_ns=self._clock() if timestamp_ns is None else timestamp_ns,
            payload=bytes(payload),
        )

    @abstractmethod
    def produce(self) -> AsyncIterator[Record]:
        """Yield records from the source; may suspend on source I/O.

        Raises:
            SourceError: If the source fails.
        """

    async def run(self, sender: ChannelSender, stop_event: asyncio.Event | None = None) -> int:
        """Push produced records into a channel until the source ends.

        Args:
            sender: Channel half owned by this transducer; closed on exit.
            stop_event: When set, the in-flight record is sent and the run ends.

        Returns:
            Number of records sent.

        Raises:
            SourceError: Re-raised from the source after the sender is closed.
        """
        sent = 0
        records = self.produce()
        try:
            if stop_event is not None and stop_event.is_set():
                return sent
            async for record in records:
                await sender.send(record)
                sent += 1
                if stop_event is not None and stop_event.is_set():
                    _LOGGER.info("transducer_stop_requested", source_id=self._source_id, sent=sent)
                    break
        except SourceError as error:
            _LOGGER.error(
                "transducer_source_failed",
                source_id=self._source_id,
                kind=self._kind.name,
                retryable=error.retryable,
                sent=sent,
                error=str(error),
            )
            raise
        finally:
            sender.close()
            aclose = getattr(records, "aclose", None)
            if aclose is not None:
                await aclose()
        _LOGGER.info(
            "transducer_finished", source_id=self._source_id, kind=self._kind.name, sent=sent
        )
        return sent


class SampleTransducer(Transducer):
    """Transducer over an iterable of field mappings.

    Each sample is encoded with the kind's codec. Useful for simulators,
    replays, and tests.

    Args:
        kind: Record kind to emit.
        source_id: Producer identifier.
        samples: Sync or async iterable of field mappings.
        interval_seconds: Pause between samples, for paced simulation.
        clock: Nanosecond wall clock used for record timestamps.
    """

    def __init__(
        self,
        kind: RecordKind,
        source_id: str,
        samples: Iterable[Mapping[str, Any]] | AsyncIterable[Mapping[str, Any]],
        interval_seconds: float = 0.0,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        super().__init__(kind, source_id, clock)
        self._samples = samples
        self._interval_seconds = interval_seconds

    async def produce(self) -> AsyncIterator[Record]:
        async for sample in _iterate(self._samples):
            yield self.make_record(self._kind.encode(sample))
            if self._interval_seconds > 0:
                await asyncio.sleep(self._interval_seconds)


async def _iterate(
    samples: Iterable[Mapping[str, Any]] | AsyncIterable[Mapping[str, Any]],
) -> AsyncIterator[Mapping[str, Any]]:
    if isinstance(samples, AsyncIterable):
        async for sample in samples:
            yield sample
        return
    for sample in samples:
        yield sample
