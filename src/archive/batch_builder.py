"""Row-to-column accumulation for one record kind.

The builder decodes each payload before touching its column buffers, so
every column always holds the same number of values. Broker positions
are tracked for accepted and rejected records alike; a flushed batch
carries everything its commit must cover.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from broker.base import BrokerMessage
from core.errors import DecodeError
from core.types import FlushPolicy, Record
from reflect.record_kind import RecordKind
from reflect.reflector import ReflectedSchema


@dataclass(frozen=True)
class ColumnBatch:
    """Columns of one flush.

    Attributes:
        kind: Record kind name.
        schema: Reflected schema the columns follow.
        columns: Column values keyed by field name, in schema order.
        row_count: Number of rows in every column.
        positions: Broker offsets covered, as partition -> (first, last).
        rejected_count: Records covered by ``positions`` that failed to decode.
    """

    kind: str
    schema: ReflectedSchema
    columns: dict[str, list[Any]]
    row_count: int
    positions: dict[int, tuple[int, int]]
    rejected_count: int = 0

    @property
    def commit_positions(self) -> dict[int, int]:
        """Last covered offset per partition."""
        return {partition: last for partition, (_, last) in self.positions.items()}


class ColumnBatchBuilder:
    """Accumulate decoded records into column buffers.

    Args:
        kind: Kind whose codec decodes payloads.
        schema: Reflected schema fixing the column order.
        policy: Size-or-age flush thresholds.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        kind: RecordKind,
        schema: ReflectedSchema,
        policy: FlushPolicy,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._kind = kind
        self._schema = schema
        self._policy = policy
        self._clock = clock
        self._reset()

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def pending(self) -> bool:
        """Whether rows or uncommitted positions are buffered."""
        return self._row_count > 0 or bool(self._positions)

    def append(
        self,
        record: Record | BrokerMessage,
        position: tuple[int, int] | None = None,
    ) -> None:
        """Decode one record and append its fields as a row.

        Args:
            record: Record or broker message carrying the payload.
            position: ``(partition, offset)``; taken from broker messages
                when omitted.

        Raises:
            DecodeError: If the payload does not decode into exactly the
                schema's fields. Its position is still tracked.
        """
        if position is None and isinstance(record, BrokerMessage):
            position = (record.partition, record.offset)
        if self._started_at is None:
            self._started_at = self._clock()
        if position is not None:
            self._track(*position)
        try:
            fields = self._kind.decode(record.payload)
            self._check_keys(fields)
        except DecodeError:
            self._rejected_count += 1
            raise
        for name in self._schema.field_names:
            self._columns[name].append(fields[name])
        self._row_count += 1

    def should_flush(self) -> bool:
        """Return whether the size or age threshold is reached."""
        if self._row_count >= self._policy.max_rows:
            return True
        return self.seconds_until_flush() == 0.0

    def seconds_until_flush(self) -> float | None:
        """Seconds left before the age threshold, or ``None`` when idle."""
        if self._started_at is None:
            return None
        elapsed = self._clock() - self._started_at
        return max(0.0, self._policy.max_age_seconds - elapsed)

    def take_batch(self) -> ColumnBatch:
        """Return the buffered batch and start an empty one."""
        batch = ColumnBatch(
            kind=self._kind.name,
            schema=self._schema,
            columns=self._columns,
            row_count=self._row_count,
            positions=self._positions,
            rejected_count=self._rejected_count,
        )
        self._reset()
        return batch

    def _reset(self) -> None:
        self._columns: dict[str, list[Any]] = {name: [] for name in self._schema.field_names}
        self._positions: dict[int, tuple[int, int]] = {}
        self._row_count = 0
        self._rejected_count = 0
        self._started_at: float | None = None

    def _track(self, partition: int, offset: int) -> None:
        first, last = self._positions.get(partition, (offset, offset))
        self._positions[partition] = (min(first, offset), max(last, offset))

    def _check_keys(self, fields: Any) -> None:
        names = set(self._schema.field_names)
        keys = set(fields)
        if keys != names:
            raise DecodeError(
                f"Decoded record of kind '{self._kind.name}' does not match its schema: "
                f"missing={sorted(names - keys)} unknown={sorted(keys - names)}."
            )
