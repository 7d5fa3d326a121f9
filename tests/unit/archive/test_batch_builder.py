"""Unit tests for the column batch builder."""

from __future__ import annotations

from typing import Any

import pytest

from archive.batch_builder import ColumnBatch, ColumnBatchBuilder
from broker.base import BrokerMessage
from core.errors import DecodeError
from core.types import FlushPolicy
from reflect.record_kind import ReflectedRecordKind
from schema_fixtures import SIMPLE_TOPIC, simple_fields, simple_kind, simple_record


class _ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _ExtraFieldKind:
    """Kind whose decoder returns a field the schema does not declare."""

    def __init__(self) -> None:
        self._inner = simple_kind()

    @property
    def name(self) -> str:
        return self._inner.name

    def decode(self, payload: bytes) -> dict[str, Any]:
        return {**self._inner.decode(payload), "humidity": 40}


def _builder(
    max_rows: int = 100, max_age_seconds: float = 300.0, clock: Any = None
) -> tuple[ReflectedRecordKind, ColumnBatchBuilder]:
    kind = simple_kind()
    policy = FlushPolicy(max_rows=max_rows, max_age_seconds=max_age_seconds)
    return kind, ColumnBatchBuilder(kind, kind.schema, policy, clock or _ManualClock())


def _message(kind: Any, offset: int, payload: bytes | None = None) -> BrokerMessage:
    return BrokerMessage(
        topic=SIMPLE_TOPIC,
        partition=0,
        offset=offset,
        payload=kind.encode(simple_fields(offset)) if payload is None else payload,
    )


def test_row_threshold_yields_two_flushes_and_fifty_pending_rows() -> None:
    """250 appends with a 100-row threshold should flush twice and keep 50 rows."""
    kind, builder = _builder(max_rows=100)
    batches: list[ColumnBatch] = []

    for offset in range(250):
        builder.append(_message(kind, offset))
        if builder.should_flush():
            batches.append(builder.take_batch())

    assert [batch.row_count for batch in batches] == [100, 100]
    assert builder.row_count == 50
    assert batches[1].positions == {0: (100, 199)}


def test_should_flush_turns_true_exactly_at_threshold() -> None:
    """Flush predicate should flip when the row threshold is reached."""
    kind, builder = _builder(max_rows=3)

    states = []
    for offset in range(3):
        builder.append(_message(kind, offset))
        states.append(builder.should_flush())

    assert states == [False, False, True]


def test_take_batch_resets_builder() -> None:
    """Taking a batch should leave an empty builder behind."""
    kind, builder = _builder(max_rows=2)
    builder.append(_message(kind, 0))
    builder.append(_message(kind, 1))

    batch = builder.take_batch()

    assert batch.row_count == 2 and batch.columns["count"] == [0, 1]
    assert builder.row_count == 0 and not builder.pending and not builder.should_flush()


def test_batches_never_share_rows() -> None:
    """Consecutive batches should cover disjoint, contiguous offsets."""
    kind, builder = _builder(max_rows=4)
    batches = []
    for offset in range(10):
        builder.append(_message(kind, offset))
        if builder.should_flush():
            batches.append(builder.take_batch())
    batches.append(builder.take_batch())

    counts = [count for batch in batches for count in batch.columns["count"]]
    assert counts == list(range(10))


def test_age_threshold_triggers_flush() -> None:
    """Flush predicate should turn true once the oldest row is old enough."""
    clock = _ManualClock()
    kind, builder = _builder(max_rows=1000, max_age_seconds=5.0, clock=clock)
    clock.now = 10.0
    builder.append(_message(kind, 0))

    clock.now = 14.5
    before = (builder.should_flush(), builder.seconds_until_flush())
    clock.now = 15.0

    assert before == (False, 0.5) and builder.should_flush()


def test_seconds_until_flush_is_none_when_empty() -> None:
    """Idle builders should not impose a flush deadline."""
    _, builder = _builder()

    assert builder.seconds_until_flush() is None


def test_columns_follow_schema_order_and_stay_aligned() -> None:
    """Every column should hold one value per row in schema order."""
    kind, builder = _builder()
    for sequence in range(3):
        builder.append(simple_record(kind, sequence), position=(0, sequence))

    batch = builder.take_batch()

    assert list(batch.columns) == ["value", "count", "label", "flags"]
    assert {len(values) for values in batch.columns.values()} == {3}
    assert batch.columns["label"] == ["sample-0", "sample-1", "sample-2"]


def test_undecodable_record_is_rejected_but_tracked() -> None:
    """A bad payload should raise, keep columns aligned, and still move the offset."""
    kind, builder = _builder()
    builder.append(_message(kind, 0))

    with pytest.raises(DecodeError):
        builder.append(_message(kind, 1, payload=b"\xff" * 16))
    builder.append(_message(kind, 2))
    batch = builder.take_batch()

    assert batch.row_count == 2 and batch.rejected_count == 1
    assert batch.commit_positions == {0: 2}
    assert {len(values) for values in batch.columns.values()} == {2}


def test_unexpected_decoded_keys_raise_decode_error() -> None:
    """Decoded rows must match the schema fields exactly."""
    kind = _ExtraFieldKind()
    schema = simple_kind().schema
    builder = ColumnBatchBuilder(kind, schema, FlushPolicy())  # type: ignore[arg-type]
    payload = simple_kind().encode(simple_fields(0))

    with pytest.raises(DecodeError, match="humidity"):
        builder.append(BrokerMessage(SIMPLE_TOPIC, 0, 0, payload))

    assert builder.row_count == 0
