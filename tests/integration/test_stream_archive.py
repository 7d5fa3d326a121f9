"""Integration test for streaming records and archiving them to Parquet."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from archive.archiver import ArchiveTarget
from archive.object_store import LocalObjectStore
from archive.parquet_codec import archive_to_columns
from broker.memory import InMemoryBroker
from core.config import OpenSensorConfig
from core.types import FlushPolicy
from pipeline.client import OpenSensorClient
from produce.transducer import SampleTransducer
from produce.validation import range_rule
from schema_fixtures import READING_TOPIC, reading_schema_blob


def _reading(sensor_id: str, index: int) -> dict[str, Any]:
    return {
        "sensor_id": sensor_id,
        "position": {"x": float(index), "y": 0.0, "z": -1.0},
        "site": {"name": "ridge", "level": index},
        "samples": [index * 0.5],
        "tags": ["north"] if index % 2 else [],
        "battery": 90 - index if index < 5 else 250,
    }


def test_streamed_readings_land_in_parquet_archives(tmp_path: Path) -> None:
    """Accepted readings should be archived exactly once across ordered files."""
    broker = InMemoryBroker()
    store = LocalObjectStore(tmp_path / "lake")
    client = OpenSensorClient(OpenSensorConfig.from_env(), broker=broker, store=store)
    kind = client.record_kind(
        "reading",
        READING_TOPIC,
        reading_schema_blob(),
        validation_rules=[range_rule("battery", minimum=0, maximum=100)],
    )
    transducers = [
        SampleTransducer(kind, sensor_id, [_reading(sensor_id, index) for index in range(6)])
        for sensor_id in ("mast-1", "mast-2")
    ]

    async def scenario():  # type: ignore[no-untyped-def]
        stats = await client.stream(kind, transducers, channel_capacity=2)
        reports = await client.archive(
            [ArchiveTarget(kind, FlushPolicy(max_rows=4))],
            stop_when_idle=True,
            poll_timeout_seconds=0.01,
        )
        return stats, reports

    stats, reports = asyncio.run(scenario())

    report = reports["reading"]
    assert stats.forwarded == 10 and stats.rejections == {"battery_out_of_range": 2}
    assert report.error is None and report.rows_archived == 10
    assert [key.split("/")[1] for key in report.files] == ["00000000", "00000001", "00000002"]
    assert store.list_keys() == sorted(report.files)

    rows: list[tuple[str, int]] = []
    for key in report.files:
        columns = archive_to_columns((tmp_path / "lake" / key).read_bytes())
        rows.extend(
            (sensor_id, site["level"])
            for sensor_id, site in zip(columns["sensor_id"], columns["site"])
        )
    for sensor_id in ("mast-1", "mast-2"):
        assert [level for owner, level in rows if owner == sensor_id] == list(range(5))
