"""Parquet encoding of column batches.

Archive files are zstd-compressed Parquet whose columns are exactly the
reflected schema of their kind.
"""

from __future__ import annotations

from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from archive.batch_builder import ColumnBatch
from core.constants import ARCHIVE_COMPRESSION
from core.errors import DecodeError


def encode_batch(batch: ColumnBatch) -> bytes:
    """Encode a batch as a Parquet file.

    Args:
        batch: Flushed column batch.

    Returns:
        Parquet file bytes.

    Raises:
        DecodeError: If a column value does not fit its Arrow type.
    """
    schema = batch.schema.to_arrow()
    try:
        table = pa.Table.from_pydict(batch.columns, schema=schema)
    except (pa.ArrowInvalid, pa.ArrowTypeError, OverflowError) as error:
        raise DecodeError(
            f"Batch of kind '{batch.kind}' does not fit its columnar schema: {error}"
        ) from error
    sink = pa.BufferOutputStream()
    pq.write_table(table, sink, compression=ARCHIVE_COMPRESSION)
    return sink.getvalue().to_pybytes()


def read_archive(data: bytes) -> pa.Table:
    """Read Parquet archive bytes back into an Arrow table."""
    return pq.read_table(pa.BufferReader(data))


def archive_to_columns(data: bytes) -> dict[str, list[Any]]:
    """Read Parquet archive bytes into plain column lists."""
    return read_archive(data).to_pydict()
