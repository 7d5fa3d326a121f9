"""Object keys for archive files.

Keys have the form ``[<prefix>/]<kind>/<flush_sequence>/<row_range>.parquet``.
The row range encodes the broker positions the file covers, so an archive
re-written after a redelivery lands on the same row range. Flush sequences
continue from the archives already stored, so key order follows archive
order across runs.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from core.constants import ARCHIVE_FILE_EXTENSION


def row_range(positions: Mapping[int, tuple[int, int]]) -> str:
    """Format broker positions as ``p<partition>-<first>-<last>`` segments.

    Partitions are joined with ``_`` in ascending order.
    """
    return "_".join(
        f"p{partition}-{first}-{last}"
        for partition, (first, last) in sorted(positions.items())
    )


def archive_key(
    kind: str,
    flush_sequence: int,
    positions: Mapping[int, tuple[int, int]],
    prefix: str = "",
) -> str:
    """Build the object key of one archive file.

    Args:
        kind: Record kind name.
        flush_sequence: Per-kind flush counter.
        positions: Broker positions covered by the file.
        prefix: Optional leading key prefix.

    Returns:
        Object key.
    """
    name = f"{flush_sequence:08d}/{row_range(positions)}{ARCHIVE_FILE_EXTENSION}"
    return f"{kind_key_prefix(kind, prefix)}{name}"


def kind_key_prefix(kind: str, prefix: str = "") -> str:
    """Return the key prefix shared by every archive file of a kind."""
    cleaned_prefix = prefix.strip("/")
    return f"{cleaned_prefix}/{kind}/" if cleaned_prefix else f"{kind}/"


def next_flush_sequence(keys: Iterable[str], kind: str, prefix: str = "") -> int:
    """Return the flush sequence that follows the archives already stored.

    Args:
        keys: Existing object keys; keys of other kinds are ignored.
        kind: Record kind name.
        prefix: Optional leading key prefix.

    Returns:
        One past the highest stored flush sequence, or 0 when there is none.
    """
    kind_prefix = kind_key_prefix(kind, prefix)
    next_sequence = 0
    for key in keys:
        if not key.startswith(kind_prefix):
            continue
        segment = key[len(kind_prefix) :].split("/", 1)[0]
        if segment.isdigit():
            next_sequence = max(next_sequence, int(segment) + 1)
    return next_sequence
