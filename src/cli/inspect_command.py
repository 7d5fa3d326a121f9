"""CLI command for archive file inspection."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from archive.parquet_codec import read_archive
from core.errors import OpenSensorConfigError


def add_inspect_command(subparsers: Any) -> None:
    """Register inspect subcommand."""
    parser = subparsers.add_parser("inspect", help="Print row count and columns of an archive")
    parser.add_argument("archive", help="Parquet archive file")
    parser.add_argument("--head", type=int, default=0, help="Also print the first N rows")


def run_inspect_command(args: argparse.Namespace) -> int:
    """Print archive metadata as key=value rows, then one row per column."""
    archive_path = Path(args.archive).expanduser()
    try:
        data = archive_path.read_bytes()
    except OSError as error:
        raise OpenSensorConfigError(
            f"Failed to read archive at {archive_path}: {error}. Pass a .parquet file path."
        ) from error
    table = read_archive(data)
    metadata = table.schema.metadata or {}
    kind = metadata.get(b"opensensor.kind", b"-").decode("utf-8")
    print(f"kind={kind}")
    print(f"rows={table.num_rows}")
    for field in table.schema:
        print(f"{field.name}\t{field.type}")
    for row in table.slice(0, max(args.head, 0)).to_pylist():
        print(row)
    return 0
