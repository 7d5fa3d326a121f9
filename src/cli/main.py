"""OpenSensor CLI entry points.
This module exposes schema reflection, archiving, and archive inspection.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from cli.inspect_command import add_inspect_command, run_inspect_command
from core.config import OpenSensorConfig
from core.errors import OpenSensorConfigError
from core.pipeline_spec import load_pipeline_spec
from pipeline.client import OpenSensorClient
from reflect.reflector import SchemaReflector


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="opensensor", description="OpenSensor CLI")
    parser.add_argument("--archive-uri", help="Override OPENSENSOR_ARCHIVE_URI for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_reflect_command(subparsers)
    _add_archive_command(subparsers)
    add_inspect_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the OpenSensor CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "reflect":
        return _run_reflect_command(args)
    if args.command == "archive":
        return _run_archive_command(_build_client(args.archive_uri), args)
    if args.command == "inspect":
        return run_inspect_command(args)
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(archive_uri: str | None) -> OpenSensorClient:
    """Build SDK client with optional archive-URI override.

    Args:
        archive_uri: Optional override destination.

    Returns:
        Configured SDK client.
    """
    config = OpenSensorConfig.from_env()
    if archive_uri:
        config = replace(config, archive_uri=archive_uri)
    return OpenSensorClient(config)


def _run_reflect_command(args: argparse.Namespace) -> int:
    """Handle reflect command.

    Args:
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    schema_path = Path(args.schema).expanduser()
    try:
        blob = schema_path.read_bytes()
    except OSError as error:
        raise OpenSensorConfigError(
            f"Failed to read schema at {schema_path}: {error}. Pass a .bfbs file path."
        ) from error
    kind_name = args.kind or schema_path.stem
    schema = SchemaReflector().derive(kind_name, blob)
    print(f"kind={schema.kind}")
    print(f"root_table={schema.object_name}")
    print(f"file_identifier={schema.file_identifier or '-'}")
    for field in schema.fields:
        nullable = "nullable" if field.nullable else "not-null"
        print(f"{field.field_id}\t{field.name}\t{field.column.to_arrow()}\t{nullable}")
    return 0


def _run_archive_command(client: OpenSensorClient, args: argparse.Namespace) -> int:
    """Handle archive command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code; 1 when any kind reported an error.
    """
    spec = load_pipeline_spec(args.pipeline)
    targets = client.archive_targets(spec)
    key_prefix = args.key_prefix if args.key_prefix is not None else spec.defaults.key_prefix
    reports = asyncio.run(_archive_until_interrupted(client, targets, key_prefix, args.once))
    failed = False
    for name in sorted(reports):
        report = reports[name]
        failed = failed or report.error is not None
        print(
            f"{report.kind}\t"
            f"files={len(report.files)}\t"
            f"rows_archived={report.rows_archived}\t"
            f"rows_rejected={report.rows_rejected}\t"
            f"error={report.error or '-'}"
        )
    return 1 if failed else 0


async def _archive_until_interrupted(
    client: OpenSensorClient,
    targets: Sequence[Any],
    key_prefix: str,
    once: bool,
) -> Any:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)
    try:
        return await client.archive(
            targets,
            stop_event=stop_event,
            stop_when_idle=once,
            key_prefix=key_prefix,
        )
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)


def _add_reflect_command(subparsers: Any) -> None:
    """Register reflect subcommand."""
    parser = subparsers.add_parser("reflect", help="Print the columns derived from a .bfbs schema")
    parser.add_argument("schema", help="Binary schema file (.bfbs)")
    parser.add_argument("--kind", help="Kind name; defaults to the schema file stem")


def _add_archive_command(subparsers: Any) -> None:
    """Register archive subcommand."""
    parser = subparsers.add_parser(
        "archive",
        help="Archive the kinds of a pipeline file until interrupted",
    )
    parser.add_argument("--pipeline", required=True, help="YAML pipeline file")
    parser.add_argument("--key-prefix", help="Archive key prefix; overrides the pipeline default")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Stop each kind once its topic has no new messages",
    )
