"""S3 URI parsing helpers.

This module centralizes S3 URI parsing for the archive destination.
It keeps URI validation behavior consistent across CLI and SDK paths.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import OpenSensorConfigError


@dataclass(frozen=True)
class S3Location:
    """Parsed S3 location model."""

    bucket: str
    prefix: str


def is_s3_uri(uri: str) -> bool:
    """Return whether a destination URI targets S3."""
    return uri.startswith("s3://")


def parse_s3_uri(uri: str) -> S3Location:
    """Parse and validate an S3 URI.

    Args:
        uri: URI in format ``s3://bucket`` or ``s3://bucket/prefix``.

    Returns:
        Parsed bucket and (possibly empty) prefix pair.

    Raises:
        OpenSensorConfigError: If the URI has no bucket.
    """
    stripped_uri = uri.removeprefix("s3://")
    bucket, _, prefix = stripped_uri.partition("/")
    if not is_s3_uri(uri) or not bucket:
        raise OpenSensorConfigError(
            f"Invalid S3 URI '{uri}': expected s3://bucket[/prefix]. "
            "Provide at least a bucket name."
        )
    return S3Location(bucket=bucket, prefix=prefix.strip("/"))
