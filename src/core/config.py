"""Runtime configuration model for OpenSensor.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os

from core.constants import (
    DEFAULT_ARCHIVE_URI,
    DEFAULT_CHANNEL_CAPACITY,
    DEFAULT_FLUSH_ROWS,
    DEFAULT_FLUSH_SECONDS,
    DEFAULT_FORWARD_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_UPLOAD_ATTEMPTS,
)
from core.errors import OpenSensorConfigError


@dataclass(frozen=True)
class OpenSensorConfig:
    """Validated runtime configuration.

    Attributes:
        broker_addresses: Kafka-style ``host:port`` bootstrap addresses.
        archive_uri: ``s3://bucket/prefix`` or a local directory for archives.
        s3_endpoint: Optional S3-compatible endpoint URL (e.g. MinIO).
        s3_region: Optional region passed to the S3 client.
        s3_access_key: Optional S3 access key.
        s3_secret_key: Optional S3 secret key.
        flush_rows: Default row threshold per archive batch.
        flush_seconds: Default age threshold per archive batch.
        channel_capacity: Default bounded channel capacity per sensor.
        forward_attempts: Broker write attempts before a forwarding failure.
        upload_attempts: Archive upload attempts before an archive failure.
        retry_base_delay_seconds: First backoff delay for both retry loops.
    """

    broker_addresses: tuple[str, ...]
    archive_uri: str
    s3_endpoint: str | None
    s3_region: str | None
    s3_access_key: str | None
    s3_secret_key: str | None
    flush_rows: int
    flush_seconds: float
    channel_capacity: int
    forward_attempts: int
    upload_attempts: int
    retry_base_delay_seconds: float

    @classmethod
    def from_env(cls) -> "OpenSensorConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            OpenSensorConfigError: If environment values are invalid.
        """
        return cls(
            broker_addresses=_parse_addresses(os.getenv("OPENSENSOR_BROKERS", "")),
            archive_uri=os.getenv("OPENSENSOR_ARCHIVE_URI", DEFAULT_ARCHIVE_URI),
            s3_endpoint=os.getenv("OPENSENSOR_S3_ENDPOINT"),
            s3_region=os.getenv("OPENSENSOR_S3_REGION"),
            s3_access_key=os.getenv("OPENSENSOR_S3_ACCESS_KEY"),
            s3_secret_key=os.getenv("OPENSENSOR_S3_SECRET_KEY"),
            flush_rows=_parse_positive_int("OPENSENSOR_FLUSH_ROWS", DEFAULT_FLUSH_ROWS),
            flush_seconds=_parse_positive_float("OPENSENSOR_FLUSH_SECONDS", DEFAULT_FLUSH_SECONDS),
            channel_capacity=_parse_positive_int(
                "OPENSENSOR_CHANNEL_CAPACITY", DEFAULT_CHANNEL_CAPACITY
            ),
            forward_attempts=_parse_positive_int(
                "OPENSENSOR_FORWARD_ATTEMPTS", DEFAULT_FORWARD_ATTEMPTS
            ),
            upload_attempts=_parse_positive_int(
                "OPENSENSOR_UPLOAD_ATTEMPTS", DEFAULT_UPLOAD_ATTEMPTS
            ),
            retry_base_delay_seconds=_parse_positive_float(
                "OPENSENSOR_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY_SECONDS
            ),
        )


def _parse_addresses(raw_value: str) -> tuple[str, ...]:
    """Split a comma-separated broker address list.

    Args:
        raw_value: Raw string from environment.

    Returns:
        Non-empty address entries in declared order.
    """
    return tuple(part.strip() for part in raw_value.split(",") if part.strip())


def _parse_positive_int(variable: str, default: int) -> int:
    """Parse a strictly positive integer environment value.

    Args:
        variable: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed integer.

    Raises:
        OpenSensorConfigError: If value is not a positive integer.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except ValueError as error:
        raise OpenSensorConfigError(
            f"Invalid {variable} value: expected integer, got '{raw_value}'. "
            f"Set {variable} to a positive whole number."
        ) from error
    if value <= 0:
        raise OpenSensorConfigError(
            f"Invalid {variable} value: expected a positive integer, got {value}."
        )
    return value


def _parse_positive_float(variable: str, default: float) -> float:
    """Parse a strictly positive float environment value.

    Args:
        variable: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed float.

    Raises:
        OpenSensorConfigError: If value is not a positive number.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        value = float(raw_value)
    except ValueError as error:
        raise OpenSensorConfigError(
            f"Invalid {variable} value: expected number, got '{raw_value}'. "
            f"Set {variable} to a positive number of seconds."
        ) from error
    if value <= 0:
        raise OpenSensorConfigError(
            f"Invalid {variable} value: expected a positive number, got {value}."
        )
    return value
