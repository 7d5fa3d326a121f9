"""Shared typed models.

This module defines immutable data models used by the producer,
broker, and archive layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from core.constants import (
    DEFAULT_FLUSH_ROWS,
    DEFAULT_FLUSH_SECONDS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_RETRY_MAX_DELAY_SECONDS,
    NANOS_PER_SECOND,
)
from core.errors import OpenSensorConfigError


@dataclass(frozen=True)
class Record:
    """One self-describing binary measurement.

    Attributes:
        kind: Record kind name, fixed by the kind's schema.
        producer_id: Identifier of the transducer that produced it.
        sequence: Strictly increasing per-producer sequence number.
        timestamp_ns: Measurement time in ns since Unix epoch (UTC).
        payload: Immutable wire payload bytes.
    """

    kind: str
    producer_id: str
    sequence: int
    timestamp_ns: int
    payload: bytes

    @property
    def key(self) -> str:
        """Broker message key that pins one producer to one partition."""
        return f"{self.producer_id}:{self.sequence}"

    @property
    def measured_at(self) -> datetime:
        """Measurement time as an aware UTC datetime."""
        return nanos_to_datetime(self.timestamp_ns)


@dataclass(frozen=True)
class ValidationRule:
    """Named predicate over a record and its decoded fields.

    Attributes:
        name: Rule name, used as the rejection reason.
        check: Returns True when the record is acceptable.
    """

    name: str
    check: Callable[[Record, Mapping[str, Any]], bool]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff policy.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_seconds: Delay after the first failed attempt.
        max_delay_seconds: Upper bound for any single delay.
    """

    max_attempts: int
    base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_RETRY_MAX_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise OpenSensorConfigError(
                f"Invalid retry policy: max_attempts must be >= 1, got {self.max_attempts}."
            )

    def delay_for(self, failed_attempt: int) -> float:
        """Return the backoff delay after a one-based failed attempt."""
        delay = self.base_delay_seconds * (2 ** (failed_attempt - 1))
        return min(delay, self.max_delay_seconds)


@dataclass(frozen=True)
class FlushPolicy:
    """Size-or-time flush thresholds for one record kind.

    Attributes:
        max_rows: Row count that triggers a flush.
        max_age_seconds: Age of the oldest buffered row that triggers a flush.
    """

    max_rows: int = DEFAULT_FLUSH_ROWS
    max_age_seconds: float = DEFAULT_FLUSH_SECONDS

    def __post_init__(self) -> None:
        if self.max_rows < 1:
            raise OpenSensorConfigError(
                f"Invalid flush policy: max_rows must be >= 1, got {self.max_rows}."
            )
        if self.max_age_seconds <= 0:
            raise OpenSensorConfigError(
                "Invalid flush policy: max_age_seconds must be positive, "
                f"got {self.max_age_seconds}."
            )


def nanos_to_datetime(unix_ns: int) -> datetime:
    """Convert nanoseconds since the Unix epoch into a UTC datetime.

    Args:
        unix_ns: Nanoseconds since epoch.

    Returns:
        Aware datetime truncated to microsecond precision.
    """
    seconds, remainder_ns = divmod(unix_ns, NANOS_PER_SECOND)
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.replace(microsecond=remainder_ns // 1000)
