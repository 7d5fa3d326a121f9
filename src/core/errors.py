"""OpenSensor exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Per-record errors (validation, decode) stay local to the stream,
per-kind errors (unsupported schema) stop one kind, and transport
errors (forwarding, upload) are retried before they surface.
"""

from __future__ import annotations


class OpenSensorError(Exception):
    """Base exception for all OpenSensor failures."""


class OpenSensorConfigError(OpenSensorError):
    """Raised for invalid runtime or pipeline configuration."""


class OpenSensorDependencyError(OpenSensorError):
    """Raised when an optional runtime dependency is missing."""


class SourceError(OpenSensorError):
    """Raised by a transducer when its data source fails.

    Attributes:
        retryable: Whether the owner may restart the transducer.
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ValidationError(OpenSensorError):
    """Raised when a record fails one of its kind's validation rules.

    Attributes:
        reason: Short rejection reason used as a counter key.
    """

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


class ForwardingFailure(OpenSensorError):
    """Raised when a record could not be written to the broker after retries.

    Attributes:
        producer_id: Producer of the record that failed.
        sequence: Sequence number of the record that failed.
        attempts: Number of attempts made.
    """

    def __init__(self, message: str, producer_id: str, sequence: int, attempts: int) -> None:
        super().__init__(message)
        self.producer_id = producer_id
        self.sequence = sequence
        self.attempts = attempts


class ChannelClosedError(OpenSensorError):
    """Raised when a closed channel sender is used again."""


class SchemaBlobError(OpenSensorError):
    """Raised when a binary schema blob cannot be parsed."""


class UnsupportedTypeError(OpenSensorError):
    """Raised when a wire field type has no columnar mapping."""


class DecodeError(OpenSensorError):
    """Raised when a record payload does not match its kind's schema."""


class EncodeError(OpenSensorError):
    """Raised when field values cannot be encoded with a kind's schema."""


class BrokerError(OpenSensorError):
    """Raised for broker read, write, and commit failures."""


class ArchiveFailure(OpenSensorError):
    """Raised when an archive file could not be stored after retries.

    Attributes:
        key: Object key of the archive file that failed.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key
