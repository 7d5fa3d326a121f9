"""Core constants used across OpenSensor modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

DEFAULT_CHANNEL_CAPACITY = 1024
DEFAULT_FLUSH_ROWS = 10_000
DEFAULT_FLUSH_SECONDS = 300.0
DEFAULT_FORWARD_ATTEMPTS = 5
DEFAULT_UPLOAD_ATTEMPTS = 5
DEFAULT_RETRY_BASE_DELAY_SECONDS = 0.1
DEFAULT_RETRY_MAX_DELAY_SECONDS = 5.0
DEFAULT_POLL_MAX_RECORDS = 500
DEFAULT_POLL_TIMEOUT_SECONDS = 1.0
DEFAULT_ARCHIVE_URI = ".opensensor/archive"
ARCHIVER_GROUP_SUFFIX = "-archiver"
ARCHIVE_FILE_EXTENSION = ".parquet"
ARCHIVE_COMPRESSION = "zstd"
ARCHIVE_CONTENT_TYPE = "application/vnd.apache.parquet"
SCHEMA_FILE_IDENTIFIER = b"BFBS"
RAW_TOPIC_PREFIX = "raw"
DERIVED_TOPIC_PREFIX = "derived"
NANOS_PER_SECOND = 1_000_000_000
