"""Unit tests for core config parsing."""

from __future__ import annotations

import pytest

from core.config import OpenSensorConfig
from core.constants import DEFAULT_CHANNEL_CAPACITY, DEFAULT_FLUSH_ROWS
from core.errors import OpenSensorConfigError


def test_from_env_uses_defaults_when_unset() -> None:
    """Config should fall back to documented defaults."""
    config = OpenSensorConfig.from_env()

    assert config.flush_rows == DEFAULT_FLUSH_ROWS
    assert config.channel_capacity == DEFAULT_CHANNEL_CAPACITY
    assert config.broker_addresses == () and config.s3_region is None


def test_from_env_splits_broker_addresses(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should split and trim the comma-separated broker list."""
    monkeypatch.setenv("OPENSENSOR_BROKERS", " redpanda-0:9092, ,redpanda-1:9092 ")

    config = OpenSensorConfig.from_env()

    assert config.broker_addresses == ("redpanda-0:9092", "redpanda-1:9092")


def test_from_env_reads_archive_and_s3_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should expose archive URI and S3 endpoint settings."""
    monkeypatch.setenv("OPENSENSOR_ARCHIVE_URI", "s3://archive/site-a")
    monkeypatch.setenv("OPENSENSOR_S3_ENDPOINT", "http://minio:9000")
    monkeypatch.setenv("OPENSENSOR_S3_ACCESS_KEY", "access")

    config = OpenSensorConfig.from_env()

    assert config.archive_uri == "s3://archive/site-a"
    assert config.s3_endpoint == "http://minio:9000" and config.s3_access_key == "access"


def test_from_env_parses_flush_thresholds(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should parse numeric flush thresholds."""
    monkeypatch.setenv("OPENSENSOR_FLUSH_ROWS", "250")
    monkeypatch.setenv("OPENSENSOR_FLUSH_SECONDS", "2.5")

    config = OpenSensorConfig.from_env()

    assert config.flush_rows == 250 and config.flush_seconds == 2.5


def test_from_env_raises_for_non_numeric_rows(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should fail for a non-numeric flush row threshold."""
    monkeypatch.setenv("OPENSENSOR_FLUSH_ROWS", "many")

    with pytest.raises(OpenSensorConfigError, match="OPENSENSOR_FLUSH_ROWS"):
        OpenSensorConfig.from_env()


def test_from_env_raises_for_non_positive_capacity(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should reject a zero channel capacity."""
    monkeypatch.setenv("OPENSENSOR_CHANNEL_CAPACITY", "0")

    with pytest.raises(OpenSensorConfigError):
        OpenSensorConfig.from_env()


def test_from_env_raises_for_negative_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should reject a negative retry delay."""
    monkeypatch.setenv("OPENSENSOR_RETRY_BASE_DELAY", "-1")

    with pytest.raises(OpenSensorConfigError):
        OpenSensorConfig.from_env()
