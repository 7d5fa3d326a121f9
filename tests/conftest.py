"""Pytest configuration for repository test runs."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Put src and the shared test helpers on sys.path."""
    tests_root = Path(__file__).resolve().parent
    for path in (tests_root.parent / "src", tests_root):
        if str(path) not in sys.path:
            sys.path.insert(0, str(path))


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep OPENSENSOR_* variables from the host out of every test."""
    for name in (
        "OPENSENSOR_BROKERS",
        "OPENSENSOR_S3_ENDPOINT",
        "OPENSENSOR_S3_REGION",
        "OPENSENSOR_S3_ACCESS_KEY",
        "OPENSENSOR_S3_SECRET_KEY",
        "OPENSENSOR_FLUSH_ROWS",
        "OPENSENSOR_FLUSH_SECONDS",
        "OPENSENSOR_CHANNEL_CAPACITY",
        "OPENSENSOR_FORWARD_ATTEMPTS",
        "OPENSENSOR_UPLOAD_ATTEMPTS",
        "OPENSENSOR_RETRY_BASE_DELAY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENSENSOR_ARCHIVE_URI", str(tmp_path / "archive"))
