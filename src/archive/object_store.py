"""Object storage for archive files.

This module encapsulates boto3 client creation for S3-compatible stores
(AWS S3, MinIO, Ceph) and a local filesystem store. A ``put_object`` call
is durable once it returns.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from core.config import OpenSensorConfig
from core.constants import ARCHIVE_CONTENT_TYPE
from core.errors import ArchiveFailure, OpenSensorDependencyError
from core.s3_uri import is_s3_uri, parse_s3_uri


class ObjectStore(Protocol):
    """Destination of archive files."""

    def put_object(self, key: str, body: bytes) -> None: ...

    def describe(self, key: str) -> str: ...

    def list_keys(self, prefix: str = "") -> list[str]: ...


def create_s3_client(config: OpenSensorConfig) -> Any:
    """Create a boto3 S3 client for archive uploads.

    Args:
        config: Runtime config with endpoint, region, and credentials.

    Returns:
        Boto3 S3 client.

    Raises:
        OpenSensorDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise OpenSensorDependencyError(
            "S3 archiving requires boto3, but it is not installed. "
            "Install boto3 to archive to s3:// destinations."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    if config.s3_access_key and config.s3_secret_key:
        session_kwargs["aws_access_key_id"] = config.s3_access_key
        session_kwargs["aws_secret_access_key"] = config.s3_secret_key
    session = boto3.session.Session(**session_kwargs)
    if config.s3_endpoint:
        return session.client("s3", endpoint_url=config.s3_endpoint)
    return session.client("s3")


def create_object_store(config: OpenSensorConfig, s3_client: Any = None) -> ObjectStore:
    """Build the object store named by ``config.archive_uri``.

    Args:
        config: Runtime config.
        s3_client: Prebuilt S3 client; created from config when omitted.

    Returns:
        S3 store for ``s3://`` URIs, local store otherwise.
    """
    if is_s3_uri(config.archive_uri):
        location = parse_s3_uri(config.archive_uri)
        client = s3_client if s3_client is not None else create_s3_client(config)
        return S3ObjectStore(client, location.bucket, location.prefix)
    return LocalObjectStore(Path(config.archive_uri))


class S3ObjectStore:
    """Archive store on an S3-compatible bucket.

    Args:
        s3_client: Boto3 S3 client.
        bucket: Destination bucket.
        prefix: Key prefix prepended to every object key.
    """

    def __init__(self, s3_client: Any, bucket: str, prefix: str = "") -> None:
        self._client = s3_client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    def put_object(self, key: str, body: bytes) -> None:
        """Upload one archive file.

        Raises:
            ArchiveFailure: If the upload fails.
        """
        object_key = self._object_key(key)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=object_key,
                Body=body,
                ContentType=ARCHIVE_CONTENT_TYPE,
            )
        except Exception as error:
            raise ArchiveFailure(
                f"Failed to upload archive to s3://{self._bucket}/{object_key}: {error}. "
                "Check the S3 endpoint, credentials, and bucket.",
                key=key,
            ) from error

    def describe(self, key: str) -> str:
        return f"s3://{self._bucket}/{self._object_key(key)}"

    def list_keys(self, prefix: str = "") -> list[str]:
        """Return stored keys starting with ``prefix``, sorted.

        Raises:
            ArchiveFailure: If the bucket cannot be listed.
        """
        object_prefix = self._object_key(prefix)
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=object_prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
        except Exception as error:
            raise ArchiveFailure(
                f"Failed to list s3://{self._bucket}/{object_prefix}: {error}. "
                "Check the S3 endpoint, credentials, and bucket.",
                key=prefix,
            ) from error
        strip = len(self._prefix) + 1 if self._prefix else 0
        return sorted(key[strip:] for key in keys)

    def _object_key(self, key: str) -> str:
        return f"{self._prefix}/{key}" if self._prefix else key


class LocalObjectStore:
    """Archive store on the local filesystem.

    Files are written to a temporary sibling and renamed into place, so a
    reader never sees a partial archive.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def put_object(self, key: str, body: bytes) -> None:
        """Write one archive file atomically.

        Raises:
            ArchiveFailure: If the file cannot be written.
        """
        target = self._root / key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=target.parent, prefix=f".{target.name}.", delete=False
            ) as handle:
                handle.write(body)
                handle.flush()
                os.fsync(handle.fileno())
                temp_path = Path(handle.name)
            os.replace(temp_path, target)
        except OSError as error:
            raise ArchiveFailure(
                f"Failed to write archive {target}: {error}. "
                "Check that the archive directory is writable.",
                key=key,
            ) from error

    def describe(self, key: str) -> str:
        return str(self._root / key)

    def list_keys(self, prefix: str = "") -> list[str]:
        """Return stored keys starting with ``prefix``, sorted."""
        if not self._root.exists():
            return []
        keys = (
            path.relative_to(self._root).as_posix()
            for path in self._root.rglob("*")
            if path.is_file() and not path.name.startswith(".")
        )
        return sorted(key for key in keys if key.startswith(prefix))
