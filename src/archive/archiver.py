"""Fold broker topics into Parquet archive files.

One ``KindArchiver`` per record kind consumes the kind's topic, builds
column batches, and uploads each flushed batch while the next one fills.
At most one upload is in flight per kind, and offsets are committed only
after the upload that covers them succeeds. A failed upload stops its kind
with offsets left uncommitted, so the records are delivered again on the
next run.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

from archive.archive_keys import archive_key, kind_key_prefix, next_flush_sequence
from archive.batch_builder import ColumnBatch, ColumnBatchBuilder
from archive.object_store import ObjectStore
from archive.parquet_codec import encode_batch
from broker.base import Broker, BrokerConsumer
from core.constants import (
    ARCHIVER_GROUP_SUFFIX,
    DEFAULT_POLL_MAX_RECORDS,
    DEFAULT_POLL_TIMEOUT_SECONDS,
    DEFAULT_UPLOAD_ATTEMPTS,
)
from core.errors import (
    ArchiveFailure,
    DecodeError,
    OpenSensorError,
    SchemaBlobError,
    UnsupportedTypeError,
)
from core.logging_config import get_logger
from core.types import FlushPolicy, RetryPolicy
from reflect.record_kind import RecordKind
from reflect.reflector import ReflectedSchema, SchemaCache

_LOGGER = get_logger(__name__)


@dataclass
class ArchiveReport:
    """Outcome of archiving one kind."""

    kind: str
    files: list[str] = field(default_factory=list)
    rows_archived: int = 0
    rows_rejected: int = 0
    error: str | None = None


@dataclass(frozen=True)
class ArchiveTarget:
    """Kind to archive and its flush thresholds."""

    kind: RecordKind
    flush_policy: FlushPolicy = field(default_factory=FlushPolicy)


def archiver_group_id(kind_name: str) -> str:
    """Consumer group used by the archiver of a kind."""
    return f"{kind_name}{ARCHIVER_GROUP_SUFFIX}"


class KindArchiver:
    """Archive loop for one record kind.

    Args:
        kind: Kind whose topic is archived.
        schema: Reflected schema of the kind.
        consumer: Consumer of the kind's topic in the archiver group.
        store: Destination of archive files.
        flush_policy: Size-or-age flush thresholds.
        upload_retry: Upload retry policy.
        key_prefix: Optional prefix for archive keys.
        poll_max_records: Upper bound of one poll.
        poll_timeout_seconds: Longest wait of one poll.
        clock: Monotonic clock in seconds.
        sleep: Coroutine used for backoff delays.
        first_flush_sequence: Sequence number of the first archive file.
    """

    def __init__(
        self,
        kind: RecordKind,
        schema: ReflectedSchema,
        consumer: BrokerConsumer,
        store: ObjectStore,
        flush_policy: FlushPolicy,
        upload_retry: RetryPolicy | None = None,
        key_prefix: str = "",
        poll_max_records: int = DEFAULT_POLL_MAX_RECORDS,
        poll_timeout_seconds: float = DEFAULT_POLL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        first_flush_sequence: int = 0,
    ) -> None:
        self._kind = kind
        self._consumer = consumer
        self._store = store
        self._builder = ColumnBatchBuilder(kind, schema, flush_policy, clock)
        self._upload_retry = upload_retry or RetryPolicy(max_attempts=DEFAULT_UPLOAD_ATTEMPTS)
        self._key_prefix = key_prefix
        self._poll_max_records = poll_max_records
        self._poll_timeout_seconds = poll_timeout_seconds
        self._sleep = sleep
        self._upload: asyncio.Future[None] | None = None
        self._flush_sequence = first_flush_sequence
        self._stop_requested = False
        self._report = ArchiveReport(kind=kind.name)

    @property
    def report(self) -> ArchiveReport:
        return self._report

    def request_stop(self) -> None:
        """Ask the loop to finish after its current poll."""
        self._stop_requested = True

    async def run(self, stop_when_idle: bool = False) -> ArchiveReport:
        """Archive until stopped, then flush and wait for the last upload.

        Args:
            stop_when_idle: Also stop once a poll returns no messages.

        Returns:
            Report of this kind.

        Raises:
            ArchiveFailure: If an upload fails after retries.
        """
        _LOGGER.info("kind_archiver_started", kind=self._kind.name, topic=self._kind.topic)
        try:
            while not self._stop_requested:
                received = await self.poll_once()
                if stop_when_idle and received == 0:
                    break
            await self._finish()
        finally:
            await self._abandon_upload()
            await self._consumer.close()
        _LOGGER.info(
            "kind_archiver_stopped",
            kind=self._kind.name,
            files=len(self._report.files),
            rows_archived=self._report.rows_archived,
            rows_rejected=self._report.rows_rejected,
        )
        return self._report

    async def poll_once(self) -> int:
        """Poll one batch of messages and flush when a threshold is reached.

        Returns:
            Number of messages received.
        """
        await self._check_upload()
        messages = await self._consumer.poll(self._poll_max_records, self._poll_timeout())
        for message in messages:
            try:
                self._builder.append(message)
            except DecodeError as error:
                _LOGGER.warning(
                    "archive_record_rejected",
                    kind=self._kind.name,
                    partition=message.partition,
                    offset=message.offset,
                    error=str(error),
                )
            if self._builder.should_flush():
                await self._flush()
        if self._builder.pending and self._builder.should_flush():
            await self._flush()
        return len(messages)

    def _poll_timeout(self) -> float:
        remaining = self._builder.seconds_until_flush()
        if remaining is None:
            return self._poll_timeout_seconds
        return min(self._poll_timeout_seconds, remaining)

    async def _flush(self) -> None:
        batch = self._builder.take_batch()
        if self._upload is not None:
            upload, self._upload = self._upload, None
            await upload
        sequence = self._flush_sequence
        if batch.row_count > 0:
            self._flush_sequence += 1
        self._upload = asyncio.ensure_future(self._archive(batch, sequence))

    async def _finish(self) -> None:
        if self._builder.pending:
            await self._flush()
        if self._upload is not None:
            upload, self._upload = self._upload, None
            await upload

    async def _check_upload(self) -> None:
        if self._upload is not None and self._upload.done():
            upload, self._upload = self._upload, None
            await upload

    async def _abandon_upload(self) -> None:
        if self._upload is None:
            return
        upload, self._upload = self._upload, None
        upload.cancel()
        await asyncio.wait({upload})

    async def _archive(self, batch: ColumnBatch, sequence: int) -> None:
        if batch.row_count == 0:
            await self._commit(batch)
            return
        key = archive_key(self._kind.name, sequence, batch.positions, self._key_prefix)
        loop = asyncio.get_running_loop()
        try:
            body = await loop.run_in_executor(None, encode_batch, batch)
        except DecodeError as error:
            raise ArchiveFailure(f"Failed to encode archive {key}: {error}", key=key) from error
        await self._put_with_retry(key, body)
        await self._commit(batch)
        self._report.files.append(key)
        self._report.rows_archived += batch.row_count
        _LOGGER.info(
            "archive_uploaded",
            kind=self._kind.name,
            key=key,
            destination=self._store.describe(key),
            rows=batch.row_count,
            bytes=len(body),
        )

    async def _commit(self, batch: ColumnBatch) -> None:
        if batch.positions:
            await self._consumer.commit(batch.commit_positions)
        self._report.rows_rejected += batch.rejected_count

    async def _put_with_retry(self, key: str, body: bytes) -> None:
        policy = self._upload_retry
        loop = asyncio.get_running_loop()
        last_error: ArchiveFailure | None = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                await loop.run_in_executor(None, self._store.put_object, key, body)
                return
            except ArchiveFailure as error:
                last_error = error
                if attempt == policy.max_attempts:
                    break
                delay = policy.delay_for(attempt)
                _LOGGER.warning(
                    "archive_upload_retry",
                    kind=self._kind.name,
                    key=key,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(error),
                )
                await self._sleep(delay)
        raise ArchiveFailure(
            f"Archive {key} of kind '{self._kind.name}' failed after "
            f"{policy.max_attempts} attempts: {last_error}. Offsets stay uncommitted; "
            "the records will be archived again on the next run.",
            key=key,
        )


class Archiver:
    """Run one kind archiver per record kind against a shared broker.

    Args:
        targets: Kinds to archive, with or without their own flush policy.
        broker: Broker the kinds' topics live on.
        store: Destination of archive files.
        schema_cache: Cache of reflected schemas; one is created when omitted.
        upload_retry: Upload retry policy shared by all kinds.
        key_prefix: Optional prefix for archive keys.
        poll_max_records: Upper bound of one poll.
        poll_timeout_seconds: Longest wait of one poll.
        clock: Monotonic clock in seconds.
        sleep: Coroutine used for backoff delays.
    """

    def __init__(
        self,
        targets: Sequence[RecordKind | ArchiveTarget],
        broker: Broker,
        store: ObjectStore,
        schema_cache: SchemaCache | None = None,
        upload_retry: RetryPolicy | None = None,
        key_prefix: str = "",
        poll_max_records: int = DEFAULT_POLL_MAX_RECORDS,
        poll_timeout_seconds: float = DEFAULT_POLL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._targets = tuple(
            target if isinstance(target, ArchiveTarget) else ArchiveTarget(kind=target)
            for target in targets
        )
        self._broker = broker
        self._store = store
        self._schema_cache = schema_cache or SchemaCache()
        self._upload_retry = upload_retry
        self._key_prefix = key_prefix
        self._poll_max_records = poll_max_records
        self._poll_timeout_seconds = poll_timeout_seconds
        self._clock = clock
        self._sleep = sleep
        self._kind_archivers: list[KindArchiver] = []

    def request_stop(self) -> None:
        """Ask every kind archiver to flush and finish."""
        for kind_archiver in self._kind_archivers:
            kind_archiver.request_stop()

    async def run(
        self,
        stop_event: asyncio.Event | None = None,
        stop_when_idle: bool = False,
    ) -> dict[str, ArchiveReport]:
        """Archive every kind until stopped.

        Kinds whose schemas cannot be reflected, or whose stored archives
        cannot be listed, are reported and skipped. A failing kind stops
        alone; the others keep running. Flush sequences continue after the
        archives already in the store.

        Args:
            stop_event: When set, every kind flushes and finishes.
            stop_when_idle: Stop each kind once its topic has no new messages.

        Returns:
            Report per kind name.
        """
        reports: dict[str, ArchiveReport] = {}
        self._kind_archivers = []
        for target in self._targets:
            kind_archiver = await self._build_kind_archiver(target, reports)
            if kind_archiver is not None:
                self._kind_archivers.append(kind_archiver)
        watcher = (
            asyncio.ensure_future(self._stop_on(stop_event)) if stop_event is not None else None
        )
        try:
            results = await asyncio.gather(
                *(
                    self._run_kind(kind_archiver, stop_when_idle)
                    for kind_archiver in self._kind_archivers
                )
            )
        finally:
            if watcher is not None:
                watcher.cancel()
        for report in results:
            reports[report.kind] = report
        return reports

    async def _build_kind_archiver(
        self,
        target: ArchiveTarget,
        reports: dict[str, ArchiveReport],
    ) -> KindArchiver | None:
        kind = target.kind
        try:
            schema = self._schema_cache.derive(kind.name, kind.schema_blob)
            first_flush_sequence = await self._next_flush_sequence(kind.name)
        except (SchemaBlobError, UnsupportedTypeError, ArchiveFailure) as error:
            reports[kind.name] = ArchiveReport(kind=kind.name, error=str(error))
            _LOGGER.error("archive_kind_skipped", kind=kind.name, error=str(error))
            return None
        consumer = self._broker.consumer(kind.topic, archiver_group_id(kind.name))
        return KindArchiver(
            kind=kind,
            schema=schema,
            consumer=consumer,
            store=self._store,
            flush_policy=target.flush_policy,
            upload_retry=self._upload_retry,
            key_prefix=self._key_prefix,
            poll_max_records=self._poll_max_records,
            poll_timeout_seconds=self._poll_timeout_seconds,
            clock=self._clock,
            sleep=self._sleep,
            first_flush_sequence=first_flush_sequence,
        )

    async def _next_flush_sequence(self, kind_name: str) -> int:
        loop = asyncio.get_running_loop()
        keys = await loop.run_in_executor(
            None, self._store.list_keys, kind_key_prefix(kind_name, self._key_prefix)
        )
        return next_flush_sequence(keys, kind_name, self._key_prefix)

    async def _run_kind(self, kind_archiver: KindArchiver, stop_when_idle: bool) -> ArchiveReport:
        try:
            return await kind_archiver.run(stop_when_idle=stop_when_idle)
        except OpenSensorError as error:
            report = kind_archiver.report
            report.error = str(error)
            _LOGGER.error("kind_archiver_failed", kind=report.kind, error=str(error))
            return report

    async def _stop_on(self, stop_event: asyncio.Event) -> None:
        await stop_event.wait()
        self.request_stop()
