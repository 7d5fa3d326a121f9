"""Python SDK for sensor pipelines.

This module exposes high-level APIs to declare record kinds, stream
records from transducers into the broker, and archive topics to object
storage, all sharing one configuration and one schema cache.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence

from archive.archiver import ArchiveReport, ArchiveTarget, Archiver
from archive.object_store import ObjectStore, create_object_store
from broker.base import Broker
from core.config import OpenSensorConfig
from core.errors import OpenSensorConfigError
from core.logging_config import get_logger
from core.pipeline_spec import PipelineDefaults, PipelineKindSpec, PipelineSpec
from core.types import FlushPolicy, RetryPolicy, ValidationRule
from produce.channel import Channel
from produce.sensor import Sensor, SensorStats
from produce.transducer import Transducer
from produce.validation import rule_from_spec
from reflect.record_kind import RecordKind, ReflectedRecordKind
from reflect.reflector import ReflectedSchema, SchemaCache

_LOGGER = get_logger(__name__)


class OpenSensorClient:
    """Primary SDK entry point.

    Args:
        config: Runtime configuration; read from the environment when omitted.
        broker: Broker to use; a Kafka broker on ``config.broker_addresses``
            is created on first use when omitted.
        store: Archive store; derived from ``config.archive_uri`` when omitted.
    """

    def __init__(
        self,
        config: OpenSensorConfig | None = None,
        broker: Broker | None = None,
        store: ObjectStore | None = None,
    ) -> None:
        self._config = config or OpenSensorConfig.from_env()
        self._broker = broker
        self._store = store
        self._schema_cache = SchemaCache()

    @property
    def config(self) -> OpenSensorConfig:
        return self._config

    @property
    def schema_cache(self) -> SchemaCache:
        return self._schema_cache

    @property
    def broker(self) -> Broker:
        if self._broker is None:
            from broker.kafka import KafkaBroker

            self._broker = KafkaBroker(self._config.broker_addresses)
        return self._broker

    @property
    def store(self) -> ObjectStore:
        if self._store is None:
            self._store = create_object_store(self._config)
        return self._store

    def record_kind(
        self,
        name: str,
        topic: str,
        schema_blob: bytes,
        validation_rules: Sequence[ValidationRule] = (),
    ) -> ReflectedRecordKind:
        """Declare a record kind backed by its binary schema."""
        return ReflectedRecordKind(
            name=name,
            topic=topic,
            schema_blob=schema_blob,
            validation_rules=validation_rules,
            schema_cache=self._schema_cache,
        )

    def reflect(self, kind_name: str, schema_blob: bytes) -> ReflectedSchema:
        """Derive (or fetch) the columnar schema of a kind.

        Raises:
            SchemaBlobError: If the blob cannot be parsed.
            UnsupportedTypeError: If a field has no columnar mapping.
        """
        return self._schema_cache.derive(kind_name, schema_blob)

    def archive_targets(self, spec: PipelineSpec) -> list[ArchiveTarget]:
        """Build archive targets for every kind of a pipeline file.

        Flush thresholds fall back from the kind to the pipeline defaults
        to the runtime configuration.
        """
        return [self._archive_target(kind_spec, spec.defaults) for kind_spec in spec.kinds]

    def channel_capacity(self, spec: PipelineSpec, kind_name: str) -> int:
        """Return the channel bound to stream one kind of a pipeline file with.

        The bound falls back from the kind to the pipeline defaults to the
        runtime configuration.

        Raises:
            OpenSensorConfigError: If the pipeline does not declare the kind.
        """
        for kind_spec in spec.kinds:
            if kind_spec.name == kind_name:
                return (
                    kind_spec.channel_capacity
                    or spec.defaults.channel_capacity
                    or self._config.channel_capacity
                )
        declared = ", ".join(kind_spec.name for kind_spec in spec.kinds)
        raise OpenSensorConfigError(
            f"Pipeline does not declare kind '{kind_name}'. Declared kinds: {declared}."
        )

    async def stream(
        self,
        kind: RecordKind,
        transducers: Sequence[Transducer],
        stop_event: asyncio.Event | None = None,
        channel_capacity: int | None = None,
    ) -> SensorStats:
        """Run transducers into one sensor until they finish or a stop is requested.

        Args:
            kind: Kind produced by every transducer.
            transducers: Record sources sharing one channel.
            stop_event: When set, sources stop and buffered records are forwarded.
            channel_capacity: Channel bound; config default when omitted.

        Returns:
            Sensor counters.

        Raises:
            SourceError: If a transducer's source fails; the sensor still
                forwards what the other transducers produced.
        """
        if not transducers:
            raise OpenSensorConfigError(
                f"Streaming kind '{kind.name}' needs at least one transducer."
            )
        channel = Channel(channel_capacity or self._config.channel_capacity)
        sensor = Sensor(
            kind,
            channel,
            self.broker,
            retry_policy=RetryPolicy(
                max_attempts=self._config.forward_attempts,
                base_delay_seconds=self._config.retry_base_delay_seconds,
            ),
        )
        senders = [channel.sender() for _ in transducers]
        # The sensor ends once every transducer has closed its sender, which
        # includes records sent while a stop was being requested.
        stats, *results = await asyncio.gather(
            sensor.run(),
            *(
                transducer.run(sender, stop_event)
                for transducer, sender in zip(transducers, senders)
            ),
            return_exceptions=True,
        )
        if isinstance(stats, BaseException):
            raise stats
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return stats

    async def archive(
        self,
        targets: Sequence[RecordKind | ArchiveTarget],
        stop_event: asyncio.Event | None = None,
        stop_when_idle: bool = False,
        key_prefix: str = "",
        **archiver_options: Any,
    ) -> Mapping[str, ArchiveReport]:
        """Archive kinds until stopped.

        Args:
            targets: Kinds to archive; bare kinds use the config flush defaults.
            stop_event: When set, every kind flushes and finishes.
            stop_when_idle: Stop each kind once its topic has no new messages.
            key_prefix: Optional archive key prefix.
            archiver_options: Extra ``Archiver`` keyword arguments.

        Returns:
            Report per kind name.
        """
        archiver = Archiver(
            [self._with_default_policy(target) for target in targets],
            broker=self.broker,
            store=self.store,
            schema_cache=self._schema_cache,
            upload_retry=RetryPolicy(
                max_attempts=self._config.upload_attempts,
                base_delay_seconds=self._config.retry_base_delay_seconds,
            ),
            key_prefix=key_prefix,
            **archiver_options,
        )
        reports = await archiver.run(stop_event=stop_event, stop_when_idle=stop_when_idle)
        for report in reports.values():
            _LOGGER.info(
                "archive_report",
                kind=report.kind,
                files=len(report.files),
                rows_archived=report.rows_archived,
                rows_rejected=report.rows_rejected,
                error=report.error,
            )
        return reports

    def _archive_target(
        self,
        kind_spec: PipelineKindSpec,
        defaults: PipelineDefaults,
    ) -> ArchiveTarget:
        kind = self.record_kind(
            name=kind_spec.name,
            topic=kind_spec.topic,
            schema_blob=kind_spec.read_schema_blob(),
            validation_rules=[rule_from_spec(rule) for rule in kind_spec.rules],
        )
        policy = FlushPolicy(
            max_rows=kind_spec.flush_rows or defaults.flush_rows or self._config.flush_rows,
            max_age_seconds=(
                kind_spec.flush_seconds or defaults.flush_seconds or self._config.flush_seconds
            ),
        )
        return ArchiveTarget(kind=kind, flush_policy=policy)

    def _with_default_policy(self, target: RecordKind | ArchiveTarget) -> ArchiveTarget:
        if isinstance(target, ArchiveTarget):
            return target
        return ArchiveTarget(
            kind=target,
            flush_policy=FlushPolicy(
                max_rows=self._config.flush_rows,
                max_age_seconds=self._config.flush_seconds,
            ),
        )
