"""Public SDK surface for OpenSensor.

This module provides a stable import path for library users.
It re-exports the client, record kind building blocks, and typed models.
"""

from __future__ import annotations

from archive.archiver import ArchiveReport, ArchiveTarget, Archiver, KindArchiver
from archive.batch_builder import ColumnBatch, ColumnBatchBuilder
from archive.object_store import LocalObjectStore, S3ObjectStore, create_object_store
from archive.parquet_codec import archive_to_columns, encode_batch, read_archive
from broker.base import BrokerMessage
from broker.memory import InMemoryBroker
from core.config import OpenSensorConfig
from core.pipeline_spec import load_pipeline_spec
from core.topics import derived_topic, raw_topic, validate_topic_name
from core.types import FlushPolicy, Record, RetryPolicy, ValidationRule, nanos_to_datetime
from pipeline.client import OpenSensorClient
from produce.channel import Channel, ChannelSender
from produce.sensor import Sensor, SensorState, SensorStats
from produce.transducer import SampleTransducer, Transducer
from produce.validation import non_empty_rule, range_rule, required_rule
from reflect.bfbs import load_wire_schema
from reflect.bfbs_writer import FieldDefinition, ObjectDefinition, build_schema_blob
from reflect.record_codec import decode_record, encode_record
from reflect.record_kind import RecordKind, ReflectedRecordKind
from reflect.reflector import ReflectedSchema, SchemaCache, SchemaReflector

__all__ = [
    "ArchiveReport",
    "ArchiveTarget",
    "Archiver",
    "BrokerMessage",
    "Channel",
    "ChannelSender",
    "ColumnBatch",
    "ColumnBatchBuilder",
    "FieldDefinition",
    "FlushPolicy",
    "InMemoryBroker",
    "KindArchiver",
    "LocalObjectStore",
    "ObjectDefinition",
    "OpenSensorClient",
    "OpenSensorConfig",
    "Record",
    "RecordKind",
    "ReflectedRecordKind",
    "ReflectedSchema",
    "RetryPolicy",
    "S3ObjectStore",
    "SampleTransducer",
    "SchemaCache",
    "SchemaReflector",
    "Sensor",
    "SensorState",
    "SensorStats",
    "Transducer",
    "ValidationRule",
    "archive_to_columns",
    "build_schema_blob",
    "create_object_store",
    "decode_record",
    "derived_topic",
    "encode_batch",
    "encode_record",
    "load_pipeline_spec",
    "load_wire_schema",
    "nanos_to_datetime",
    "non_empty_rule",
    "range_rule",
    "raw_topic",
    "read_archive",
    "required_rule",
    "validate_topic_name",
]
