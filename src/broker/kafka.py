"""Kafka and Redpanda broker adapter.

This module wraps confluent-kafka producers and consumers behind the
broker protocols. Blocking client calls run in the default executor.
Offsets are committed manually, only after the archive that covers them
is durable.
"""

from __future__ import annotations

import asyncio
import threading
from functools import partial
from typing import Any, Mapping, Sequence

from broker.base import BrokerMessage
from core.errors import BrokerError, OpenSensorConfigError, OpenSensorDependencyError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

DEFAULT_DELIVERY_TIMEOUT_SECONDS = 30.0


def _import_confluent_kafka() -> Any:
    try:
        import confluent_kafka
    except ImportError as error:
        raise OpenSensorDependencyError(
            "The Kafka broker requires confluent-kafka, but it is not installed. "
            "Install confluent-kafka to connect to Kafka or Redpanda."
        ) from error
    return confluent_kafka


class KafkaBroker:
    """Broker backed by a Kafka-compatible cluster.

    Args:
        bootstrap_servers: ``host:port`` addresses of the cluster.
        delivery_timeout_seconds: Upper bound for one acknowledged append.
        client_config: Extra librdkafka settings applied to every client.
    """

    def __init__(
        self,
        bootstrap_servers: Sequence[str],
        delivery_timeout_seconds: float = DEFAULT_DELIVERY_TIMEOUT_SECONDS,
        client_config: Mapping[str, Any] | None = None,
    ) -> None:
        if not bootstrap_servers:
            raise OpenSensorConfigError(
                "Kafka broker needs at least one bootstrap server. "
                "Set OPENSENSOR_BROKERS to a comma-separated host:port list."
            )
        self._bootstrap_servers = ",".join(bootstrap_servers)
        self._delivery_timeout_seconds = delivery_timeout_seconds
        self._client_config = dict(client_config or {})
        self._producer: Any = None
        self._produce_lock = threading.Lock()

    async def append(self, topic: str, payload: bytes, key: str | None = None) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._append_blocking, topic, payload, key)

    def consumer(self, topic: str, group_id: str) -> KafkaConsumer:
        kafka = _import_confluent_kafka()
        config = {
            "bootstrap.servers": self._bootstrap_servers,
            "group.id": group_id,
            "enable.auto.commit": False,
            "auto.offset.reset": "earliest",
            **self._client_config,
        }
        try:
            client = kafka.Consumer(config)
            client.subscribe([topic])
        except kafka.KafkaException as error:
            raise BrokerError(
                f"Failed to subscribe group '{group_id}' to topic '{topic}': {error}. "
                "Check the broker addresses and that the topic exists."
            ) from error
        _LOGGER.info("kafka_consumer_subscribed", topic=topic, group_id=group_id)
        return KafkaConsumer(client, topic, kafka)

    def _append_blocking(self, topic: str, payload: bytes, key: str | None) -> int:
        kafka = _import_confluent_kafka()
        delivery: dict[str, Any] = {}

        def on_delivery(error: Any, message: Any) -> None:
            delivery["error"] = error
            delivery["offset"] = message.offset() if message is not None else None

        with self._produce_lock:
            producer = self._get_producer(kafka)
            try:
                producer.produce(topic, value=payload, key=key, on_delivery=on_delivery)
            except (BufferError, kafka.KafkaException) as error:
                raise BrokerError(
                    f"Failed to enqueue message for topic '{topic}': {error}."
                ) from error
            producer.flush(self._delivery_timeout_seconds)
        if "error" not in delivery:
            raise BrokerError(
                f"Message for topic '{topic}' was not acknowledged within "
                f"{self._delivery_timeout_seconds}s. Check broker health."
            )
        if delivery["error"] is not None:
            raise BrokerError(f"Broker rejected message for topic '{topic}': {delivery['error']}.")
        return int(delivery["offset"])

    def _get_producer(self, kafka: Any) -> Any:
        if self._producer is None:
            self._producer = kafka.Producer(
                {
                    "bootstrap.servers": self._bootstrap_servers,
                    "acks": "all",
                    **self._client_config,
                }
            )
        return self._producer


class KafkaConsumer:
    """Consumer bound to one topic and one consumer group."""

    def __init__(self, client: Any, topic: str, kafka: Any) -> None:
        self._client = client
        self._topic = topic
        self._kafka = kafka

    async def poll(self, max_records: int, timeout_seconds: float) -> list[BrokerMessage]:
        loop = asyncio.get_running_loop()
        try:
            raw_messages = await loop.run_in_executor(
                None,
                partial(self._client.consume, num_messages=max_records, timeout=timeout_seconds),
            )
        except self._kafka.KafkaException as error:
            raise BrokerError(f"Failed to poll topic '{self._topic}': {error}.") from error
        messages: list[BrokerMessage] = []
        for raw in raw_messages:
            error = raw.error()
            if error is not None:
                if error.code() == self._kafka.KafkaError._PARTITION_EOF:
                    continue
                raise BrokerError(f"Failed to read topic '{self._topic}': {error}.")
            key = raw.key()
            messages.append(
                BrokerMessage(
                    topic=raw.topic(),
                    partition=raw.partition(),
                    offset=raw.offset(),
                    payload=bytes(raw.value() or b""),
                    key=key.decode("utf-8") if isinstance(key, bytes) else key,
                )
            )
        return messages

    async def commit(self, positions: Mapping[int, int]) -> None:
        # Kafka stores the next offset to read, one past the last archived.
        offsets = [
            self._kafka.TopicPartition(self._topic, partition, offset + 1)
            for partition, offset in sorted(positions.items())
        ]
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, partial(self._client.commit, offsets=offsets, asynchronous=False)
            )
        except self._kafka.KafkaException as error:
            raise BrokerError(
                f"Failed to commit offsets {dict(positions)} for '{self._topic}': {error}."
            ) from error

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._client.close)
