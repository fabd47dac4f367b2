"""
WEBCORE - Kafka Libraries

aiokafka producer and consumer, registered as ``kafka:producer`` and
``kafka:consumer``. Consumers are usually loaded as keyed instances, one
per module or session, each with its own receiver.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from config import KafkaConfig
from core.errors import LibraryContractError, WebcoreConfigError
from core.library import Connector, InstallParams, Library


logger = logging.getLogger("webcore.libraries.kafka")


class KafkaReceiver(ABC):
    """Handler for consumed Kafka records."""

    @abstractmethod
    async def consume(self, message: bytes) -> bool:
        """Return True when the message has been handled."""
        ...


@dataclass
class KafkaConsumerParams(InstallParams):
    receiver: Optional[KafkaReceiver] = None


def _check_config(kind: str, config: Any) -> KafkaConfig:
    if not isinstance(config, KafkaConfig):
        raise LibraryContractError(
            f"{kind} expects KafkaConfig, got {type(config).__name__}",
            library=kind,
            offending_type=type(config),
        )
    return config


class KafkaProducer(Library, Connector):
    """Kafka publisher."""

    def __init__(self):
        self.config: Optional[KafkaConfig] = None
        self._producer: Optional[AIOKafkaProducer] = None

    async def install(self, params: InstallParams) -> None:
        self.config = _check_config("kafka:producer", params.config)

    async def connect(self) -> None:
        producer = AIOKafkaProducer(
            bootstrap_servers=self.config.bootstrap_servers,
            client_id=self.config.client_id,
        )
        try:
            await producer.start()
        except Exception:
            try:
                await producer.stop()
            except Exception as cleanup_error:
                logger.warning(f"Failed to stop AIOKafkaProducer during cleanup: {cleanup_error}")
            raise
        self._producer = producer
        logger.info(f"Kafka producer connected to {self.config.bootstrap_servers}")

    async def disconnect(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def uninstall(self) -> None:
        self.config = None

    async def publish(self, topic: str, message: Any, key: Optional[str] = None) -> None:
        """Send a message and wait for the broker acknowledgement."""
        if isinstance(message, bytes):
            value = message
        elif isinstance(message, str):
            value = message.encode("utf-8")
        else:
            value = json.dumps(message, default=str).encode("utf-8")

        await self._producer.send_and_wait(
            topic,
            value,
            key=key.encode("utf-8") if key else None,
        )
        logger.debug(f"Published message to {topic}")


class KafkaConsumer(Library, Connector):
    """
    Kafka consumer-group reader.

    Offsets are committed manually, and only for batches in which the
    receiver accepted every record. A rejected batch is rewound to its
    first offset on each partition and fetched again.
    """

    def __init__(self):
        self.config: Optional[KafkaConfig] = None
        self.receiver: Optional[KafkaReceiver] = None
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._task: Optional[asyncio.Task] = None

    async def install(self, params: InstallParams) -> None:
        config = _check_config("kafka:consumer", params.config)
        receiver = getattr(params, "receiver", None)
        if not isinstance(receiver, KafkaReceiver):
            raise LibraryContractError(
                f"kafka:consumer requires a KafkaReceiver, got {type(receiver).__name__}",
                library="kafka:consumer",
                offending_type=type(receiver),
            )
        if not config.topics:
            raise WebcoreConfigError(
                "kafka:consumer needs at least one topic",
                config_key="KAFKA_TOPICS",
            )
        self.config = config
        self.receiver = receiver

    async def connect(self) -> None:
        consumer = AIOKafkaConsumer(
            *self.config.topics,
            bootstrap_servers=self.config.bootstrap_servers,
            group_id=self.config.group_id,
            client_id=self.config.client_id,
            auto_offset_reset=self.config.auto_offset_reset,
            enable_auto_commit=False,
        )
        try:
            await consumer.start()
        except Exception:
            try:
                await consumer.stop()
            except Exception as cleanup_error:
                logger.warning(f"Failed to stop AIOKafkaConsumer during cleanup: {cleanup_error}")
            raise
        self._consumer = consumer
        logger.info(
            f"Kafka consumer connected: topics={','.join(self.config.topics)} "
            f"group={self.config.group_id}"
        )

    async def disconnect(self) -> None:
        await self.stop_consuming()
        if self._consumer is not None:
            await self._consumer.stop()
            self._consumer = None
            logger.info("Kafka consumer stopped")

    async def uninstall(self) -> None:
        self.receiver = None
        self.config = None

    async def consume_once(self) -> int:
        """
        Fetch one batch and hand each record to the receiver.

        Returns:
            Number of records the receiver accepted
        """
        batch = await self._consumer.getmany(
            timeout_ms=self.config.poll_timeout_ms,
            max_records=self.config.max_batch_size,
        )

        total = 0
        accepted = 0
        for partition, records in batch.items():
            for record in records:
                total += 1
                try:
                    if await self.receiver.consume(record.value):
                        accepted += 1
                except Exception as e:
                    logger.error(
                        f"Receiver failed on {partition.topic}[{partition.partition}]@{record.offset}: {e}"
                    )

        if not total:
            return 0

        if accepted == total:
            await self._consumer.commit(
                {partition: records[-1].offset + 1 for partition, records in batch.items() if records}
            )
        else:
            # Rewind so the whole batch is fetched again
            for partition, records in batch.items():
                if records:
                    self._consumer.seek(partition, records[0].offset)
            logger.warning(f"Batch not committed: {total - accepted} of {total} records rejected")
        return accepted

    def start_consuming(self) -> asyncio.Task:
        """Run the consume loop in a background task until disconnect."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._consume_loop())
        return self._task

    async def stop_consuming(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _consume_loop(self) -> None:
        while True:
            try:
                await self.consume_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in consume loop: {e}")
                await asyncio.sleep(1)
