"""Downstream sinks that accept decomposed payload messages."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import structlog
from aiokafka import AIOKafkaProducer

from .config import KafkaConfig
from .models import EMAIL_MESSAGE_ID, PayloadMessage

logger = structlog.get_logger()


@runtime_checkable
class PayloadSink(Protocol):
    """Accepts one message at a time; raising rejects the message."""

    async def accept(self, message: PayloadMessage) -> None: ...


class KafkaSink:
    """Publish each payload to a Kafka topic.

    The record value is the raw payload, metadata travels as record
    headers and the key is the source email's Message-ID (or the payload's
    unique id) so siblings of one email land on the same partition.
    """

    def __init__(self, config: KafkaConfig) -> None:
        self._config = config
        self._producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._config.bootstrap_servers,
            acks=self._config.producer_acks,
            compression_type=self._config.producer_compression,
        )
        await self._producer.start()
        logger.info("kafka_sink_started", servers=self._config.bootstrap_servers)

    async def stop(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
            logger.info("kafka_sink_stopped")

    async def accept(self, message: PayloadMessage) -> None:
        assert self._producer is not None, "Producer not started"
        key = message.get_metadata(EMAIL_MESSAGE_ID) or message.unique_id
        await self._producer.send_and_wait(
            self._config.topic,
            value=message.payload,
            key=key.encode("utf-8"),
            headers=[(k, v.encode("utf-8")) for k, v in message.metadata.items()],
        )
        logger.debug(
            "payload_published",
            topic=self._config.topic,
            unique_id=message.unique_id,
            size=len(message.payload),
        )
