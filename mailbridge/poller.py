"""MailboxPoller — run a consumer's poll cycle on a fixed interval."""

from __future__ import annotations

import asyncio

import structlog

from .config import KafkaConfig, LoggingConfig, MailConsumerConfig
from .consumer import DefaultMailConsumer, MailConsumer
from .errors import MailError
from .logging import setup_logging
from .shutdown import install_signal_handlers
from .sink import KafkaSink

logger = structlog.get_logger()


class MailboxPoller:
    """Call :meth:`MailConsumer.process_messages` every *interval* seconds.

    Cycles never overlap: the interval is measured from the end of one
    cycle to the start of the next.  Setting *shutdown_event* stops the
    loop after the current cycle.
    """

    def __init__(
        self,
        consumer: MailConsumer,
        interval: float,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        self._consumer = consumer
        self._interval = interval
        self._shutdown_event = shutdown_event or asyncio.Event()
        self.cycles: int = 0

    def stop(self) -> None:
        self._shutdown_event.set()

    async def run(self) -> None:
        logger.info("poller_started", interval=self._interval)
        try:
            while not self._shutdown_event.is_set():
                await self._consumer.process_messages()
                self.cycles += 1
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._interval)
                except TimeoutError:
                    pass
        finally:
            logger.info("poller_stopped", cycles=self.cycles)


async def run_consumer(
    config: MailConsumerConfig | None = None,
    kafka: KafkaConfig | None = None,
    logging_config: LoggingConfig | None = None,
) -> None:
    """Poll the configured mailbox into Kafka until SIGTERM / SIGINT."""
    logging_config = logging_config or LoggingConfig()
    setup_logging(json=logging_config.json_output, level=logging_config.level)
    config = config or MailConsumerConfig()

    shutdown_event = asyncio.Event()
    install_signal_handlers(shutdown_event)

    sink = KafkaSink(kafka or KafkaConfig())
    await sink.start()
    try:
        consumer = DefaultMailConsumer(config, sink)
        await consumer.init()
        poller = MailboxPoller(consumer, config.poll_interval_seconds, shutdown_event)
        await poller.run()
    finally:
        await sink.stop()


async def check_mailbox(
    config: MailConsumerConfig | None = None,
    logging_config: LoggingConfig | None = None,
) -> bool:
    """Connect to the configured mailbox once; True if that succeeded."""
    logging_config = logging_config or LoggingConfig()
    setup_logging(json=logging_config.json_output, level=logging_config.level)
    config = (config or MailConsumerConfig()).model_copy(
        update={"attempt_connect_on_init": True}
    )

    # init() only probes the mailbox; the sink is never started or used
    consumer = DefaultMailConsumer(config, KafkaSink(KafkaConfig()))
    try:
        await consumer.init()
    except MailError as exc:
        logger.error("mailbox_check_failed", error=str(exc), error_type=type(exc).__name__)
        return False
    logger.info("mailbox_check_succeeded", **consumer.status())
    return True
