"""Mail consumers — one poll cycle turns unread mail into payload messages.

A cycle connects, lists the unread messages that pass the filters and,
for each one in mailbox order: marks it read, decomposes it and hands
every resulting :class:`~mailbridge.models.PayloadMessage` to the sink.
A failure on one message resets it to unread (it is retried on a later
poll) and the cycle moves on.  A failure of the mailbox itself ends the
cycle; it is logged, never raised, and the next poll tries again.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import structlog

from .address import MailboxAddress
from .config import MailConsumerConfig, SecretResolver, plain_secret
from .errors import ConfigurationError, MailConnectionError, MailError
from .factory import MailReceiverFactory, receiver_factory
from .filters import compile_filters, get_dialect
from .mime import (
    MailHeaderHandler,
    MessageDecomposer,
    MimeDecomposer,
    PartSelector,
    RawMessageDecomposer,
)
from .models import RawMailMessage
from .receiver import MailReceiver
from .retry import with_retry
from .sink import PayloadSink

logger = structlog.get_logger()


class MailConsumer:
    """Polls one mailbox and feeds a :class:`PayloadSink`.

    Call :meth:`init` once (it may probe the mailbox and raises on
    misconfiguration), then :meth:`process_messages` once per poll.  Cycles
    must not overlap for the same mailbox.
    """

    def __init__(
        self,
        config: MailConsumerConfig,
        sink: PayloadSink,
        *,
        decomposer: MessageDecomposer | None = None,
        receiver_factory: MailReceiverFactory | None = None,
        secret_resolver: SecretResolver | None = None,
    ) -> None:
        self.config = config
        self._sink = sink
        self._decomposer = decomposer or MimeDecomposer()
        self._receiver_factory = receiver_factory
        self._secret_resolver = secret_resolver or plain_secret
        self._receiver: MailReceiver | None = None
        self._last_poll_time: datetime | None = None
        self._messages_processed: int = 0
        self._messages_failed: int = 0

    @property
    def receiver(self) -> MailReceiver | None:
        return self._receiver

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Create the mailbox client; failures here are fatal.

        Raises :class:`ConfigurationError` for bad settings and
        :class:`MailConnectionError` if the eager connect probe fails.
        """
        get_dialect(self.config.regular_expression_style)
        factory = self._receiver_factory or receiver_factory(
            self.config.receiver,
            timeout=self.config.timeout,
            pop3=self.config.pop3,
        )
        receiver = factory.create_client(self._build_address())
        receiver.purge(self.config.delete_on_receive)
        self._receiver = receiver

        if self.config.attempt_connect_on_init:
            async with receiver:
                pass

        logger.info(
            "mail_consumer_initialised",
            mailbox=receiver.address.to_safe_string(),
            receiver=type(receiver).__name__,
            purge=self.config.delete_on_receive,
        )

    def _build_address(self) -> MailboxAddress:
        password = None
        if self.config.password is not None:
            try:
                password = self._secret_resolver(self.config.password.get_secret_value())
            except Exception as exc:
                raise ConfigurationError(f"Could not resolve mailbox password: {exc}") from exc
        return MailboxAddress.parse(
            self.config.mailbox_url,
            username=self.config.username,
            password=password,
        )

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    async def process_messages(self) -> int:
        """Run one poll cycle; returns the number of messages handled."""
        if self._receiver is None:
            raise MailError("Consumer has not been initialised")
        receiver = self._receiver
        self._last_poll_time = datetime.now(UTC)
        count = 0

        try:
            receiver.address = self._build_address()
            receiver.set_filters(
                compile_filters(
                    self.config.filter_expression,
                    self.config.regular_expression_style,
                )
            )
            try:
                await self._connect(receiver)
                for message in await receiver.list_candidates():
                    await self._process_one(receiver, message)
                    count += 1
                    if not self._continue_processing(count):
                        logger.debug("poll_cycle_limit_reached", count=count)
                        break
            finally:
                await receiver.disconnect()
        except Exception as exc:
            logger.warning(
                "mailbox_poll_failed",
                mailbox=receiver.address.to_safe_string(),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=not isinstance(exc, MailError),
            )

        logger.debug("poll_cycle_complete", processed=count)
        return count

    async def _connect(self, receiver: MailReceiver) -> None:
        @with_retry(self.config.retry, retryable_exceptions=(MailConnectionError,))
        async def _attempt() -> None:
            await receiver.connect()

        await _attempt()

    async def _process_one(self, receiver: MailReceiver, message: RawMailMessage) -> None:
        await receiver.mark_read(message)
        try:
            payloads = await asyncio.to_thread(self._decomposer.decompose, message.raw_bytes)
            for payload in payloads:
                await self._sink.accept(payload)
        except MailConnectionError:
            raise
        except Exception as exc:
            self._messages_failed += 1
            await receiver.reset_unread(message)
            logger.warning(
                "message_processing_failed",
                id=message.id,
                message_id=message.message_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return

        self._messages_processed += 1
        logger.info(
            "message_processed",
            id=message.id,
            message_id=message.message_id,
            payloads=len(payloads),
        )

    def _continue_processing(self, count: int) -> bool:
        limit = self.config.max_messages_per_cycle
        return limit is None or limit <= 0 or count < limit

    def status(self) -> dict[str, object]:
        return {
            "mailbox": self._receiver.address.to_safe_string() if self._receiver else None,
            "connected": self._receiver.connected if self._receiver else False,
            "last_poll_time": (
                self._last_poll_time.isoformat() if self._last_poll_time else None
            ),
            "messages_processed": self._messages_processed,
            "messages_failed": self._messages_failed,
        }


class DefaultMailConsumer(MailConsumer):
    """Each MIME part of an email becomes its own payload message."""

    def __init__(
        self,
        config: MailConsumerConfig,
        sink: PayloadSink,
        *,
        part_selector: PartSelector | None = None,
        header_handler: MailHeaderHandler | None = None,
        receiver_factory: MailReceiverFactory | None = None,
        secret_resolver: SecretResolver | None = None,
    ) -> None:
        super().__init__(
            config,
            sink,
            decomposer=MimeDecomposer(part_selector, header_handler),
            receiver_factory=receiver_factory,
            secret_resolver=secret_resolver,
        )


class RawMailConsumer(MailConsumer):
    """The complete email becomes a single payload message."""

    def __init__(
        self,
        config: MailConsumerConfig,
        sink: PayloadSink,
        *,
        header_handler: MailHeaderHandler | None = None,
        receiver_factory: MailReceiverFactory | None = None,
        secret_resolver: SecretResolver | None = None,
    ) -> None:
        super().__init__(
            config,
            sink,
            decomposer=RawMessageDecomposer(header_handler),
            receiver_factory=receiver_factory,
            secret_resolver=secret_resolver,
        )
