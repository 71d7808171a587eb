"""Mail producers — one pipeline message in, one outbound email out.

:class:`SendEmail` sends the payload as the body of the email;
:class:`SendEmailAttachment` sends it as an attachment, optionally with a
short text body; :class:`SendEmailMultiAttachment` splits an XML payload
into a body and any number of attachments.  Addressing fields are
templates that may reference the message's metadata as ``%message{key}``.
Metadata accepted by the configured filter is copied onto the email as
extra headers.
"""

from __future__ import annotations

import abc
import asyncio
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog

from .address import SEND_PROTOCOLS, MailboxAddress
from .attachment import DEFAULT_ATTACHMENT_CONTENT_TYPE, MailCreator, XmlMailCreator
from .config import MailProducerConfig, SecretResolver, plain_secret
from .errors import ConfigurationError, SendError
from .metadata import MetadataFilter, RegexMetadataFilter, RemoveAllMetadataFilter
from .models import PayloadMessage
from .smtp_client import DEFAULT_CONTENT_TYPE, DEFAULT_ENCODING, SmtpClient

logger = structlog.get_logger()


@dataclass
class OutboundMailSpec:
    """Everything needed to address one email, templates already resolved."""

    to: str | None = None
    cc: str | None = None
    bcc: str | None = None
    subject: str | None = None
    from_address: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    session_properties: dict[str, str] = field(default_factory=dict)


class MailProducer(abc.ABC):
    """Common behaviour for sending a :class:`PayloadMessage` as an email."""

    def __init__(
        self,
        config: MailProducerConfig,
        *,
        metadata_filter: MetadataFilter | None = None,
        secret_resolver: SecretResolver | None = None,
    ) -> None:
        self.config = config
        address = MailboxAddress.parse(config.smtp_url)
        if address.protocol not in SEND_PROTOCOLS:
            raise ConfigurationError(
                f"Unsupported SMTP protocol [{address.protocol}]; "
                f"expected one of {sorted(SEND_PROTOCOLS)}"
            )
        self._address = address
        self._secret_resolver = secret_resolver or plain_secret
        if metadata_filter is None:
            if config.header_include_patterns or config.header_exclude_patterns:
                try:
                    metadata_filter = RegexMetadataFilter(
                        config.header_include_patterns,
                        config.header_exclude_patterns,
                    )
                except re.error as exc:
                    raise ConfigurationError(f"Invalid header pattern: {exc}") from exc
            else:
                metadata_filter = RemoveAllMetadataFilter()
        self.metadata_filter = metadata_filter

    async def produce(self, message: PayloadMessage) -> dict[str, tuple[int, bytes]]:
        """Send *message*; returns the refused recipients, if any.

        Raises :class:`SendError` on any failure.
        """
        return await asyncio.to_thread(self.produce_sync, message)

    def produce_sync(self, message: PayloadMessage) -> dict[str, tuple[int, bytes]]:
        try:
            spec = self.build_spec(message)
            client = self.create_client(spec.session_properties)
            self._address_message(client, spec)
            self._populate(client, message)
        except SendError:
            raise
        except (KeyError, ConfigurationError) as exc:
            raise SendError(f"Could not prepare mail for {message.unique_id}: {exc}") from exc

        refused = client.send()
        logger.debug(
            "payload_mailed",
            unique_id=message.unique_id,
            producer=type(self).__name__,
        )
        return refused

    def build_spec(self, message: PayloadMessage) -> OutboundMailSpec:
        return OutboundMailSpec(
            to=message.resolve(self.config.to),
            cc=message.resolve(self.config.cc_list),
            bcc=message.resolve(self.config.bcc_list),
            subject=message.resolve(self.config.subject),
            from_address=message.resolve(self.config.from_address),
            headers=self.metadata_filter.filter(message.metadata),
            session_properties=dict(self.config.session_properties),
        )

    def create_client(self, session_properties: Mapping[str, str] | None = None) -> SmtpClient:
        username = self.config.username or self._address.username
        password = self._address.password
        if self.config.password is not None:
            try:
                password = self._secret_resolver(self.config.password.get_secret_value())
            except Exception as exc:
                raise ConfigurationError(f"Could not resolve SMTP password: {exc}") from exc
        return SmtpClient(
            self._address.with_credentials(username, password),
            self.config.session_properties if session_properties is None else session_properties,
        )

    @staticmethod
    def _address_message(client: SmtpClient, spec: OutboundMailSpec) -> None:
        client.add_to(spec.to)
        client.add_cc(spec.cc)
        client.add_bcc(spec.bcc)
        if spec.from_address:
            client.set_from(spec.from_address)
        client.set_subject(spec.subject)
        for name, value in spec.headers.items():
            client.add_header(name, value)

    @abc.abstractmethod
    def _populate(self, client: SmtpClient, message: PayloadMessage) -> None: ...


class SendEmail(MailProducer):
    """The payload is the email body."""

    def _populate(self, client: SmtpClient, message: PayloadMessage) -> None:
        client.set_encoding(message.resolve(self.config.content_encoding) or DEFAULT_ENCODING)
        client.set_body(
            message.payload,
            message.resolve(self.config.content_type) or DEFAULT_CONTENT_TYPE,
        )


class SendEmailAttachment(MailProducer):
    """The payload is attached; the filename defaults to the message's unique id."""

    def _populate(self, client: SmtpClient, message: PayloadMessage) -> None:
        body = message.resolve(self.config.body)
        if body is not None:
            client.set_body(body.encode("utf-8"), "text/plain; charset=utf-8")
        client.add_attachment(
            message.payload,
            message.resolve(self.config.filename) or message.unique_id,
            message.resolve(self.config.content_type) or DEFAULT_ATTACHMENT_CONTENT_TYPE,
            message.resolve(self.config.content_encoding) or DEFAULT_ENCODING,
        )


class SendEmailMultiAttachment(MailProducer):
    """One payload becomes a body plus any number of attachments.

    The split is done by a :class:`~mailbridge.attachment.MailCreator`;
    by default an :class:`~mailbridge.attachment.XmlMailCreator` built from
    the ``xml_*`` settings.
    """

    def __init__(
        self,
        config: MailProducerConfig,
        *,
        mail_creator: MailCreator | None = None,
        metadata_filter: MetadataFilter | None = None,
        secret_resolver: SecretResolver | None = None,
    ) -> None:
        super().__init__(config, metadata_filter=metadata_filter, secret_resolver=secret_resolver)
        self.mail_creator = mail_creator or XmlMailCreator.from_config(config)

    def _populate(self, client: SmtpClient, message: PayloadMessage) -> None:
        body = self.mail_creator.create_body(message)
        if body is not None:
            client.set_encoding(message.resolve(self.config.content_encoding) or DEFAULT_ENCODING)
            client.set_body(body.payload, body.content_type)
        for attachment in self.mail_creator.create_attachments(message):
            client.add_attachment(
                attachment.payload,
                attachment.filename,
                attachment.content_type,
                attachment.encoding,
            )
