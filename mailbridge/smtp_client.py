"""Compose multipart emails and send them over SMTP.

:class:`SmtpClient` collects recipients, headers, a body and any number of
attachments, builds a ``multipart/mixed`` message (body first, then
attachments) and transmits it with stdlib ``smtplib``.  Each part has its
own Content-Transfer-Encoding; ``base64`` unless told otherwise.

Session properties are passed explicitly per client:

``from``
    From address used when none is set on the message.
``timeout``
    Socket timeout in seconds.
``local_hostname``
    FQDN announced in HELO/EHLO.
``starttls``
    ``true`` to upgrade a plain ``smtp`` connection with STARTTLS.
"""

from __future__ import annotations

import email.message
import email.policy
import email.utils
import getpass
import smtplib
import socket
import ssl
from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from .address import SEND_PROTOCOLS, MailboxAddress
from .errors import ConfigurationError, NoRecipientsError, SendError

logger = structlog.get_logger()

DEFAULT_CONTENT_TYPE = "text/plain"
DEFAULT_ENCODING = "base64"
ENCODINGS = frozenset({"base64", "quoted-printable", "7bit", "8bit", "binary"})

_KNOWN_PROPERTIES = frozenset({"from", "timeout", "local_hostname", "starttls"})


@dataclass
class Attachment:
    payload: bytes
    filename: str | None
    content_type: str
    encoding: str = DEFAULT_ENCODING


class SmtpClient:
    """Build and send one email at a time; reusable via :meth:`new_message`."""

    def __init__(
        self,
        address: MailboxAddress,
        session_properties: Mapping[str, str] | None = None,
    ) -> None:
        if address.protocol not in SEND_PROTOCOLS:
            raise ConfigurationError(f"{address.protocol} is not an SMTP protocol")
        self._address = address
        self._session_properties = dict(session_properties or {})
        for key in self._session_properties.keys() - _KNOWN_PROPERTIES:
            logger.debug("smtp_session_property_ignored", key=key)
        self.new_message()

    @property
    def session_properties(self) -> dict[str, str]:
        return dict(self._session_properties)

    def new_message(self) -> None:
        self._to: list[tuple[str, str]] = []
        self._cc: list[tuple[str, str]] = []
        self._bcc: list[tuple[str, str]] = []
        self._from: str | None = None
        self._subject: str | None = None
        self._headers: list[tuple[str, str]] = []
        self._body: bytes | None = None
        self._body_content_type = DEFAULT_CONTENT_TYPE
        self._encoding = DEFAULT_ENCODING
        self._attachments: list[Attachment] = []

    # ------------------------------------------------------------------
    # Message construction
    # ------------------------------------------------------------------

    def add_to(self, addresses: str | None) -> None:
        self._to.extend(_parse_addresses(addresses))

    def add_cc(self, addresses: str | None) -> None:
        self._cc.extend(_parse_addresses(addresses))

    def add_bcc(self, addresses: str | None) -> None:
        self._bcc.extend(_parse_addresses(addresses))

    def set_from(self, address: str) -> None:
        self._from = address

    def set_subject(self, subject: str | None) -> None:
        self._subject = subject

    def add_header(self, name: str, value: str) -> None:
        self._headers.append((name, value))

    def remove_header(self, name: str) -> None:
        self._headers = [(k, v) for k, v in self._headers if k.lower() != name.lower()]

    def set_body(self, payload: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        self._body = payload
        self._body_content_type = content_type

    def set_encoding(self, encoding: str) -> None:
        """Content-Transfer-Encoding for the body part."""
        self._encoding = encoding

    def add_attachment(
        self,
        payload: bytes,
        filename: str | None,
        content_type: str,
        encoding: str = DEFAULT_ENCODING,
    ) -> None:
        self._attachments.append(Attachment(payload, filename, content_type, encoding))

    @property
    def recipients(self) -> list[str]:
        return [addr for _, addr in self._to + self._cc + self._bcc]

    def build(self) -> email.message.EmailMessage:
        """Assemble the MIME message; no network activity."""
        if not self.recipients:
            raise NoRecipientsError("Mail message has no recipients")
        try:
            msg = email.message.EmailMessage()
            msg["From"] = self._from or self._default_from()
            if self._to:
                msg["To"] = ", ".join(email.utils.formataddr(a) for a in self._to)
            if self._cc:
                msg["Cc"] = ", ".join(email.utils.formataddr(a) for a in self._cc)
            if self._subject is not None:
                msg["Subject"] = self._subject
            msg["Date"] = email.utils.formatdate(localtime=True)
            msg["Message-ID"] = email.utils.make_msgid()
            msg["MIME-Version"] = "1.0"
            for name, value in self._headers:
                msg[name] = value

            msg.make_mixed()
            if self._body is not None:
                msg.attach(_create_part(self._body, self._body_content_type, self._encoding))
            for attachment in self._attachments:
                msg.attach(
                    _create_part(
                        attachment.payload,
                        attachment.content_type,
                        attachment.encoding,
                        disposition="attachment",
                        filename=attachment.filename,
                    )
                )
        except SendError:
            raise
        except Exception as exc:
            raise SendError(f"Failed to build mail message: {exc}") from exc
        return msg

    def _default_from(self) -> str:
        configured = self._session_properties.get("from")
        if configured:
            return configured
        username = self._address.username
        if username and "@" in username:
            return username
        if not username:
            try:
                username = getpass.getuser()
            except (KeyError, OSError):
                username = "mailbridge"
        return f"{username}@{socket.getfqdn()}"

    # ------------------------------------------------------------------
    # Transmission
    # ------------------------------------------------------------------

    def send(self) -> dict[str, tuple[int, bytes]]:
        """Build and transmit the message.

        Returns the recipients the server refused (empty when all were
        accepted).  Partial delivery is not retried.
        """
        msg = self.build()
        recipients = self.recipients
        sender = email.utils.parseaddr(str(msg["From"]))[1]
        logger.debug(
            "smtp_sending",
            message_id=str(msg["Message-ID"]),
            smtp=self._address.to_safe_string(),
        )
        try:
            with self._open() as smtp:
                if self._starttls():
                    smtp.starttls(context=ssl.create_default_context())
                if self._address.username:
                    smtp.login(self._address.username, self._address.password or "")
                refused = smtp.sendmail(
                    sender,
                    recipients,
                    msg.as_bytes(policy=email.policy.SMTP),
                )
        except (smtplib.SMTPException, OSError) as exc:
            raise SendError(f"Failed to send mail via {self._address}: {exc}") from exc

        if refused:
            logger.warning(
                "mail_partially_delivered",
                message_id=str(msg["Message-ID"]),
                refused=sorted(refused),
            )
        else:
            logger.info(
                "mail_delivered",
                message_id=str(msg["Message-ID"]),
                recipients=len(recipients),
            )
        return refused

    def _open(self) -> smtplib.SMTP:
        kwargs: dict[str, object] = {}
        if "timeout" in self._session_properties:
            kwargs["timeout"] = float(self._session_properties["timeout"])
        if "local_hostname" in self._session_properties:
            kwargs["local_hostname"] = self._session_properties["local_hostname"]
        host, port = self._address.host, self._address.effective_port
        if self._address.use_ssl:
            return smtplib.SMTP_SSL(host, port, context=ssl.create_default_context(), **kwargs)
        return smtplib.SMTP(host, port, **kwargs)

    def _starttls(self) -> bool:
        value = self._session_properties.get("starttls", "false")
        return not self._address.use_ssl and value.strip().lower() in ("1", "true", "yes")


def _parse_addresses(addresses: str | None) -> list[tuple[str, str]]:
    if not addresses or not addresses.strip():
        return []
    return [(name, addr) for name, addr in email.utils.getaddresses([addresses]) if addr]


def _create_part(
    payload: bytes,
    content_type: str,
    encoding: str,
    *,
    disposition: str | None = None,
    filename: str | None = None,
) -> email.message.MIMEPart:
    encoding = (encoding or DEFAULT_ENCODING).strip().lower()
    if encoding not in ENCODINGS:
        raise SendError(f"Unsupported Content-Transfer-Encoding [{encoding}]")

    parsed = email.message.Message()
    parsed["Content-Type"] = content_type or DEFAULT_CONTENT_TYPE
    params = {k: v for k, v in parsed.get_params()[1:]}

    part = email.message.MIMEPart()
    part.set_content(
        payload,
        parsed.get_content_maintype(),
        parsed.get_content_subtype(),
        cte=encoding,
        disposition=disposition,
        filename=filename,
        params=params,
    )
    return part
