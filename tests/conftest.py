"""Shared test fixtures for the mailbridge test suite."""

from __future__ import annotations

import imaplib
import poplib
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from unittest.mock import MagicMock

import pytest

from mailbridge.config import (
    MailConsumerConfig,
    MailProducerConfig,
    Pop3ClientConfig,
    RetryConfig,
)
from mailbridge.models import PayloadMessage

IMAP_ERROR = imaplib.IMAP4.error


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=1, initial_wait_seconds=0.0, max_wait_seconds=0.0)


@pytest.fixture
def consumer_config(retry_config: RetryConfig) -> MailConsumerConfig:
    return MailConsumerConfig(
        mailbox_url="imaps://imap.test.com/INBOX",
        username="testuser",
        password="testpass",
        retry=retry_config,
        pop3=Pop3ClientConfig(),
    )


@pytest.fixture
def producer_config() -> MailProducerConfig:
    return MailProducerConfig(
        smtp_url="smtp://smtp.test.com:2525",
        to="dest@example.com",
        from_address="bridge@example.com",
        subject="Payload %message{kind}",
    )


@pytest.fixture
def payload_message() -> PayloadMessage:
    return PayloadMessage(
        unique_id="msg-0001",
        payload=b"X",
        metadata={"kind": "report", "X-Trace": "abc123", "internal": "secret"},
    )


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str | None = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    message_id: str = "<test-001@example.com>",
    cc: str | None = None,
    bcc: str | None = None,
    headers: dict[str, str] | None = None,
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = message_id
    msg["Date"] = "Mon, 01 Jun 2025 12:00:00 +0000"
    if cc:
        msg["Cc"] = cc
    if bcc:
        msg["Bcc"] = bcc
    for name, value in (headers or {}).items():
        msg[name] = value
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str | None = None,
    attachments: list[tuple[str, str, bytes]] | None = None,
    message_id: str = "<multi-001@example.com>",
) -> bytes:
    """Build a multipart email with a text body and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Message-ID"] = message_id
    msg["Date"] = "Mon, 01 Jun 2025 12:00:00 +0000"

    if body_html is None:
        msg.attach(MIMEText(body_text, "plain"))
    else:
        alt = MIMEMultipart("alternative")
        alt.attach(MIMEText(body_text, "plain"))
        alt.attach(MIMEText(body_html, "html"))
        msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


def _build_truncated_email() -> bytes:
    """A multipart email cut off before its closing boundary."""
    raw = _build_multipart_email(
        attachments=[("a.bin", "application/octet-stream", b"\x00\x01" * 64)],
        message_id="<broken-001@example.com>",
    )
    cut = raw.rfind(b"--=")
    return raw[:cut]


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )


# ------------------------------------------------------------------
# Fake IMAP server
# ------------------------------------------------------------------


@dataclass
class StoredMessage:
    raw: bytes
    flags: set[str] = field(default_factory=set)


class FakeImapServer:
    """In-memory mailbox standing in for ``imaplib.IMAP4`` / ``IMAP4_SSL``.

    Patch the imaplib class with ``side_effect=server.connect``.
    """

    def __init__(self, password: str | None = None) -> None:
        self.password = password
        self.messages: dict[int, StoredMessage] = {}
        self.connections: list[FakeImapConnection] = []
        self.connect_args: list[tuple] = []
        self.refuse_connect = False
        self._next_uid = 1

    def add(self, raw: bytes, *flags: str) -> int:
        uid = self._next_uid
        self._next_uid += 1
        self.messages[uid] = StoredMessage(raw, set(flags))
        return uid

    def flags(self, uid: int) -> set[str]:
        return self.messages[uid].flags

    def connect(self, *args, **kwargs) -> FakeImapConnection:
        self.connect_args.append((args, kwargs))
        if self.refuse_connect:
            raise ConnectionRefusedError("connection refused")
        conn = FakeImapConnection(self)
        self.connections.append(conn)
        return conn


class FakeImapConnection:
    def __init__(self, server: FakeImapServer) -> None:
        self.server = server
        self.user: str | None = None
        self.selected: str | None = None
        self.closed = False
        self.logged_out = False

    def login(self, user: str, password: str):
        if self.server.password is not None and password != self.server.password:
            raise IMAP_ERROR("[AUTHENTICATIONFAILED] Invalid credentials")
        self.user = user
        return ("OK", [b"Logged in"])

    def select(self, mailbox: str):
        self.selected = mailbox
        return ("OK", [str(len(self.server.messages)).encode()])

    def uid(self, command: str, *args):
        messages = self.server.messages
        if command == "SEARCH":
            unseen = [str(u).encode() for u in sorted(messages) if "\\Seen" not in messages[u].flags]
            return ("OK", [b" ".join(unseen)])
        if command == "FETCH":
            uid = int(args[0])
            if uid not in messages:
                return ("OK", [None])
            raw = messages[uid].raw
            return ("OK", [(b"1 (UID %d BODY[] {%d}" % (uid, len(raw)), raw), b")"])
        if command == "STORE":
            uid, action, flag_list = int(args[0]), args[1], args[2]
            names = flag_list.strip("()").split()
            if action.startswith("+"):
                messages[uid].flags.update(names)
            else:
                messages[uid].flags.difference_update(names)
            return ("OK", [b""])
        return ("BAD", [b"unknown command"])

    def close(self):
        for uid in [u for u, m in self.server.messages.items() if "\\Deleted" in m.flags]:
            del self.server.messages[uid]
        self.closed = True
        return ("OK", [b"Closed"])

    def logout(self):
        self.logged_out = True
        return ("BYE", [b"Bye"])


@pytest.fixture
def imap_server() -> FakeImapServer:
    return FakeImapServer(password="testpass")


# ------------------------------------------------------------------
# Fake POP3 server
# ------------------------------------------------------------------


class FakePop3Server:
    """In-memory maildrop standing in for ``poplib.POP3`` / ``POP3_SSL``."""

    def __init__(self, password: str | None = None) -> None:
        self.password = password
        self.messages: list[tuple[str, bytes]] = []
        self.connections: list[FakePop3Connection] = []
        self.connect_args: list[tuple] = []

    def add(self, uid: str, raw: bytes) -> None:
        self.messages.append((uid, raw))

    def uids(self) -> list[str]:
        return [uid for uid, _ in self.messages]

    def connect(self, *args, **kwargs) -> FakePop3Connection:
        self.connect_args.append((args, kwargs))
        conn = FakePop3Connection(self)
        self.connections.append(conn)
        return conn


class FakePop3Connection:
    def __init__(self, server: FakePop3Server) -> None:
        self.server = server
        self.sock = MagicMock()
        self.deleted: set[int] = set()
        self.retrieved: list[int] = []
        self.quit_called = False
        self.closed = False
        self.stls_called = False

    def stls(self, context=None):
        self.stls_called = True
        return b"+OK Begin TLS"

    def user(self, user: str):
        return b"+OK"

    def pass_(self, password: str):
        if self.server.password is not None and password != self.server.password:
            raise poplib.error_proto(b"-ERR authentication failed")
        return b"+OK logged in"

    def uidl(self):
        listing = [f"{i} {uid}".encode() for i, (uid, _) in enumerate(self.server.messages, 1)]
        return (b"+OK", listing, len(listing))

    def retr(self, number: int):
        self.retrieved.append(number)
        raw = self.server.messages[number - 1][1]
        return (b"+OK", raw.splitlines(), len(raw))

    def dele(self, number: int):
        self.deleted.add(number)
        return b"+OK"

    def quit(self):
        self.quit_called = True
        self.server.messages = [
            m for i, m in enumerate(self.server.messages, 1) if i not in self.deleted
        ]
        return b"+OK bye"

    def close(self):
        self.closed = True


@pytest.fixture
def pop3_server() -> FakePop3Server:
    return FakePop3Server(password="testpass")


# ------------------------------------------------------------------
# Fake SMTP server
# ------------------------------------------------------------------


class FakeSmtpServer:
    """Records what ``smtplib.SMTP`` / ``SMTP_SSL`` would have sent."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, list[str], bytes]] = []
        self.connect_args: list[tuple] = []
        self.logins: list[tuple[str, str]] = []
        self.starttls_called = False
        self.quit_called = False
        self.refused: dict[str, tuple[int, bytes]] = {}
        self.error: Exception | None = None

    def connect(self, *args, **kwargs) -> FakeSmtpConnection:
        self.connect_args.append((args, kwargs))
        return FakeSmtpConnection(self)


class FakeSmtpConnection:
    def __init__(self, server: FakeSmtpServer) -> None:
        self.server = server

    def __enter__(self) -> FakeSmtpConnection:
        return self

    def __exit__(self, *exc_info) -> None:
        self.server.quit_called = True

    def starttls(self, context=None):
        self.server.starttls_called = True
        return (220, b"Ready to start TLS")

    def login(self, user: str, password: str):
        self.server.logins.append((user, password))
        return (235, b"Authentication successful")

    def sendmail(self, from_addr: str, to_addrs: list[str], msg: bytes):
        if self.server.error is not None:
            raise self.server.error
        self.server.sent.append((from_addr, list(to_addrs), msg))
        return dict(self.server.refused)


@pytest.fixture
def smtp_server() -> FakeSmtpServer:
    return FakeSmtpServer()


# ------------------------------------------------------------------
# Sinks
# ------------------------------------------------------------------


class RecordingSink:
    """Collects accepted payloads; rejects those matching *reject*."""

    def __init__(self, reject=None) -> None:
        self.accepted: list[PayloadMessage] = []
        self._reject = reject

    async def accept(self, message: PayloadMessage) -> None:
        if self._reject is not None and self._reject(message):
            raise RuntimeError("sink rejected message")
        self.accepted.append(message)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
