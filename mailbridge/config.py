"""Configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars,
which is the natural config mechanism in Kubernetes.
"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class RetryConfig(BaseSettings):
    """Retry / backoff settings for mailbox connects, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=1, description="Connect attempts per poll cycle")
    initial_wait_seconds: float = Field(
        default=1.0,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class LoggingConfig(BaseSettings):
    """Log output settings for the process."""

    model_config = {"env_prefix": "LOG_"}

    json_output: bool = Field(
        default=True,
        description="JSON lines (production) or a console renderer (development)",
    )
    level: str = Field(default="INFO", description="Root log level name")


class KafkaConfig(BaseSettings):
    """Kafka settings for the downstream sink."""

    model_config = {"env_prefix": "KAFKA_"}

    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Comma-separated Kafka bootstrap servers",
    )
    topic: str = Field(
        default="mail-messages",
        description="Topic that decomposed mail payloads are published to",
    )
    producer_acks: str = Field(
        default="all",
        description="Producer acknowledgement level",
    )
    producer_compression: str = Field(
        default="gzip",
        description="Compression codec for produced messages",
    )


class Pop3ClientConfig(BaseSettings):
    """Socket level tuning for the lightweight POP3 / POP3S client."""

    model_config = {"env_prefix": "POP3_"}

    connect_timeout: float | None = Field(
        default=None,
        description="Seconds to wait for the TCP connect",
    )
    timeout: float | None = Field(
        default=None,
        description="Default timeout in seconds for socket operations",
    )
    receive_buffer_size: int | None = Field(default=None, description="SO_RCVBUF in bytes")
    send_buffer_size: int | None = Field(default=None, description="SO_SNDBUF in bytes")
    tcp_no_delay: bool | None = Field(default=None, description="Disable Nagle's algorithm")
    keep_alive: bool | None = Field(default=None, description="Enable SO_KEEPALIVE")
    implicit_tls: bool = Field(
        default=True,
        description="POP3S only: TLS from the first byte (else upgrade with STLS)",
    )
    always_trust: bool = Field(
        default=False,
        description="POP3S only: skip certificate and hostname verification",
    )


class MailConsumerConfig(BaseSettings):
    """Settings for polling one mailbox."""

    model_config = {"env_prefix": "MAIL_CONSUMER_"}

    mailbox_url: str = Field(
        description="Mailbox URL, e.g. imaps://user@imap.example.com:993/INBOX",
    )
    username: str | None = Field(
        default=None,
        description="Login username; overrides any username in the URL",
    )
    password: SecretStr | None = Field(
        default=None,
        description="Login password (passed through the secret resolver)",
    )
    filter_expression: str | None = Field(
        default=None,
        description="FROM=..,SUBJECT=..,RECIPIENT=..,<header>=..; blank or * matches all",
    )
    regular_expression_style: str = Field(
        default="Regex",
        description="Pattern dialect for filter values (Regex, Glob)",
    )
    delete_on_receive: bool = Field(
        default=False,
        description="Delete messages from the mailbox once processed",
    )
    attempt_connect_on_init: bool = Field(
        default=True,
        description="Probe the mailbox once at startup so misconfiguration fails fast",
    )
    max_messages_per_cycle: int | None = Field(
        default=None,
        description="Stop a poll cycle after this many messages",
    )
    poll_interval_seconds: float = Field(
        default=60.0,
        description="Seconds between poll cycles",
    )
    receiver: str = Field(
        default="library",
        description="Mailbox client implementation: library, pop3 or pop3s",
    )
    timeout: float | None = Field(
        default=None,
        description="Socket timeout in seconds for the library IMAP client",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    pop3: Pop3ClientConfig = Field(default_factory=Pop3ClientConfig)


class MailProducerConfig(BaseSettings):
    """Settings for sending one email per pipeline message.

    ``to``, ``cc_list``, ``bcc_list``, ``subject``, ``from_address``,
    ``filename`` and ``content_type`` may reference message metadata with
    ``%message{key}``.
    """

    model_config = {"env_prefix": "MAIL_PRODUCER_"}

    smtp_url: str = Field(description="SMTP relay URL, e.g. smtp://relay.example.com:25")
    username: str | None = Field(default=None, description="SMTP login username")
    password: SecretStr | None = Field(default=None, description="SMTP login password")
    to: str | None = Field(default=None, description="Comma separated To addresses")
    cc_list: str | None = Field(default=None, description="Comma separated Cc addresses")
    bcc_list: str | None = Field(default=None, description="Comma separated Bcc addresses")
    from_address: str | None = Field(default=None, description="From address")
    subject: str | None = Field(default=None, description="Subject line")
    content_type: str | None = Field(
        default=None,
        description="Content-Type of the payload part",
    )
    content_encoding: str | None = Field(
        default=None,
        description="Content-Transfer-Encoding of the payload part (default base64)",
    )
    filename: str | None = Field(
        default=None,
        description="Attachment filename (attachment mode only)",
    )
    body: str | None = Field(
        default=None,
        description="Plain text body template (attachment mode only)",
    )
    session_properties: dict[str, str] = Field(
        default_factory=dict,
        description="Extra properties for the SMTP session",
    )
    header_include_patterns: list[str] = Field(
        default_factory=list,
        description="Metadata keys matching these patterns are sent as mail headers",
    )
    header_exclude_patterns: list[str] = Field(
        default_factory=list,
        description="Metadata keys matching these patterns are never sent as headers",
    )
    xml_body_path: str | None = Field(
        default=None,
        description="Multi-attachment mode: path to the body node, e.g. /document/content",
    )
    xml_body_content_type: str = Field(
        default="text/plain",
        description="Multi-attachment mode: Content-Type of the body",
    )
    xml_body_encoding_path: str | None = Field(
        default=None,
        description="Multi-attachment mode: path (relative to the body) naming its encoding",
    )
    xml_attachment_path: str | None = Field(
        default=None,
        description="Multi-attachment mode: path to the attachment nodes, e.g. //attachment",
    )
    xml_attachment_filename_path: str | None = Field(
        default="@filename",
        description="Multi-attachment mode: path (relative to each attachment) to its filename",
    )
    xml_attachment_encoding_path: str | None = Field(
        default="@encoding",
        description="Multi-attachment mode: path (relative to each attachment) to its encoding",
    )


SecretResolver = Callable[[str], str]


def plain_secret(value: str) -> str:
    """Default secret resolver: the configured value is the secret."""
    return value
