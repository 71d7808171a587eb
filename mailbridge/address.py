"""Mailbox and SMTP server addresses.

A mailbox is configured as a URL of the form::

    protocol://[user[:password]@]host[:port]/[folder]

``folder`` only has meaning for the IMAP family; POP3 always reads the
single implicit ``INBOX``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from urllib.parse import unquote, urlsplit

from .errors import ConfigurationError

DEFAULT_FOLDER = "INBOX"

DEFAULT_PORTS: dict[str, int] = {
    "pop3": 110,
    "pop3s": 995,
    "imap": 143,
    "imaps": 993,
    "smtp": 25,
    "smtps": 465,
}

POP3_PROTOCOLS = frozenset({"pop3", "pop3s"})
IMAP_PROTOCOLS = frozenset({"imap", "imaps"})
RECEIVE_PROTOCOLS = POP3_PROTOCOLS | IMAP_PROTOCOLS
SEND_PROTOCOLS = frozenset({"smtp", "smtps"})
SSL_PROTOCOLS = frozenset({"pop3s", "imaps", "smtps"})


@dataclass(frozen=True)
class MailboxAddress:
    """Immutable description of where a mailbox (or SMTP relay) lives."""

    protocol: str
    host: str
    port: int | None = None
    folder: str | None = None
    username: str | None = None
    password: str | None = field(default=None, repr=False)

    @classmethod
    def parse(
        cls,
        url: str,
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> MailboxAddress:
        """Parse *url*.

        Explicit *username* / *password* arguments win over credentials
        embedded in the URL.
        """
        if not url or not url.strip():
            raise ConfigurationError("Mailbox URL is mandatory")
        try:
            parts = urlsplit(url.strip())
            port = parts.port
        except ValueError as exc:
            raise ConfigurationError(f"Invalid mailbox URL: {exc}") from exc

        protocol = parts.scheme.lower()
        if protocol not in DEFAULT_PORTS:
            raise ConfigurationError(f"Unsupported mail protocol [{parts.scheme}]")
        if not parts.hostname:
            raise ConfigurationError("Mailbox URL has no host")

        folder = unquote(parts.path.lstrip("/")) or None
        return cls(
            protocol=protocol,
            host=parts.hostname,
            port=port,
            folder=folder,
            username=username or (unquote(parts.username) if parts.username else None),
            password=password or (unquote(parts.password) if parts.password else None),
        )

    @property
    def effective_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORTS[self.protocol]

    @property
    def mailbox(self) -> str:
        """Folder to open; POP3 only ever has ``INBOX``."""
        if self.protocol in POP3_PROTOCOLS:
            return DEFAULT_FOLDER
        return self.folder or DEFAULT_FOLDER

    @property
    def use_ssl(self) -> bool:
        return self.protocol in SSL_PROTOCOLS

    def with_credentials(self, username: str | None, password: str | None) -> MailboxAddress:
        return replace(
            self,
            username=username or self.username,
            password=password or self.password,
        )

    def to_safe_string(self) -> str:
        """Render the address as a URL with the password masked."""
        out = f"{self.protocol}://"
        if self.username:
            out += self.username
            if self.password:
                out += ":*****"
            out += "@"
        out += self.host
        if self.port is not None:
            out += f":{self.port}"
        if self.folder:
            out += f"/{self.folder}"
        return out

    def __str__(self) -> str:
        return self.to_safe_string()
