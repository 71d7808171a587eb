"""Receiver factories — pick a mailbox client from the address protocol.

``library`` (the default) understands every receive protocol: IMAP via
``imaplib`` and POP3 via ``poplib``.  ``pop3`` and ``pop3s``
only accept their own protocol but expose socket level tuning.
"""

from __future__ import annotations

import abc
import ssl

from .address import IMAP_PROTOCOLS, RECEIVE_PROTOCOLS, MailboxAddress
from .config import Pop3ClientConfig
from .errors import ConfigurationError
from .imap_client import ImapReceiver
from .pop3_client import Pop3Receiver
from .receiver import MailReceiver


class MailReceiverFactory(abc.ABC):
    """Creates a :class:`MailReceiver` for a :class:`MailboxAddress`."""

    supported_protocols: frozenset[str] = frozenset()

    def create_client(self, address: MailboxAddress) -> MailReceiver:
        if address.protocol not in self.supported_protocols:
            raise ConfigurationError(
                f"{address.protocol} is not supported by {type(self).__name__}"
            )
        return self._create(address)

    @abc.abstractmethod
    def _create(self, address: MailboxAddress) -> MailReceiver: ...


class LibraryReceiverFactory(MailReceiverFactory):
    """Default factory: IMAP, IMAPS, POP3 and POP3S."""

    supported_protocols = RECEIVE_PROTOCOLS

    def __init__(
        self,
        *,
        timeout: float | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._timeout = timeout
        self._ssl_context = ssl_context

    def _create(self, address: MailboxAddress) -> MailReceiver:
        if address.protocol in IMAP_PROTOCOLS:
            return ImapReceiver(address, timeout=self._timeout, ssl_context=self._ssl_context)
        return Pop3Receiver(address, Pop3ClientConfig(timeout=self._timeout))


class Pop3ReceiverFactory(MailReceiverFactory):
    """Plain POP3 with socket tuning."""

    supported_protocols = frozenset({"pop3"})

    def __init__(self, config: Pop3ClientConfig | None = None) -> None:
        self._config = config or Pop3ClientConfig()

    def _create(self, address: MailboxAddress) -> MailReceiver:
        return Pop3Receiver(address, self._config)


class Pop3sReceiverFactory(Pop3ReceiverFactory):
    """POP3 over TLS (implicit or STLS) with socket tuning."""

    supported_protocols = frozenset({"pop3s"})


def receiver_factory(
    name: str | None,
    *,
    timeout: float | None = None,
    pop3: Pop3ClientConfig | None = None,
) -> MailReceiverFactory:
    """Resolve a configured receiver name to a factory instance."""
    key = (name or "library").strip().lower()
    if key == "library":
        return LibraryReceiverFactory(timeout=timeout)
    if key == "pop3":
        return Pop3ReceiverFactory(pop3)
    if key == "pop3s":
        return Pop3sReceiverFactory(pop3)
    raise ConfigurationError(f"Unknown mail receiver [{name}]")
