"""Exception hierarchy for mailbox consumers and SMTP producers.

Per-item failures (:class:`MessageProcessingError`, :class:`SendError`) are
isolated by the caller; configuration and connection failures abort the
whole operation.
"""

from __future__ import annotations


class MailError(Exception):
    """Base class for every error raised by :mod:`mailbridge`."""


class ConfigurationError(MailError):
    """Invalid configuration: bad URL, unsupported protocol, unknown dialect."""


class MailConnectionError(MailError):
    """Could not connect or talk to the mail server (auth, network, TLS)."""


class FilterCompileError(MailError):
    """A filter clause value is not a valid pattern in the configured dialect."""


class MessageProcessingError(MailError):
    """A single mailbox message could not be decomposed or delivered."""

    def __init__(self, message: str, *, message_id: str | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class SendError(MailError):
    """An outbound email could not be built or transmitted."""


class NoRecipientsError(SendError):
    """Raised when to, cc and bcc all resolve to nothing."""
