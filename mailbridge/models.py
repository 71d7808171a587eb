"""Data models shared by the consumer and producer sides."""

from __future__ import annotations

import email.message
import email.parser
import email.policy
import re
import uuid
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

# Metadata keys produced by decomposition; downstream consumers rely on these
# exact strings.
EMAIL_MESSAGE_ID = "emailmessageid"
EMAIL_ATTACH_FILENAME = "emailattachmentfilename"
EMAIL_ATTACH_CONTENT_TYPE = "emailattachmentcontenttype"
EMAIL_TOTAL_ATTACHMENTS = "emailtotalattachments"

_EXPRESSION = re.compile(r"%message\{([^}]+)\}")


class PayloadMessage(BaseModel):
    """One unit of work handed to (or taken from) the pipeline.

    The consumer creates one per selected MIME part; the producer turns one
    into an outbound email.
    """

    unique_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this message",
    )
    payload: bytes = Field(default=b"", description="Raw payload bytes")
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Key/value metadata travelling with the payload",
    )

    @property
    def content(self) -> str:
        return self.payload.decode("utf-8", errors="replace")

    def add_metadata(self, key: str, value: str) -> None:
        self.metadata[key] = value

    def get_metadata(self, key: str, default: str | None = None) -> str | None:
        return self.metadata.get(key, default)

    def resolve(self, expression: str | None) -> str | None:
        """Substitute ``%message{key}`` references with metadata values.

        Raises :class:`KeyError` if a referenced key is not present.
        """
        if expression is None:
            return None

        def _lookup(match: re.Match[str]) -> str:
            key = match.group(1)
            if key not in self.metadata:
                raise KeyError(f"No metadata value for [{key}]")
            return self.metadata[key]

        return _EXPRESSION.sub(_lookup, expression)


@dataclass
class RawMailMessage:
    """A mailbox entry as seen by a receiver for the life of one connection."""

    id: str
    raw_bytes: bytes
    read: bool = False
    _headers: email.message.EmailMessage | None = field(
        default=None, init=False, repr=False, compare=False
    )

    @property
    def headers(self) -> email.message.EmailMessage:
        """Top-level headers only; the body is not walked."""
        if self._headers is None:
            parser = email.parser.BytesHeaderParser(policy=email.policy.default)
            self._headers = parser.parsebytes(self.raw_bytes)
        return self._headers

    @property
    def message_id(self) -> str | None:
        value = self.headers.get("Message-ID")
        return str(value) if value else None
