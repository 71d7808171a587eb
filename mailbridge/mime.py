"""MIME decomposition — one mailbox message in, one or more payloads out.

The MIME tree is flattened depth first into its leaf parts.  A leaf with a
filename or ``Content-Disposition: attachment`` is an attachment; of the
remaining leaves, a :class:`PartSelector` picks (at most) one as the body.
The body is emitted first, then every attachment in document order.
"""

from __future__ import annotations

import abc
import email
import email.errors
import email.message
import email.parser
import email.policy
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from .errors import MessageProcessingError
from .metadata import MetadataFilter, NoOpMetadataFilter
from .models import (
    EMAIL_ATTACH_CONTENT_TYPE,
    EMAIL_ATTACH_FILENAME,
    EMAIL_MESSAGE_ID,
    EMAIL_TOTAL_ATTACHMENTS,
    PayloadMessage,
)

logger = structlog.get_logger()

#: Multiparts nested deeper than this are rejected.
MAX_MIME_DEPTH = 32

_FATAL_DEFECTS = (
    email.errors.StartBoundaryNotFoundDefect,
    email.errors.CloseBoundaryNotFoundDefect,
    email.errors.MultipartInvariantViolationDefect,
    email.errors.NoBoundaryInMultipartDefect,
)


@dataclass
class MimePart:
    """A leaf of the MIME tree with its transfer encoding removed."""

    payload: bytes
    content_type: str
    filename: str | None = None
    disposition: str | None = None

    @property
    def is_attachment(self) -> bool:
        return bool(self.filename) or self.disposition == "attachment"


# ------------------------------------------------------------------
# Part selectors
# ------------------------------------------------------------------


class PartSelector(abc.ABC):
    """Choose the body from the non-attachment parts of a message."""

    @abc.abstractmethod
    def select(self, parts: list[MimePart], raw_bytes: bytes) -> MimePart | None: ...


class SelectByPosition(PartSelector):
    """The *position*-th non-attachment part (0 based); the default is the first."""

    def __init__(self, position: int = 0) -> None:
        self.position = position

    def select(self, parts: list[MimePart], raw_bytes: bytes) -> MimePart | None:
        if 0 <= self.position < len(parts):
            return parts[self.position]
        return None


class SelectByContentType(PartSelector):
    """The first non-attachment part of the given content type."""

    def __init__(self, content_type: str) -> None:
        self.content_type = content_type.lower()

    def select(self, parts: list[MimePart], raw_bytes: bytes) -> MimePart | None:
        return next((p for p in parts if p.content_type == self.content_type), None)


class SelectByPredicate(PartSelector):
    """The first non-attachment part for which *predicate* is true."""

    def __init__(self, predicate: Callable[[MimePart], bool]) -> None:
        self.predicate = predicate

    def select(self, parts: list[MimePart], raw_bytes: bytes) -> MimePart | None:
        return next((p for p in parts if self.predicate(p)), None)


class NullPartSelector(PartSelector):
    """No body at all; only attachments are emitted."""

    def select(self, parts: list[MimePart], raw_bytes: bytes) -> MimePart | None:
        return None


class WholeMessageSelector(PartSelector):
    """The body is the complete, undecoded message."""

    def select(self, parts: list[MimePart], raw_bytes: bytes) -> MimePart | None:
        return MimePart(payload=raw_bytes, content_type="message/rfc822")


# ------------------------------------------------------------------
# Header handlers
# ------------------------------------------------------------------


class MailHeaderHandler(abc.ABC):
    """Copy (some) top-level mail headers onto each produced message."""

    @abc.abstractmethod
    def handle(self, headers: email.message.Message, message: PayloadMessage) -> None: ...


class IgnoreMailHeaders(MailHeaderHandler):
    """Copy nothing."""

    def handle(self, headers: email.message.Message, message: PayloadMessage) -> None:
        return None


class MetadataMailHeaders(MailHeaderHandler):
    """Copy headers accepted by *header_filter* as metadata, keys prefixed by *prefix*.

    Only the first occurrence of a repeated header is copied.
    """

    def __init__(
        self,
        prefix: str = "",
        header_filter: MetadataFilter | None = None,
    ) -> None:
        self.prefix = prefix
        self.header_filter = header_filter or NoOpMetadataFilter()

    def handle(self, headers: email.message.Message, message: PayloadMessage) -> None:
        values: dict[str, str] = {}
        for key, value in headers.items():
            values.setdefault(key, str(value))
        for key, value in self.header_filter.filter(values).items():
            message.add_metadata(f"{self.prefix}{key}", value)


# ------------------------------------------------------------------
# Decomposers
# ------------------------------------------------------------------


class MessageDecomposer(abc.ABC):
    """Turn raw RFC 822 bytes into payload messages, all or nothing."""

    def __init__(self, header_handler: MailHeaderHandler | None = None) -> None:
        self.header_handler = header_handler or IgnoreMailHeaders()

    @abc.abstractmethod
    def decompose(self, raw_bytes: bytes) -> list[PayloadMessage]: ...


class MimeDecomposer(MessageDecomposer):
    """Body and attachments become separate :class:`PayloadMessage` instances."""

    def __init__(
        self,
        part_selector: PartSelector | None = None,
        header_handler: MailHeaderHandler | None = None,
    ) -> None:
        super().__init__(header_handler)
        self.part_selector = part_selector or SelectByPosition(0)

    def decompose(self, raw_bytes: bytes) -> list[PayloadMessage]:
        try:
            msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
            _check_structure(msg)
            parts = flatten_parts(msg)

            attachments = [p for p in parts if p.is_attachment]
            body = self.part_selector.select(
                [p for p in parts if not p.is_attachment], raw_bytes
            )

            message_id = msg.get("Message-ID")
            common: dict[str, str] = {EMAIL_TOTAL_ATTACHMENTS: str(len(attachments))}
            if message_id:
                common[EMAIL_MESSAGE_ID] = str(message_id)

            results: list[PayloadMessage] = []
            if body is not None:
                results.append(self._build(msg, body.payload, common))
            for part in attachments:
                results.append(
                    self._build(
                        msg,
                        part.payload,
                        {
                            **common,
                            EMAIL_ATTACH_FILENAME: part.filename or "unnamed",
                            EMAIL_ATTACH_CONTENT_TYPE: part.content_type,
                        },
                    )
                )
        except MessageProcessingError:
            raise
        except Exception as exc:
            raise MessageProcessingError(f"Failed to decompose message: {exc}") from exc

        logger.debug(
            "message_decomposed",
            message_id=common.get(EMAIL_MESSAGE_ID),
            body=body is not None,
            attachments=len(attachments),
        )
        return results

    def _build(
        self,
        msg: email.message.Message,
        payload: bytes,
        metadata: dict[str, str],
    ) -> PayloadMessage:
        result = PayloadMessage(payload=payload, metadata=dict(metadata))
        self.header_handler.handle(msg, result)
        return result


class RawMessageDecomposer(MessageDecomposer):
    """The whole message, undecoded, as a single payload."""

    def decompose(self, raw_bytes: bytes) -> list[PayloadMessage]:
        try:
            headers = email.parser.BytesHeaderParser(policy=email.policy.default).parsebytes(
                raw_bytes
            )
            result = PayloadMessage(payload=raw_bytes)
            message_id = headers.get("Message-ID")
            if message_id:
                result.add_metadata(EMAIL_MESSAGE_ID, str(message_id))
            self.header_handler.handle(headers, result)
        except Exception as exc:
            raise MessageProcessingError(f"Failed to read message headers: {exc}") from exc
        return [result]


# ------------------------------------------------------------------
# Tree walking
# ------------------------------------------------------------------


def flatten_parts(msg: email.message.Message) -> list[MimePart]:
    """Depth-first list of the leaf parts of *msg* in document order."""
    out: list[MimePart] = []
    _visit(msg, 0, out)
    return out


def _visit(part: email.message.Message, depth: int, out: list[MimePart]) -> None:
    if depth > MAX_MIME_DEPTH:
        raise MessageProcessingError(f"MIME nesting deeper than {MAX_MIME_DEPTH} levels")
    if part.get_content_maintype() == "multipart":
        for child in part.get_payload():
            _visit(child, depth + 1, out)
        return
    out.append(_leaf(part))


def _leaf(part: email.message.Message) -> MimePart:
    if part.is_multipart():
        # message/rfc822 and friends: keep the enclosed message intact
        enclosed = part.get_payload()
        payload = b"".join(m.as_bytes() for m in enclosed)
    else:
        payload = part.get_payload(decode=True) or b""
    return MimePart(
        payload=payload,
        content_type=part.get_content_type(),
        filename=part.get_filename(),
        disposition=part.get_content_disposition(),
    )


def _check_structure(msg: email.message.Message) -> None:
    for part in msg.walk():
        for defect in part.defects:
            if isinstance(defect, _FATAL_DEFECTS):
                raise MessageProcessingError(f"Malformed MIME structure: {type(defect).__name__}")
