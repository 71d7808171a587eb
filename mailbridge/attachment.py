"""Mail creators — split one XML payload into a body and many attachments.

An :class:`XmlMailCreator` reads the payload as an XML document.  Its body
handler picks the node holding the email body; its attachment handler picks
every node that becomes an attachment, along with that attachment's
filename and transfer encoding::

    <document>
      <content>Quick zephyrs blow, vexing daft Jim</content>
      <attachment encoding="base64" filename="a.txt">dp/HSJfonUsSMM7QRBSRfg==</attachment>
    </document>

Paths use the ElementTree subset of XPath.  A path starting with ``/`` is
evaluated from the document (``/document/content``, ``//attachment``);
anything else is relative to the root element.  Value paths such as
``@filename`` or ``meta/@type`` read an attribute, otherwise the text of
the selected element.
"""

from __future__ import annotations

import abc
import base64
import binascii
import quopri
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from .config import MailProducerConfig
from .errors import ConfigurationError, SendError
from .models import PayloadMessage
from .smtp_client import DEFAULT_CONTENT_TYPE, DEFAULT_ENCODING

logger = structlog.get_logger()

DEFAULT_ATTACHMENT_CONTENT_TYPE = "application/octet-stream"

_IDENTITY_ENCODINGS = frozenset({"7bit", "8bit", "binary"})


@dataclass
class MailContent:
    """The body of an outbound email."""

    payload: bytes
    content_type: str = DEFAULT_CONTENT_TYPE


@dataclass
class MailAttachment:
    """One attachment of an outbound email; *encoding* is the outgoing CTE."""

    payload: bytes
    filename: str | None
    content_type: str = DEFAULT_ATTACHMENT_CONTENT_TYPE
    encoding: str = DEFAULT_ENCODING


# ------------------------------------------------------------------
# Handlers
# ------------------------------------------------------------------


class BodyHandler(abc.ABC):
    @abc.abstractmethod
    def resolve(self, root: ET.Element) -> MailContent: ...


class AttachmentHandler(abc.ABC):
    @abc.abstractmethod
    def resolve(self, root: ET.Element) -> list[MailAttachment]: ...


class XmlBodyHandler(BodyHandler):
    """Use the text of the first node at *path* as the body.

    If *encoding_path* is set, its value (relative to the body node) names
    the encoding the text is stored in, e.g. ``base64``.  A missing node
    gives an empty body.
    """

    def __init__(
        self,
        path: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
        encoding_path: str | None = None,
        namespaces: Mapping[str, str] | None = None,
    ) -> None:
        self.path = path
        self.content_type = content_type
        self.encoding_path = encoding_path
        self.namespaces = dict(namespaces or {})

    def resolve(self, root: ET.Element) -> MailContent:
        nodes = select_nodes(root, self.path, self.namespaces)
        if not nodes:
            return MailContent(b"", self.content_type)
        node = nodes[0]
        encoding = None
        if self.encoding_path:
            encoding = select_value(node, self.encoding_path, self.namespaces)
        return MailContent(decode_text(_text(node), encoding), self.content_type)


class XmlAttachmentHandler(AttachmentHandler):
    """Every node at *path* becomes an attachment, in document order.

    *filename_path*, *encoding_path* and *content_type_path* are evaluated
    relative to each attachment node.  *attachment_encoding* is the
    Content-Transfer-Encoding used when sending.
    """

    def __init__(
        self,
        path: str,
        filename_path: str | None = "@filename",
        encoding_path: str | None = "@encoding",
        *,
        content_type_path: str | None = None,
        content_type: str = DEFAULT_ATTACHMENT_CONTENT_TYPE,
        attachment_encoding: str = DEFAULT_ENCODING,
        namespaces: Mapping[str, str] | None = None,
    ) -> None:
        self.path = path
        self.filename_path = filename_path
        self.encoding_path = encoding_path
        self.content_type_path = content_type_path
        self.content_type = content_type
        self.attachment_encoding = attachment_encoding
        self.namespaces = dict(namespaces or {})

    def resolve(self, root: ET.Element) -> list[MailAttachment]:
        return [self._attachment(node) for node in select_nodes(root, self.path, self.namespaces)]

    def _attachment(self, node: ET.Element) -> MailAttachment:
        encoding = self._value(node, self.encoding_path)
        return MailAttachment(
            payload=decode_text(_text(node), encoding),
            filename=self._value(node, self.filename_path),
            content_type=self._value(node, self.content_type_path) or self.content_type,
            encoding=self.attachment_encoding,
        )

    def _value(self, node: ET.Element, path: str | None) -> str | None:
        if not path:
            return None
        return select_value(node, path, self.namespaces)


# ------------------------------------------------------------------
# Creators
# ------------------------------------------------------------------


class MailCreator(abc.ABC):
    """Derive the body and attachments of an email from a payload message."""

    @abc.abstractmethod
    def create_body(self, message: PayloadMessage) -> MailContent | None: ...

    @abc.abstractmethod
    def create_attachments(self, message: PayloadMessage) -> list[MailAttachment]: ...


class XmlMailCreator(MailCreator):
    """Read the payload as XML; either handler may be omitted."""

    def __init__(
        self,
        body_handler: BodyHandler | None = None,
        attachment_handler: AttachmentHandler | None = None,
    ) -> None:
        self.body_handler = body_handler
        self.attachment_handler = attachment_handler

    @classmethod
    def from_config(cls, config: MailProducerConfig) -> XmlMailCreator:
        if not config.xml_body_path and not config.xml_attachment_path:
            raise ConfigurationError(
                "Multi-attachment mail needs xml_body_path or xml_attachment_path"
            )
        body_handler = None
        if config.xml_body_path:
            body_handler = XmlBodyHandler(
                config.xml_body_path,
                config.xml_body_content_type,
                config.xml_body_encoding_path,
            )
        attachment_handler = None
        if config.xml_attachment_path:
            attachment_handler = XmlAttachmentHandler(
                config.xml_attachment_path,
                config.xml_attachment_filename_path,
                config.xml_attachment_encoding_path,
                attachment_encoding=config.content_encoding or DEFAULT_ENCODING,
            )
        return cls(body_handler, attachment_handler)

    def create_body(self, message: PayloadMessage) -> MailContent | None:
        if self.body_handler is None:
            return None
        return self._resolve(self.body_handler, message)

    def create_attachments(self, message: PayloadMessage) -> list[MailAttachment]:
        if self.attachment_handler is None:
            return []
        attachments = self._resolve(self.attachment_handler, message)
        logger.debug(
            "mail_attachments_created",
            unique_id=message.unique_id,
            attachments=len(attachments),
        )
        return attachments

    @staticmethod
    def _resolve(handler: BodyHandler | AttachmentHandler, message: PayloadMessage):
        try:
            root = ET.fromstring(message.payload)
        except ET.ParseError as exc:
            raise SendError(f"Payload of {message.unique_id} is not XML: {exc}") from exc
        try:
            return handler.resolve(root)
        except SyntaxError as exc:
            raise ConfigurationError(f"Invalid path for {type(handler).__name__}: {exc}") from exc


# ------------------------------------------------------------------
# Path evaluation and decoding
# ------------------------------------------------------------------


def select_nodes(
    root: ET.Element, path: str, namespaces: Mapping[str, str] | None = None
) -> list[ET.Element]:
    if path.startswith("/"):
        document = ET.Element("document")
        document.append(root)
        return document.findall("." + path, namespaces)
    return root.findall(path, namespaces)


def select_value(
    node: ET.Element, path: str, namespaces: Mapping[str, str] | None = None
) -> str | None:
    element_path, at, attribute = path.rpartition("@")
    if not at:
        element_path, attribute = path, ""
    element_path = element_path.rstrip("/")
    target = node.find(element_path, namespaces) if element_path else node
    if target is None:
        return None
    if attribute:
        return target.get(attribute)
    return _text(target).strip()


def decode_text(text: str, encoding: str | None) -> bytes:
    """Turn node text stored in *encoding* back into bytes."""
    key = (encoding or "").strip().lower()
    try:
        if key == "base64":
            return base64.b64decode("".join(text.split()))
        if key == "quoted-printable":
            return quopri.decodestring(text.strip().encode("ascii"))
    except (binascii.Error, ValueError) as exc:
        raise SendError(f"Cannot decode {key} content: {exc}") from exc
    if key and key not in _IDENTITY_ENCODINGS:
        raise SendError(f"Unsupported content encoding [{encoding}]")
    return text.encode("utf-8")


def _text(node: ET.Element) -> str:
    return "".join(node.itertext())
