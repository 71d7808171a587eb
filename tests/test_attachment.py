"""Tests for mailbridge.attachment."""

from __future__ import annotations

import base64
import hashlib

import pytest

from mailbridge.attachment import (
    XmlAttachmentHandler,
    XmlBodyHandler,
    XmlMailCreator,
    decode_text,
)
from mailbridge.config import MailProducerConfig
from mailbridge.errors import ConfigurationError, SendError
from mailbridge.models import PayloadMessage


def _digest(text: str) -> bytes:
    return hashlib.md5(text.encode()).digest()


def _encoded_digest(text: str) -> str:
    return base64.b64encode(_digest(text)).decode()


XML_DOCUMENT = f"""<?xml version="1.0"?>
<document>
<subject>an email with attachments perhaps</subject>
<content>Quick zephyrs blow, vexing daft Jim</content>
<attachment encoding="base64" filename="attachment1.txt">{_encoded_digest("ADP-01")}</attachment>
<attachment encoding="base64" filename="attachment2.txt">{_encoded_digest("PENRY")}</attachment>
</document>"""


@pytest.fixture
def xml_message() -> PayloadMessage:
    return PayloadMessage(unique_id="xml-0001", payload=XML_DOCUMENT.encode())


class TestXmlBodyHandler:
    def test_body(self, xml_message: PayloadMessage):
        creator = XmlMailCreator(body_handler=XmlBodyHandler("/document/content", "plain/text"))
        body = creator.create_body(xml_message)
        assert body.content_type == "plain/text"
        assert body.payload == b"Quick zephyrs blow, vexing daft Jim"

    def test_relative_path(self, xml_message: PayloadMessage):
        creator = XmlMailCreator(body_handler=XmlBodyHandler("subject"))
        assert creator.create_body(xml_message).payload == b"an email with attachments perhaps"

    def test_missing_node_gives_empty_body(self, xml_message: PayloadMessage):
        creator = XmlMailCreator(body_handler=XmlBodyHandler("/document/nothing"))
        assert creator.create_body(xml_message).payload == b""

    def test_encoded_body(self):
        encoded = base64.b64encode(b"hello body").decode()
        message = PayloadMessage(
            payload=f'<doc><body enc="base64">{encoded}</body></doc>'.encode()
        )
        creator = XmlMailCreator(
            body_handler=XmlBodyHandler("/doc/body", "text/plain", encoding_path="@enc")
        )
        assert creator.create_body(message).payload == b"hello body"

    def test_no_handler(self, xml_message: PayloadMessage):
        creator = XmlMailCreator()
        assert creator.create_body(xml_message) is None
        assert creator.create_attachments(xml_message) == []


class TestXmlAttachmentHandler:
    def test_attachments(self, xml_message: PayloadMessage):
        creator = XmlMailCreator(
            attachment_handler=XmlAttachmentHandler("/document/attachment", "@filename", "@encoding")
        )
        first, second = creator.create_attachments(xml_message)

        assert first.payload == _digest("ADP-01")
        assert first.filename == "attachment1.txt"
        assert first.encoding == "base64"
        assert first.content_type == "application/octet-stream"
        assert second.payload == _digest("PENRY")
        assert second.filename == "attachment2.txt"
        assert second.encoding == "base64"

    def test_outgoing_encoding(self, xml_message: PayloadMessage):
        creator = XmlMailCreator(
            attachment_handler=XmlAttachmentHandler(
                "//attachment", "@filename", "@encoding", attachment_encoding="8bit"
            )
        )
        attachments = creator.create_attachments(xml_message)
        assert [a.encoding for a in attachments] == ["8bit", "8bit"]
        assert attachments[0].payload == _digest("ADP-01")

    def test_child_element_values(self):
        message = PayloadMessage(
            payload=(
                b"<mail><file><name>r.csv</name><type>text/csv</type>"
                b"<data>a,b</data></file></mail>"
            )
        )
        handler = XmlAttachmentHandler(
            "file/data",
            filename_path=None,
            encoding_path=None,
        )
        (attachment,) = XmlMailCreator(attachment_handler=handler).create_attachments(message)
        assert attachment.payload == b"a,b"
        assert attachment.filename is None

        handler = XmlAttachmentHandler(
            "file", "name", None, content_type_path="type"
        )
        (attachment,) = XmlMailCreator(attachment_handler=handler).create_attachments(message)
        assert attachment.filename == "r.csv"
        assert attachment.content_type == "text/csv"
        assert attachment.payload == b"r.csvtext/csva,b"

    def test_namespaces(self):
        message = PayloadMessage(
            payload=b'<d xmlns:m="urn:mail"><m:att filename="x.txt">hi</m:att></d>'
        )
        handler = XmlAttachmentHandler("m:att", namespaces={"m": "urn:mail"}, encoding_path=None)
        (attachment,) = XmlMailCreator(attachment_handler=handler).create_attachments(message)
        assert attachment.filename == "x.txt"
        assert attachment.payload == b"hi"


class TestXmlMailCreatorErrors:
    def test_payload_not_xml(self):
        creator = XmlMailCreator(body_handler=XmlBodyHandler("/a"))
        with pytest.raises(SendError, match="not XML"):
            creator.create_body(PayloadMessage(payload=b"not <xml"))

    def test_bad_path(self, xml_message: PayloadMessage):
        creator = XmlMailCreator(body_handler=XmlBodyHandler("/document/x:content"))
        with pytest.raises(ConfigurationError):
            creator.create_body(xml_message)

    def test_from_config_requires_a_path(self):
        with pytest.raises(ConfigurationError):
            XmlMailCreator.from_config(MailProducerConfig(smtp_url="smtp://h"))

    def test_from_config(self, xml_message: PayloadMessage):
        config = MailProducerConfig(
            smtp_url="smtp://h",
            xml_body_path="/document/content",
            xml_attachment_path="//attachment",
            content_encoding="quoted-printable",
        )
        creator = XmlMailCreator.from_config(config)
        assert creator.create_body(xml_message).content_type == "text/plain"
        attachments = creator.create_attachments(xml_message)
        assert [a.filename for a in attachments] == ["attachment1.txt", "attachment2.txt"]
        assert attachments[0].encoding == "quoted-printable"


class TestDecodeText:
    @pytest.mark.parametrize("encoding", [None, "", "7bit", "8bit", "binary"])
    def test_identity(self, encoding):
        assert decode_text("plain", encoding) == b"plain"

    def test_base64_ignores_whitespace(self):
        assert decode_text("  aGVs\n bG8=  ", "BASE64") == b"hello"

    def test_quoted_printable(self):
        assert decode_text("caf=C3=A9", "quoted-printable") == "café".encode()

    def test_unknown_encoding(self):
        with pytest.raises(SendError, match="x-uuencode"):
            decode_text("abc", "x-uuencode")
