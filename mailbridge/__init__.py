"""mailbridge — poll mailboxes into a message pipeline and send pipeline messages as email.

Public API re-exported here for convenience::

    from mailbridge import DefaultMailConsumer, MailConsumerConfig, SendEmail
"""

from .address import MailboxAddress
from .attachment import (
    MailAttachment,
    MailContent,
    MailCreator,
    XmlAttachmentHandler,
    XmlBodyHandler,
    XmlMailCreator,
)
from .config import (
    KafkaConfig,
    LoggingConfig,
    MailConsumerConfig,
    MailProducerConfig,
    Pop3ClientConfig,
    RetryConfig,
)
from .consumer import DefaultMailConsumer, MailConsumer, RawMailConsumer
from .errors import (
    ConfigurationError,
    FilterCompileError,
    MailConnectionError,
    MailError,
    MessageProcessingError,
    NoRecipientsError,
    SendError,
)
from .factory import (
    LibraryReceiverFactory,
    MailReceiverFactory,
    Pop3ReceiverFactory,
    Pop3sReceiverFactory,
)
from .filters import FilterSet, compile_filters
from .imap_client import ImapReceiver
from .logging import setup_logging
from .metadata import (
    MetadataFilter,
    NoOpMetadataFilter,
    RegexMetadataFilter,
    RemoveAllMetadataFilter,
)
from .mime import (
    IgnoreMailHeaders,
    MetadataMailHeaders,
    MimeDecomposer,
    NullPartSelector,
    RawMessageDecomposer,
    SelectByContentType,
    SelectByPosition,
    WholeMessageSelector,
)
from .models import PayloadMessage, RawMailMessage
from .poller import MailboxPoller
from .pop3_client import Pop3Receiver
from .producer import MailProducer, SendEmail, SendEmailAttachment, SendEmailMultiAttachment
from .receiver import MailReceiver
from .sink import KafkaSink, PayloadSink
from .smtp_client import SmtpClient

__all__ = [
    "ConfigurationError",
    "DefaultMailConsumer",
    "FilterCompileError",
    "FilterSet",
    "IgnoreMailHeaders",
    "ImapReceiver",
    "KafkaConfig",
    "KafkaSink",
    "LibraryReceiverFactory",
    "LoggingConfig",
    "MailAttachment",
    "MailConnectionError",
    "MailConsumer",
    "MailConsumerConfig",
    "MailContent",
    "MailCreator",
    "MailError",
    "MailProducer",
    "MailProducerConfig",
    "MailReceiver",
    "MailReceiverFactory",
    "MailboxAddress",
    "MailboxPoller",
    "MessageProcessingError",
    "MetadataFilter",
    "MetadataMailHeaders",
    "MimeDecomposer",
    "NoOpMetadataFilter",
    "NoRecipientsError",
    "NullPartSelector",
    "PayloadMessage",
    "PayloadSink",
    "Pop3ClientConfig",
    "Pop3Receiver",
    "Pop3ReceiverFactory",
    "Pop3sReceiverFactory",
    "RawMailConsumer",
    "RawMailMessage",
    "RawMessageDecomposer",
    "RegexMetadataFilter",
    "RemoveAllMetadataFilter",
    "RetryConfig",
    "SelectByContentType",
    "SelectByPosition",
    "SendEmail",
    "SendEmailAttachment",
    "SendEmailMultiAttachment",
    "SendError",
    "SmtpClient",
    "WholeMessageSelector",
    "XmlAttachmentHandler",
    "XmlBodyHandler",
    "XmlMailCreator",
    "compile_filters",
    "setup_logging",
]
