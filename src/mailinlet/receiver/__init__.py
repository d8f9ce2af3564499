"""Mail receiver: connection lifecycle, retrieval pipeline and IMAP transport."""

from .config import DEFAULT_USER_FLAG, MailEndpointConfig, load_endpoint_config
from .connection_manager import ConnectionState, MailConnectionManager
from .content_extractor import ContentExtractor, ExtractedPayload
from .detached import DetachedMessage
from .flag_strategy import FlagMode, FlagStrategy, select_flag_mode
from .headers import (
    DefaultMailHeaderMapper,
    HeaderMapper,
    InboundMessage,
    MailHeaders,
    MessageHeaders,
)
from .imap_receiver import ImapNewMessageSearch, create_imap_receiver
from .imap_transport import ImapFolder, ImapMessage, ImapSession, ImapStore
from .poller import MailPoller
from .receiver import MailReceiver
from .selector import SelectorFilter, all_of, sender_in, subject_contains
from .transport import (
    FetchItem,
    Flags,
    FolderMode,
    MailUrl,
    PasswordAuthentication,
)

__all__ = [
    "DEFAULT_USER_FLAG",
    "MailEndpointConfig",
    "load_endpoint_config",
    "ConnectionState",
    "MailConnectionManager",
    "ContentExtractor",
    "ExtractedPayload",
    "DetachedMessage",
    "FlagMode",
    "FlagStrategy",
    "select_flag_mode",
    "DefaultMailHeaderMapper",
    "HeaderMapper",
    "InboundMessage",
    "MailHeaders",
    "MessageHeaders",
    "ImapNewMessageSearch",
    "create_imap_receiver",
    "ImapFolder",
    "ImapMessage",
    "ImapSession",
    "ImapStore",
    "MailPoller",
    "MailReceiver",
    "SelectorFilter",
    "all_of",
    "sender_in",
    "subject_contains",
    "FetchItem",
    "Flags",
    "FolderMode",
    "MailUrl",
    "PasswordAuthentication",
]
