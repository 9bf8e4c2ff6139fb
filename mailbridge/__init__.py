"""Mailbridge: watch an IMAP mailbox, render allowed mail to PDF and post it
to a Telegram chat, routed into forum topics by sender.

Public API re-exported here for convenience::

    from mailbridge import BridgeConfig, BridgeService
"""

from .allowlist import AllowListStore
from .config import (
    BridgeConfig,
    ImapConfig,
    ReconnectConfig,
    RenderConfig,
    StorageConfig,
    TelegramConfig,
)
from .delivery import DeliveryRequest, DeliverySink, TelegramSink
from .documents import DocumentStore
from .errors import (
    DeliveryError,
    FetchError,
    MailboxConnectionError,
    MailBridgeError,
    ParseError,
    RenderError,
    SubChannelNotFoundError,
)
from .forwarded import extract_forwarded_comment
from .imap_client import AsyncImapClient, FetchedEmail
from .logging import setup_logging
from .parser import MimeParser, ParsedAttachment, ParsedEmail
from .pipeline import CycleReport, IntakePipeline, MessageOutcome
from .renderer import DocumentRenderer, RenderResult, RenderStatus
from .routing import RoutingConfig, RoutingStore
from .service import BridgeService
from .settings import JsonFileStore
from .watcher import MailboxWatcher, MailEvent, MailEventKind, WatcherState

__all__ = [
    "AllowListStore",
    "AsyncImapClient",
    "BridgeConfig",
    "BridgeService",
    "CycleReport",
    "DeliveryError",
    "DeliveryRequest",
    "DeliverySink",
    "DocumentRenderer",
    "DocumentStore",
    "FetchError",
    "FetchedEmail",
    "ImapConfig",
    "IntakePipeline",
    "JsonFileStore",
    "MailBridgeError",
    "MailEvent",
    "MailEventKind",
    "MailboxConnectionError",
    "MailboxWatcher",
    "MessageOutcome",
    "MimeParser",
    "ParseError",
    "ParsedAttachment",
    "ParsedEmail",
    "ReconnectConfig",
    "RenderConfig",
    "RenderError",
    "RenderResult",
    "RenderStatus",
    "RoutingConfig",
    "RoutingStore",
    "StorageConfig",
    "SubChannelNotFoundError",
    "TelegramConfig",
    "TelegramSink",
    "WatcherState",
    "extract_forwarded_comment",
    "setup_logging",
]
