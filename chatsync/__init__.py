"""chatsync: archive chat logs from an IMAP mailbox, one HTML file per message.

Public API re-exported here for convenience::

    from chatsync import ChatSyncConfig, run_sync
"""

from .config import (
    ChatSyncConfig,
    ImapConfig,
    LoggingConfig,
    RetryConfig,
    S3Config,
    SyncConfig,
)
from .coordinator import SyncContext, SyncCoordinator, process_message
from .errors import (
    ArtifactWriteError,
    BodyTooLarge,
    ChatSyncError,
    ErrorKind,
    ExtractionError,
    MalformedHeaders,
    MissingBodyPart,
    MissingBoundary,
    MissingDate,
    ProtocolError,
)
from .extractor import MessageExtractor
from .imap_client import ImapFetchCommand, ImapSession
from .logging import setup_logging
from .models import (
    CompletionSignal,
    ExtractedRecord,
    MessageFailure,
    MessageHandle,
    SyncReport,
    SyncState,
)
from .registry import MessageRegistry
from .runner import build_writer, run_sync
from .s3 import S3ArtifactWriter
from .session import CommandSession, FetchCommand, FetchResponse
from .shutdown import install_signal_handlers
from .writer import ArtifactWriter, FileArtifactWriter, artifact_name

__all__ = [
    "ArtifactWriteError",
    "ArtifactWriter",
    "BodyTooLarge",
    "ChatSyncConfig",
    "ChatSyncError",
    "CommandSession",
    "CompletionSignal",
    "ErrorKind",
    "ExtractedRecord",
    "ExtractionError",
    "FetchCommand",
    "FetchResponse",
    "FileArtifactWriter",
    "ImapConfig",
    "ImapFetchCommand",
    "ImapSession",
    "LoggingConfig",
    "MalformedHeaders",
    "MessageExtractor",
    "MessageFailure",
    "MessageHandle",
    "MessageRegistry",
    "MissingBodyPart",
    "MissingBoundary",
    "MissingDate",
    "ProtocolError",
    "RetryConfig",
    "S3ArtifactWriter",
    "S3Config",
    "SyncConfig",
    "SyncContext",
    "SyncCoordinator",
    "SyncReport",
    "SyncState",
    "artifact_name",
    "build_writer",
    "install_signal_handlers",
    "process_message",
    "run_sync",
    "setup_logging",
]
