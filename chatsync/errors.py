"""Typed errors raised while syncing a mailbox.

Every error carries an :class:`ErrorKind` so per-message failures can be
reported without keeping the exception object around.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    """Failure categories surfaced in the run summary."""

    MALFORMED_HEADERS = "malformed_headers"
    MISSING_DATE = "missing_date"
    MISSING_BOUNDARY = "missing_boundary"
    MISSING_BODY_PART = "missing_body_part"
    BODY_TOO_LARGE = "body_too_large"
    IO_ERROR = "io_error"
    PROTOCOL_ERROR = "protocol_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class ChatSyncError(Exception):
    """Base class for all chatsync errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL


class ExtractionError(ChatSyncError):
    """A message could not be turned into an :class:`ExtractedRecord`."""


class MalformedHeaders(ExtractionError):
    kind = ErrorKind.MALFORMED_HEADERS


class MissingDate(ExtractionError):
    kind = ErrorKind.MISSING_DATE


class MissingBoundary(ExtractionError):
    kind = ErrorKind.MISSING_BOUNDARY


class MissingBodyPart(ExtractionError):
    kind = ErrorKind.MISSING_BODY_PART


class BodyTooLarge(ExtractionError):
    kind = ErrorKind.BODY_TOO_LARGE


class ArtifactWriteError(ChatSyncError):
    """The artifact writer failed to persist a record."""

    kind = ErrorKind.IO_ERROR


class ProtocolError(ChatSyncError):
    """The mailbox session failed.  Fatal to the whole run."""

    kind = ErrorKind.PROTOCOL_ERROR
