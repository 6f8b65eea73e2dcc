"""Data models for a sync run."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from .errors import ErrorKind


class SyncState(str, Enum):
    """Lifecycle of a :class:`~chatsync.coordinator.SyncCoordinator` run."""

    IDLE = "idle"
    FETCH_ISSUED = "fetch_issued"
    DRAINING = "draining"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MessageHandle:
    """Per-message state owned by the registry."""

    sequence_number: int
    headers: bytes | None = None
    body: bytes | None = None
    completed: bool = False


@dataclass(frozen=True)
class ExtractedRecord:
    """Normalized payload of one chat message."""

    sender_address: str
    timestamp: datetime
    body: str


class MessageFailure(BaseModel):
    """A message that finished processing without producing an artifact."""

    sequence_number: int = Field(description="Mailbox sequence number of the message")
    kind: ErrorKind = Field(description="Failure category")
    error: str = Field(description="Human-readable error message")


@dataclass(frozen=True)
class CompletionSignal:
    """Emitted exactly once per dispatched message, on success or failure."""

    sequence_number: int
    artifact: str | None = None
    failure: MessageFailure | None = None


class SyncReport(BaseModel):
    """Summary of a sync run, produced once it is completed or failed."""

    state: SyncState = Field(description="Final coordinator state")
    sequence_range: str = Field(description="Sequence range that was requested")
    dispatched: int = Field(default=0, description="Messages received and dispatched")
    completed: int = Field(default=0, description="Completion signals consumed")
    artifacts: list[str] = Field(
        default_factory=list,
        description="Locations of the artifacts written",
    )
    failures: list[MessageFailure] = Field(
        default_factory=list,
        description="Per-message failures",
    )
    error: str | None = Field(default=None, description="Run-fatal error, if any")
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> int:
        return len(self.artifacts)
