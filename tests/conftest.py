"""Shared test fixtures for the chatsync test suite."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from chatsync.config import ChatSyncConfig, ImapConfig, RetryConfig, S3Config, SyncConfig
from chatsync.errors import ArtifactWriteError, ProtocolError
from chatsync.models import ExtractedRecord
from chatsync.session import CommandSession, FetchCommand, FetchResponse
from chatsync.writer import ArtifactWriter, artifact_name


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser@example.com",
        password="testpass",
    )


@pytest.fixture
def sync_config(tmp_path: Path) -> SyncConfig:
    return SyncConfig(
        sequence_range="10:20",
        fetch_batch_size=5,
        max_concurrency=4,
        task_timeout_seconds=5.0,
        output_dir=tmp_path,
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=3, initial_wait_seconds=0.01, max_wait_seconds=0.01)


@pytest.fixture
def chatsync_config(
    imap_config: ImapConfig,
    sync_config: SyncConfig,
    retry_config: RetryConfig,
) -> ChatSyncConfig:
    return ChatSyncConfig(
        imap=imap_config,
        sync=sync_config,
        s3=S3Config(bucket="test-bucket"),
        retry=retry_config,
    )


# ------------------------------------------------------------------
# Raw chat message builders
# ------------------------------------------------------------------

BOUNDARY = "00151747b3b2a5c0e80487a8f4d1"


def _build_chat_headers(
    *,
    from_addr: str = "alice@example.com",
    date: str | None = "Mon, 02 Jun 2025 12:00:00 +0000",
    content_type: str | None = f'multipart/alternative; boundary="{BOUNDARY}"',
) -> bytes:
    """Header block as returned for RFC822.HEADER (ends with a blank line)."""
    lines = [f"From: {from_addr}", "To: testuser@example.com", "Subject: Chat with alice"]
    if date is not None:
        lines.append(f"Date: {date}")
    lines.append("MIME-Version: 1.0")
    if content_type is not None:
        lines.append(f"Content-Type: {content_type}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def _build_chat_body(
    *,
    html: str = "<div><span>alice</span>: hi there</div>",
    boundary: str = BOUNDARY,
    xml: str = "<con:conversation xmlns:con=\"google:archive:conversation\"/>",
    include_html: bool = True,
    html_headers: str = "Content-Type: text/html; charset=UTF-8",
) -> bytes:
    """Body as returned for BODY[TEXT]: XML companion part, then the HTML part."""
    chunks = [
        f"--{boundary}\r\n",
        "Content-Type: text/xml; charset=UTF-8\r\n\r\n",
        f"{xml}\r\n",
    ]
    if include_html:
        chunks += [
            f"--{boundary}\r\n",
            f"{html_headers}\r\n\r\n",
            f"{html}\r\n",
        ]
    chunks.append(f"--{boundary}--\r\n")
    return "".join(chunks).encode("utf-8")


def _build_response(
    seq: int,
    *,
    from_addr: str = "alice@example.com",
    date: str = "Mon, 02 Jun 2025 12:00:00 +0000",
    html: str = "<div>hi</div>",
    content_type: str | None = f'multipart/alternative; boundary="{BOUNDARY}"',
) -> FetchResponse:
    return FetchResponse(
        sequence_number=seq,
        attributes={
            "RFC822.HEADER": _build_chat_headers(
                from_addr=from_addr, date=date, content_type=content_type
            ),
            "BODY[TEXT]": _build_chat_body(html=html),
        },
    )


# ------------------------------------------------------------------
# In-memory collaborators
# ------------------------------------------------------------------


class FakeCommand(FetchCommand):
    """Yields pre-built batches, one per ``receive()``."""

    def __init__(
        self,
        batches: Sequence[Sequence[FetchResponse]],
        *,
        delay: float = 0.0,
        fail_on_receive: int | None = None,
    ) -> None:
        self._batches = deque(list(b) for b in batches)
        self._buffer: list[FetchResponse] = []
        self._delay = delay
        self._fail_on_receive = fail_on_receive
        self.receive_calls = 0
        self.observe: Callable[[], object] | None = None
        self.observed: list[object] = []

    @property
    def in_progress(self) -> bool:
        return bool(self._batches)

    async def receive(self) -> None:
        self.receive_calls += 1
        if self.observe is not None:
            self.observed.append(self.observe())
        await asyncio.sleep(self._delay)
        if self._fail_on_receive == self.receive_calls:
            raise ProtocolError("connection reset by peer")
        self._buffer.extend(self._batches.popleft())

    def drain_responses(self) -> list[FetchResponse]:
        responses, self._buffer = self._buffer, []
        return responses


class FakeSession(CommandSession):
    def __init__(self, command: FetchCommand | None = None, *, error: Exception | None = None) -> None:
        self.command = command or FakeCommand([])
        self.error = error
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    async def issue_fetch(self, sequence_range: str, attributes: Sequence[str]) -> FetchCommand:
        self.calls.append((sequence_range, tuple(attributes)))
        if self.error is not None:
            raise self.error
        return self.command


class RecordingWriter(ArtifactWriter):
    """Keeps records in memory; can be slowed down or made to fail per sender."""

    def __init__(self, *, delay: float = 0.0, fail_for: frozenset[str] = frozenset()) -> None:
        self.records: list[ExtractedRecord] = []
        self.delay = delay
        self.fail_for = fail_for
        self.active = 0
        self.max_active = 0
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def write(self, record: ExtractedRecord) -> str:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if record.sender_address in self.fail_for:
                raise ArtifactWriteError("disk full")
            self.records.append(record)
            return artifact_name(record)
        finally:
            self.active -= 1


@pytest.fixture
def recording_writer() -> RecordingWriter:
    return RecordingWriter()
