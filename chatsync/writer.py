"""Artifact persistence: one HTML file per chat message.

Artifacts are named ``<sender>/<local timestamp>.html`` so each sender's
logs sort chronologically.
"""

from __future__ import annotations

import abc
import asyncio
import contextlib
import os
import re
import tempfile
import threading
from pathlib import Path

import structlog

from .config import RetryConfig
from .errors import ArtifactWriteError
from .models import ExtractedRecord
from .retry import with_write_retry

logger = structlog.get_logger()

ARTIFACT_TIME_FORMAT = "%Y-%m-%d.%H%M%S%z%Z"


class ArtifactWriter(abc.ABC):
    """Persists extracted records.  Must be safe for concurrent ``write`` calls."""

    async def start(self) -> None:
        """Acquire resources before the first write."""

    async def stop(self) -> None:
        """Release resources after the last write."""

    @abc.abstractmethod
    async def write(self, record: ExtractedRecord) -> str:
        """Persist *record* and return the artifact's location.

        Raises :class:`~chatsync.errors.ArtifactWriteError` on failure.
        """


class FileArtifactWriter(ArtifactWriter):
    """Write artifacts below a local root directory.

    The per-sender directory is created lazily.  Each artifact is written
    to a temporary file, fsync'ed and renamed into place before
    :meth:`write` returns, so an existing artifact with the same name is
    replaced whole.  A write abandoned by a timeout or cancellation leaves
    no artifact behind.
    """

    def __init__(self, root: Path, retry: RetryConfig | None = None) -> None:
        self._root = Path(root)
        self._write_file = with_write_retry(retry or RetryConfig())(self._write_file_once)

    @property
    def root(self) -> Path:
        return self._root

    async def start(self) -> None:
        try:
            await asyncio.to_thread(self._root.mkdir, mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise ArtifactWriteError(f"cannot create output root {self._root}: {exc}") from exc
        logger.info("file_writer_started", root=str(self._root))

    async def write(self, record: ExtractedRecord) -> str:
        path = self._root / artifact_name(record)
        try:
            await self._write_file(path, record.body)
        except OSError as exc:
            raise ArtifactWriteError(f"cannot write {path}: {exc}") from exc
        logger.debug("artifact_written", path=str(path), size=len(record.body))
        return str(path)

    async def _write_file_once(self, path: Path, content: str) -> None:
        ticket = _CommitTicket()
        try:
            await asyncio.to_thread(_write_synced, path, content, ticket)
        except asyncio.CancelledError:
            # The worker thread keeps running; it must not publish the file.
            if ticket.abandon():
                with contextlib.suppress(OSError):
                    path.unlink(missing_ok=True)
            logger.debug("artifact_write_abandoned", path=str(path))
            raise


class _CommitTicket:
    """Decides whether a worker thread may publish its file.

    Exactly one of :meth:`commit` and :meth:`abandon` wins; the rename in
    :meth:`commit` happens under the same lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._abandoned = False
        self._committed = False

    def commit(self, tmp: str, path: Path) -> bool:
        with self._lock:
            if self._abandoned:
                return False
            os.replace(tmp, path)
            self._committed = True
            return True

    def abandon(self) -> bool:
        """Forbid the commit.  Returns True if the file was already published."""
        with self._lock:
            self._abandoned = True
            return self._committed


def _write_synced(path: Path, content: str, ticket: _CommitTicket) -> None:
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        if not ticket.commit(tmp, path):
            os.unlink(tmp)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


# ------------------------------------------------------------------
# Naming
# ------------------------------------------------------------------


def artifact_name(record: ExtractedRecord) -> str:
    """Relative artifact path: ``<sender>/<YYYY-MM-DD.HHMMSS+ZZZZTZ>.html``."""
    stamp = record.timestamp.strftime(ARTIFACT_TIME_FORMAT)
    return f"{sanitize_key(record.sender_address)}/{_sanitize(stamp)}.html"


def sanitize_key(name: str) -> str:
    """Make a sender address safe to use as a single path component."""
    safe = re.sub(r"[^\w.@+\-]", "_", name)
    if safe.strip(".") == "":
        return safe.replace(".", "_") or "_"
    return safe


def _sanitize(value: str) -> str:
    return re.sub(r"[^\w.+\-]", "_", value)
