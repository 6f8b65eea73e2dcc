"""One sync run: open the mailbox, run the coordinator, always clean up."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import structlog

from .config import ChatSyncConfig
from .coordinator import SyncCoordinator
from .errors import ChatSyncError
from .imap_client import ImapSession
from .models import SyncReport, SyncState
from .s3 import S3ArtifactWriter
from .session import CommandSession
from .writer import ArtifactWriter, FileArtifactWriter, sanitize_key

logger = structlog.get_logger()


def build_writer(config: ChatSyncConfig) -> ArtifactWriter:
    """Artifact writer for the configured backend, scoped to the IMAP user."""
    user = sanitize_key(config.imap.username)
    if config.sync.artifact_backend == "s3":
        prefix = "/".join(p for p in (config.s3.prefix.strip("/"), user) if p)
        return S3ArtifactWriter(config.s3.model_copy(update={"prefix": prefix}), config.retry)
    return FileArtifactWriter(config.sync.output_dir / user, config.retry)


async def run_sync(
    config: ChatSyncConfig,
    *,
    cancel: asyncio.Event | None = None,
    session: CommandSession | None = None,
    writer: ArtifactWriter | None = None,
) -> SyncReport:
    """Sync the configured mailbox range and return the run report.

    An injected *session* is expected to be connected already and is left
    open; a session created here is connected and disconnected here.
    Setup failures (login, mailbox selection, output root) are returned
    as a ``failed`` report rather than raised.
    """
    imap: ImapSession | None = None
    if session is None:
        imap = ImapSession(config.imap, fetch_batch_size=config.sync.fetch_batch_size)
        session = imap
    if writer is None:
        writer = build_writer(config)

    try:
        if imap is not None:
            await imap.connect()
        await writer.start()
        coordinator = SyncCoordinator(session, writer, config.sync, cancel=cancel)
        return await coordinator.run()
    except ChatSyncError as exc:
        logger.error("sync_setup_failed", kind=exc.kind.value, error=str(exc))
        return SyncReport(
            state=SyncState.FAILED,
            sequence_range=config.sync.sequence_range,
            error=str(exc),
            finished_at=datetime.now(UTC),
        )
    finally:
        await writer.stop()
        if imap is not None:
            logger.info("closing_session")
            await imap.disconnect()
