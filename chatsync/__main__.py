"""Entry point for the chatsync package.

Usage::

    IMAP_HOST=imap.gmail.com IMAP_USERNAME=... IMAP_PASSWORD=... python -m chatsync

All settings come from the environment (see :mod:`chatsync.config`).
Exits 0 when the run completes, 1 when it fails.
"""

from __future__ import annotations

import asyncio
import sys

from .config import ChatSyncConfig
from .logging import setup_logging
from .models import SyncReport, SyncState
from .runner import run_sync
from .shutdown import install_signal_handlers


async def _run(config: ChatSyncConfig) -> SyncReport:
    cancel = asyncio.Event()
    install_signal_handlers(cancel)
    return await run_sync(config, cancel=cancel)


def main() -> None:
    config = ChatSyncConfig()
    setup_logging(json=config.logging.json_output, level=config.logging.level)
    report = asyncio.run(_run(config))
    sys.exit(0 if report.state is SyncState.COMPLETED else 1)


if __name__ == "__main__":
    main()
