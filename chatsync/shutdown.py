"""Cancel a running sync on SIGTERM / SIGINT."""

from __future__ import annotations

import asyncio
import signal

import structlog

logger = structlog.get_logger()


def install_signal_handlers(cancel_event: asyncio.Event) -> None:
    """Register SIGTERM and SIGINT handlers that set *cancel_event*.

    Call this once from the running event loop.  The coordinator watches
    the event in its receive and drain loops and cancels in-flight message
    tasks when it fires.  A second signal restores the default handler so
    a third one kills the process outright.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        if cancel_event.is_set():
            logger.warning("second_shutdown_signal", signal=sig.name)
            loop.remove_signal_handler(sig)
            return
        logger.info("shutdown_signal_received", signal=sig.name)
        cancel_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)
