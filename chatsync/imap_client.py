"""IMAP-backed CommandSession wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import re
from collections import deque
from collections.abc import Sequence

import structlog

from .config import ImapConfig
from .errors import ProtocolError
from .session import CommandSession, FetchCommand, FetchResponse

logger = structlog.get_logger()

_FETCH_START = re.compile(rb"^\s*(\d+)\s+\(")
_LITERAL_ITEM = re.compile(rb"([A-Z0-9.\[\]<>]+)\s+\{\d+\}\s*$", re.IGNORECASE)


class ImapFetchCommand(FetchCommand):
    """A FETCH split into fixed-size chunks, one round trip per :meth:`receive`."""

    def __init__(self, session: ImapSession, chunks: Sequence[str], attributes: Sequence[str]) -> None:
        self._session = session
        self._chunks: deque[str] = deque(chunks)
        self._query = "(" + " ".join(attributes) + ")"
        self._buffer: list[FetchResponse] = []

    @property
    def in_progress(self) -> bool:
        return bool(self._chunks)

    async def receive(self) -> None:
        if not self._chunks:
            return
        message_set = self._chunks.popleft()
        data = await self._session._fetch(message_set, self._query)
        batch = parse_fetch_response(data)
        self._buffer.extend(batch)
        logger.debug(
            "imap_batch_received",
            message_set=message_set,
            responses=len(batch),
            remaining_batches=len(self._chunks),
        )

    def drain_responses(self) -> list[FetchResponse]:
        responses, self._buffer = self._buffer, []
        return responses


class ImapSession(CommandSession):
    """Async-friendly IMAP session with the chat mailbox selected read-only.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.
    """

    def __init__(self, config: ImapConfig, *, fetch_batch_size: int = 50) -> None:
        self._config = config
        self._fetch_batch_size = fetch_batch_size
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._exists: int = 0
        self._inflight: asyncio.Future[list] | None = None

    @property
    def exists(self) -> int:
        """Number of messages in the selected mailbox."""
        return self._exists

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, login, and select the configured mailbox read-only."""
        await asyncio.to_thread(self._connect_sync)
        logger.info(
            "imap_connected",
            host=self._config.host,
            mailbox=self._config.mailbox,
            exists=self._exists,
        )

    def _connect_sync(self) -> None:
        try:
            if self._config.use_ssl:
                conn = imaplib.IMAP4_SSL(
                    self._config.host, self._config.port, timeout=self._config.timeout_seconds
                )
            else:
                conn = imaplib.IMAP4(
                    self._config.host, self._config.port, timeout=self._config.timeout_seconds
                )
            conn.login(self._config.username, self._config.password.get_secret_value())
            status, data = conn.select(_quote_mailbox(self._config.mailbox), readonly=True)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ProtocolError(f"cannot open {self._config.host}: {exc}") from exc

        if status != "OK":
            raise ProtocolError(f"cannot select mailbox {self._config.mailbox!r}: {data!r}")

        self._conn = conn
        self._exists = int(data[0]) if data and data[0] else 0

    async def disconnect(self) -> None:
        """Close mailbox and logout.

        A FETCH abandoned by a cancelled receive still owns the socket, so
        it is given up to the socket timeout to finish first.
        """
        if self._conn is not None:
            await self._wait_for_inflight_fetch()
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def issue_fetch(
        self,
        sequence_range: str,
        attributes: Sequence[str],
    ) -> ImapFetchCommand:
        if self._conn is None:
            raise ProtocolError("session is not connected")

        bounds = resolve_sequence_range(sequence_range, self._exists)
        chunks = [] if bounds is None else chunk_range(*bounds, self._fetch_batch_size)
        logger.info(
            "imap_fetch_issued",
            sequence_range=sequence_range,
            exists=self._exists,
            batches=len(chunks),
        )
        return ImapFetchCommand(self, chunks, attributes)

    async def _fetch(self, message_set: str, query: str) -> list:
        fetch = asyncio.ensure_future(asyncio.to_thread(self._fetch_sync, message_set, query))
        self._inflight = fetch
        # Shielded: cancelling the caller must not lose track of the thread.
        return await asyncio.shield(fetch)

    async def _wait_for_inflight_fetch(self) -> None:
        fetch, self._inflight = self._inflight, None
        if fetch is None:
            return
        if not fetch.done():
            logger.info("imap_waiting_for_fetch")
            await asyncio.wait({fetch}, timeout=self._config.timeout_seconds)
        if not fetch.done():
            logger.warning("imap_fetch_still_running", timeout=self._config.timeout_seconds)
        elif not fetch.cancelled() and fetch.exception() is not None:
            logger.debug("imap_abandoned_fetch_failed", error=str(fetch.exception()))

    def _fetch_sync(self, message_set: str, query: str) -> list:
        assert self._conn is not None, "Not connected"
        try:
            status, data = self._conn.fetch(message_set, query)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ProtocolError(f"FETCH {message_set} failed: {exc}") from exc
        if status != "OK":
            raise ProtocolError(f"FETCH {message_set} returned {status}: {data!r}")
        return data


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def resolve_sequence_range(sequence_range: str, exists: int) -> tuple[int, int] | None:
    """Resolve ``a:b`` / ``a:*`` / ``a`` / ``*`` against the mailbox size.

    Returns inclusive ``(start, end)`` bounds clamped to the mailbox, or
    ``None`` if no message falls inside the range.
    """
    first, _, last = sequence_range.strip().partition(":")
    last = last or first

    def _bound(token: str) -> int:
        if token == "*":
            return exists
        value = int(token)
        if value < 1:
            raise ValueError(f"sequence numbers start at 1: {sequence_range!r}")
        return value

    start, end = _bound(first), _bound(last)
    if start > end:
        start, end = end, start
    end = min(end, exists)
    if exists < 1 or start > end:
        return None
    return start, end


def chunk_range(start: int, end: int, size: int) -> list[str]:
    """Split ``start..end`` into IMAP message sets of at most *size* messages."""
    return [f"{lo}:{min(lo + size - 1, end)}" for lo in range(start, end + 1, size)]


def parse_fetch_response(data: list) -> list[FetchResponse]:
    """Turn imaplib FETCH data into :class:`FetchResponse` objects.

    imaplib returns one ``(meta, literal)`` tuple per literal data item,
    e.g. ``(b'12 (RFC822.HEADER {342}', b'...')`` followed by
    ``(b' BODY[TEXT] {1534}', b'...')`` and a closing ``b')'``.
    """
    by_seq: dict[int, FetchResponse] = {}
    current: FetchResponse | None = None

    for item in data:
        if item is None:
            continue
        meta = item[0] if isinstance(item, tuple) else item
        start = _FETCH_START.match(meta)
        if start is not None:
            seq = int(start.group(1))
            current = by_seq.setdefault(seq, FetchResponse(sequence_number=seq))

        if not isinstance(item, tuple):
            continue
        if current is None:
            raise ProtocolError(f"FETCH data before any message number: {meta!r}")
        name = _LITERAL_ITEM.search(meta)
        if name is None:
            raise ProtocolError(f"unrecognised FETCH data item: {meta!r}")
        current.attributes[name.group(1).decode("ascii").upper()] = bytes(item[1])

    return list(by_seq.values())


def _quote_mailbox(name: str) -> str:
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'
