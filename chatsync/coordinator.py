"""SyncCoordinator: fetch a sequence range, fan out one task per message,
and decide when the whole batch is done.

Flow::

    issue_fetch ──► receive / drain_responses ──► dispatch task per response
                        (while in progress)              │
                                                         ▼
    consume CompletionSignal ◄── extract ─► write ─► signal
    until the registry is empty

The registry is only checked for emptiness after retrieval has ended, so
a pending set that empties between two batches never ends the run early.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TypeVar

import structlog

from .config import SyncConfig
from .errors import ChatSyncError, ErrorKind, ProtocolError
from .extractor import MessageExtractor
from .models import CompletionSignal, MessageFailure, SyncReport, SyncState
from .registry import MessageRegistry
from .session import (
    BODY_ATTRIBUTE,
    FETCH_ATTRIBUTES,
    HEADER_ATTRIBUTE,
    CommandSession,
    FetchResponse,
)
from .writer import ArtifactWriter

logger = structlog.get_logger()

T = TypeVar("T")


class _Cancelled(Exception):
    """The run's cancel event was set."""


@dataclass
class SyncContext:
    """Everything a message task needs, passed explicitly to each task."""

    registry: MessageRegistry
    extractor: MessageExtractor
    writer: ArtifactWriter
    limiter: asyncio.Semaphore
    cancel: asyncio.Event
    task_timeout: float | None = None
    completions: asyncio.Queue[CompletionSignal] = field(default_factory=asyncio.Queue)


async def process_message(ctx: SyncContext, response: FetchResponse) -> None:
    """Extract and persist one message, then emit its completion signal.

    Failures are recorded on the signal rather than raised, so a bad
    message never stalls or aborts the run.  The signal is emitted exactly
    once, including when the task is cancelled.
    """
    seq = response.sequence_number
    handle = ctx.registry.get_or_create(seq)
    artifact: str | None = None
    failure: MessageFailure | None = None

    with structlog.contextvars.bound_contextvars(sequence_number=seq):
        try:
            async with ctx.limiter:
                if ctx.cancel.is_set():
                    raise asyncio.CancelledError()
                async with asyncio.timeout(ctx.task_timeout):
                    handle.headers = response.attribute(HEADER_ATTRIBUTE)
                    handle.body = response.attribute(BODY_ATTRIBUTE)
                    record = await asyncio.to_thread(
                        ctx.extractor.extract, handle.headers, handle.body
                    )
                    artifact = await ctx.writer.write(record)
            logger.info("message_synced", sender=record.sender_address, artifact=artifact)
        except ChatSyncError as exc:
            failure = MessageFailure(sequence_number=seq, kind=exc.kind, error=str(exc))
            logger.warning("message_failed", kind=exc.kind.value, error=str(exc))
        except TimeoutError:
            failure = MessageFailure(
                sequence_number=seq,
                kind=ErrorKind.TIMEOUT,
                error=f"timed out after {ctx.task_timeout}s",
            )
            logger.warning("message_timed_out", timeout=ctx.task_timeout)
        except asyncio.CancelledError:
            failure = MessageFailure(
                sequence_number=seq,
                kind=ErrorKind.CANCELLED,
                error="cancelled",
            )
            raise
        except Exception as exc:
            failure = MessageFailure(
                sequence_number=seq,
                kind=ErrorKind.INTERNAL,
                error=f"{type(exc).__name__}: {exc}",
            )
            logger.exception("message_processing_error")
        finally:
            handle.completed = True
            ctx.completions.put_nowait(
                CompletionSignal(sequence_number=seq, artifact=artifact, failure=failure)
            )


class SyncCoordinator:
    """Drive a single sync run: ``idle → fetch_issued → draining → completed``.

    A :class:`~chatsync.errors.ProtocolError` from the session moves the
    run to ``failed``.  Dispatch stops, and tasks already in flight still
    finish and are reported.  Setting the *cancel* event also fails the
    run, but cancels in-flight tasks.
    """

    def __init__(
        self,
        session: CommandSession,
        writer: ArtifactWriter,
        config: SyncConfig,
        *,
        extractor: MessageExtractor | None = None,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self.state: SyncState = SyncState.IDLE

        self._context = SyncContext(
            registry=MessageRegistry(),
            extractor=extractor or MessageExtractor(config.max_body_bytes),
            writer=writer,
            limiter=asyncio.Semaphore(config.max_concurrency),
            cancel=cancel or asyncio.Event(),
            task_timeout=config.task_timeout_seconds,
        )
        self._tasks: set[asyncio.Task[None]] = set()
        self._slots = asyncio.Semaphore(config.max_concurrency)
        self._seen: set[int] = set()
        self._report = SyncReport(state=self.state, sequence_range=config.sequence_range)

    @property
    def registry(self) -> MessageRegistry:
        return self._context.registry

    @property
    def in_flight(self) -> int:
        """Message tasks dispatched and not yet finished."""
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> SyncReport:
        """Run the sync to completion (or failure) and return its report."""
        if self.state is not SyncState.IDLE:
            raise RuntimeError("SyncCoordinator.run() can only be called once")

        logger.info("sync_started", sequence_range=self._config.sequence_range)
        try:
            await self._fetch()
            await self._drain()
        except ProtocolError as exc:
            self._report.error = str(exc)
            logger.error("sync_protocol_error", error=str(exc))
            await self._settle(cancel=False)
            self.state = SyncState.FAILED
        except _Cancelled:
            self._report.error = "cancelled"
            logger.warning("sync_cancelled", in_flight=len(self._tasks))
            await self._settle(cancel=True)
            self.state = SyncState.FAILED
        except BaseException:
            self.state = SyncState.FAILED
            for task in self._tasks:
                task.cancel()
            raise
        else:
            self.state = SyncState.COMPLETED

        return self._finish()

    # ------------------------------------------------------------------
    # Retrieval phase
    # ------------------------------------------------------------------

    async def _fetch(self) -> None:
        self._check_cancelled()
        command = await self._session.issue_fetch(self._config.sequence_range, FETCH_ATTRIBUTES)
        self.state = SyncState.FETCH_ISSUED

        while command.in_progress:
            await self._until_cancelled(command.receive())
            responses = command.drain_responses()
            if responses and self.state is SyncState.FETCH_ISSUED:
                self.state = SyncState.DRAINING
            for response in self._accept(responses):
                await self._dispatch(response)

        for response in self._accept(command.drain_responses()):
            await self._dispatch(response)
        self.state = SyncState.DRAINING
        logger.info("sync_retrieval_finished", dispatched=self._report.dispatched)

    def _accept(self, responses: list[FetchResponse]) -> list[FetchResponse]:
        """Register every new sequence number in a batch before any task starts."""
        accepted = []
        for response in responses:
            seq = response.sequence_number
            if seq in self._seen:
                logger.warning("duplicate_response_ignored", sequence_number=seq)
                continue
            self._seen.add(seq)
            # The pending set covers every sequence number observed so far,
            # including those still waiting for a free slot.
            self._context.registry.get_or_create(seq)
            self._report.dispatched += 1
            accepted.append(response)
        return accepted

    async def _dispatch(self, response: FetchResponse) -> None:
        # At most max_concurrency message tasks exist at once; the next
        # batch is not received until the current one has been handed out.
        await self._until_cancelled(self._slots.acquire())
        seq = response.sequence_number
        task = asyncio.create_task(process_message(self._context, response), name=f"chatsync-{seq}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda _: self._slots.release())
        logger.debug("message_dispatched", sequence_number=seq, in_flight=len(self._tasks))

    # ------------------------------------------------------------------
    # Completion phase
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        registry = self._context.registry
        while not registry.is_empty():
            signal = await self._until_cancelled(self._context.completions.get())
            self._consume(signal)

    def _consume(self, signal: CompletionSignal) -> None:
        self._context.registry.mark_complete(signal.sequence_number)
        self._report.completed += 1
        if signal.failure is not None:
            self._report.failures.append(signal.failure)
        elif signal.artifact is not None:
            self._report.artifacts.append(signal.artifact)

    async def _settle(self, *, cancel: bool) -> None:
        """Wait out in-flight tasks after a fatal error and fold in their signals."""
        tasks = list(self._tasks)
        if cancel:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        while not self._context.completions.empty():
            self._consume(self._context.completions.get_nowait())

        # Tasks cancelled before their first step never emit a signal.
        for seq in sorted(self._context.registry.pending):
            self._consume(
                CompletionSignal(
                    sequence_number=seq,
                    failure=MessageFailure(
                        sequence_number=seq,
                        kind=ErrorKind.CANCELLED,
                        error="cancelled before processing started",
                    ),
                )
            )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._context.cancel.is_set():
            raise _Cancelled()

    async def _until_cancelled(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, abandoning it if the cancel event fires first."""
        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self._context.cancel.wait())
        try:
            done, _ = await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            stop.cancel()

        if work in done:
            return work.result()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise _Cancelled()

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _finish(self) -> SyncReport:
        report = self._report
        report.state = self.state
        report.finished_at = datetime.now(UTC)
        report.failures.sort(key=lambda f: f.sequence_number)

        summary = dict(
            sequence_range=report.sequence_range,
            dispatched=report.dispatched,
            succeeded=report.succeeded,
            failed=len(report.failures),
            failures=[f"{f.sequence_number}:{f.kind.value}" for f in report.failures],
        )
        if self.state is SyncState.COMPLETED:
            logger.info("sync_completed", **summary)
        else:
            logger.error("sync_failed", error=report.error, **summary)
        return report
