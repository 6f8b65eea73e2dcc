"""Message registry mapping sequence numbers to in-flight message handles."""

from __future__ import annotations

import structlog

from .models import MessageHandle

logger = structlog.get_logger()


class MessageRegistry:
    """Active :class:`MessageHandle` objects, keyed by sequence number.

    Only touched from the event loop thread, so each call is atomic with
    respect to the coordinator and the message tasks.  The keys are the
    run's pending set.
    """

    def __init__(self) -> None:
        self._handles: dict[int, MessageHandle] = {}

    def get_or_create(self, sequence_number: int) -> MessageHandle:
        """Return the handle for *sequence_number*, creating it on first use."""
        handle = self._handles.get(sequence_number)
        if handle is None:
            handle = MessageHandle(sequence_number=sequence_number)
            self._handles[sequence_number] = handle
        return handle

    def mark_complete(self, sequence_number: int) -> None:
        """Remove the handle.  A no-op if it was already removed."""
        if self._handles.pop(sequence_number, None) is None:
            logger.debug("registry_duplicate_completion", sequence_number=sequence_number)

    def is_empty(self) -> bool:
        return not self._handles

    @property
    def pending(self) -> frozenset[int]:
        """Sequence numbers that have not been marked complete."""
        return frozenset(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, sequence_number: object) -> bool:
        return sequence_number in self._handles
