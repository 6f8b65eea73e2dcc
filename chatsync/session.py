"""Mailbox session contract used by the sync coordinator."""

from __future__ import annotations

import abc
from collections.abc import Sequence
from dataclasses import dataclass, field

HEADER_ATTRIBUTE = "RFC822.HEADER"
BODY_ATTRIBUTE = "BODY[TEXT]"
FETCH_ATTRIBUTES: tuple[str, ...] = (HEADER_ATTRIBUTE, BODY_ATTRIBUTE)


@dataclass
class FetchResponse:
    """One untagged FETCH response: a sequence number and its data items."""

    sequence_number: int
    attributes: dict[str, bytes] = field(default_factory=dict)

    def attribute(self, name: str) -> bytes:
        """Return the data item *name*, or ``b""`` if the server omitted it."""
        return self.attributes.get(name.upper(), b"")


class FetchCommand(abc.ABC):
    """An issued FETCH whose responses arrive in batches.

    The coordinator loops ``while command.in_progress``: it awaits
    :meth:`receive`, then takes the buffered batch with
    :meth:`drain_responses`.
    """

    @property
    @abc.abstractmethod
    def in_progress(self) -> bool:
        """True while more responses may still arrive."""

    @abc.abstractmethod
    async def receive(self) -> None:
        """Wait for the next batch of responses and buffer it.

        Raises :class:`~chatsync.errors.ProtocolError` on session failure.
        """

    @abc.abstractmethod
    def drain_responses(self) -> list[FetchResponse]:
        """Return the buffered responses and clear the buffer."""


class CommandSession(abc.ABC):
    """An authenticated session with a mailbox selected."""

    @abc.abstractmethod
    async def issue_fetch(
        self,
        sequence_range: str,
        attributes: Sequence[str],
    ) -> FetchCommand:
        """Start retrieving *attributes* for every message in *sequence_range*."""
