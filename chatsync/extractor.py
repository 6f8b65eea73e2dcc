"""Chat-log extraction: raw header block + multipart body → ExtractedRecord.

A chat log is stored as a two-part multipart message.  The first part is
a structured (XML) companion and is skipped; the second part is the
rendered transcript that gets archived.
"""

from __future__ import annotations

import email
import email.message
import email.parser
import email.utils
import re
from datetime import UTC, datetime

from .errors import (
    BodyTooLarge,
    MalformedHeaders,
    MissingBodyPart,
    MissingBoundary,
    MissingDate,
)
from .models import ExtractedRecord

_QUOTED_BOUNDARY = re.compile(r'boundary="([^"]*)"', re.IGNORECASE)
_BARE_BOUNDARY = re.compile(r'boundary=([^\s;"]+)', re.IGNORECASE)


class MessageExtractor:
    """Stateless extractor, safe to share between concurrent tasks."""

    def __init__(self, max_body_bytes: int | None = None) -> None:
        self._max_body_bytes = max_body_bytes

    def extract(self, raw_headers: bytes, raw_body: bytes) -> ExtractedRecord:
        """Extract sender, local timestamp and rendered body.

        Raises a subclass of :class:`~chatsync.errors.ExtractionError`.
        """
        if not raw_headers or not raw_headers.strip():
            raise MalformedHeaders("empty header block")

        headers = email.parser.BytesHeaderParser().parsebytes(raw_headers)

        sender = self._sender_address(headers)
        timestamp = self._timestamp(headers)
        boundary = self._boundary(headers)
        body = self._rendered_body(raw_body, boundary)

        return ExtractedRecord(sender_address=sender, timestamp=timestamp, body=body)

    # ------------------------------------------------------------------
    # Header fields
    # ------------------------------------------------------------------

    def _sender_address(self, headers: email.message.Message) -> str:
        value = headers.get("From")
        if not value:
            raise MalformedHeaders("no From header")
        addresses = [addr for _, addr in email.utils.getaddresses([str(value)]) if addr]
        if not addresses:
            raise MalformedHeaders(f"no address in From header: {value!r}")
        # First address wins when several senders are listed.
        return addresses[0]

    def _timestamp(self, headers: email.message.Message) -> datetime:
        value = headers.get("Date")
        if not value:
            raise MissingDate("no Date header")
        try:
            parsed = email.utils.parsedate_to_datetime(str(value))
        except (TypeError, ValueError, IndexError, OverflowError) as exc:
            raise MissingDate(f"unparsable Date header: {value!r}") from exc
        if parsed.tzinfo is None:
            # RFC 5322 "-0000": zone unknown, time is UTC
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone()

    def _boundary(self, headers: email.message.Message) -> str:
        content_type = headers.get("Content-Type")
        if not content_type:
            raise MissingBoundary("no Content-Type header")
        content_type = str(content_type)
        match = _QUOTED_BOUNDARY.search(content_type) or _BARE_BOUNDARY.search(content_type)
        if match is None or not match.group(1):
            raise MissingBoundary(f"no boundary parameter in Content-Type: {content_type!r}")
        return match.group(1)

    # ------------------------------------------------------------------
    # Multipart body
    # ------------------------------------------------------------------

    def _rendered_body(self, raw_body: bytes, boundary: str) -> str:
        prologue = f'Content-Type: multipart/mixed; boundary="{boundary}"\r\n\r\n'
        document = email.message_from_bytes(
            prologue.encode("ascii", "surrogateescape") + (raw_body or b"")
        )

        parts = document.get_payload()
        if not isinstance(parts, list) or len(parts) < 2:
            found = len(parts) if isinstance(parts, list) else 0
            raise MissingBodyPart(f"expected at least 2 parts, found {found}")

        # parts[0] is the structured companion part
        part = parts[1]
        payload = part.get_payload(decode=True)
        if payload is None:
            raise MissingBodyPart("second part is not a leaf part")

        if self._max_body_bytes is not None and len(payload) > self._max_body_bytes:
            raise BodyTooLarge(
                f"body part is {len(payload)} bytes, limit is {self._max_body_bytes}"
            )

        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError:
            return payload.decode("utf-8", errors="replace")
