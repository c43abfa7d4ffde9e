"""Newline-delimited JSON framing for worker stdout.

Workers write one JSON-RPC document per line. Reads from a pipe return
arbitrary byte chunks, so a chunk may end in the middle of a line or even
in the middle of a multi-byte UTF-8 sequence. The LineFramer therefore
buffers raw *bytes* and only decodes a line once its terminating newline
has arrived.

Lines that are not valid UTF-8 or not valid JSON are treated as incidental
noise (banners, stray prints) and dropped at DEBUG level, never surfaced as
protocol errors.
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class LineFramer:
    """Decode a byte stream into newline-delimited JSON documents.

    Usage:
        >>> framer = LineFramer()
        >>> framer.feed(b'{"id": 1, "res')
        []
        >>> framer.feed(b'ult": 2}\\n')
        [{'id': 1, 'result': 2}]

    Attributes:
        label: Name used in log messages (usually the service id).
    """

    def __init__(self, label: str = "worker") -> None:
        self.label = label
        self._buffer = bytearray()

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes belonging to an incomplete line."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[Any]:
        """Append a chunk and return every document completed by it.

        Args:
            chunk: Raw bytes as read from the pipe.

        Returns:
            Parsed JSON values, in stream order. Malformed lines are skipped.
        """
        self._buffer.extend(chunk)
        documents: list[Any] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            document = self._decode(raw)
            if document is not None:
                documents.append(document)
        return documents

    def flush(self) -> list[Any]:
        """Decode whatever is left at end of stream.

        A worker may write its last document without a trailing newline
        right before exiting; that line is still delivered.
        """
        if not self._buffer:
            return []
        raw = bytes(self._buffer)
        self._buffer.clear()
        document = self._decode(raw)
        return [] if document is None else [document]

    def _decode(self, raw: bytes) -> Optional[Any]:
        line = raw.rstrip(b"\r")
        if not line.strip():
            return None
        try:
            return json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.debug("%s: dropping non-JSON line: %r", self.label, line[:200])
            return None
