# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Newline-delimited JSON framing for the child's stdout.

The child writes one JSON-RPC object per line, but pipe reads return arbitrary
chunks: a read may end mid-line or even mid-character.  :class:`FrameDecoder`
keeps the unterminated tail between reads and yields only complete messages,
so feeding a stream in one chunk or in many produces the same sequence.

A line that fails to decode is reported through the ``on_error`` callback with
the offending text and skipped; the lines around it are still delivered.
"""

from __future__ import annotations

from collections.abc import Callable
import codecs

import orjson

from .types import RpcMessage
from .utils import get_logger


_logger = get_logger("mcpbridge.framing")


class FrameDecodeError(ValueError):
    """A complete line of child output that is not a JSON-RPC object."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"{reason}: {line!r}")
        self.line = line
        self.reason = reason


DecodeErrorCallback = Callable[[FrameDecodeError], None]


def _log_decode_error(error: FrameDecodeError) -> None:
    _logger.warning("Failed to decode MCP output line: %s", error)


class FrameDecoder:
    """Incremental decoder for newline-delimited JSON-RPC traffic."""

    def __init__(self, on_error: DecodeErrorCallback | None = None) -> None:
        self._on_error = on_error or _log_decode_error
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The unterminated tail carried over to the next :meth:`feed`."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[RpcMessage]:
        if isinstance(chunk, bytes):
            chunk = self._text.decode(chunk)

        lines = (self._buffer + chunk).split("\n")
        self._buffer = lines.pop()

        messages: list[RpcMessage] = []
        for line in lines:
            message = self._decode_line(line)
            if message is not None:
                messages.append(message)
        return messages

    def reset(self) -> str:
        """Drop buffered state and return the discarded partial line."""
        discarded = self._buffer + self._text.decode(b"", final=True)
        self._buffer = ""
        self._text.reset()
        return discarded

    def _decode_line(self, line: str) -> RpcMessage | None:
        if not line.strip():
            return None

        try:
            payload = orjson.loads(line)
        except orjson.JSONDecodeError as exc:
            self._on_error(FrameDecodeError(line, f"invalid JSON ({exc})"))
            return None

        if not isinstance(payload, dict):
            self._on_error(FrameDecodeError(line, "expected a JSON object"))
            return None

        return RpcMessage(payload)


__all__ = ["DecodeErrorCallback", "FrameDecodeError", "FrameDecoder"]
