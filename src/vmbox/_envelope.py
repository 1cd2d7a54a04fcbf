"""Connect protocol envelope framing.

Every message on a Connect streaming call is wrapped in an envelope: one flag
byte, a 4-byte big-endian payload length, then the payload. A frame with the
end-stream flag set carries trailer metadata (a JSON object that may hold an
``error``), not a protocol message.
"""

from __future__ import annotations

import json
import logging
import struct
from collections.abc import Iterator
from typing import Any, NamedTuple

from vmbox.exceptions import SandboxProtocolError

logger = logging.getLogger(__name__)

FLAG_COMPRESSED = 0x01
FLAG_END_STREAM = 0x02

_HEADER = struct.Struct(">BI")
HEADER_SIZE = _HEADER.size


class Frame(NamedTuple):
    """One decoded envelope."""

    flags: int
    payload: bytes

    @property
    def is_end_stream(self) -> bool:
        return bool(self.flags & FLAG_END_STREAM)


def encode(payload: bytes, flags: int = 0) -> bytes:
    """Wrap payload in a single envelope."""
    return _HEADER.pack(flags, len(payload)) + payload


def encode_json(message: dict[str, Any], flags: int = 0) -> bytes:
    """Serialize message as compact JSON and wrap it in an envelope."""
    return encode(json.dumps(message, separators=(",", ":")).encode("utf-8"), flags)


def decode(data: bytes) -> list[Frame]:
    """Split a buffer into frames, preserving their order.

    A truncated tail (short header or short payload) is a protocol error,
    unless at least one complete message frame was already read. In that case
    the fragment is logged and dropped.

    Raises:
        SandboxProtocolError: If the buffer is truncated before any complete
            message frame
    """
    frames: list[Frame] = []
    messages = 0
    offset = 0
    total = len(data)

    while offset < total:
        remaining = total - offset
        if remaining < HEADER_SIZE:
            _truncated(messages, f"{remaining} trailing bytes, expected a {HEADER_SIZE}-byte header")
            break

        flags, length = _HEADER.unpack_from(data, offset)
        start = offset + HEADER_SIZE
        end = start + length
        if end > total:
            _truncated(messages, f"frame declares {length} bytes but only {total - start} remain")
            break

        frame = Frame(flags, bytes(data[start:end]))
        frames.append(frame)
        if not frame.is_end_stream:
            messages += 1
        offset = end

    return frames


def _truncated(messages: int, detail: str) -> None:
    if messages == 0:
        raise SandboxProtocolError(f"Truncated envelope: {detail}")
    logger.warning("Dropping truncated envelope after %d message(s): %s", messages, detail)


def iter_messages(data: bytes) -> Iterator[str]:
    """Yield the JSON text of every message frame, skipping trailers."""
    for frame in decode(data):
        if frame.is_end_stream:
            logger.debug("Skipping end-stream frame (%d bytes)", len(frame.payload))
            continue
        if frame.flags & FLAG_COMPRESSED:
            raise SandboxProtocolError("Compressed envelopes are not supported")
        yield frame.payload.decode("utf-8")


def end_stream_error(data: bytes) -> dict[str, Any] | None:
    """Return the Connect error object from a response's trailer, if any.

    Malformed trailers are treated as carrying no error.
    """
    for frame in decode(data):
        if not frame.is_end_stream or not frame.payload:
            continue
        try:
            trailer = json.loads(frame.payload)
        except ValueError:
            logger.debug("Ignoring malformed end-stream payload")
            continue
        if isinstance(trailer, dict) and isinstance(trailer.get("error"), dict):
            return trailer["error"]
    return None
