"""Binary framing for bridge messages.

Frame layout::

    +------------------+------------------+-------------------+
    | Magic (4 bytes)  | Length (4 bytes) | Payload (JSON)    |
    +------------------+------------------+-------------------+

- Magic: ``0x55 0x4E 0x56 0x4D`` (``b"UNVM"``)
- Length: little-endian uint32, payload bytes only
- Payload: compact UTF-8 JSON, at most ``MAX_MESSAGE_SIZE`` bytes

Decoding is all-or-nothing: a frame either yields a fully validated message
or raises ``ProtocolError``.
"""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING

from pydantic import ValidationError

from editor_bridge.ipc.constants import HEADER_SIZE, MAGIC, MAX_MESSAGE_SIZE
from editor_bridge.ipc.contracts import RequestMessage, ResponseMessage
from editor_bridge.ipc.errors import ProtocolError, ProtocolErrorKind

if TYPE_CHECKING:
    from editor_bridge.ipc.contracts import Message

_LENGTH = struct.Struct("<I")


def encode(message: Message) -> bytes:
    """Serialize *message* into a complete frame (header + payload)."""
    payload = message.model_dump_json().encode("utf-8")
    if len(payload) > MAX_MESSAGE_SIZE:
        raise ProtocolError(
            ProtocolErrorKind.MESSAGE_TOO_LARGE,
            f"Message too large: {len(payload)} > {MAX_MESSAGE_SIZE}",
        )
    return MAGIC + _LENGTH.pack(len(payload)) + payload


def decode_header(header: bytes) -> int:
    """Validate a frame header and return the declared payload length.

    The magic is checked before the length is trusted, and oversized lengths
    are rejected before any payload byte is read.
    """
    if len(header) != HEADER_SIZE:
        raise ProtocolError(
            ProtocolErrorKind.MALFORMED_PAYLOAD,
            f"Header must be {HEADER_SIZE} bytes, got {len(header)}",
        )
    if header[:4] != MAGIC:
        raise ProtocolError(ProtocolErrorKind.INVALID_MAGIC, "Invalid magic number")
    (length,) = _LENGTH.unpack_from(header, 4)
    if length > MAX_MESSAGE_SIZE:
        raise ProtocolError(
            ProtocolErrorKind.MESSAGE_TOO_LARGE,
            f"Message too large: {length} > {MAX_MESSAGE_SIZE}",
        )
    return length


def decode_payload[M: (RequestMessage, ResponseMessage)](data: bytes, model: type[M]) -> M:
    """Parse and strictly validate a JSON payload as *model*."""
    try:
        return model.model_validate_json(data)
    except ValidationError as exc:
        raise ProtocolError(
            ProtocolErrorKind.MALFORMED_PAYLOAD,
            f"Invalid {model.__name__} payload: {exc.error_count()} validation error(s)",
        ) from exc


def decode_request(data: bytes) -> RequestMessage:
    return decode_payload(data, RequestMessage)


def decode_response(data: bytes) -> ResponseMessage:
    return decode_payload(data, ResponseMessage)


def decode_frame[M: (RequestMessage, ResponseMessage)](frame: bytes, model: type[M]) -> M:
    """Decode one complete in-memory frame; trailing or missing bytes are errors."""
    length = decode_header(frame[:HEADER_SIZE])
    payload = frame[HEADER_SIZE:]
    if len(payload) != length:
        raise ProtocolError(
            ProtocolErrorKind.MALFORMED_PAYLOAD,
            f"Frame declares {length} payload bytes but carries {len(payload)}",
        )
    return decode_payload(payload, model)


__all__ = [
    "decode_frame",
    "decode_header",
    "decode_payload",
    "decode_request",
    "decode_response",
    "encode",
]
