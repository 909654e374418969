"""Shared IPC framing constants."""

from __future__ import annotations

MAGIC = b"UNVM"  # 0x55 0x4E 0x56 0x4D
HEADER_SIZE = 8  # magic (4 bytes) + little-endian uint32 payload length
MAX_MESSAGE_SIZE = 1024 * 1024  # 1 MiB payload cap (header excluded)

__all__ = ["HEADER_SIZE", "MAGIC", "MAX_MESSAGE_SIZE"]
