"""Exact-size reads over a chunked byte stream."""

from __future__ import annotations

import asyncio

from editor_bridge.ipc.errors import BusyError, ConnectionClosedError


class StreamBuffer:
    """Accumulates raw transport chunks and serves exact-size reads.

    The transport's data callback calls :meth:`feed` with whatever chunk it
    received; :meth:`read_exact` suspends the caller until enough bytes have
    accumulated, then returns exactly the requested amount and keeps the
    surplus for the next call.  Chunks may split or straddle frame boundaries
    arbitrarily.

    Only one ``read_exact`` may be pending at a time; a second concurrent
    call raises ``BusyError`` without disturbing the first.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._eof = False
        self._exception: BaseException | None = None
        self._waiter: asyncio.Future[None] | None = None
        self._reading = False

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def at_eof(self) -> bool:
        """Whether the stream ended and every buffered byte was consumed."""
        return self._eof and not self._buffer

    def feed(self, data: bytes) -> None:
        """Append a chunk delivered by the transport."""
        if not data:
            return
        self._buffer.extend(data)
        self._wake()

    def feed_eof(self) -> None:
        """Mark the stream as closed by the peer."""
        self._eof = True
        self._wake()

    def set_exception(self, exc: BaseException) -> None:
        """Fail the pending (and any future) read with *exc*."""
        self._exception = exc
        self._wake()

    async def read_exact(self, n: int) -> bytes:
        """Return exactly *n* bytes, suspending until they are available.

        Raises:
            BusyError: If another ``read_exact`` is already pending.
            ConnectionClosedError: If the stream ends before *n* bytes arrive.
        """
        if n < 0:
            msg = f"read size must be non-negative, got {n}"
            raise ValueError(msg)
        if self._reading:
            msg = "stream is already reading"
            raise BusyError(msg)

        self._reading = True
        try:
            while len(self._buffer) < n:
                if self._exception is not None:
                    raise self._exception
                if self._eof:
                    msg = f"stream closed with {n - len(self._buffer)} bytes still expected"
                    raise ConnectionClosedError(msg)
                self._waiter = asyncio.get_running_loop().create_future()
                try:
                    await self._waiter
                finally:
                    self._waiter = None

            data = bytes(self._buffer[:n])
            del self._buffer[:n]
            return data
        finally:
            self._reading = False

    def _wake(self) -> None:
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(None)


__all__ = ["StreamBuffer"]
