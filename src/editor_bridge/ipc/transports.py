"""IPC transport implementations for editor bridge communication.

Provides Unix socket transport on POSIX and TCP loopback fallback on Windows.
``DefaultTransport`` is automatically set to the best choice for the current platform.

Both transports hand out connections as ``(asyncio.Transport,
BufferedStreamProtocol)`` pairs: the protocol's ``data_received`` callback
feeds a :class:`~editor_bridge.ipc.stream_reader.StreamBuffer`, which is what
the framing readers consume.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import platform
import socket
import sys
from dataclasses import dataclass

from editor_bridge.ipc.stream_reader import StreamBuffer
from editor_bridge.paths import get_endpoint_socket_path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared types
# ---------------------------------------------------------------------------

# One client at a time; a second connecting peer waits in the backlog.
_LISTEN_BACKLOG = 1


@dataclass(frozen=True)
class ServerHandle:
    """Describes a bound listener.

    Attributes:
        transport_type: Identifier string (``socket`` or ``tcp``).
        address: The connection address (file path or hostname).
        port: TCP port when applicable; ``None`` for socket transport.
    """

    transport_type: str
    address: str
    port: int | None = None


class BufferedStreamProtocol(asyncio.Protocol):
    """asyncio protocol that buffers inbound bytes and exposes write flow control."""

    def __init__(self) -> None:
        self.buffer = StreamBuffer()
        self._transport: asyncio.Transport | None = None
        self._paused = False
        self._drain_waiter: asyncio.Future[None] | None = None
        self._connection_lost = False
        self._closed: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        if not isinstance(transport, asyncio.Transport):
            msg = f"Expected a stream transport, got {type(transport).__name__}"
            raise TypeError(msg)
        self._transport = transport

    def data_received(self, data: bytes) -> None:
        self.buffer.feed(data)

    def eof_received(self) -> bool:
        self.buffer.feed_eof()
        return False

    def connection_lost(self, exc: Exception | None) -> None:
        self._connection_lost = True
        if exc is None:
            self.buffer.feed_eof()
        else:
            self.buffer.set_exception(exc)
        waiter = self._drain_waiter
        if waiter is not None and not waiter.done():
            if exc is None:
                waiter.set_exception(ConnectionResetError("Connection lost"))
            else:
                waiter.set_exception(exc)
        if not self._closed.done():
            self._closed.set_result(None)

    def pause_writing(self) -> None:
        self._paused = True

    def resume_writing(self) -> None:
        self._paused = False
        waiter = self._drain_waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    @property
    def is_connected(self) -> bool:
        return (
            self._transport is not None
            and not self._connection_lost
            and not self._transport.is_closing()
        )

    def write(self, data: bytes) -> None:
        """Queue *data* on the transport as one logical write."""
        transport = self._transport
        if transport is None or not self.is_connected:
            msg = "Connection is closed"
            raise ConnectionResetError(msg)
        transport.write(data)

    async def drain(self) -> None:
        """Wait until the transport's write buffer is below the high-water mark."""
        if self._connection_lost:
            msg = "Connection lost"
            raise ConnectionResetError(msg)
        if not self._paused:
            return
        self._drain_waiter = asyncio.get_running_loop().create_future()
        try:
            await self._drain_waiter
        finally:
            self._drain_waiter = None

    def close(self) -> None:
        if self._transport is not None and not self._transport.is_closing():
            self._transport.close()

    async def wait_closed(self) -> None:
        await self._closed


async def _adopt_socket(sock: socket.socket) -> BufferedStreamProtocol:
    loop = asyncio.get_running_loop()
    _, protocol = await loop.connect_accepted_socket(BufferedStreamProtocol, sock)
    return protocol


# ---------------------------------------------------------------------------
# Unix socket transport
# ---------------------------------------------------------------------------


class UnixSocketTransport:
    """IPC transport over Unix domain sockets.

    Only available on macOS and Linux.  On Windows this class raises
    ``NotImplementedError`` at construction time.
    """

    transport_type = "socket"

    def __init__(self, path: str | None = None) -> None:
        if platform.system() == "Windows":
            msg = "Unix sockets are not supported on Windows"
            raise NotImplementedError(msg)
        self._path = path or str(get_endpoint_socket_path(os.getpid()))

    @property
    def path(self) -> str:
        return self._path

    def listen(self) -> tuple[socket.socket, ServerHandle]:
        """Bind a non-blocking listening socket at the configured path.

        Any stale socket file is removed before binding.
        """
        with contextlib.suppress(FileNotFoundError):
            os.unlink(self._path)

        parent = os.path.dirname(self._path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(self._path)
            if sys.platform != "win32":
                os.chmod(self._path, 0o600)
            sock.listen(_LISTEN_BACKLOG)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        logger.info("Unix socket server listening on %s", self._path)
        return sock, ServerHandle(transport_type="socket", address=self._path, port=None)

    def close_listener(self, sock: socket.socket) -> None:
        """Close the listener and remove its socket file."""
        sock.close()
        with contextlib.suppress(FileNotFoundError):
            os.unlink(self._path)
        logger.info("Unix socket server stopped")

    async def accept(self, sock: socket.socket) -> BufferedStreamProtocol:
        """Wait for the next client (cancellable) and wrap it in a protocol."""
        conn, _ = await asyncio.get_running_loop().sock_accept(sock)
        return await _adopt_socket(conn)

    async def connect(
        self,
        address: str,
        port: int | None = None,
    ) -> BufferedStreamProtocol:
        """Open a connection to the Unix socket at *address*."""
        loop = asyncio.get_running_loop()
        _, protocol = await loop.create_unix_connection(BufferedStreamProtocol, address)
        logger.debug("Connected to Unix socket at %s", address)
        return protocol


# ---------------------------------------------------------------------------
# TCP loopback transport
# ---------------------------------------------------------------------------

_LOCALHOST = "127.0.0.1"


class TCPLoopbackTransport:
    """IPC transport over a TCP socket bound to localhost.

    Used as a cross-platform fallback when Unix sockets are unavailable.  The
    OS picks the port; the host publishes it in its endpoint file so the
    controller can find it.
    """

    transport_type = "tcp"

    def __init__(self, host: str | None = None, port: int = 0) -> None:
        self._host = host or _LOCALHOST
        self._port = port

    def listen(self) -> tuple[socket.socket, ServerHandle]:
        """Bind a non-blocking listening socket on localhost."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if sys.platform != "win32":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._port))
            sock.listen(_LISTEN_BACKLOG)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        bound_port: int = sock.getsockname()[1]
        logger.info("TCP loopback server listening on %s:%d", self._host, bound_port)
        return sock, ServerHandle(transport_type="tcp", address=self._host, port=bound_port)

    def close_listener(self, sock: socket.socket) -> None:
        sock.close()
        logger.info("TCP loopback server stopped")

    async def accept(self, sock: socket.socket) -> BufferedStreamProtocol:
        conn, _ = await asyncio.get_running_loop().sock_accept(sock)
        return await _adopt_socket(conn)

    async def connect(
        self,
        address: str,
        port: int | None = None,
    ) -> BufferedStreamProtocol:
        """Open a TCP connection to *address*:*port*."""
        if port is None:
            msg = "TCP transport requires a port"
            raise ValueError(msg)

        loop = asyncio.get_running_loop()
        _, protocol = await loop.create_connection(BufferedStreamProtocol, address, port)
        logger.debug("Connected to TCP server at %s:%d", address, port)
        return protocol


# ---------------------------------------------------------------------------
# Default transport selection
# ---------------------------------------------------------------------------

type Transport = UnixSocketTransport | TCPLoopbackTransport

if sys.platform == "win32":
    DefaultTransport = TCPLoopbackTransport
else:
    DefaultTransport = UnixSocketTransport

_TRANSPORT_MAP: dict[str, type[TCPLoopbackTransport] | type[UnixSocketTransport]] = {
    "tcp": TCPLoopbackTransport,
    "socket": UnixSocketTransport,
}


def transport_for_preference(preference: str, *, pid: int | None = None) -> Transport:
    """Instantiate a transport from a preference string (``auto``/``socket``/``tcp``).

    When *pid* is given, a socket transport binds the endpoint path of that
    process instead of the current one.
    """
    cls = _TRANSPORT_MAP.get(preference, DefaultTransport)
    if cls is UnixSocketTransport and pid is not None:
        return UnixSocketTransport(str(get_endpoint_socket_path(pid)))
    return cls()


__all__ = [
    "BufferedStreamProtocol",
    "DefaultTransport",
    "ServerHandle",
    "TCPLoopbackTransport",
    "Transport",
    "UnixSocketTransport",
    "transport_for_preference",
]
