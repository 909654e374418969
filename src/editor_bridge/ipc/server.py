"""IPC server that accepts one controller at a time and bridges it to the broker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import TYPE_CHECKING

from editor_bridge.ipc.constants import HEADER_SIZE
from editor_bridge.ipc.contracts import ResponseMessage
from editor_bridge.ipc.errors import ConnectionClosedError, ProtocolError
from editor_bridge.ipc.framing import decode_header, decode_request, encode
from editor_bridge.ipc.transports import transport_for_preference

if TYPE_CHECKING:
    import socket

    from editor_bridge.ipc.broker import MessageBroker
    from editor_bridge.ipc.transports import BufferedStreamProtocol, ServerHandle, Transport

logger = logging.getLogger(__name__)

_STOP_TIMEOUT_SECONDS = 5.0


class IPCServer:
    """Threaded IPC server for the editor host.

    The server owns a worker thread running its own asyncio event loop.  That
    loop accepts a single connection, reads request frames into the broker's
    receive queue and writes responses popped from its send queue.  When the
    peer disconnects (or misbehaves) the connection is torn down and the
    server goes back to accepting.

    Usage::

        broker = MessageBroker()
        server = IPCServer(broker)
        handle = server.start()
        ...
        server.stop()
    """

    def __init__(
        self,
        broker: MessageBroker,
        *,
        transport: Transport | None = None,
        transport_preference: str = "auto",
    ) -> None:
        self._broker = broker
        self._transport = transport or transport_for_preference(transport_preference)
        self._handle: ServerHandle | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._loop_ready = threading.Event()
        self._stopping = False
        self._connected = threading.Event()

    @property
    def handle(self) -> ServerHandle | None:
        """The server handle, available after ``start()``."""
        return self._handle

    @property
    def is_running(self) -> bool:
        """Whether the server is currently listening."""
        return self._handle is not None

    @property
    def has_client(self) -> bool:
        """Whether a controller is currently connected."""
        return self._connected.is_set()

    def start(self) -> ServerHandle:
        """Bind the listener and start the worker thread.

        Binding happens on the calling thread so listen errors surface here.

        Returns:
            A ``ServerHandle`` describing the listening endpoint.
        """
        if self._handle is not None:
            msg = "Server is already running"
            raise RuntimeError(msg)

        sock, handle = self._transport.listen()
        self._stopping = False
        self._loop_ready.clear()
        self._handle = handle
        self._thread = threading.Thread(
            target=self._run,
            args=(sock,),
            name="editor-bridge-ipc",
            daemon=True,
        )
        self._thread.start()
        self._loop_ready.wait()
        logger.info(
            "IPC server started: transport=%s address=%s port=%s",
            handle.transport_type,
            handle.address,
            handle.port,
        )
        return handle

    def stop(self, timeout: float = _STOP_TIMEOUT_SECONDS) -> None:
        """Cancel the serving task and join the worker thread.

        Safe to call from any thread other than the worker, and more than once.
        """
        if self._handle is None or self._thread is None:
            return

        self._stopping = True
        loop = self._loop
        task = self._serve_task
        if loop is not None and task is not None:
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(task.cancel)

        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("IPC server thread did not exit within %.1fs", timeout)
        self._thread = None
        self._handle = None
        logger.info("IPC server stopped")

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _run(self, sock: socket.socket) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        try:
            self._serve_task = loop.create_task(self._serve(sock))
            self._loop_ready.set()
            with contextlib.suppress(asyncio.CancelledError):
                loop.run_until_complete(self._serve_task)
        finally:
            self._transport.close_listener(sock)
            with contextlib.suppress(RuntimeError):
                loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self._serve_task = None
            self._loop = None
            self._loop_ready.set()

    async def _serve(self, sock: socket.socket) -> None:
        """Accept connections one at a time until the server is stopped."""
        while not self._stopping:
            try:
                protocol = await self._transport.accept(sock)
            except OSError:
                logger.exception("Accept failed; retrying")
                await asyncio.sleep(0.1)
                continue

            logger.debug("Client connected")
            self._connected.set()
            try:
                await self._handle_connection(protocol)
            except Exception:
                logger.exception("Unexpected error in IPC connection loop")
            finally:
                self._connected.clear()
                protocol.close()
                await protocol.wait_closed()
                logger.debug("Client disconnected")

    async def _handle_connection(self, protocol: BufferedStreamProtocol) -> None:
        read_task = asyncio.create_task(self._read_loop(protocol), name="ipc-read")
        write_task = asyncio.create_task(self._write_loop(protocol), name="ipc-write")
        try:
            await asyncio.wait({read_task, write_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            read_task.cancel()
            write_task.cancel()
            results = await asyncio.gather(read_task, write_task, return_exceptions=True)

        for result in results:
            match result:
                case ProtocolError() as exc:
                    logger.warning("Closing connection: %s (%s)", exc, exc.kind)
                case ConnectionClosedError() | ConnectionError():
                    logger.debug("Peer went away: %s", result)
                case asyncio.CancelledError() | None:
                    pass
                case BaseException() as exc:
                    logger.error("IPC connection task failed", exc_info=exc)

    async def _read_loop(self, protocol: BufferedStreamProtocol) -> None:
        buffer = protocol.buffer
        receive_queue = self._broker.receive_queue
        while True:
            length = decode_header(await buffer.read_exact(HEADER_SIZE))
            request = decode_request(await buffer.read_exact(length))
            logger.debug("Received request id=%d method=%s", request.id, request.method)
            receive_queue.push(request)

    async def _write_loop(self, protocol: BufferedStreamProtocol) -> None:
        """Send queued responses until the connection fails.

        A response whose write or drain fails goes back to the head of the
        send queue for the next connection.  Bytes already handed to the
        transport may have reached the peer, so that resend can be a
        duplicate; clients drop responses whose id they are not waiting on.
        """
        send_queue = self._broker.send_queue
        while True:
            response = await send_queue.pop()
            try:
                frame = encode(response)
            except ProtocolError as exc:
                logger.warning("Response id=%d not sendable: %s", response.id, exc)
                frame = encode(ResponseMessage.failure(response.id, response.version, str(exc)))

            try:
                protocol.write(frame)
                await protocol.drain()
            except (ConnectionError, OSError):
                send_queue.push_front(response)
                raise


__all__ = ["IPCServer"]
