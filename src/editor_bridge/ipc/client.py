"""IPC client that sends one request at a time to a running editor host.

The client is a single-threaded asyncio state machine::

    IDLE -> CONNECTING -> SENDING -> RECEIVING -> DONE | FAILED -> IDLE

A request that loses its connection mid-exchange reconnects and resends
within a fixed retry budget; responses carrying a stale correlation id are
dropped.  Connect failures on the first attempt are terminal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING, Any

from editor_bridge.ipc.constants import HEADER_SIZE
from editor_bridge.ipc.contracts import RequestMessage
from editor_bridge.ipc.discovery import BridgeEndpoint, discover_endpoint
from editor_bridge.ipc.errors import (
    BridgeConnectionError,
    BridgeError,
    BusyError,
    ConnectTimeoutError,
    CorrelationError,
    DisconnectedError,
    EndpointNotFoundError,
    ProtocolError,
    ReadRetriesExceededError,
    RequestCancelledError,
    WriteRetriesExceededError,
)
from editor_bridge.ipc.framing import decode_header, decode_response, encode
from editor_bridge.ipc.transports import transport_for_preference
from editor_bridge.version import get_bridge_version

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from editor_bridge.config import ClientConfig
    from editor_bridge.ipc.contracts import ResponseMessage
    from editor_bridge.ipc.transports import BufferedStreamProtocol, Transport

    type ResponseCallback = Callable[[ResponseMessage | None, BridgeError | None], None]
    type EndpointResolver = Callable[[], BridgeEndpoint | None]

logger = logging.getLogger(__name__)

_DEFAULT_CONNECT_TIMEOUT = 2.0
_DEFAULT_READ_TIMEOUT = 5.0
_DEFAULT_MAX_RETRIES = 10
_DEFAULT_RETRY_INTERVAL = 0.5


class ClientState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SENDING = "sending"
    RECEIVING = "receiving"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class PendingRequest:
    """The single outstanding request and its retry counters."""

    request: RequestMessage
    started_at: float
    write_attempts: int = 0
    read_attempts: int = 0
    delivered: bool = False


class IPCClient:
    """Async IPC client for communicating with an editor host.

    At most one request is outstanding per client; a second ``request`` or
    ``call`` while one is in flight raises ``BusyError`` immediately.  Use
    several clients for concurrency.

    Usage::

        client = IPCClient.for_project(project_dir)
        response = await client.call("refresh")
        await client.close()

    Or with a callback::

        client.request("playmode_toggle", callback=on_done)
    """

    def __init__(
        self,
        endpoint: BridgeEndpoint | EndpointResolver,
        *,
        version: str | None = None,
        transport: Transport | None = None,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_interval: float = _DEFAULT_RETRY_INTERVAL,
    ) -> None:
        if max_retries < 1:
            msg = f"max_retries must be at least 1, got {max_retries}"
            raise ValueError(msg)
        self._resolver: EndpointResolver = (
            (lambda: endpoint) if isinstance(endpoint, BridgeEndpoint) else endpoint
        )
        self._version = version or get_bridge_version()
        self._transport = transport
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._max_retries = max_retries
        self._retry_interval = retry_interval

        self._protocol: BufferedStreamProtocol | None = None
        self._endpoint: BridgeEndpoint | None = None
        self._pending: PendingRequest | None = None
        self._state = ClientState.IDLE
        self._last_id = 0

    @classmethod
    def for_project(
        cls,
        project_dir: Path,
        *,
        config: ClientConfig | None = None,
        version: str | None = None,
    ) -> IPCClient:
        """Create a client that discovers the host through *project_dir*."""
        if config is None:
            from editor_bridge.config import ClientConfig

            config = ClientConfig()
        resolver = partial(
            discover_endpoint,
            project_dir,
            descriptor_relpath=config.descriptor_relpath,
        )
        return cls(
            resolver,
            version=version,
            connect_timeout=config.connect_timeout_seconds,
            read_timeout=config.read_timeout_seconds,
            max_retries=config.max_retries,
            retry_interval=config.retry_interval_seconds,
        )

    async def __aenter__(self) -> IPCClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_busy(self) -> bool:
        """Whether a request is outstanding."""
        return self._pending is not None

    @property
    def is_connected(self) -> bool:
        """Whether the client currently holds an open connection."""
        return self._protocol is not None and self._protocol.is_connected

    @property
    def endpoint(self) -> BridgeEndpoint | None:
        """Endpoint of the current (or most recent) connection."""
        return self._endpoint

    @property
    def last_request_id(self) -> int:
        return self._last_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def request(
        self,
        method: str,
        parameters: Any = None,
        callback: ResponseCallback | None = None,
    ) -> asyncio.Task[ResponseMessage | None]:
        """Start a request and deliver its outcome to *callback*.

        *callback* is invoked exactly once, as ``callback(response, None)``
        or ``callback(None, error)``.  The returned task resolves to the
        response (or ``None`` on failure) and never raises.

        Raises:
            BusyError: If a request is already outstanding.
        """
        loop = asyncio.get_running_loop()
        pending = self._begin(method, parameters)
        task = loop.create_task(
            self._complete(pending, callback),
            name=f"bridge-request-{pending.request.id}",
        )
        task.add_done_callback(partial(self._on_request_done, pending, callback))
        return task

    async def call(self, method: str, parameters: Any = None) -> ResponseMessage:
        """Send a request and wait for the correlated response.

        Raises:
            BusyError: If a request is already outstanding.
            BridgeError: Any terminal failure of the exchange.
        """
        pending = self._begin(method, parameters)
        return await self._execute(pending)

    async def connect(self) -> None:
        """Open a connection to the host ahead of the first request.

        If already connected, do nothing.

        Raises:
            BusyError: If a request is outstanding.
            BridgeConnectionError: If the host cannot be reached.
        """
        if self._pending is not None:
            msg = f"request id={self._pending.request.id} is still outstanding"
            raise BusyError(msg)
        if self.is_connected:
            return
        try:
            await self._open_connection()
        finally:
            self._set_state(ClientState.IDLE)

    async def close(self) -> None:
        """Close the connection to the host."""
        protocol = self._protocol
        self._drop_connection()
        if protocol is not None:
            with contextlib.suppress(ConnectionError, OSError):
                await protocol.wait_closed()
            logger.debug("IPC client disconnected")

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def _begin(self, method: str, parameters: Any) -> PendingRequest:
        if self._pending is not None:
            msg = f"request id={self._pending.request.id} is still outstanding"
            raise BusyError(msg)
        self._last_id += 1
        request = RequestMessage(
            id=self._last_id,
            version=self._version,
            method=method,
            parameters={} if parameters is None else parameters,
        )
        pending = PendingRequest(request=request, started_at=asyncio.get_running_loop().time())
        self._pending = pending
        return pending

    async def _complete(
        self,
        pending: PendingRequest,
        callback: ResponseCallback | None,
    ) -> ResponseMessage | None:
        response: ResponseMessage | None = None
        error: BridgeError | None = None
        try:
            response = await self._execute(pending)
        except BridgeError as exc:
            error = exc
        except asyncio.CancelledError:
            self._deliver(pending, callback, None, RequestCancelledError("request cancelled"))
            raise
        except Exception as exc:
            logger.exception("Unexpected failure in request id=%d", pending.request.id)
            error = BridgeError(f"Unexpected failure: {exc}")
            error.__cause__ = exc

        if error is not None:
            logger.debug("Request id=%d failed: %s", pending.request.id, error)
        self._deliver(pending, callback, response, error)
        return response

    def _on_request_done(
        self,
        pending: PendingRequest,
        callback: ResponseCallback | None,
        task: asyncio.Task[ResponseMessage | None],
    ) -> None:
        # A task cancelled before its first step never runs _complete's cleanup.
        if not task.cancelled():
            return
        if self._pending is pending:
            self._pending = None
            self._set_state(ClientState.IDLE)
        self._deliver(pending, callback, None, RequestCancelledError("request cancelled"))

    @staticmethod
    def _deliver(
        pending: PendingRequest,
        callback: ResponseCallback | None,
        response: ResponseMessage | None,
        error: BridgeError | None,
    ) -> None:
        if pending.delivered:
            return
        pending.delivered = True
        if callback is None:
            return
        try:
            callback(response, error)
        except Exception:
            logger.exception("Response callback raised")

    async def _execute(self, pending: PendingRequest) -> ResponseMessage:
        try:
            frame = encode(pending.request)
            if not self.is_connected:
                await self._open_connection()
            while True:
                await self._send(pending, frame)
                response = await self._receive(pending)
                if response is not None:
                    break
            self._set_state(ClientState.DONE)
            elapsed = asyncio.get_running_loop().time() - pending.started_at
            logger.debug(
                "Request id=%d %s resolved in %.3fs",
                pending.request.id,
                pending.request.method,
                elapsed,
            )
            return response
        except BaseException:
            self._set_state(ClientState.FAILED)
            raise
        finally:
            self._pending = None
            self._set_state(ClientState.IDLE)

    async def _send(self, pending: PendingRequest, frame: bytes) -> None:
        """Write *frame*, reconnecting between failed attempts."""
        while True:
            try:
                if not self.is_connected:
                    await self._open_connection()
                protocol = self._protocol
                if protocol is None:
                    msg = "not connected"
                    raise DisconnectedError(msg)
                self._set_state(ClientState.SENDING)
                protocol.write(frame)
                await protocol.drain()
                return
            except (OSError, BridgeConnectionError) as exc:
                pending.write_attempts += 1
                self._drop_connection()
                if pending.write_attempts >= self._max_retries:
                    raise WriteRetriesExceededError(pending.write_attempts, exc) from exc
                logger.debug(
                    "(%d/%d) write failed, retrying: %s",
                    pending.write_attempts,
                    self._max_retries,
                    exc,
                )
                await asyncio.sleep(self._retry_interval)

    async def _receive(self, pending: PendingRequest) -> ResponseMessage | None:
        """Read until the correlated response arrives.

        Returns ``None`` when the connection was lost and the request must be
        resent.
        """
        self._set_state(ClientState.RECEIVING)
        expected_id = pending.request.id
        while True:
            try:
                async with asyncio.timeout(self._read_timeout):
                    response = await self._read_response()
            except ProtocolError:
                self._drop_connection()
                raise
            except (TimeoutError, OSError, DisconnectedError) as exc:
                pending.read_attempts += 1
                self._drop_connection()
                if pending.read_attempts >= self._max_retries:
                    raise ReadRetriesExceededError(pending.read_attempts, exc) from exc
                logger.debug(
                    "(%d/%d) read failed, reconnecting: %s",
                    pending.read_attempts,
                    self._max_retries,
                    exc or type(exc).__name__,
                )
                await asyncio.sleep(self._retry_interval)
                return None

            if response.id == expected_id:
                return response

            pending.read_attempts += 1
            logger.debug("Discarding stale response id=%d (expected %d)", response.id, expected_id)
            if pending.read_attempts >= self._max_retries:
                raise ReadRetriesExceededError(
                    pending.read_attempts,
                    CorrelationError(expected_id, response.id),
                )

    async def _read_response(self) -> ResponseMessage:
        if self._protocol is None:
            msg = "not connected"
            raise DisconnectedError(msg)
        buffer = self._protocol.buffer
        length = decode_header(await buffer.read_exact(HEADER_SIZE))
        return decode_response(await buffer.read_exact(length))

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _resolve_endpoint(self) -> BridgeEndpoint:
        endpoint = self._resolver()
        if endpoint is None:
            msg = "No running editor host found"
            raise EndpointNotFoundError(msg)
        return endpoint

    async def _open_connection(self) -> None:
        self._set_state(ClientState.CONNECTING)
        endpoint = self._resolve_endpoint()
        transport = self._transport or transport_for_preference(endpoint.transport)
        try:
            protocol = await asyncio.wait_for(
                transport.connect(endpoint.address, endpoint.port),
                timeout=self._connect_timeout,
            )
        except TimeoutError as exc:
            raise ConnectTimeoutError(endpoint.describe(), self._connect_timeout) from exc
        except (FileNotFoundError, ConnectionRefusedError) as exc:
            msg = f"Could not connect to {endpoint.describe()}. Is the editor running? ({exc})"
            raise EndpointNotFoundError(msg) from exc
        except OSError as exc:
            msg = f"Connecting to {endpoint.describe()} failed: {exc}"
            raise DisconnectedError(msg) from exc

        self._protocol = protocol
        self._endpoint = endpoint
        logger.debug(
            "IPC client connected: transport=%s address=%s",
            endpoint.transport,
            endpoint.address,
        )

    def _drop_connection(self) -> None:
        if self._protocol is not None:
            self._protocol.close()
            self._protocol = None

    def _set_state(self, state: ClientState) -> None:
        if state is not self._state:
            logger.debug("IPC client state: %s -> %s", self._state, state)
            self._state = state


__all__ = ["ClientState", "IPCClient", "PendingRequest"]
