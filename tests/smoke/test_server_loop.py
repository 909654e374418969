"""Smoke tests: the threaded IPC server against a raw blocking socket peer."""

from __future__ import annotations

import socket
import struct
import sys
import time
from typing import TYPE_CHECKING

import pytest

from editor_bridge.ipc.constants import HEADER_SIZE, MAGIC
from editor_bridge.ipc.contracts import ResponseMessage
from editor_bridge.ipc.framing import decode_header, decode_response, encode
from editor_bridge.ipc.server import IPCServer
from editor_bridge.ipc.transports import UnixSocketTransport

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from editor_bridge.ipc.broker import MessageBroker
    from editor_bridge.ipc.transports import ServerHandle

pytestmark = [
    pytest.mark.smoke,
    pytest.mark.skipif(sys.platform == "win32", reason="Unix sockets unavailable on Windows"),
]

VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _connect(handle: ServerHandle) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(2.0)
    sock.connect(handle.address)
    return sock


def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            msg = "peer closed"
            raise ConnectionError(msg)
        data += chunk
    return data


def _recv_response(sock: socket.socket) -> ResponseMessage:
    length = decode_header(_recv_exact(sock, HEADER_SIZE))
    return decode_response(_recv_exact(sock, length))


def _answer_next(broker: MessageBroker, result: str = "pong") -> int:
    """Play the dispatcher: pop one request and reply to it."""
    assert _wait_for(lambda: len(broker.receive_queue) > 0)
    request = broker.receive_queue.try_pop()
    assert request is not None
    broker.send_queue.push(ResponseMessage.success(request.id, VERSION, result))
    return request.id


def _assert_closed_by_server(sock: socket.socket) -> None:
    try:
        assert sock.recv(1) == b""
    except ConnectionResetError:
        pass


@pytest.fixture
def server(short_tmp, broker) -> Generator[IPCServer, None, None]:
    srv = IPCServer(broker, transport=UnixSocketTransport(str(short_tmp / "s.sock")))
    srv.start()
    yield srv
    srv.stop()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


def test_ping_round_trip(server, broker, make_request) -> None:
    assert server.handle is not None
    with _connect(server.handle) as sock:
        sock.sendall(encode(make_request(7, "ping")))

        assert _answer_next(broker) == 7
        response = _recv_response(sock)

    assert (response.id, response.result, response.ok) == (7, "pong", True)


def test_oversize_declared_length_drops_connection_and_server_keeps_accepting(
    server, broker, make_request
) -> None:
    assert server.handle is not None
    with _connect(server.handle) as sock:
        sock.sendall(MAGIC + struct.pack("<I", 2_000_000))
        _assert_closed_by_server(sock)

    assert len(broker.receive_queue) == 0

    with _connect(server.handle) as sock:
        sock.sendall(encode(make_request(1, "ping")))
        _answer_next(broker)
        assert _recv_response(sock).result == "pong"


def test_invalid_magic_drops_connection(server, broker) -> None:
    assert server.handle is not None
    with _connect(server.handle) as sock:
        sock.sendall(b"ABCD" + struct.pack("<I", 2) + b"{}")
        _assert_closed_by_server(sock)

    assert len(broker.receive_queue) == 0


def test_frame_split_across_writes_is_reassembled(server, broker, make_request) -> None:
    assert server.handle is not None
    frame = encode(make_request(3, "refresh"))
    with _connect(server.handle) as sock:
        for chunk in (frame[:3], frame[3:4], frame[4:]):
            sock.sendall(chunk)
            time.sleep(0.02)

        assert _wait_for(lambda: len(broker.receive_queue) == 1)

    request = broker.receive_queue.try_pop()
    assert request is not None
    assert (request.id, request.method) == (3, "refresh")


def test_responses_queued_while_disconnected_are_sent_on_next_connection(server, broker) -> None:
    assert server.handle is not None
    broker.send_queue.push(ResponseMessage.success(11, VERSION, "late"))

    with _connect(server.handle) as sock:
        response = _recv_response(sock)

    assert (response.id, response.result) == (11, "late")


def test_has_client_tracks_connection(server) -> None:
    assert server.handle is not None
    assert not server.has_client

    sock = _connect(server.handle)
    assert _wait_for(lambda: server.has_client)

    sock.close()
    assert _wait_for(lambda: not server.has_client)


def test_requests_are_queued_in_arrival_order(server, broker, make_request) -> None:
    assert server.handle is not None
    with _connect(server.handle) as sock:
        sock.sendall(b"".join(encode(make_request(i, "ping")) for i in (1, 2, 3)))
        assert _wait_for(lambda: len(broker.receive_queue) == 3)

    ids = [broker.receive_queue.try_pop().id for _ in range(3)]  # type: ignore[union-attr]
    assert ids == [1, 2, 3]


def test_stop_removes_socket_and_restart_rebinds(server, broker, make_request) -> None:
    handle = server.handle
    assert handle is not None

    server.stop()

    assert not server.is_running
    with pytest.raises(OSError):
        _connect(handle)

    server.start()
    with _connect(handle) as sock:
        sock.sendall(encode(make_request(2, "ping")))
        _answer_next(broker)
        assert _recv_response(sock).id == 2


def test_start_twice_is_rejected(server) -> None:
    with pytest.raises(RuntimeError):
        server.start()


class DrainFailsProtocol:
    """Accepts writes, then reports the connection lost while draining."""

    def __init__(self) -> None:
        self.written: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.written.append(data)

    async def drain(self) -> None:
        msg = "Connection lost"
        raise ConnectionResetError(msg)


async def test_response_lost_in_drain_goes_back_to_queue_head(short_tmp, broker) -> None:
    srv = IPCServer(broker, transport=UnixSocketTransport(str(short_tmp / "d.sock")))
    broker.send_queue.push(ResponseMessage.success(5, VERSION, "first"))
    broker.send_queue.push(ResponseMessage.success(6, VERSION, "second"))
    protocol = DrainFailsProtocol()

    with pytest.raises(ConnectionResetError):
        await srv._write_loop(protocol)  # type: ignore[arg-type]

    assert len(protocol.written) == 1
    head = broker.send_queue.try_pop()
    assert head is not None
    assert (head.id, head.result) == (5, "first")
    assert len(broker.send_queue) == 1
