from __future__ import annotations

import asyncio

import pytest
from hypothesis import given
from hypothesis import strategies as st

from editor_bridge.ipc.constants import HEADER_SIZE
from editor_bridge.ipc.contracts import ResponseMessage
from editor_bridge.ipc.errors import BusyError, ConnectionClosedError
from editor_bridge.ipc.framing import decode_header, decode_response, encode
from editor_bridge.ipc.stream_reader import StreamBuffer


async def _read_response(buffer: StreamBuffer) -> ResponseMessage:
    length = decode_header(await buffer.read_exact(HEADER_SIZE))
    return decode_response(await buffer.read_exact(length))


def _split(data: bytes, cuts: list[int]) -> list[bytes]:
    points = sorted({c for c in cuts if 0 < c < len(data)})
    chunks: list[bytes] = []
    start = 0
    for point in points:
        chunks.append(data[start:point])
        start = point
    chunks.append(data[start:])
    return chunks


async def test_read_exact_returns_requested_bytes_and_keeps_surplus() -> None:
    buffer = StreamBuffer()
    buffer.feed(b"abcdef")

    assert await buffer.read_exact(4) == b"abcd"
    assert len(buffer) == 2
    assert await buffer.read_exact(2) == b"ef"


async def test_read_exact_suspends_until_enough_bytes_arrive() -> None:
    buffer = StreamBuffer()
    reader = asyncio.create_task(buffer.read_exact(5))
    await asyncio.sleep(0)
    assert not reader.done()

    buffer.feed(b"abc")
    await asyncio.sleep(0)
    assert not reader.done()

    buffer.feed(b"defg")
    assert await reader == b"abcde"
    assert len(buffer) == 2


async def test_frame_split_three_one_rest_matches_single_chunk() -> None:
    frame = encode(ResponseMessage.success(1, "1.0.0", "pong"))
    whole = StreamBuffer()
    whole.feed(frame)
    split = StreamBuffer()

    reader = asyncio.create_task(_read_response(split))
    for chunk in (frame[:3], frame[3:4], frame[4:]):
        split.feed(chunk)
        await asyncio.sleep(0)

    assert await reader == await _read_response(whole)


@given(st.lists(st.integers(min_value=1, max_value=200), max_size=10))
def test_chunk_boundaries_do_not_change_decoded_frames(cuts: list[int]) -> None:
    first = ResponseMessage.success(1, "1.0.0", "pong")
    second = ResponseMessage.failure(2, "1.0.0", "nope")
    data = encode(first) + encode(second)

    async def scenario() -> list[ResponseMessage]:
        buffer = StreamBuffer()
        for chunk in _split(data, cuts):
            buffer.feed(chunk)
        return [await _read_response(buffer), await _read_response(buffer)]

    assert asyncio.run(scenario()) == [first, second]


async def test_second_concurrent_read_is_busy_and_first_survives() -> None:
    buffer = StreamBuffer()
    first = asyncio.create_task(buffer.read_exact(3))
    await asyncio.sleep(0)

    with pytest.raises(BusyError):
        await buffer.read_exact(1)

    buffer.feed(b"xyz")
    assert await first == b"xyz"


async def test_eof_while_waiting_raises_connection_closed() -> None:
    buffer = StreamBuffer()
    reader = asyncio.create_task(buffer.read_exact(4))
    await asyncio.sleep(0)

    buffer.feed(b"ab")
    buffer.feed_eof()

    with pytest.raises(ConnectionClosedError):
        await reader


async def test_buffered_bytes_are_still_served_after_eof() -> None:
    buffer = StreamBuffer()
    buffer.feed(b"abcd")
    buffer.feed_eof()

    assert await buffer.read_exact(4) == b"abcd"
    assert buffer.at_eof


async def test_transport_error_is_propagated() -> None:
    buffer = StreamBuffer()
    reader = asyncio.create_task(buffer.read_exact(1))
    await asyncio.sleep(0)

    buffer.set_exception(ConnectionResetError("reset by peer"))

    with pytest.raises(ConnectionResetError):
        await reader


async def test_cancelled_read_releases_guard_and_keeps_data() -> None:
    buffer = StreamBuffer()
    reader = asyncio.create_task(buffer.read_exact(4))
    await asyncio.sleep(0)
    buffer.feed(b"ab")

    reader.cancel()
    with pytest.raises(asyncio.CancelledError):
        await reader

    buffer.feed(b"cd")
    assert await buffer.read_exact(4) == b"abcd"


async def test_negative_size_is_rejected() -> None:
    with pytest.raises(ValueError):
        await StreamBuffer().read_exact(-1)
