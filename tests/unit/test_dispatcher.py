from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from editor_bridge.ipc.contracts import ResponseStatus
from editor_bridge.ipc.dispatcher import HandlerResult, MethodSpec, RequestDispatcher

if TYPE_CHECKING:
    from editor_bridge.ipc.broker import MessageBroker

VERSION = "1.0.0"


def _dispatcher(broker: MessageBroker, methods=None) -> RequestDispatcher:
    return RequestDispatcher(broker, methods or {}, version=VERSION)


def test_tick_on_empty_queue_returns_false(broker) -> None:
    assert _dispatcher(broker).tick() is False
    assert len(broker.send_queue) == 0


def test_version_mismatch_replies_with_error_and_skips_handler(broker, make_request) -> None:
    calls: list[object] = []
    dispatcher = _dispatcher(broker, {"ping": lambda params: calls.append(params) or "pong"})
    broker.receive_queue.push(make_request(5, "ping", version="0.9.0"))

    assert dispatcher.tick() is True

    response = broker.send_queue.try_pop()
    assert response is not None
    assert response.id == 5
    assert response.status is ResponseStatus.ERROR
    assert response.result == "Version mismatch: Expected 1.0.0, but received 0.9.0"
    assert calls == []


def test_unknown_method_replies_with_error(broker, make_request) -> None:
    dispatcher = _dispatcher(broker)
    broker.receive_queue.push(make_request(2, "fly"))

    dispatcher.tick()

    response = broker.send_queue.try_pop()
    assert response is not None
    assert response.status is ResponseStatus.ERROR
    assert response.result == "Unknown message method: fly"


def test_dispatches_parameters_and_echoes_id(broker, make_request) -> None:
    seen: list[object] = []

    def ping(params: object) -> str:
        seen.append(params)
        return "pong"

    dispatcher = _dispatcher(broker, {"ping": ping})
    broker.receive_queue.push(make_request(9, "ping", version=VERSION, parameters={"n": 1}))

    dispatcher.tick()

    response = broker.send_queue.try_pop()
    assert response is not None
    assert (response.id, response.version, response.status, response.result) == (
        9,
        VERSION,
        ResponseStatus.OK,
        "pong",
    )
    assert seen == [{"n": 1}]


@pytest.mark.parametrize(
    ("returned", "expected"),
    [
        (None, ("OK", ResponseStatus.OK)),
        ("done", ("done", ResponseStatus.OK)),
        (("bad", -1), ("bad", ResponseStatus.ERROR)),
        (HandlerResult("custom", ResponseStatus.ERROR), ("custom", ResponseStatus.ERROR)),
    ],
)
def test_handler_return_shapes(broker, make_request, returned, expected) -> None:
    dispatcher = _dispatcher(broker, {"m": lambda _params: returned})
    broker.receive_queue.push(make_request(1, "m", version=VERSION))

    dispatcher.tick()

    response = broker.send_queue.try_pop()
    assert response is not None
    assert (response.result, response.status) == expected


def test_handler_exception_becomes_error_response(broker, make_request) -> None:
    def explode(_params: object) -> str:
        msg = "editor is compiling"
        raise RuntimeError(msg)

    dispatcher = _dispatcher(broker, {"explode": explode})
    broker.receive_queue.push(make_request(4, "explode", version=VERSION))

    assert dispatcher.tick() is True

    response = broker.send_queue.try_pop()
    assert response is not None
    assert response.id == 4
    assert response.status is ResponseStatus.ERROR
    assert response.result == "editor is compiling"


def test_acknowledge_first_queues_ok_before_handler_runs(broker, make_request) -> None:
    observed_queue_lengths: list[int] = []

    def reload(_params: object) -> None:
        observed_queue_lengths.append(len(broker.send_queue))

    dispatcher = _dispatcher(broker, {"refresh": MethodSpec(reload, acknowledge_first=True)})
    broker.receive_queue.push(make_request(3, "refresh", version=VERSION))

    dispatcher.tick()

    assert observed_queue_lengths == [1]
    response = broker.send_queue.try_pop()
    assert response is not None
    assert (response.id, response.status, response.result) == (3, ResponseStatus.OK, "OK")
    assert broker.send_queue.try_pop() is None


def test_acknowledge_first_handler_failure_is_only_logged(broker, make_request, caplog) -> None:
    def crash(_params: object) -> None:
        msg = "domain reload failed"
        raise RuntimeError(msg)

    dispatcher = _dispatcher(broker)
    dispatcher.register("refresh", crash, acknowledge_first=True)
    broker.receive_queue.push(make_request(3, "refresh", version=VERSION))

    dispatcher.tick()

    responses = [broker.send_queue.try_pop(), broker.send_queue.try_pop()]
    assert responses[0] is not None
    assert responses[0].status is ResponseStatus.OK
    assert responses[1] is None
    assert "failed after acknowledgement" in caplog.text


def test_tick_handles_at_most_one_request(broker, make_request) -> None:
    dispatcher = _dispatcher(broker, {"ping": lambda _params: "pong"})
    broker.receive_queue.push(make_request(1, "ping", version=VERSION))
    broker.receive_queue.push(make_request(2, "ping", version=VERSION))

    dispatcher.tick()

    assert len(broker.receive_queue) == 1
    assert len(broker.send_queue) == 1


def test_unsendable_result_still_produces_one_response(broker, make_request) -> None:
    unsendable = HandlerResult(123)  # type: ignore[arg-type]
    dispatcher = _dispatcher(broker, {"m": lambda _params: unsendable})
    broker.receive_queue.push(make_request(8, "m", version=VERSION))

    assert dispatcher.tick() is True

    response = broker.send_queue.try_pop()
    assert response is not None
    assert response.id == 8
    assert response.status is ResponseStatus.ERROR
    assert broker.send_queue.try_pop() is None
