"""Host-tick consumer that turns queued requests into exactly one response each."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from editor_bridge.ipc.contracts import ResponseMessage, ResponseStatus
from editor_bridge.ipc.errors import VersionMismatchError

if TYPE_CHECKING:
    from editor_bridge.ipc.broker import MessageBroker
    from editor_bridge.ipc.contracts import RequestMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HandlerResult:
    result: str = "OK"
    status: ResponseStatus = ResponseStatus.OK


type HandlerReturn = HandlerResult | str | tuple[str, ResponseStatus | int] | None
type Handler = Callable[[Any], HandlerReturn]


@dataclass(frozen=True, slots=True)
class MethodSpec:
    """A registered host method.

    With ``acknowledge_first`` the dispatcher queues an ``OK`` response before
    calling *handler*.  Use it for operations that may suspend or restart
    observable host state (a reload, entering play mode): the controller
    must see the acknowledgement before that happens.  The handler's return
    value is ignored in that case.
    """

    handler: Handler
    acknowledge_first: bool = False


def _coerce_result(value: HandlerReturn) -> HandlerResult:
    match value:
        case HandlerResult():
            return value
        case None:
            return HandlerResult()
        case str():
            return HandlerResult(result=value)
        case (str() as result, status):
            return HandlerResult(result=result, status=ResponseStatus(status))
        case _:
            msg = f"Unsupported handler return value: {value!r}"
            raise TypeError(msg)


class RequestDispatcher:
    """Pops at most one request per :meth:`tick` and answers it.

    The dispatcher defines no methods of its own; the embedding application
    supplies the method table.
    """

    def __init__(
        self,
        broker: MessageBroker,
        methods: Mapping[str, MethodSpec | Handler] | None = None,
        *,
        version: str,
    ) -> None:
        self._broker = broker
        self._version = version
        self._methods: dict[str, MethodSpec] = {}
        for name, spec in (methods or {}).items():
            self.register(name, spec)

    @property
    def version(self) -> str:
        return self._version

    @property
    def methods(self) -> list[str]:
        return sorted(self._methods)

    def register(
        self,
        name: str,
        handler: MethodSpec | Handler,
        *,
        acknowledge_first: bool = False,
    ) -> None:
        """Register *handler* under *name*, replacing any previous one."""
        if isinstance(handler, MethodSpec):
            self._methods[name] = handler
        else:
            self._methods[name] = MethodSpec(handler, acknowledge_first=acknowledge_first)

    def tick(self) -> bool:
        """Process at most one pending request.

        Never blocks and never raises.

        Returns:
            ``True`` if a request was handled, ``False`` if the queue was empty.
        """
        request = self._broker.receive_queue.try_pop()
        if request is None:
            return False
        try:
            self._dispatch(request)
        except Exception as exc:
            logger.exception("Failed to dispatch request id=%d", request.id)
            self._broker.send_queue.push(
                ResponseMessage.failure(request.id, self._version, f"Internal error: {exc}")
            )
        return True

    def _dispatch(self, request: RequestMessage) -> None:
        if request.version != self._version:
            error = VersionMismatchError(self._version, request.version)
            logger.warning("%s", error)
            self._reply(request, str(error), ResponseStatus.ERROR)
            return

        spec = self._methods.get(request.method)
        if spec is None:
            result = f"Unknown message method: {request.method}"
            logger.warning("%s", result)
            self._reply(request, result, ResponseStatus.ERROR)
            return

        if spec.acknowledge_first:
            self._reply(request, "OK", ResponseStatus.OK)
            try:
                spec.handler(request.parameters)
            except Exception:
                logger.exception("Handler for %r failed after acknowledgement", request.method)
            return

        try:
            outcome = _coerce_result(spec.handler(request.parameters))
        except Exception as exc:
            logger.exception("Handler for %r failed", request.method)
            self._reply(request, str(exc) or type(exc).__name__, ResponseStatus.ERROR)
            return
        self._reply(request, outcome.result, outcome.status)

    def _reply(self, request: RequestMessage, result: str, status: ResponseStatus) -> None:
        self._broker.send_queue.push(
            ResponseMessage(id=request.id, version=self._version, status=status, result=result)
        )


__all__ = ["Handler", "HandlerResult", "MethodSpec", "RequestDispatcher"]
