"""Thread-safe mailboxes between the I/O thread and the host tick thread."""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from editor_bridge.ipc.contracts import RequestMessage, ResponseMessage


def _wake(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


class MessageQueue[T]:
    """Unbounded multi-producer/multi-consumer FIFO.

    ``push`` and ``try_pop`` never block and may be called from any thread.
    ``pop`` is awaitable from any event loop: waiters are woken through
    ``call_soon_threadsafe``, so a producer on another thread never touches a
    foreign loop directly.  A cancelled ``pop`` leaves queued items intact.
    """

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def push(self, item: T) -> None:
        """Append *item* at the tail."""
        with self._lock:
            self._items.append(item)
            waiters = self._take_waiters()
        self._notify(waiters)

    def push_front(self, item: T) -> None:
        """Put *item* back at the head (used to return an unsent item)."""
        with self._lock:
            self._items.appendleft(item)
            waiters = self._take_waiters()
        self._notify(waiters)

    def try_pop(self) -> T | None:
        """Remove and return the head item, or ``None`` when empty."""
        with self._lock:
            if self._items:
                return self._items.popleft()
            return None

    async def pop(self) -> T:
        """Remove and return the head item, waiting until one is pushed."""
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                if self._items:
                    return self._items.popleft()
                waiter: asyncio.Future[None] = loop.create_future()
                entry = (loop, waiter)
                self._waiters.append(entry)
            try:
                await waiter
            finally:
                with self._lock:
                    if entry in self._waiters:
                        self._waiters.remove(entry)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def _take_waiters(self) -> list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]]:
        waiters = self._waiters
        self._waiters = []
        return waiters

    @staticmethod
    def _notify(waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]]) -> None:
        for loop, waiter in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_wake, waiter)


@dataclass
class MessageBroker:
    """The two queues shared between the connection loop and the dispatcher.

    The connection loop is the only producer on ``receive_queue`` and the only
    consumer of ``send_queue``; the dispatcher is the reverse.
    """

    receive_queue: MessageQueue[RequestMessage] = field(default_factory=MessageQueue)
    send_queue: MessageQueue[ResponseMessage] = field(default_factory=MessageQueue)

    def clear(self) -> None:
        self.receive_queue.clear()
        self.send_queue.clear()


__all__ = ["MessageBroker", "MessageQueue"]
