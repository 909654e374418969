"""Root object wiring the IPC server, broker and dispatcher into an editor host."""

from __future__ import annotations

import enum
import logging
import os
from typing import TYPE_CHECKING

from editor_bridge.config import HostConfig
from editor_bridge.host import build_method_table
from editor_bridge.ipc.broker import MessageBroker
from editor_bridge.ipc.discovery import remove_endpoint_file, write_endpoint_file
from editor_bridge.ipc.dispatcher import RequestDispatcher
from editor_bridge.ipc.server import IPCServer
from editor_bridge.ipc.transports import transport_for_preference
from editor_bridge.version import get_bridge_version

if TYPE_CHECKING:
    from editor_bridge.host import HostCapabilities
    from editor_bridge.ipc.transports import ServerHandle, Transport

logger = logging.getLogger(__name__)


class IntegrationStatus(enum.Enum):
    """State machine for the integration lifecycle."""

    STOPPED = "stopped"
    RUNNING = "running"


class BridgeIntegration:
    """Owns everything the editor host needs to serve controllers.

    Owns:
    - ``MessageBroker`` (the two queues shared with the I/O thread)
    - ``IPCServer`` (worker thread accepting one controller at a time)
    - ``RequestDispatcher`` (bound to the host's capabilities)
    - The endpoint file controllers use for discovery

    The host calls :meth:`update` from its own tick; nothing else touches the
    queues on that thread.

    Usage::

        integration = BridgeIntegration(capabilities)
        integration.start()
        # once per editor tick:
        integration.update()
        # on shutdown or reload:
        integration.dispose()
    """

    def __init__(
        self,
        capabilities: HostCapabilities,
        *,
        config: HostConfig | None = None,
        version: str | None = None,
        transport: Transport | None = None,
        pid: int | None = None,
    ) -> None:
        self._config = config or HostConfig()
        self._version = version or get_bridge_version()
        self._pid = pid if pid is not None else os.getpid()
        self._broker = MessageBroker()
        if transport is None:
            transport = transport_for_preference(self._config.transport, pid=self._pid)
        self._server = IPCServer(self._broker, transport=transport)
        self._dispatcher = RequestDispatcher(
            self._broker,
            build_method_table(capabilities),
            version=self._version,
        )
        self._status = IntegrationStatus.STOPPED

    @property
    def status(self) -> IntegrationStatus:
        return self._status

    @property
    def broker(self) -> MessageBroker:
        return self._broker

    @property
    def dispatcher(self) -> RequestDispatcher:
        return self._dispatcher

    @property
    def handle(self) -> ServerHandle | None:
        return self._server.handle

    @property
    def has_client(self) -> bool:
        return self._server.has_client

    def start(self) -> ServerHandle:
        """Start the IPC server and publish its endpoint file."""
        if self._status is not IntegrationStatus.STOPPED:
            msg = f"Cannot start integration in state {self._status.value}"
            raise RuntimeError(msg)

        handle = self._server.start()
        try:
            write_endpoint_file(self._pid, handle)
        except OSError:
            self._server.stop()
            raise
        self._status = IntegrationStatus.RUNNING
        logger.info(
            "Bridge integration running: transport=%s address=%s port=%s pid=%d",
            handle.transport_type,
            handle.address,
            handle.port,
            self._pid,
        )
        return handle

    def update(self) -> bool:
        """Process at most one pending request; call once per host tick."""
        if self._status is not IntegrationStatus.RUNNING:
            return False
        return self._dispatcher.tick()

    def dispose(self) -> None:
        """Stop the server, retract the endpoint file and drop queued messages."""
        if self._status is IntegrationStatus.STOPPED:
            return
        self._server.stop()
        remove_endpoint_file(self._pid)
        self._broker.clear()
        self._status = IntegrationStatus.STOPPED
        logger.info("Bridge integration stopped")

    def __enter__(self) -> BridgeIntegration:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()


__all__ = ["BridgeIntegration", "IntegrationStatus"]
