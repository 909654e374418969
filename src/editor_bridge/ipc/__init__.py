"""Framing, transports, server loop and client engine for editor bridge communication."""

from __future__ import annotations

from editor_bridge.ipc.broker import MessageBroker, MessageQueue
from editor_bridge.ipc.client import ClientState, IPCClient
from editor_bridge.ipc.contracts import RequestMessage, ResponseMessage, ResponseStatus
from editor_bridge.ipc.discovery import BridgeEndpoint, discover_endpoint
from editor_bridge.ipc.dispatcher import HandlerResult, MethodSpec, RequestDispatcher
from editor_bridge.ipc.server import IPCServer

__all__ = [
    "BridgeEndpoint",
    "ClientState",
    "HandlerResult",
    "IPCClient",
    "IPCServer",
    "MessageBroker",
    "MessageQueue",
    "MethodSpec",
    "RequestDispatcher",
    "RequestMessage",
    "ResponseMessage",
    "ResponseStatus",
    "discover_endpoint",
]
