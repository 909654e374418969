"""Endpoint discovery for a running editor host process.

The editor host writes an *instance descriptor* into the project directory
(``Library/EditorInstance.json`` by default) naming its process id.  The
bridge server running inside that process listens on an endpoint derived from
the PID and publishes an endpoint file in the runtime directory; controllers
combine both to find where to connect.
"""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, StrictInt, StrictStr, ValidationError

from editor_bridge.ipc.errors import DescriptorError, EndpointNotFoundError
from editor_bridge.paths import (
    DEFAULT_DESCRIPTOR_RELPATH,
    get_endpoint_file_path,
    get_endpoint_socket_path,
    get_instance_descriptor_path,
)
from editor_bridge.process_liveness import pid_exists

if TYPE_CHECKING:
    from pathlib import Path

    from editor_bridge.ipc.transports import ServerHandle

logger = logging.getLogger(__name__)


class InstanceDescriptor(BaseModel):
    """Metadata the editor host writes about itself; every field is required."""

    process_id: StrictInt
    version: StrictStr
    app_path: StrictStr
    app_contents_path: StrictStr


@dataclass(frozen=True)
class BridgeEndpoint:
    """Describes how to connect to a running host.

    Attributes:
        transport: The transport type (``socket`` or ``tcp``).
        address: The connection address (file path for socket, host for tcp).
        port: TCP port when *transport* is ``tcp``; ``None`` for socket transport.
        pid: OS process ID of the host, used for liveness checks.
    """

    transport: str
    address: str
    port: int | None = None
    pid: int | None = None

    def describe(self) -> str:
        if self.transport == "tcp":
            return f"tcp://{self.address}:{self.port}"
        return f"socket://{self.address}"


def _read_json(path: Path) -> dict[str, Any] | None:
    """Read and parse a JSON file, returning *None* on any failure."""
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        if isinstance(data, dict):
            return data
        return None
    except (OSError, json.JSONDecodeError, ValueError):
        return None


def load_instance_descriptor(path: Path) -> InstanceDescriptor:
    """Load and validate the instance descriptor at *path*.

    Raises:
        DescriptorError: If the file is missing, unreadable or incomplete.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"{path} open failed. Please make sure the editor is running. ({exc})"
        raise DescriptorError(msg) from exc
    try:
        return InstanceDescriptor.model_validate_json(text)
    except ValidationError as exc:
        msg = f"{path} is not a valid instance descriptor ({exc.error_count()} error(s))"
        raise DescriptorError(msg) from exc


def endpoint_for_pid(pid: int) -> BridgeEndpoint:
    """Resolve the endpoint of host *pid*.

    Prefers the endpoint file the host published; falls back to the
    deterministic socket path when no file exists.
    """
    endpoint_path = get_endpoint_file_path(pid)
    data = _read_json(endpoint_path)
    if data is None:
        logger.debug("No endpoint file at %s; using deterministic socket path", endpoint_path)
        return BridgeEndpoint(
            transport="socket",
            address=str(get_endpoint_socket_path(pid)),
            pid=pid,
        )

    transport = data.get("transport")
    address = data.get("address")
    if transport not in {"socket", "tcp"} or not isinstance(address, str) or not address:
        msg = f"Malformed endpoint file at {endpoint_path}"
        raise EndpointNotFoundError(msg)

    port = data.get("port")
    if transport == "tcp" and (not isinstance(port, int) or port <= 0):
        msg = f"Malformed TCP endpoint file at {endpoint_path}"
        raise EndpointNotFoundError(msg)

    return BridgeEndpoint(
        transport=transport,
        address=address,
        port=port if transport == "tcp" else None,
        pid=pid,
    )


def discover_endpoint(
    project_dir: Path,
    *,
    descriptor_relpath: str = DEFAULT_DESCRIPTOR_RELPATH,
) -> BridgeEndpoint:
    """Discover the endpoint of the editor host that has *project_dir* open.

    Raises:
        DescriptorError: If the instance descriptor is missing or invalid.
        EndpointNotFoundError: If the described process is no longer running.
    """
    descriptor_path = get_instance_descriptor_path(
        project_dir.expanduser().resolve(strict=False),
        descriptor_relpath,
    )
    descriptor = load_instance_descriptor(descriptor_path)

    pid = descriptor.process_id
    if not pid_exists(pid):
        logger.info("Host process (PID %d) is no longer running; stale descriptor", pid)
        msg = f"Editor process {pid} from {descriptor_path} is not running"
        raise EndpointNotFoundError(msg)

    return endpoint_for_pid(pid)


# ---------------------------------------------------------------------------
# Host side: publish / retract the endpoint file
# ---------------------------------------------------------------------------


def write_endpoint_file(pid: int, handle: ServerHandle) -> Path:
    """Publish *handle* as the endpoint of host *pid*."""
    path = get_endpoint_file_path(pid)
    path.parent.mkdir(parents=True, exist_ok=True)

    endpoint_data: dict[str, str | int] = {
        "transport": handle.transport_type,
        "address": handle.address,
    }
    if handle.port is not None:
        endpoint_data["port"] = handle.port
    path.write_text(json.dumps(endpoint_data, indent=2), encoding="utf-8")
    return path


def remove_endpoint_file(pid: int) -> None:
    with contextlib.suppress(OSError):
        get_endpoint_file_path(pid).unlink(missing_ok=True)


def write_instance_descriptor(
    project_dir: Path,
    descriptor: InstanceDescriptor,
    *,
    descriptor_relpath: str = DEFAULT_DESCRIPTOR_RELPATH,
) -> Path:
    """Write *descriptor* the way an editor does when it opens *project_dir*."""
    path = get_instance_descriptor_path(project_dir, descriptor_relpath)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(descriptor.model_dump_json(indent=2), encoding="utf-8")
    return path


__all__ = [
    "BridgeEndpoint",
    "InstanceDescriptor",
    "discover_endpoint",
    "endpoint_for_pid",
    "load_instance_descriptor",
    "remove_endpoint_file",
    "write_endpoint_file",
    "write_instance_descriptor",
]
