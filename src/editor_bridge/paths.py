"""XDG-compliant path helpers for editor bridge data and runtime files."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_config_dir, user_data_dir

_APP_NAME = "editor-bridge"
ENDPOINT_NAME_PREFIX = "EditorBridgeIPC"
DEFAULT_DESCRIPTOR_RELPATH = "Library/EditorInstance.json"


def get_data_dir() -> Path:
    """Get the data directory (log exports and other persistent files)."""
    override = os.environ.get("EDITOR_BRIDGE_DATA_DIR")
    if override:
        return Path(override).resolve()
    return Path(user_data_dir(_APP_NAME))


def get_config_dir() -> Path:
    """Get the config directory (config.toml)."""
    override = os.environ.get("EDITOR_BRIDGE_CONFIG_DIR")
    if override:
        return Path(override).resolve()
    return Path(user_config_dir(_APP_NAME))


def get_config_path() -> Path:
    """Get the path to the main config file."""
    return get_config_dir() / "config.toml"


def get_log_export_path() -> Path:
    """Get the path to the log history export file."""
    return get_data_dir() / "bridge.log"


def get_runtime_dir() -> Path:
    """Get the runtime directory for host endpoints.

    Houses the per-process socket files and endpoint descriptors used by
    controllers to connect to a running host.
    """
    override = os.environ.get("EDITOR_BRIDGE_RUNTIME_DIR")
    if override:
        return Path(override).resolve()
    return get_data_dir() / "run"


def get_endpoint_socket_path(pid: int) -> Path:
    """Get the deterministic Unix socket path for the host process *pid*."""
    return get_runtime_dir() / f"{ENDPOINT_NAME_PREFIX}-{pid}.sock"


def get_endpoint_file_path(pid: int) -> Path:
    """Get the path to the endpoint file published by the host process *pid*.

    The file contains a JSON object describing how to connect to the host
    (transport type, address/path and port).
    """
    return get_runtime_dir() / f"endpoint-{pid}.json"


def get_instance_descriptor_path(
    project_dir: Path,
    relpath: str = DEFAULT_DESCRIPTOR_RELPATH,
) -> Path:
    """Get the instance descriptor written by the editor host for *project_dir*."""
    return project_dir / relpath


def ensure_directories() -> None:
    """Create all necessary directories if they don't exist."""
    get_data_dir().mkdir(parents=True, exist_ok=True)
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_runtime_dir().mkdir(parents=True, exist_ok=True)
