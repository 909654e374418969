"""editor-bridge: IPC bridge between an editor host and an external controller."""

from editor_bridge.integration import BridgeIntegration
from editor_bridge.version import get_bridge_version

__version__ = "0.1.0"

__all__ = ["BridgeIntegration", "get_bridge_version"]
