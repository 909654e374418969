"""Editor host capabilities and the standard bridge method catalogue."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from editor_bridge.ipc.dispatcher import MethodSpec

if TYPE_CHECKING:
    from editor_bridge.log_history import LogHistoryHandler, LogRecordEntry

logger = logging.getLogger(__name__)


@runtime_checkable
class HostCapabilities(Protocol):
    """Operations the embedding editor exposes to controllers."""

    def refresh(self) -> None:
        """Re-import changed assets and recompile scripts."""
        ...

    def enter_playmode(self) -> None: ...

    def exit_playmode(self) -> None: ...

    def is_playing(self) -> bool: ...

    def generate_solution(self) -> None:
        """Regenerate the IDE project files."""
        ...

    def log_history(self) -> list[LogRecordEntry]: ...


def _toggle_playmode(caps: HostCapabilities) -> None:
    if caps.is_playing():
        caps.exit_playmode()
    else:
        caps.enter_playmode()


def _serialize_logs(caps: HostCapabilities) -> str:
    items = [entry.model_dump(exclude={"timestamp"}) for entry in caps.log_history()]
    return json.dumps({"items": items})


def build_method_table(caps: HostCapabilities) -> dict[str, MethodSpec]:
    """Map method names to handlers bound to *caps*.

    Methods that may reload the host (``refresh`` and the play mode family)
    acknowledge before running.  ``generate_sln`` finishes first, then replies.
    """

    def refresh(_parameters: Any) -> None:
        caps.refresh()

    def playmode_enter(_parameters: Any) -> None:
        caps.refresh()
        caps.enter_playmode()

    def playmode_exit(_parameters: Any) -> None:
        caps.exit_playmode()

    def playmode_toggle(_parameters: Any) -> None:
        _toggle_playmode(caps)

    def generate_sln(_parameters: Any) -> str:
        caps.refresh()
        caps.generate_solution()
        return "OK"

    def logs(_parameters: Any) -> str:
        return _serialize_logs(caps)

    return {
        "refresh": MethodSpec(refresh, acknowledge_first=True),
        "playmode_enter": MethodSpec(playmode_enter, acknowledge_first=True),
        "playmode_exit": MethodSpec(playmode_exit, acknowledge_first=True),
        "playmode_toggle": MethodSpec(playmode_toggle, acknowledge_first=True),
        "generate_sln": MethodSpec(generate_sln),
        "logs": MethodSpec(logs),
    }


class SimulatedHost:
    """In-memory stand-in for an editor, used by ``editor-bridge serve``.

    Records every capability call in :attr:`calls` so its behaviour can be
    observed without a real editor.
    """

    def __init__(self, history: LogHistoryHandler | None = None) -> None:
        self.calls: list[str] = []
        self.playing = False
        self._history = history

    def refresh(self) -> None:
        self.calls.append("refresh")
        logger.info("Refreshing assets")

    def enter_playmode(self) -> None:
        self.calls.append("enter_playmode")
        self.playing = True
        logger.info("Entered play mode")

    def exit_playmode(self) -> None:
        self.calls.append("exit_playmode")
        self.playing = False
        logger.info("Exited play mode")

    def is_playing(self) -> bool:
        return self.playing

    def generate_solution(self) -> None:
        self.calls.append("generate_solution")
        logger.info("Generated solution files")

    def log_history(self) -> list[LogRecordEntry]:
        if self._history is None:
            return []
        return self._history.entries()


__all__ = ["HostCapabilities", "SimulatedHost", "build_method_table"]
