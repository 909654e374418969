"""Pytest fixtures for editor-bridge tests."""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from hypothesis import Phase, Verbosity, settings

_TEST_BASE_DIR = Path(tempfile.mkdtemp(prefix="editor-bridge-tests-"))
os.environ["EDITOR_BRIDGE_DATA_DIR"] = str(_TEST_BASE_DIR / "data")
os.environ["EDITOR_BRIDGE_CONFIG_DIR"] = str(_TEST_BASE_DIR / "config")

from editor_bridge.ipc.broker import MessageBroker  # noqa: E402
from editor_bridge.ipc.contracts import RequestMessage  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import Generator


settings.register_profile(
    "ci",
    max_examples=100,
    deadline=None,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)
settings.register_profile(
    "dev",
    max_examples=20,
    deadline=500,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


def _short_tempdir() -> Path:
    # AF_UNIX paths are limited to ~104 bytes on macOS.
    base = "/tmp" if sys.platform != "win32" else None
    return Path(tempfile.mkdtemp(prefix="eb-", dir=base))


@pytest.fixture
def short_tmp() -> Generator[Path, None, None]:
    """Create a short temp directory for Unix socket paths."""
    d = _short_tempdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def runtime_dir(monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Give every test its own runtime directory for sockets and endpoint files."""
    d = _short_tempdir()
    monkeypatch.setenv("EDITOR_BRIDGE_RUNTIME_DIR", str(d))
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def broker() -> MessageBroker:
    return MessageBroker()


@pytest.fixture
def make_request():
    """Factory for RequestMessage objects with sensible defaults."""

    def _factory(
        request_id: int = 1,
        method: str = "ping",
        *,
        version: str = "1.0.0",
        parameters: object = None,
    ) -> RequestMessage:
        return RequestMessage(
            id=request_id,
            version=version,
            method=method,
            parameters={} if parameters is None else parameters,
        )

    return _factory


@pytest.fixture(autouse=True)
def _mock_platform_system(monkeypatch: pytest.MonkeyPatch, request: pytest.FixtureRequest):
    """Handle @pytest.mark.mock_platform_system("Windows") marker."""
    marker = request.node.get_closest_marker("mock_platform_system")
    if marker:
        target_platform = marker.args[0]
        monkeypatch.setattr("platform.system", lambda: target_platform)
