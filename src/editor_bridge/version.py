"""Shared package version helpers."""

from __future__ import annotations

from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version


@lru_cache(maxsize=1)
def get_bridge_version() -> str:
    """Return installed editor-bridge version, or 'dev' when package metadata is unavailable.

    The package version doubles as the wire protocol version: hosts reject
    requests whose ``version`` differs from their own.
    """
    try:
        return version("editor-bridge")
    except PackageNotFoundError:
        return "dev"


__all__ = ["get_bridge_version"]
