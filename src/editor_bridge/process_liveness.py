"""Liveness checks for editor host processes named in instance descriptors."""

from __future__ import annotations

import logging

import psutil

logger = logging.getLogger(__name__)


def pid_exists(pid: int) -> bool:
    """Return whether *pid* refers to a running (non-zombie) process.

    A descriptor left behind by a crashed host usually names a PID that is
    gone or, on POSIX, a zombie still waiting to be reaped; both count as dead.
    """
    if pid <= 0:
        return False
    try:
        status = psutil.Process(pid).status()
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Owned by another user, but it exists.
        return True
    return status != psutil.STATUS_ZOMBIE


def process_name(pid: int) -> str | None:
    """Return the executable name for *pid*, or ``None`` when unavailable."""
    try:
        return psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        logger.debug("Cannot read process name for PID %d", pid)
        return None


__all__ = ["pid_exists", "process_name"]
