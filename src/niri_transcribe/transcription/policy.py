"""Backend selection policy, kept free of I/O so it can be tested directly."""

from __future__ import annotations

from .types import Backend


def alternate(backend: Backend) -> Backend:
    return Backend.LOCAL if backend is Backend.REMOTE else Backend.REMOTE


def select_backend(current: Backend, remote_healthy: bool, local_healthy: bool, preferred: Backend) -> Backend:
    """
    Decide which backend should be primary after a health probe.

    - The preferred backend wins whenever it is healthy.
    - Otherwise switch away from an unhealthy current backend if the alternate is healthy.
    - With nothing healthy, keep the current backend (a probe can be wrong; requests still fall back).
    """
    healthy = {Backend.REMOTE: remote_healthy, Backend.LOCAL: local_healthy}
    if healthy[preferred]:
        return preferred
    if not healthy[current] and healthy[alternate(current)]:
        return alternate(current)
    return current
