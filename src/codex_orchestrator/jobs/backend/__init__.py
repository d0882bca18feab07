"""Session/process backend implementations."""

from __future__ import annotations

import os

from codex_orchestrator import tmux
from codex_orchestrator.config import BACKEND_MODES, Settings
from codex_orchestrator.jobs.backend.base import (
    BackendLaunchError,
    LaunchResult,
    LaunchSpec,
    RunnerConfig,
    SessionBackend,
)
from codex_orchestrator.jobs.backend.native_backend import NativeBackend
from codex_orchestrator.jobs.backend.tmux_backend import TmuxBackend
from codex_orchestrator.jobs.models import JobBackend
from codex_orchestrator.jobs.store import JobStore

__all__ = [
    "BackendLaunchError",
    "LaunchResult",
    "LaunchSpec",
    "NativeBackend",
    "RunnerConfig",
    "SessionBackend",
    "TmuxBackend",
    "build_backends",
    "resolve_backend_kind",
]


def resolve_backend_kind(
    mode: str,
    *,
    tmux_available: bool | None = None,
    os_name: str | None = None,
) -> JobBackend:
    """Map the configured mode (``auto``, ``tmux``, ``native``) to a backend."""

    if mode not in BACKEND_MODES:
        raise ValueError(
            f"Invalid backend: {mode!r}. Valid options: {', '.join(BACKEND_MODES)}",
        )
    if mode == "tmux":
        return JobBackend.TMUX
    if mode == "native":
        return JobBackend.NATIVE
    if (os_name or os.name) == "nt":
        return JobBackend.NATIVE
    available = tmux.is_tmux_available() if tmux_available is None else tmux_available
    return JobBackend.TMUX if available else JobBackend.NATIVE


def build_backends(settings: Settings, store: JobStore) -> dict[JobBackend, SessionBackend]:
    return {
        JobBackend.TMUX: TmuxBackend(settings=settings, store=store),
        JobBackend.NATIVE: NativeBackend(settings=settings, store=store),
    }
