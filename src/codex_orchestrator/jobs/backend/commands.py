"""Command lines for the codex CLI."""

from __future__ import annotations

import json
import shutil

from codex_orchestrator.jobs.backend.base import BackendLaunchError


def require_codex_bin(codex_bin: str) -> str:
    """Return the resolved executable path or fail the launch before anything is written."""

    resolved = shutil.which(codex_bin)
    if resolved is None:
        raise BackendLaunchError(f"codex executable not found: {codex_bin}", transient=False)
    return resolved


def codex_config_args(
    *,
    model: str,
    reasoning_effort: str,
    subagent_reasoning_effort: str,
) -> list[str]:
    """``-c key=value`` overrides shared by interactive and exec modes.

    Values are TOML literals, so strings are double quoted.
    """

    return [
        "-c",
        f"model={json.dumps(model)}",
        "-c",
        f"model_reasoning_effort={json.dumps(reasoning_effort)}",
        "-c",
        f"subagent_model_reasoning_effort={json.dumps(subagent_reasoning_effort)}",
        "-c",
        "skip_update_check=true",
    ]


def build_interactive_args(  # noqa: PLR0913
    *,
    codex_bin: str,
    model: str,
    reasoning_effort: str,
    subagent_reasoning_effort: str,
    sandbox: str,
) -> list[str]:
    """Interactive TUI invocation; the prompt is appended by the launcher."""

    return [
        codex_bin,
        *codex_config_args(
            model=model,
            reasoning_effort=reasoning_effort,
            subagent_reasoning_effort=subagent_reasoning_effort,
        ),
        "-a",
        "never",
        "-s",
        sandbox,
    ]


def build_exec_args(  # noqa: PLR0913
    *,
    codex_bin: str,
    model: str,
    reasoning_effort: str,
    subagent_reasoning_effort: str,
    sandbox: str,
) -> list[str]:
    """Non-interactive invocation reading the prompt from stdin."""

    return [
        codex_bin,
        "exec",
        "--skip-git-repo-check",
        *codex_config_args(
            model=model,
            reasoning_effort=reasoning_effort,
            subagent_reasoning_effort=subagent_reasoning_effort,
        ),
        "-s",
        sandbox,
        "--color",
        "never",
        "-",
    ]
