"""In-session launcher for tmux-backend jobs.

Runs inside the tmux pane: loads the one-shot credential file, starts the
interactive codex TUI with the prompt, prints the completion sentinel that
the status reconciler scans for, and then leaves a shell so the pane and its
history stay available for inspection.
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from pathlib import Path

from codex_orchestrator.jobs.backend.base import RunnerConfig
from codex_orchestrator.jobs.backend.runner import write_done_marker

_COMMAND_NOT_FOUND_EXIT_CODE = 127


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("config")
    parser.add_argument("--no-shell", action="store_true", help="Exit instead of leaving a shell.")
    args = parser.parse_args(argv)

    config = RunnerConfig.read(Path(args.config))
    env = os.environ.copy()
    env.update(consume_env_file(Path(config.env_path) if config.env_path else None))
    prompt = Path(config.prompt_path).read_text("utf-8")

    try:
        completed = subprocess.run(  # noqa: S603
            [*config.command, prompt],
            cwd=config.cwd,
            env=env,
            check=False,
        )
        code = completed.returncode
    except OSError as error:
        print(f"[codex-agent] failed to start {config.command[0]}: {error}", flush=True)
        code = _COMMAND_NOT_FOUND_EXIT_CODE

    write_done_marker(Path(config.done_path), code=code, signal_name=None)
    if config.completion_sentinel:
        print(f"\n{config.completion_sentinel} (exit code {code})", flush=True)

    if args.no_shell:
        return code
    shell = os.environ.get("SHELL") or "/bin/sh"
    try:
        os.execvp(shell, [shell])  # noqa: S606
    except OSError:
        return code
    return code  # pragma: no cover


def consume_env_file(path: Path | None) -> dict[str, str]:
    """Read ``{NAME: value}`` pairs from a private file and delete it."""

    if path is None:
        return {}
    try:
        raw = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    finally:
        path.unlink(missing_ok=True)
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items() if value is not None}


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
