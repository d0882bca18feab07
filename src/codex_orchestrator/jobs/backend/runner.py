"""Detached supervisor for native-backend jobs.

Spawned as ``python -m codex_orchestrator.jobs.backend.runner <config>``.  It
runs ``codex exec``, appends everything the agent prints to the job log and
records the exit status in ``{id}.done.json`` once the agent is gone.
"""

from __future__ import annotations

import argparse
import json
import signal
import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path

from codex_orchestrator.jobs.backend.base import RunnerConfig

_COMMAND_NOT_FOUND_EXIT_CODE = 127


def main(argv: list[str] | None = None) -> int:
    """Run one agent to completion and record how it exited."""

    parser = argparse.ArgumentParser()
    parser.add_argument("config")
    args = parser.parse_args(argv)

    config = RunnerConfig.read(Path(args.config))
    prompt = Path(config.prompt_path).read_text("utf-8")
    log_path = Path(config.log_path)

    with log_path.open("a", encoding="utf-8") as log_handle:
        try:
            process = subprocess.Popen(  # noqa: S603
                config.command,
                cwd=config.cwd,
                stdin=subprocess.PIPE,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as error:
            log_handle.write(f"\n[codex-agent] failed to start {config.command[0]}: {error}\n")
            write_done_marker(
                Path(config.done_path),
                code=_COMMAND_NOT_FOUND_EXIT_CODE,
                signal_name=None,
            )
            return _COMMAND_NOT_FOUND_EXIT_CODE

        assert process.stdin is not None
        try:
            process.stdin.write(prompt if prompt.endswith("\n") else f"{prompt}\n")
            process.stdin.close()
        except BrokenPipeError:
            pass

        returncode = process.wait()
        code, signal_name = _split_returncode(returncode)
        log_handle.write(f"\n[codex-agent] exit code: {code} signal: {signal_name}\n")

    write_done_marker(Path(config.done_path), code=code, signal_name=signal_name)
    return code if code is not None else 1


def write_done_marker(path: Path, *, code: int | None, signal_name: str | None) -> None:
    payload = {
        "code": code,
        "signal": signal_name,
        "at": datetime.now(tz=UTC).isoformat(),
    }
    path.write_text(json.dumps(payload, indent=2), "utf-8")


def _split_returncode(returncode: int) -> tuple[int | None, str | None]:
    if returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
