"""Thin wrapper over the tmux command line."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

TMUX_INSTALL_HINT = (
    "Install tmux: `brew install tmux` (macOS) or `sudo apt install tmux` (Debian/Ubuntu)."
)

_COMMAND_TIMEOUT_SECONDS = 30
_ENTER_DELAY_SECONDS = 0.1


@dataclass(slots=True)
class SessionCreateResult:
    success: bool
    name: str | None = None
    error: str | None = None


@dataclass(slots=True)
class TmuxSessionInfo:
    name: str
    attached: bool
    created: str


def is_tmux_available() -> bool:
    if shutil.which("tmux") is None:
        return False
    completed = _run_tmux(["-V"])
    return completed is not None and completed.returncode == 0


def session_name_for(job_id: str, prefix: str = "codex-agent") -> str:
    return f"{prefix}-{job_id}"


def create_session(name: str, command: list[str], *, cwd: Path) -> SessionCreateResult:
    """Start a detached session running ``command`` in ``cwd``."""

    shell_command = shlex.join(command)
    logger.info("Creating tmux session %s in %s", name, cwd)
    completed = _run_tmux(
        ["new-session", "-d", "-s", name, "-c", str(cwd), shell_command],
        cwd=cwd,
    )
    if completed is None:
        return SessionCreateResult(success=False, error="Failed to run tmux new-session")
    if completed.returncode != 0:
        stderr = completed.stderr.strip() or f"exit code {completed.returncode}"
        logger.error("Failed to create tmux session %s: %s", name, stderr)
        return SessionCreateResult(success=False, error=f"Failed to create tmux session: {stderr}")
    return SessionCreateResult(success=True, name=name)


def session_exists(name: str) -> bool:
    completed = _run_tmux(["has-session", "-t", name])
    return completed is not None and completed.returncode == 0


def capture_pane(name: str, *, lines: int | None = None) -> str | None:
    """Capture the rendered pane, limited to the last ``lines`` lines when given."""

    args = ["capture-pane", "-p", "-t", name]
    if lines:
        args.extend(["-S", f"-{lines}"])
    completed = _run_tmux(args)
    if completed is None or completed.returncode != 0:
        return None
    output = completed.stdout.rstrip("\n")
    if lines:
        output = "\n".join(output.split("\n")[-lines:])
    return output


def capture_full_history(name: str) -> str | None:
    completed = _run_tmux(["capture-pane", "-p", "-J", "-t", name, "-S", "-"])
    if completed is None or completed.returncode != 0:
        return None
    return completed.stdout


def send_message(name: str, text: str) -> bool:
    """Type ``text`` literally into the session and press Enter."""

    typed = _run_tmux(["send-keys", "-t", name, "-l", text])
    if typed is None or typed.returncode != 0:
        return False
    time.sleep(_ENTER_DELAY_SECONDS)
    entered = _run_tmux(["send-keys", "-t", name, "Enter"])
    return entered is not None and entered.returncode == 0


def send_control(name: str, key: str) -> bool:
    """Send one tmux key name such as ``C-c`` or ``Escape``."""

    completed = _run_tmux(["send-keys", "-t", name, key])
    return completed is not None and completed.returncode == 0


def kill_session(name: str) -> bool:
    completed = _run_tmux(["kill-session", "-t", name])
    return completed is not None and completed.returncode == 0


def pipe_pane(name: str, log_path: Path) -> bool:
    """Append everything printed in the pane to ``log_path``."""

    completed = _run_tmux(
        ["pipe-pane", "-o", "-t", name, f"cat >> {shlex.quote(str(log_path))}"],
    )
    return completed is not None and completed.returncode == 0


def list_sessions(prefix: str = "codex-agent") -> list[TmuxSessionInfo]:
    completed = _run_tmux(
        [
            "list-sessions",
            "-F",
            "#{session_name}\t#{session_attached}\t#{session_created}",
        ],
    )
    if completed is None or completed.returncode != 0:
        return []

    sessions: list[TmuxSessionInfo] = []
    for line in completed.stdout.splitlines():
        parts = line.split("\t")
        if len(parts) != 3 or not parts[0].startswith(f"{prefix}-"):
            continue
        name, attached, created = parts
        sessions.append(
            TmuxSessionInfo(
                name=name,
                attached=attached.strip() not in ("", "0"),
                created=_format_epoch(created),
            ),
        )
    return sessions


def _format_epoch(raw: str) -> str:
    try:
        return datetime.fromtimestamp(int(raw), tz=UTC).isoformat()
    except ValueError:
        return raw


def _run_tmux(
    args: list[str],
    *,
    cwd: Path | None = None,
) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(  # noqa: S603
            ["tmux", *args],  # noqa: S607
            check=False,
            capture_output=True,
            text=True,
            cwd=cwd,
            timeout=_COMMAND_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired:
        logger.warning("tmux %s timed out", args[0] if args else "")
        return None
    except OSError as error:
        logger.warning("tmux %s failed to start: %s", args[0] if args else "", error)
        return None
