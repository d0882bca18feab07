"""Backend interface for launching and observing agent sessions."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from codex_orchestrator.jobs.models import Job, JobBackend


class BackendLaunchError(RuntimeError):
    """Backend launch error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(slots=True)
class LaunchSpec:
    """Inputs required to launch one agent session."""

    job_id: str
    prompt: str
    cwd: Path
    model: str
    reasoning_effort: str
    subagent_reasoning_effort: str
    sandbox: str
    auth_token: str | None = None


@dataclass(slots=True)
class LaunchResult:
    """Handle of a freshly launched session."""

    backend: JobBackend
    session_name: str | None = None
    pid: int | None = None


@dataclass(slots=True)
class RunnerConfig:
    """On-disk instructions for the detached runner or the in-session launcher."""

    job_id: str
    command: list[str]
    cwd: str
    prompt_path: str
    log_path: str
    done_path: str
    env_path: str | None = None
    completion_sentinel: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "command": list(self.command),
            "cwd": self.cwd,
            "prompt_path": self.prompt_path,
            "log_path": self.log_path,
            "done_path": self.done_path,
            "env_path": self.env_path,
            "completion_sentinel": self.completion_sentinel,
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> RunnerConfig:
        try:
            command = raw["command"]
            if not isinstance(command, list) or not command:
                raise ValueError("Runner config command must be a non-empty list.")
            return cls(
                job_id=str(raw["job_id"]),
                command=[str(item) for item in command],
                cwd=str(raw["cwd"]),
                prompt_path=str(raw["prompt_path"]),
                log_path=str(raw["log_path"]),
                done_path=str(raw["done_path"]),
                env_path=raw.get("env_path"),
                completion_sentinel=raw.get("completion_sentinel"),
            )
        except (KeyError, TypeError) as error:
            raise ValueError(f"Invalid runner config: {error}") from error

    @classmethod
    def read(cls, path: Path) -> RunnerConfig:
        return cls.from_payload(json.loads(path.read_text("utf-8")))


class SessionBackend(Protocol):
    """Protocol implemented by session/process launchers."""

    kind: JobBackend
    supports_messaging: bool
    supports_attach: bool

    def start(self, spec: LaunchSpec) -> LaunchResult:
        """Launch the agent and return its handle, raising ``BackendLaunchError``."""

    def kill(self, job: Job) -> bool:
        """Stop the session or process behind ``job``; idempotent."""

    def is_alive(self, job: Job) -> bool:
        """Report whether the session or process behind ``job`` still exists."""

    def capture_tail(self, job: Job, lines: int | None = None) -> str | None:
        """Return live output when the backend can render it, else ``None``."""

    def capture_full(self, job: Job) -> str | None:
        """Return the full live history when available, else ``None``."""

    def send_message(self, job: Job, message: str) -> bool:
        """Type a message into an interactive session."""

    def send_control(self, job: Job, key: str) -> bool:
        """Send a control key to an interactive session."""

    def attach_command(self, job: Job) -> str | None:
        """Shell command a human can run to watch the session."""
