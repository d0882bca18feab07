"""Domain models for orchestrated agent jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobBackend(str, Enum):
    """Launch strategy that produced a job."""

    TMUX = "tmux"
    NATIVE = "native"


class ReasoningEffort(str, Enum):
    """Reasoning effort levels accepted by the codex CLI."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    XHIGH = "xhigh"


class SandboxMode(str, Enum):
    """Sandbox policies accepted by the codex CLI."""

    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"
    DANGER_FULL_ACCESS = "danger-full-access"


@dataclass(frozen=True, slots=True)
class Job:
    """One delegated unit of work and its tracked lifecycle.

    Records are immutable; state changes produce a new record via
    ``dataclasses.replace`` that is persisted through ``JobStore.save``.
    """

    id: str
    status: JobStatus
    prompt: str
    model: str
    reasoning_effort: ReasoningEffort
    subagent_reasoning_effort: ReasoningEffort
    sandbox: SandboxMode
    cwd: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    backend: JobBackend | None = None
    session_name: str | None = None
    pid: int | None = None
    result: str | None = None
    error: str | None = None
    parent_session_id: str | None = None
    use_protocol: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "prompt": self.prompt,
            "model": self.model,
            "reasoning_effort": self.reasoning_effort.value,
            "subagent_reasoning_effort": self.subagent_reasoning_effort.value,
            "sandbox": self.sandbox.value,
            "cwd": self.cwd,
            "created_at": self.created_at.isoformat(),
            "started_at": _isoformat(self.started_at),
            "completed_at": _isoformat(self.completed_at),
            "backend": self.backend.value if self.backend is not None else None,
            "session_name": self.session_name,
            "pid": self.pid,
            "result": self.result,
            "error": self.error,
            "parent_session_id": self.parent_session_id,
            "use_protocol": self.use_protocol,
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> Job:
        """Build a job from its JSON payload, raising ``ValueError`` when malformed."""

        try:
            pid_raw = raw.get("pid")
            backend_raw = raw.get("backend")
            return cls(
                id=str(raw["id"]),
                status=JobStatus(raw["status"]),
                prompt=str(raw["prompt"]),
                model=str(raw["model"]),
                reasoning_effort=ReasoningEffort(raw["reasoning_effort"]),
                subagent_reasoning_effort=ReasoningEffort(
                    raw.get("subagent_reasoning_effort") or raw["reasoning_effort"],
                ),
                sandbox=SandboxMode(raw["sandbox"]),
                cwd=str(raw["cwd"]),
                created_at=datetime.fromisoformat(raw["created_at"]),
                started_at=_parse_datetime(raw.get("started_at")),
                completed_at=_parse_datetime(raw.get("completed_at")),
                backend=JobBackend(backend_raw) if backend_raw is not None else None,
                session_name=_optional_str(raw.get("session_name")),
                pid=int(pid_raw) if pid_raw is not None else None,
                result=_optional_str(raw.get("result")),
                error=_optional_str(raw.get("error")),
                parent_session_id=_optional_str(raw.get("parent_session_id")),
                use_protocol=bool(raw.get("use_protocol", False)),
            )
        except (KeyError, TypeError) as error:
            raise ValueError(f"Invalid job payload: {error}") from error


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected ISO timestamp string, got {type(value).__name__}")
    return datetime.fromisoformat(value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)
