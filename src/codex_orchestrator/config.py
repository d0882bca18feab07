"""Runtime configuration for the job orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

REASONING_EFFORTS = ("low", "medium", "high", "xhigh")
SANDBOX_MODES = ("read-only", "workspace-write", "danger-full-access")
BACKEND_MODES = ("auto", "tmux", "native")

DEFAULT_COMPLETION_SENTINEL = "[codex-agent: Session complete"


@dataclass(slots=True)
class AgentDefaults:
    """Launch parameters applied when the caller does not override them."""

    model: str = "gpt-5.2-codex"
    reasoning_effort: str = "medium"
    subagent_reasoning_effort: str = "medium"
    sandbox: str = "workspace-write"
    codex_bin: str = "codex"


@dataclass(slots=True)
class BackendSettings:
    """Session/process backend settings."""

    mode: str = "auto"
    tmux_prefix: str = "codex-agent"
    completion_sentinel: str = DEFAULT_COMPLETION_SENTINEL
    sentinel_scan_lines: int = 20


@dataclass(slots=True)
class PollingSettings:
    """Wait loop and result snapshot settings."""

    poll_interval_seconds: float = 1.0
    timeout_seconds: int = 300
    result_snapshot_chars: int = 200_000
    cleanup_max_age_days: int = 7


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    home_dir: Path = field(default_factory=lambda: Path.home() / ".codex-agent")
    jobs_dir: Path = field(default_factory=lambda: Path.home() / ".codex-agent" / "jobs")
    auth_file: Path = field(default_factory=lambda: Path.home() / ".codex-agent" / "auth.json")
    codex_home: Path = field(default_factory=lambda: Path.home() / ".codex")
    agent: AgentDefaults = field(default_factory=AgentDefaults)
    backend: BackendSettings = field(default_factory=BackendSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)

    @property
    def codex_sessions_dir(self) -> Path:
        return self.codex_home / "sessions"

    @classmethod
    def from_env(cls, jobs_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults suited for local use."""

        home_dir = Path(
            os.getenv("CODEX_AGENT_HOME", str(Path.home() / ".codex-agent")),
        ).expanduser()
        resolved_jobs_dir = jobs_dir or Path(
            os.getenv("CODEX_AGENT_JOBS_DIR", str(home_dir / "jobs")),
        ).expanduser()
        return cls(
            home_dir=home_dir,
            jobs_dir=resolved_jobs_dir,
            auth_file=Path(
                os.getenv("CODEX_AGENT_AUTH_FILE", str(home_dir / "auth.json")),
            ).expanduser(),
            codex_home=Path(os.getenv("CODEX_HOME", str(Path.home() / ".codex"))).expanduser(),
            agent=AgentDefaults(
                model=os.getenv("CODEX_AGENT_MODEL", "gpt-5.2-codex"),
                reasoning_effort=os.getenv("CODEX_AGENT_REASONING", "medium").strip().lower(),
                subagent_reasoning_effort=os.getenv(
                    "CODEX_AGENT_SUBAGENT_REASONING",
                    "medium",
                )
                .strip()
                .lower(),
                sandbox=os.getenv("CODEX_AGENT_SANDBOX", "workspace-write").strip().lower(),
                codex_bin=os.getenv("CODEX_AGENT_CODEX_BIN", "codex"),
            ),
            backend=BackendSettings(
                mode=os.getenv("CODEX_AGENT_BACKEND", "auto").strip().lower(),
                tmux_prefix=os.getenv("CODEX_AGENT_TMUX_PREFIX", "codex-agent"),
                completion_sentinel=os.getenv(
                    "CODEX_AGENT_COMPLETION_SENTINEL",
                    DEFAULT_COMPLETION_SENTINEL,
                ),
                sentinel_scan_lines=int(os.getenv("CODEX_AGENT_SENTINEL_SCAN_LINES", "20")),
            ),
            polling=PollingSettings(
                poll_interval_seconds=float(
                    os.getenv("CODEX_AGENT_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                timeout_seconds=int(os.getenv("CODEX_AGENT_TIMEOUT_SECONDS", "300")),
                result_snapshot_chars=int(
                    os.getenv("CODEX_AGENT_RESULT_SNAPSHOT_CHARS", "200000"),
                ),
                cleanup_max_age_days=int(os.getenv("CODEX_AGENT_CLEANUP_MAX_AGE_DAYS", "7")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any value is out of range."""

        if self.agent.reasoning_effort not in REASONING_EFFORTS:
            raise ValueError(
                f"Invalid CODEX_AGENT_REASONING: {self.agent.reasoning_effort!r}. "
                f"Valid options: {', '.join(REASONING_EFFORTS)}",
            )
        if self.agent.subagent_reasoning_effort not in REASONING_EFFORTS:
            raise ValueError(
                "Invalid CODEX_AGENT_SUBAGENT_REASONING: "
                f"{self.agent.subagent_reasoning_effort!r}. "
                f"Valid options: {', '.join(REASONING_EFFORTS)}",
            )
        if self.agent.sandbox not in SANDBOX_MODES:
            raise ValueError(
                f"Invalid CODEX_AGENT_SANDBOX: {self.agent.sandbox!r}. "
                f"Valid options: {', '.join(SANDBOX_MODES)}",
            )
        if not self.agent.model.strip():
            raise ValueError("CODEX_AGENT_MODEL must not be empty.")
        if self.backend.mode not in BACKEND_MODES:
            raise ValueError(
                f"Invalid CODEX_AGENT_BACKEND: {self.backend.mode!r}. "
                f"Valid options: {', '.join(BACKEND_MODES)}",
            )
        if not self.backend.completion_sentinel.strip():
            raise ValueError("CODEX_AGENT_COMPLETION_SENTINEL must not be empty.")
        if self.backend.sentinel_scan_lines <= 0:
            raise ValueError("CODEX_AGENT_SENTINEL_SCAN_LINES must be > 0.")
        if self.polling.poll_interval_seconds <= 0:
            raise ValueError("CODEX_AGENT_POLL_INTERVAL_SECONDS must be > 0.")
        if self.polling.timeout_seconds <= 0:
            raise ValueError("CODEX_AGENT_TIMEOUT_SECONDS must be > 0.")
        if self.polling.result_snapshot_chars <= 0:
            raise ValueError("CODEX_AGENT_RESULT_SNAPSHOT_CHARS must be > 0.")
        if self.polling.cleanup_max_age_days < 0:
            raise ValueError("CODEX_AGENT_CLEANUP_MAX_AGE_DAYS must be >= 0.")
