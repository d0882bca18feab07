"""Shared test fixtures."""

from __future__ import annotations

import os
import stat
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from codex_orchestrator.config import Settings
from codex_orchestrator.jobs.backend.base import BackendLaunchError, LaunchResult, LaunchSpec
from codex_orchestrator.jobs.models import (
    Job,
    JobBackend,
    JobStatus,
    ReasoningEffort,
    SandboxMode,
)
from codex_orchestrator.jobs.service import JobOrchestrator
from codex_orchestrator.jobs.store import JobStore

_ECHO_AGENT_SCRIPT = (
    f"#!{sys.executable}\n"
    "import sys\n"
    "from codex_orchestrator.jobs.backend.echo_agent import main\n"
    "sys.exit(main())\n"
)


class FakeClock:
    """Deterministic wall clock, monotonic clock and sleep."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        self.elapsed = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self.elapsed += seconds

    def monotonic(self) -> float:
        return self.elapsed

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeBackend:
    """In-memory session backend keyed by job id."""

    def __init__(self, kind: JobBackend) -> None:
        self.kind = kind
        self.supports_messaging = kind is JobBackend.TMUX
        self.supports_attach = kind is JobBackend.TMUX
        self.alive: set[str] = set()
        self.tail: dict[str, str] = {}
        self.full: dict[str, str] = {}
        self.started: list[LaunchSpec] = []
        self.killed: list[str] = []
        self.sent: list[tuple[str, str]] = []
        self.start_error: BackendLaunchError | None = None

    def start(self, spec: LaunchSpec) -> LaunchResult:
        if self.start_error is not None:
            raise self.start_error
        self.started.append(spec)
        self.alive.add(spec.job_id)
        if self.kind is JobBackend.TMUX:
            return LaunchResult(backend=self.kind, session_name=f"codex-agent-{spec.job_id}")
        return LaunchResult(backend=self.kind, pid=4242)

    def kill(self, job: Job) -> bool:
        self.killed.append(job.id)
        if job.id not in self.alive:
            return False
        self.alive.discard(job.id)
        return True

    def is_alive(self, job: Job) -> bool:
        return job.id in self.alive

    def capture_tail(self, job: Job, lines: int | None = None) -> str | None:
        if job.id not in self.alive or job.id not in self.tail:
            return None
        text = self.tail[job.id]
        return "\n".join(text.split("\n")[-lines:]) if lines else text

    def capture_full(self, job: Job) -> str | None:
        if job.id not in self.alive:
            return None
        return self.full.get(job.id)

    def send_message(self, job: Job, message: str) -> bool:
        if job.id not in self.alive:
            return False
        self.sent.append((job.id, message))
        return True

    def send_control(self, job: Job, key: str) -> bool:
        return self.send_message(job, key)

    def attach_command(self, job: Job) -> str | None:
        if not job.session_name:
            return None
        return f'tmux attach -t "{job.session_name}"'


@pytest.fixture(autouse=True)
def isolated_env(tmp_path_factory: pytest.TempPathFactory, monkeypatch) -> Path:
    """Point every home-relative path into the test directory."""

    home = tmp_path_factory.mktemp("home")
    for name in list(os.environ):
        if name.startswith("CODEX_AGENT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("OPENAI_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("OPENAI_AUTH_TOKEN", raising=False)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("CODEX_HOME", str(home / ".codex"))
    monkeypatch.setenv("CODEX_AGENT_HOME", str(home / ".codex-agent"))
    return home


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    home = tmp_path / "agent-home"
    return Settings(
        home_dir=home,
        jobs_dir=home / "jobs",
        auth_file=home / "auth.json",
        codex_home=tmp_path / "codex-home",
    )


@pytest.fixture()
def store(settings: Settings) -> JobStore:
    job_store = JobStore(settings.jobs_dir)
    job_store.ensure_dir()
    return job_store


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backends() -> dict[JobBackend, FakeBackend]:
    return {
        JobBackend.TMUX: FakeBackend(JobBackend.TMUX),
        JobBackend.NATIVE: FakeBackend(JobBackend.NATIVE),
    }


@pytest.fixture()
def orchestrator(
    settings: Settings,
    store: JobStore,
    backends: dict[JobBackend, FakeBackend],
    clock: FakeClock,
) -> JobOrchestrator:
    return JobOrchestrator(
        settings,
        store=store,
        backends=backends,
        clock=clock,
        sleep=clock.sleep,
        monotonic=clock.monotonic,
        token_provider=lambda: "test-token",
        tmux_available=True,
    )


@pytest.fixture()
def make_job(store: JobStore, clock: FakeClock, tmp_path: Path):
    """Persist a job record directly, bypassing any backend."""

    def _make_job(**overrides) -> Job:
        fields = {
            "id": store.new_job_id(),
            "status": JobStatus.RUNNING,
            "prompt": "Review the auth module",
            "model": "gpt-5.2-codex",
            "reasoning_effort": ReasoningEffort.MEDIUM,
            "subagent_reasoning_effort": ReasoningEffort.MEDIUM,
            "sandbox": SandboxMode.WORKSPACE_WRITE,
            "cwd": str(tmp_path),
            "created_at": clock(),
            "started_at": clock(),
        }
        fields.update(overrides)
        job = Job(**fields)
        store.save(job)
        return job

    return _make_job


@pytest.fixture()
def echo_codex(tmp_path: Path, monkeypatch) -> Path:
    """Install the echo agent as the codex binary for subprocess-level tests."""

    script = tmp_path / "bin" / "codex"
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text(_ECHO_AGENT_SCRIPT, "utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("CODEX_AGENT_CODEX_BIN", str(script))
    return script
