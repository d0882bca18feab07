from __future__ import annotations

import json
import os
import subprocess
import sys
import time
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from codex_orchestrator.config import AgentDefaults, Settings
from codex_orchestrator.jobs.backend import (
    BackendLaunchError,
    LaunchSpec,
    NativeBackend,
    RunnerConfig,
    TmuxBackend,
    resolve_backend_kind,
)
from codex_orchestrator.jobs.backend import runner, session_launcher
from codex_orchestrator.jobs.backend.commands import build_exec_args, build_interactive_args
from codex_orchestrator.jobs.backend.native_backend import is_pid_running
from codex_orchestrator.jobs.models import Job, JobBackend, JobStatus, ReasoningEffort, SandboxMode
from codex_orchestrator.jobs.store import JobStore
from codex_orchestrator.tmux import SessionCreateResult

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Session Backends"),
]

_ECHO_AGENT = [sys.executable, "-m", "codex_orchestrator.jobs.backend.echo_agent"]
_POSIX_ONLY = pytest.mark.skipif(os.name == "nt", reason="POSIX process semantics")


def _spec(job_id: str, cwd: Path, **overrides) -> LaunchSpec:
    fields = {
        "job_id": job_id,
        "prompt": "Protocol preamble\nSummarize README.md",
        "cwd": cwd,
        "model": "gpt-5.2-codex",
        "reasoning_effort": "high",
        "subagent_reasoning_effort": "low",
        "sandbox": "read-only",
        "auth_token": "secret-token",
    }
    fields.update(overrides)
    return LaunchSpec(**fields)


def _wait_for(path: Path, timeout_seconds: float = 30) -> None:
    deadline = time.monotonic() + timeout_seconds
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} was not written in time")
        time.sleep(0.05)


def test_build_interactive_args() -> None:
    assert build_interactive_args(
        codex_bin="codex",
        model="gpt-5.2-codex",
        reasoning_effort="high",
        subagent_reasoning_effort="low",
        sandbox="read-only",
    ) == [
        "codex",
        "-c",
        'model="gpt-5.2-codex"',
        "-c",
        'model_reasoning_effort="high"',
        "-c",
        'subagent_model_reasoning_effort="low"',
        "-c",
        "skip_update_check=true",
        "-a",
        "never",
        "-s",
        "read-only",
    ]


def test_build_exec_args_reads_prompt_from_stdin() -> None:
    args = build_exec_args(
        codex_bin="/opt/codex",
        model="m",
        reasoning_effort="medium",
        subagent_reasoning_effort="medium",
        sandbox="workspace-write",
    )

    assert args[:3] == ["/opt/codex", "exec", "--skip-git-repo-check"]
    assert args[-5:] == ["-s", "workspace-write", "--color", "never", "-"]
    assert "-a" not in args


@pytest.mark.parametrize(
    ("mode", "tmux_available", "os_name", "expected"),
    [
        ("tmux", False, "posix", JobBackend.TMUX),
        ("native", True, "posix", JobBackend.NATIVE),
        ("auto", True, "posix", JobBackend.TMUX),
        ("auto", False, "posix", JobBackend.NATIVE),
        ("auto", True, "nt", JobBackend.NATIVE),
    ],
)
def test_resolve_backend_kind(
    mode: str, tmux_available: bool, os_name: str, expected: JobBackend
) -> None:
    assert resolve_backend_kind(mode, tmux_available=tmux_available, os_name=os_name) is expected


def test_resolve_backend_kind_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError, match="Invalid backend"):
        resolve_backend_kind("docker", tmux_available=True)


def test_runner_config_rejects_empty_command() -> None:
    with pytest.raises(ValueError, match="non-empty list"):
        RunnerConfig.from_payload(
            {
                "job_id": "0a1b2c3d",
                "command": [],
                "cwd": ".",
                "prompt_path": "p",
                "log_path": "l",
                "done_path": "d",
            },
        )


def test_runner_records_output_and_exit_status(store: JobStore, tmp_path: Path) -> None:
    job_id = "0a1b2c3d"
    store.write_artifact_text(store.prompt_path(job_id), "Preamble\nSay hello")
    config = RunnerConfig(
        job_id=job_id,
        command=[*_ECHO_AGENT, "exec", "--skip-git-repo-check", "-s", "read-only", "-"],
        cwd=str(tmp_path),
        prompt_path=str(store.prompt_path(job_id)),
        log_path=str(store.log_path(job_id)),
        done_path=str(store.done_path(job_id)),
    )
    store.write_artifact_json(store.runner_config_path(job_id), config.to_payload())

    assert runner.main([str(store.runner_config_path(job_id))]) == 0

    log = store.read_log(job_id)
    assert "task: Say hello" in log
    assert "[CODEX-AGENT:COMPLETE:success]" in log
    assert log.endswith("[codex-agent] exit code: 0 signal: None\n")
    done = json.loads(store.done_path(job_id).read_text("utf-8"))
    assert done["code"] == 0
    assert done["signal"] is None


def test_runner_reports_missing_binary(store: JobStore, tmp_path: Path) -> None:
    job_id = "0a1b2c3e"
    store.write_artifact_text(store.prompt_path(job_id), "x")
    config = RunnerConfig(
        job_id=job_id,
        command=[str(tmp_path / "no-such-codex"), "exec", "-"],
        cwd=str(tmp_path),
        prompt_path=str(store.prompt_path(job_id)),
        log_path=str(store.log_path(job_id)),
        done_path=str(store.done_path(job_id)),
    )
    store.write_artifact_json(store.runner_config_path(job_id), config.to_payload())

    assert runner.main([str(store.runner_config_path(job_id))]) == 127

    assert "failed to start" in store.read_log(job_id)
    assert json.loads(store.done_path(job_id).read_text("utf-8"))["code"] == 127


def test_session_launcher_runs_agent_and_prints_sentinel(
    store: JobStore, tmp_path: Path, capfd
) -> None:
    job_id = "0a1b2c3f"
    store.write_artifact_text(store.prompt_path(job_id), "Summarize README.md")
    store.write_artifact_json(store.runner_env_path(job_id), {"OPENAI_ACCESS_TOKEN": "t"})
    config = RunnerConfig(
        job_id=job_id,
        command=[*_ECHO_AGENT, "-a", "never", "-s", "read-only"],
        cwd=str(tmp_path),
        prompt_path=str(store.prompt_path(job_id)),
        log_path=str(store.log_path(job_id)),
        done_path=str(store.done_path(job_id)),
        env_path=str(store.runner_env_path(job_id)),
        completion_sentinel="[codex-agent: Session complete",
    )
    store.write_artifact_json(store.runner_config_path(job_id), config.to_payload())

    code = session_launcher.main([str(store.runner_config_path(job_id)), "--no-shell"])

    assert code == 0
    out = capfd.readouterr().out
    assert "task: Summarize README.md" in out
    assert "auth: token present" in out
    assert "[codex-agent: Session complete (exit code 0)" in out
    assert not store.runner_env_path(job_id).exists()
    assert json.loads(store.done_path(job_id).read_text("utf-8"))["code"] == 0


def test_consume_env_file_deletes_even_corrupt_files(tmp_path: Path) -> None:
    good = tmp_path / "good.env"
    good.write_text(json.dumps({"A": "1", "B": None, "C": 2}), "utf-8")
    bad = tmp_path / "bad.env"
    bad.write_text("{nope", "utf-8")

    assert session_launcher.consume_env_file(good) == {"A": "1", "C": "2"}
    assert session_launcher.consume_env_file(bad) == {}
    assert session_launcher.consume_env_file(None) == {}
    assert not good.exists()
    assert not bad.exists()


@_POSIX_ONLY
def test_is_pid_running_tracks_child_lifecycle() -> None:
    assert is_pid_running(os.getpid()) is True
    assert is_pid_running(0) is False

    child = subprocess.Popen([sys.executable, "-c", "pass"])  # noqa: S603
    deadline = time.monotonic() + 30
    while is_pid_running(child.pid):
        assert time.monotonic() < deadline
        time.sleep(0.05)

    assert is_pid_running(child.pid) is False


@_POSIX_ONLY
def test_native_backend_runs_agent_to_completion(
    store: JobStore, tmp_path: Path, echo_codex: Path
) -> None:
    settings = Settings(jobs_dir=store.jobs_dir, agent=AgentDefaults(codex_bin=str(echo_codex)))
    backend = NativeBackend(settings=settings, store=store)

    launched = backend.start(_spec("1a2b3c4d", tmp_path))

    assert launched.backend is JobBackend.NATIVE
    assert launched.pid is not None
    _wait_for(store.done_path("1a2b3c4d"))
    log = store.read_log("1a2b3c4d")
    assert "task: Summarize README.md" in log
    assert "auth: token present" in log
    assert store.prompt_path("1a2b3c4d").read_text("utf-8").endswith("Summarize README.md")
    assert backend.capture_tail(_dummy_job("1a2b3c4d", launched.pid)) is None
    assert backend.attach_command(_dummy_job("1a2b3c4d", launched.pid)) is None


def test_tmux_backend_start_writes_launch_files(
    store: JobStore, tmp_path: Path, monkeypatch, echo_codex: Path
) -> None:
    created: list[tuple[str, list[str]]] = []
    piped: list[str] = []

    def fake_create(name: str, command: list[str], *, cwd: Path) -> SessionCreateResult:
        created.append((name, command))
        return SessionCreateResult(success=True, name=name)

    monkeypatch.setattr("codex_orchestrator.tmux.create_session", fake_create)
    monkeypatch.setattr("codex_orchestrator.tmux.pipe_pane", lambda name, path: piped.append(name))
    backend = TmuxBackend(settings=Settings.from_env(jobs_dir=store.jobs_dir), store=store)

    launched = backend.start(_spec("2b3c4d5e", tmp_path))

    assert launched.session_name == "codex-agent-2b3c4d5e"
    assert created[0][0] == "codex-agent-2b3c4d5e"
    assert created[0][1][1:] == [
        "-m",
        "codex_orchestrator.jobs.backend.session_launcher",
        str(store.runner_config_path("2b3c4d5e")),
    ]
    assert piped == ["codex-agent-2b3c4d5e"]
    config = RunnerConfig.read(store.runner_config_path("2b3c4d5e"))
    assert config.command[0] == str(echo_codex)
    assert config.completion_sentinel == "[codex-agent: Session complete"
    env = json.loads(store.runner_env_path("2b3c4d5e").read_text("utf-8"))
    assert env == {"OPENAI_ACCESS_TOKEN": "secret-token"}


def test_tmux_backend_launch_failure_removes_credentials(
    store: JobStore, tmp_path: Path, monkeypatch, echo_codex: Path
) -> None:
    monkeypatch.setattr(
        "codex_orchestrator.tmux.create_session",
        lambda name, command, *, cwd: SessionCreateResult(success=False, error="no server"),
    )
    backend = TmuxBackend(settings=Settings.from_env(jobs_dir=store.jobs_dir), store=store)

    with pytest.raises(BackendLaunchError, match="no server") as raised:
        backend.start(_spec("3c4d5e6f", tmp_path))

    assert raised.value.transient is False
    assert not store.runner_env_path("3c4d5e6f").exists()


def _dummy_job(job_id: str, pid: int) -> Job:
    return Job(
        id=job_id,
        status=JobStatus.RUNNING,
        prompt="p",
        model="m",
        reasoning_effort=ReasoningEffort.LOW,
        subagent_reasoning_effort=ReasoningEffort.LOW,
        sandbox=SandboxMode.READ_ONLY,
        cwd=".",
        created_at=datetime.now(tz=UTC),
        backend=JobBackend.NATIVE,
        pid=pid,
    )


@pytest.mark.parametrize("backend_type", [NativeBackend, TmuxBackend])
def test_missing_codex_binary_fails_launch_before_writing_files(
    store: JobStore, tmp_path: Path, backend_type
) -> None:
    settings = Settings(
        jobs_dir=store.jobs_dir,
        agent=AgentDefaults(codex_bin=str(tmp_path / "no-such-codex")),
    )
    backend = backend_type(settings=settings, store=store)

    with pytest.raises(BackendLaunchError, match="codex executable not found") as raised:
        backend.start(_spec("4d5e6f7a", tmp_path))

    assert raised.value.transient is False
    assert list(store.jobs_dir.iterdir()) == []


def test_runner_terminates_prompt_with_newline(store: JobStore, tmp_path: Path) -> None:
    job_id = "5e6f7a8b"
    store.write_artifact_text(store.prompt_path(job_id), "Say hello")
    config = RunnerConfig(
        job_id=job_id,
        command=[sys.executable, "-c", "import sys; sys.stdout.write(repr(sys.stdin.read()))"],
        cwd=str(tmp_path),
        prompt_path=str(store.prompt_path(job_id)),
        log_path=str(store.log_path(job_id)),
        done_path=str(store.done_path(job_id)),
    )
    store.write_artifact_json(store.runner_config_path(job_id), config.to_payload())

    assert runner.main([str(store.runner_config_path(job_id))]) == 0

    assert store.read_log(job_id).startswith(repr("Say hello\n"))
