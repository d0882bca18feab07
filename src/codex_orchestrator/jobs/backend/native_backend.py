"""Detached-process backend for hosts without tmux."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys

from codex_orchestrator.auth import TOKEN_ENV_VAR
from codex_orchestrator.config import Settings
from codex_orchestrator.jobs.backend.base import (
    BackendLaunchError,
    LaunchResult,
    LaunchSpec,
    RunnerConfig,
)
from codex_orchestrator.jobs.backend.commands import build_exec_args, require_codex_bin
from codex_orchestrator.jobs.models import Job, JobBackend
from codex_orchestrator.jobs.store import JobStore

logger = logging.getLogger(__name__)

RUNNER_MODULE = "codex_orchestrator.jobs.backend.runner"


class NativeBackend:
    """Run ``codex exec`` under a detached supervisor process."""

    kind = JobBackend.NATIVE
    supports_messaging = False
    supports_attach = False

    def __init__(self, *, settings: Settings, store: JobStore) -> None:
        self.settings = settings
        self.store = store

    def start(self, spec: LaunchSpec) -> LaunchResult:
        require_codex_bin(self.settings.agent.codex_bin)
        store = self.store
        store.ensure_dir()
        prompt_path = store.prompt_path(spec.job_id)
        log_path = store.log_path(spec.job_id)
        config_path = store.runner_config_path(spec.job_id)

        store.write_artifact_text(prompt_path, spec.prompt)
        log_path.touch(exist_ok=True)
        config = RunnerConfig(
            job_id=spec.job_id,
            command=build_exec_args(
                codex_bin=self.settings.agent.codex_bin,
                model=spec.model,
                reasoning_effort=spec.reasoning_effort,
                subagent_reasoning_effort=spec.subagent_reasoning_effort,
                sandbox=spec.sandbox,
            ),
            cwd=str(spec.cwd),
            prompt_path=str(prompt_path),
            log_path=str(log_path),
            done_path=str(store.done_path(spec.job_id)),
        )
        store.write_artifact_json(config_path, config.to_payload())

        env = os.environ.copy()
        if spec.auth_token:
            env[TOKEN_ENV_VAR] = spec.auth_token

        try:
            process = subprocess.Popen(  # noqa: S603
                [sys.executable, "-m", RUNNER_MODULE, str(config_path)],
                cwd=spec.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **_detach_kwargs(),
            )
        except FileNotFoundError as error:
            raise BackendLaunchError(
                f"Native runner command not found: {sys.executable}",
                transient=False,
            ) from error
        except OSError as error:
            raise BackendLaunchError(
                f"Native runner failed to start: {error}",
                transient=True,
            ) from error

        logger.info("Started job %s as native process %s", spec.job_id, process.pid)
        return LaunchResult(backend=JobBackend.NATIVE, pid=process.pid)

    def kill(self, job: Job) -> bool:
        if job.pid is None or not is_pid_running(job.pid):
            return False
        return terminate_process_tree(job.pid)

    def is_alive(self, job: Job) -> bool:
        return job.pid is not None and is_pid_running(job.pid)

    def capture_tail(self, job: Job, lines: int | None = None) -> str | None:
        return None

    def capture_full(self, job: Job) -> str | None:
        return None

    def send_message(self, job: Job, message: str) -> bool:
        return False

    def send_control(self, job: Job, key: str) -> bool:
        return False

    def attach_command(self, job: Job) -> str | None:
        return None


def is_pid_running(pid: int, *, os_name: str | None = None) -> bool:
    """Check process liveness, reaping it first when it is our own child."""

    if pid <= 0:
        return False
    if (os_name or os.name) == "nt":
        return _windows_pid_running(pid)

    try:
        reaped_pid, _status = os.waitpid(pid, os.WNOHANG)
    except OSError:
        pass  # not our child
    else:
        if reaped_pid == pid:
            return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def terminate_process_tree(pid: int, *, os_name: str | None = None) -> bool:
    """Stop the supervisor and the agent it spawned."""

    if (os_name or os.name) == "nt":
        completed = subprocess.run(  # noqa: S603
            ["taskkill", "/PID", str(pid), "/T", "/F"],  # noqa: S607
            check=False,
            capture_output=True,
            text=True,
        )
        return completed.returncode == 0

    try:
        os.killpg(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    except OSError:
        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as error:
            logger.warning("Could not terminate process %s: %s", pid, error)
            return False
    return True


def _windows_pid_running(pid: int) -> bool:
    try:
        completed = subprocess.run(  # noqa: S603
            ["tasklist", "/FI", f"PID eq {pid}", "/NH"],  # noqa: S607
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError:
        return False
    return str(pid) in completed.stdout


def _detach_kwargs() -> dict[str, object]:
    if os.name == "nt":
        flags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0) | getattr(
            subprocess,
            "DETACHED_PROCESS",
            0,
        )
        return {"creationflags": flags}
    return {"start_new_session": True}
