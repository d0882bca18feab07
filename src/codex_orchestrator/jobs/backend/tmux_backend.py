"""Interactive tmux-session backend."""

from __future__ import annotations

import logging
import sys

from codex_orchestrator import tmux
from codex_orchestrator.auth import TOKEN_ENV_VAR
from codex_orchestrator.config import Settings
from codex_orchestrator.jobs.backend.base import (
    BackendLaunchError,
    LaunchResult,
    LaunchSpec,
    RunnerConfig,
)
from codex_orchestrator.jobs.backend.commands import build_interactive_args, require_codex_bin
from codex_orchestrator.jobs.models import Job, JobBackend
from codex_orchestrator.jobs.store import JobStore

logger = logging.getLogger(__name__)

LAUNCHER_MODULE = "codex_orchestrator.jobs.backend.session_launcher"


class TmuxBackend:
    """Run the interactive codex TUI inside a detached tmux session."""

    kind = JobBackend.TMUX
    supports_messaging = True
    supports_attach = True

    def __init__(self, *, settings: Settings, store: JobStore) -> None:
        self.settings = settings
        self.store = store

    def start(self, spec: LaunchSpec) -> LaunchResult:
        require_codex_bin(self.settings.agent.codex_bin)
        store = self.store
        store.ensure_dir()
        prompt_path = store.prompt_path(spec.job_id)
        log_path = store.log_path(spec.job_id)
        env_path = store.runner_env_path(spec.job_id)
        config_path = store.runner_config_path(spec.job_id)

        store.write_artifact_text(prompt_path, spec.prompt)
        log_path.touch(exist_ok=True)
        if spec.auth_token:
            store.write_artifact_json(env_path, {TOKEN_ENV_VAR: spec.auth_token})

        config = RunnerConfig(
            job_id=spec.job_id,
            command=build_interactive_args(
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
            env_path=str(env_path) if spec.auth_token else None,
            completion_sentinel=self.settings.backend.completion_sentinel,
        )
        store.write_artifact_json(config_path, config.to_payload())

        name = tmux.session_name_for(spec.job_id, self.settings.backend.tmux_prefix)
        created = tmux.create_session(
            name,
            [sys.executable, "-m", LAUNCHER_MODULE, str(config_path)],
            cwd=spec.cwd,
        )
        if not created.success:
            env_path.unlink(missing_ok=True)
            raise BackendLaunchError(
                created.error or "Failed to create tmux session",
                transient=False,
            )

        if not tmux.pipe_pane(name, log_path):
            logger.warning("Could not pipe tmux session %s into %s", name, log_path)
        logger.info("Started job %s in tmux session %s", spec.job_id, name)
        return LaunchResult(backend=JobBackend.TMUX, session_name=name)

    def kill(self, job: Job) -> bool:
        if not job.session_name or not tmux.session_exists(job.session_name):
            return False
        return tmux.kill_session(job.session_name)

    def is_alive(self, job: Job) -> bool:
        return bool(job.session_name) and tmux.session_exists(job.session_name)

    def capture_tail(self, job: Job, lines: int | None = None) -> str | None:
        if not self.is_alive(job):
            return None
        return tmux.capture_pane(job.session_name, lines=lines)

    def capture_full(self, job: Job) -> str | None:
        if not self.is_alive(job):
            return None
        return tmux.capture_full_history(job.session_name)

    def send_message(self, job: Job, message: str) -> bool:
        if not self.is_alive(job):
            return False
        return tmux.send_message(job.session_name, message)

    def send_control(self, job: Job, key: str) -> bool:
        if not self.is_alive(job):
            return False
        return tmux.send_control(job.session_name, key)

    def attach_command(self, job: Job) -> str | None:
        if not job.session_name:
            return None
        return f'tmux attach -t "{job.session_name}"'
