"""Use-case facade for delegating work to codex agents."""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from codex_orchestrator.auth import resolve_auth_token
from codex_orchestrator.config import Settings
from codex_orchestrator.jobs.backend import build_backends, resolve_backend_kind
from codex_orchestrator.jobs.backend.base import BackendLaunchError, LaunchSpec, SessionBackend
from codex_orchestrator.jobs.models import (
    Job,
    JobBackend,
    JobStatus,
    ReasoningEffort,
    SandboxMode,
)
from codex_orchestrator.jobs.reconciler import StatusReconciler
from codex_orchestrator.jobs.results import ResultSynthesizer
from codex_orchestrator.jobs.store import JobStore, is_valid_job_id
from codex_orchestrator.protocol import (
    Finding,
    ResultOutput,
    TaskEnvelope,
    extract_findings,
    latest_progress,
    latest_status,
    parse_agent_events,
    protocol_instructions,
)
from codex_orchestrator.session_metadata import load_session_metadata

logger = logging.getLogger(__name__)

PROGRESS_TAIL_LINES = 100
OVERVIEW_PROMPT_CHARS = 100
OVERVIEW_SUMMARY_CHARS = 500
KILLED_BY_USER = "Killed by user"


class UnsupportedOperationError(RuntimeError):
    """Raised when a job's backend lacks the requested capability."""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class StartJobRequest:
    """High-level command to delegate one task.

    ``None`` launch parameters fall back to ``Settings.agent`` defaults.
    ``use_protocol=None`` means "caller default": off for ``start`` and on
    for ``start_and_wait``.
    """

    prompt: str
    cwd: Path | None = None
    model: str | None = None
    reasoning_effort: str | None = None
    subagent_reasoning_effort: str | None = None
    sandbox: str | None = None
    parent_session_id: str | None = None
    use_protocol: bool | None = None
    context_files: tuple[str, ...] = ()
    backend: str | None = None


@dataclass(slots=True)
class StartAndWaitOutcome:
    """Job after ``start_and_wait`` plus its result when one was produced."""

    job: Job
    result: ResultOutput | None
    timed_out: bool = False


@dataclass(slots=True)
class JobProgress:
    """Latest in-band status reported by a job's agent."""

    status: str | None
    progress: int | None
    findings: list[Finding] = field(default_factory=list)


class JobOrchestrator:
    """Composes store, backends, reconciler and result synthesizer."""

    def __init__(  # noqa: PLR0913
        self,
        settings: Settings,
        *,
        store: JobStore | None = None,
        backends: Mapping[JobBackend, SessionBackend] | None = None,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        token_provider: Callable[[], str | None] | None = None,
        tmux_available: bool | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or JobStore(settings.jobs_dir)
        self.backends = backends or build_backends(settings, self.store)
        self.clock = clock
        self.sleep = sleep
        self.monotonic = monotonic
        self.token_provider = token_provider or (lambda: resolve_auth_token(settings))
        self.tmux_available = tmux_available
        self.reconciler = StatusReconciler(
            store=self.store,
            backends=self.backends,
            settings=settings,
            clock=clock,
        )
        self.results = ResultSynthesizer(
            store=self.store,
            backends=self.backends,
            settings=settings,
            clock=clock,
        )

    def start(self, request: StartJobRequest) -> Job:
        """Create a job record and launch its agent.

        Invalid parameters raise ``ValueError`` before anything is written.
        A launch failure is not raised: the job is persisted ``failed``.
        """

        cwd = _resolve_cwd(request.cwd)
        agent = self.settings.agent
        reasoning = _parse_enum(
            ReasoningEffort,
            request.reasoning_effort or agent.reasoning_effort,
            "reasoning effort",
        )
        subagent_reasoning = _parse_enum(
            ReasoningEffort,
            request.subagent_reasoning_effort or agent.subagent_reasoning_effort,
            "subagent reasoning effort",
        )
        sandbox = _parse_enum(SandboxMode, request.sandbox or agent.sandbox, "sandbox mode")
        kind = resolve_backend_kind(
            request.backend or self.settings.backend.mode,
            tmux_available=self.tmux_available,
        )
        backend = self.backends[kind]
        use_protocol = bool(request.use_protocol)

        self.store.ensure_dir()
        job = Job(
            id=self.store.new_job_id(),
            status=JobStatus.PENDING,
            prompt=request.prompt,
            model=request.model or agent.model,
            reasoning_effort=reasoning,
            subagent_reasoning_effort=subagent_reasoning,
            sandbox=sandbox,
            cwd=str(cwd),
            created_at=self.clock(),
            parent_session_id=request.parent_session_id,
            use_protocol=use_protocol,
        )
        self.store.create(job)

        full_prompt = request.prompt
        if use_protocol:
            envelope = TaskEnvelope(
                task_id=job.id,
                objective=request.prompt,
                report_to=str(self.store.result_path(job.id)),
                created_at=job.created_at.isoformat(),
                context_files=list(request.context_files),
                parent_session=request.parent_session_id,
            )
            self.store.write_artifact_json(self.store.task_path(job.id), envelope.to_payload())
            full_prompt = protocol_instructions(envelope) + request.prompt

        try:
            launched = backend.start(
                LaunchSpec(
                    job_id=job.id,
                    prompt=full_prompt,
                    cwd=cwd,
                    model=job.model,
                    reasoning_effort=job.reasoning_effort.value,
                    subagent_reasoning_effort=job.subagent_reasoning_effort.value,
                    sandbox=job.sandbox.value,
                    auth_token=self.token_provider(),
                ),
            )
        except BackendLaunchError as error:
            logger.error("Failed to launch job %s via %s: %s", job.id, kind.value, error)
            failed = dataclasses.replace(
                job,
                status=JobStatus.FAILED,
                backend=kind,
                error=str(error),
                completed_at=max(self.clock(), job.created_at),
            )
            self.store.save(failed)
            return failed

        running = dataclasses.replace(
            job,
            status=JobStatus.RUNNING,
            backend=launched.backend,
            session_name=launched.session_name,
            pid=launched.pid,
            started_at=max(self.clock(), job.created_at),
        )
        self.store.save(running)
        return running

    def get(self, job_id: str) -> Job | None:
        return self.store.load(job_id)

    def refresh(self, job_id: str) -> Job | None:
        return self.reconciler.refresh(job_id)

    def list_jobs(self, *, refresh: bool = True) -> list[Job]:
        """Return all jobs newest first, reconciling running ones when asked."""

        jobs = self.store.list()
        if not refresh:
            return jobs
        refreshed: list[Job] = []
        for job in jobs:
            if job.status is JobStatus.RUNNING:
                job = self.reconciler.refresh(job.id) or job
            refreshed.append(job)
        return refreshed

    def wait(
        self,
        job_id: str,
        *,
        timeout_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ) -> Job | None:
        """Poll until the job is terminal or the timeout elapses.

        On a terminal state the result is synthesized once.  On timeout the
        last observed record is returned; the agent keeps running.
        """

        if not is_valid_job_id(job_id):
            return None
        polling = self.settings.polling
        timeout = timeout_seconds if timeout_seconds is not None else polling.timeout_seconds
        interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else polling.poll_interval_seconds
        )

        started = self.monotonic()
        while True:
            job = self.reconciler.refresh(job_id)
            if job is None:
                return None
            if job.is_terminal:
                self.results.regenerate(job.id)
                return job
            if self.monotonic() - started >= timeout:
                logger.info("Timed out waiting for job %s after %ss", job_id, timeout)
                return job
            self.sleep(interval)

    def start_and_wait(
        self,
        request: StartJobRequest,
        *,
        timeout_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ) -> StartAndWaitOutcome | None:
        """Start a job with the event protocol enabled by default and wait for it."""

        use_protocol = request.use_protocol is not False
        job = self.start(dataclasses.replace(request, use_protocol=use_protocol))
        if job.status is JobStatus.FAILED:
            return StartAndWaitOutcome(job=job, result=None)

        finished = self.wait(
            job.id,
            timeout_seconds=timeout_seconds,
            poll_interval_seconds=poll_interval_seconds,
        )
        if finished is None:
            return None
        if not finished.is_terminal:
            return StartAndWaitOutcome(job=finished, result=None, timed_out=True)
        return StartAndWaitOutcome(job=finished, result=self.results.get(finished.id))

    def kill(self, job_id: str) -> bool:
        """Tear down the job's backend and mark a live job failed.

        Already terminal jobs keep their status; only leftover backend
        resources are torn down.
        """

        job = self.store.load(job_id)
        if job is None:
            return False
        self._teardown(job)
        if job.is_terminal:
            return True

        killed = dataclasses.replace(
            job,
            status=JobStatus.FAILED,
            error=KILLED_BY_USER,
            completed_at=max(self.clock(), job.started_at or job.created_at),
        )
        self.store.save(killed)
        logger.info("Killed job %s", job_id)
        return True

    def delete(self, job_id: str) -> bool:
        return self.store.delete(job_id, teardown=self._teardown)

    def cleanup(self, max_age_days: int | None = None) -> int:
        """Delete terminal jobs older than ``max_age_days``; running jobs are kept."""

        days = (
            max_age_days
            if max_age_days is not None
            else self.settings.polling.cleanup_max_age_days
        )
        cutoff = self.clock() - timedelta(days=days)
        removed = 0
        for job in self.store.list():
            if not job.is_terminal:
                continue
            reference = job.completed_at or job.created_at
            if reference < cutoff and self.delete(job.id):
                removed += 1
        logger.info("Cleaned up %s job(s) older than %s day(s)", removed, days)
        return removed

    def capture(self, job_id: str, lines: int | None = 50) -> str | None:
        """Recent output: live pane tail when available, else the log tail."""

        job = self.store.load(job_id)
        if job is None:
            return None
        backend = self._backend_for(job)
        if backend is not None:
            output = backend.capture_tail(job, lines=lines)
            if output:
                return output
        return self.store.read_log(job.id, lines=lines)

    def full_output(self, job_id: str) -> str | None:
        job = self.store.load(job_id)
        if job is None:
            return None
        return self.results.full_output(job)

    def progress(self, job_id: str) -> JobProgress | None:
        output = self.capture(job_id, lines=PROGRESS_TAIL_LINES)
        if not output:
            return None
        events = parse_agent_events(output)
        return JobProgress(
            status=latest_status(events),
            progress=latest_progress(events),
            findings=extract_findings(events),
        )

    def send_message(self, job_id: str, message: str) -> bool:
        job = self.store.load(job_id)
        if job is None:
            return False
        backend = self._require_capability(job, "supports_messaging", "messaging")
        return backend.send_message(job, message)

    def send_control(self, job_id: str, key: str) -> bool:
        job = self.store.load(job_id)
        if job is None:
            return False
        backend = self._require_capability(job, "supports_messaging", "control keys")
        return backend.send_control(job, key)

    def attach_command(self, job_id: str) -> str | None:
        job = self.store.load(job_id)
        if job is None:
            return None
        backend = self._require_capability(job, "supports_attach", "attach")
        return backend.attach_command(job)

    def is_running(self, job_id: str) -> bool:
        job = self.store.load(job_id)
        if job is None:
            return False
        backend = self._backend_for(job)
        return backend is not None and backend.is_alive(job)

    def get_result(self, job_id: str) -> ResultOutput | None:
        return self.results.get(job_id)

    def regenerate_result(self, job_id: str) -> ResultOutput | None:
        return self.results.regenerate(job_id)

    def jobs_overview(self) -> dict[str, Any]:
        """Machine-readable listing with elapsed time and session facts."""

        entries: list[dict[str, Any]] = []
        for job in self.list_jobs(refresh=True):
            tokens: dict[str, int] | None = None
            files_modified: list[str] | None = None
            summary: str | None = None
            if job.status is JobStatus.COMPLETED:
                metadata = load_session_metadata(
                    self.store.read_log(job.id),
                    self.settings.codex_sessions_dir,
                )
                if metadata is not None:
                    if metadata.tokens is not None:
                        tokens = {"input": metadata.tokens.input, "output": metadata.tokens.output}
                    files_modified = list(metadata.files_modified)
                    if metadata.summary:
                        summary = metadata.summary[:OVERVIEW_SUMMARY_CHARS]
            entries.append(
                {
                    "id": job.id,
                    "status": job.status.value,
                    "prompt": job.prompt[:OVERVIEW_PROMPT_CHARS],
                    "model": job.model,
                    "reasoning": job.reasoning_effort.value,
                    "subagent_reasoning": job.subagent_reasoning_effort.value,
                    "cwd": job.cwd,
                    "backend": job.backend.value if job.backend is not None else None,
                    "elapsed_ms": self.elapsed_ms(job),
                    "created_at": job.created_at.isoformat(),
                    "started_at": job.started_at.isoformat() if job.started_at else None,
                    "completed_at": job.completed_at.isoformat() if job.completed_at else None,
                    "tokens": tokens,
                    "files_modified": files_modified,
                    "summary": summary,
                },
            )
        return {"generated_at": self.clock().isoformat(), "jobs": entries}

    def elapsed_ms(self, job: Job) -> int:
        start = job.started_at or job.created_at
        end = job.completed_at or self.clock()
        return max(0, int((end - start).total_seconds() * 1000))

    def _backend_for(self, job: Job) -> SessionBackend | None:
        if job.backend is None:
            return None
        return self.backends.get(job.backend)

    def _require_capability(self, job: Job, flag: str, operation: str) -> SessionBackend:
        backend = self._backend_for(job)
        if backend is None or not getattr(backend, flag):
            backend_name = job.backend.value if job.backend is not None else "unknown"
            raise UnsupportedOperationError(
                f"Job {job.id} runs on the {backend_name} backend, which does not support "
                f"{operation}.",
            )
        return backend

    def _teardown(self, job: Job) -> None:
        backend = self._backend_for(job)
        if backend is None:
            return
        if backend.kill(job):
            logger.info("Stopped %s backend for job %s", job.backend.value, job.id)


def _resolve_cwd(cwd: Path | None) -> Path:
    resolved = (cwd or Path.cwd()).expanduser().resolve()
    if not resolved.is_dir():
        raise ValueError(f"Working directory does not exist: {resolved}")
    return resolved


def _parse_enum(enum_type: Any, value: str, label: str) -> Any:
    try:
        return enum_type(value.strip().lower())
    except ValueError as error:
        options = ", ".join(member.value for member in enum_type)
        raise ValueError(f"Invalid {label}: {value!r}. Valid options: {options}") from error
