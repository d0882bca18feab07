"""Controllers for job CLI commands."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from codex_orchestrator import tmux
from codex_orchestrator.config import Settings
from codex_orchestrator.files import (
    estimate_tokens,
    format_prompt_with_files,
    load_codebase_map,
    load_files,
)
from codex_orchestrator.jobs.models import Job, JobStatus
from codex_orchestrator.jobs.service import (
    JobOrchestrator,
    StartJobRequest,
    UnsupportedOperationError,
)
from codex_orchestrator.text import strip_ansi_codes

PROMPT_PREVIEW_CHARS = 3000
TABLE_PROMPT_CHARS = 50
DEFAULT_CAPTURE_LINES = 50
WATCH_TAIL_LINES = 100
MISSING_TOKEN_MESSAGE = "OpenAI OAuth token not found. Run: codex login"


@dataclass(slots=True)
class StartCommand:
    """CLI input for launching a job."""

    prompt: str
    cwd: Path | None = None
    model: str | None = None
    reasoning: str | None = None
    subagent_reasoning: str | None = None
    sandbox: str | None = None
    files: tuple[str, ...] = ()
    include_map: bool = False
    parent_session: str | None = None
    use_protocol: bool = False
    dry_run: bool = False


@dataclass(slots=True)
class RunCommand:
    """CLI input for start-and-wait; the event protocol is always on."""

    start: StartCommand
    timeout_seconds: int


@dataclass(slots=True)
class JobCommand:
    """CLI input for commands addressing one job."""

    job_id: str


@dataclass(slots=True)
class ResultCommand:
    job_id: str
    regenerate: bool = False


@dataclass(slots=True)
class ProgressCommand:
    job_id: str
    as_json: bool = False


@dataclass(slots=True)
class WaitCommand:
    job_id: str
    timeout_seconds: int
    as_json: bool = False


@dataclass(slots=True)
class SendCommand:
    job_id: str
    message: str


@dataclass(slots=True)
class CaptureCommand:
    job_id: str
    lines: int = DEFAULT_CAPTURE_LINES
    strip_ansi: bool = False


@dataclass(slots=True)
class OutputCommand:
    job_id: str
    strip_ansi: bool = False


@dataclass(slots=True)
class WatchCommand:
    job_id: str
    interval_seconds: float = 1.0
    max_polls: int | None = None


@dataclass(slots=True)
class JobsCommand:
    as_json: bool = False


@dataclass(slots=True)
class CleanCommand:
    max_age_days: int | None = None


@dataclass(slots=True)
class CommandResult:
    """Rendered command output.

    ``lines`` go to stdout, ``notes`` are progress chatter for stderr and
    ``error`` turns into a non-zero exit.
    """

    lines: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class JobsCliController:
    """Coordinates job launch, inspection and housekeeping CLI operations."""

    def __init__(
        self,
        *,
        orchestrator_factory: Callable[[Settings], JobOrchestrator] = JobOrchestrator,
    ) -> None:
        self.orchestrator_factory = orchestrator_factory

    def start(self, command: StartCommand) -> CommandResult:
        settings = _settings()
        prompt, notes = _build_prompt(command)
        if command.dry_run:
            return CommandResult(lines=_dry_run_lines(command, prompt, settings), notes=notes)

        orchestrator = self.orchestrator_factory(settings)
        if not _pin_auth_token(orchestrator):
            return CommandResult(notes=notes, error=MISSING_TOKEN_MESSAGE)

        request = _start_request(command, prompt, use_protocol=command.use_protocol)
        job = orchestrator.start(request)
        if job.status is JobStatus.FAILED:
            return CommandResult(
                lines=[f"Job failed to start: {job.id}"],
                notes=notes,
                error=job.error or "Job failed to start",
            )

        lines = [
            f"Job started: {job.id}",
            _model_line(job),
            f"Working dir: {job.cwd}",
        ]
        if job.session_name:
            lines.append(f"tmux session: {job.session_name}")
        lines.extend(["", "Commands:", f"  Capture output:  codex-agent capture {job.id}"])
        backend = orchestrator.backends.get(job.backend) if job.backend is not None else None
        if backend is not None and backend.supports_messaging:
            lines.append(f'  Send message:    codex-agent send {job.id} "message"')
        if backend is not None and backend.supports_attach:
            attach = backend.attach_command(job)
            if attach:
                lines.append(f"  Attach session:  {attach}")
        return CommandResult(lines=lines, notes=notes)

    def run(self, command: RunCommand) -> CommandResult:
        settings = _settings()
        prompt, notes = _build_prompt(command.start)
        orchestrator = self.orchestrator_factory(settings)
        if not _pin_auth_token(orchestrator):
            return CommandResult(notes=notes, error=MISSING_TOKEN_MESSAGE)

        notes.append(f"Starting job and waiting (timeout: {command.timeout_seconds}s)...")
        outcome = orchestrator.start_and_wait(
            _start_request(command.start, prompt, use_protocol=True),
            timeout_seconds=command.timeout_seconds,
        )
        if outcome is None:
            return CommandResult(notes=notes, error="Job failed to start or disappeared")

        notes.append(f"Job {outcome.job.status.value}: {outcome.job.id}")
        if outcome.timed_out:
            return CommandResult(
                notes=notes,
                error=(
                    f"Timeout: job {outcome.job.id} still running "
                    f"after {command.timeout_seconds}s"
                ),
            )
        if outcome.result is not None:
            return CommandResult(lines=_json_lines(outcome.result.to_payload()), notes=notes)
        return CommandResult(notes=notes, error=outcome.job.error or "No result produced")

    def status(self, command: JobCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        job = orchestrator.refresh(command.job_id)
        if job is None:
            return CommandResult(error=f"Job {command.job_id} not found")

        lines = [
            f"Job: {job.id}",
            f"Status: {job.status.value}",
            _model_line(job),
            f"Sandbox: {job.sandbox.value}",
            f"Backend: {job.backend.value if job.backend is not None else '-'}",
            f"Created: {job.created_at.isoformat()}",
        ]
        if job.started_at:
            lines.append(f"Started: {job.started_at.isoformat()}")
        if job.completed_at:
            lines.append(f"Completed: {job.completed_at.isoformat()}")
        if job.session_name:
            lines.append(f"tmux session: {job.session_name}")
        if job.pid is not None:
            lines.append(f"PID: {job.pid}")
        if job.error:
            lines.append(f"Error: {job.error}")
        return CommandResult(lines=lines)

    def result(self, command: ResultCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        result = (
            orchestrator.regenerate_result(command.job_id)
            if command.regenerate
            else orchestrator.get_result(command.job_id)
        )
        if result is None:
            return CommandResult(error=f"Could not get result for job {command.job_id}")
        return CommandResult(lines=_json_lines(result.to_payload()))

    def progress(self, command: ProgressCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        job = orchestrator.refresh(command.job_id)
        if job is None:
            return CommandResult(error=f"Job {command.job_id} not found")

        progress = orchestrator.progress(job.id)
        if command.as_json:
            payload: dict[str, object] = {"job_id": job.id, "job_status": job.status.value}
            if progress is not None:
                payload.update(
                    {
                        "status": progress.status,
                        "progress": progress.progress,
                        "findings": [finding.to_payload() for finding in progress.findings],
                    },
                )
            return CommandResult(lines=_json_lines(payload))

        lines = [f"Job: {job.id}", f"Status: {job.status.value}"]
        if progress is not None:
            if progress.status:
                lines.append(f"Agent status: {progress.status}")
            if progress.progress is not None:
                lines.append(f"Progress: {progress.progress}%")
            if progress.findings:
                lines.append(f"Findings: {len(progress.findings)}")
                for finding in progress.findings:
                    location = ""
                    if finding.file:
                        suffix = f":{finding.line}" if finding.line is not None else ""
                        location = f" ({finding.file}{suffix})"
                    lines.append(f"  [{finding.severity.value}]{location} {finding.issue}")
        return CommandResult(lines=lines)

    def wait(self, command: WaitCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        notes = [f"Waiting for job {command.job_id} (timeout: {command.timeout_seconds}s)..."]
        job = orchestrator.wait(command.job_id, timeout_seconds=command.timeout_seconds)
        if job is None:
            return CommandResult(notes=notes, error=f"Job {command.job_id} not found")
        if not job.is_terminal:
            return CommandResult(
                notes=notes,
                error=f"Timeout: job still running after {command.timeout_seconds}s",
            )

        lines = [f"Job {job.status.value}: {job.id}"]
        if command.as_json:
            result = orchestrator.get_result(job.id)
            if result is not None:
                lines.extend(_json_lines(result.to_payload()))
        return CommandResult(lines=lines, notes=notes)

    def send(self, command: SendCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        try:
            sent = orchestrator.send_message(command.job_id, command.message)
        except UnsupportedOperationError as error:
            return CommandResult(error=str(error))
        if not sent:
            return CommandResult(
                error=(
                    f"Could not send to job {command.job_id}. "
                    "Job may not be running or its tmux session is gone."
                ),
            )
        return CommandResult(lines=[f"Sent to {command.job_id}: {command.message}"])

    def capture(self, command: CaptureCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        output = orchestrator.capture(command.job_id, lines=command.lines)
        if not output:
            return CommandResult(error=f"Could not capture output for job {command.job_id}")
        return CommandResult(lines=[_clean(output, strip_ansi=command.strip_ansi)])

    def output(self, command: OutputCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        output = orchestrator.full_output(command.job_id)
        if not output:
            return CommandResult(error=f"Could not get output for job {command.job_id}")
        return CommandResult(lines=[_clean(output, strip_ansi=command.strip_ansi)])

    def attach(self, command: JobCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        try:
            attach = orchestrator.attach_command(command.job_id)
        except UnsupportedOperationError as error:
            return CommandResult(error=str(error))
        if not attach:
            return CommandResult(error=f"Job {command.job_id} not found or has no tmux session")
        return CommandResult(lines=[attach])

    def watch(self, command: WatchCommand, emit: Callable[[str], None]) -> CommandResult:
        """Stream new log output until the job leaves ``running``."""

        orchestrator = self.orchestrator_factory(_settings())
        job = orchestrator.refresh(command.job_id)
        if job is None:
            return CommandResult(error=f"Job {command.job_id} not found")

        log_path = orchestrator.store.log_path(job.id)
        initial = orchestrator.capture(job.id, lines=WATCH_TAIL_LINES)
        if initial:
            emit(initial)
        offset = log_path.stat().st_size if log_path.exists() else 0

        polls = 0
        while job is not None and job.status is JobStatus.RUNNING:
            if command.max_polls is not None and polls >= command.max_polls:
                return CommandResult(notes=["Stopped watching"])
            orchestrator.sleep(command.interval_seconds)
            polls += 1
            offset = _emit_log_delta(log_path, offset, emit)
            job = orchestrator.refresh(command.job_id)

        _emit_log_delta(log_path, offset, emit)
        status = job.status.value if job is not None else "deleted"
        return CommandResult(notes=[f"Job {status}"])

    def jobs(self, command: JobsCommand) -> list[str]:
        orchestrator = self.orchestrator_factory(_settings())
        if command.as_json:
            return _json_lines(orchestrator.jobs_overview())

        jobs = orchestrator.list_jobs(refresh=True)
        if not jobs:
            return ["No jobs"]
        lines = ["ID        STATUS      ELAPSED   EFFORT  PROMPT", "-" * 80]
        lines.extend(_job_row(job, orchestrator) for job in jobs)
        return lines

    def sessions(self) -> list[str]:
        settings = _settings()
        sessions = tmux.list_sessions(settings.backend.tmux_prefix)
        if not sessions:
            return ["No active codex-agent sessions"]
        lines = ["SESSION NAME                    ATTACHED  CREATED", "-" * 60]
        for session in sessions:
            attached = "yes" if session.attached else "no"
            lines.append(f"{session.name:<30}  {attached:<8}  {session.created}")
        return lines

    def kill(self, command: JobCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        if not orchestrator.kill(command.job_id):
            return CommandResult(error=f"Could not kill job: {command.job_id}")
        return CommandResult(lines=[f"Killed job: {command.job_id}"])

    def delete(self, command: JobCommand) -> CommandResult:
        orchestrator = self.orchestrator_factory(_settings())
        if not orchestrator.delete(command.job_id):
            return CommandResult(error=f"Could not delete job: {command.job_id}")
        return CommandResult(lines=[f"Deleted job: {command.job_id}"])

    def clean(self, command: CleanCommand) -> list[str]:
        orchestrator = self.orchestrator_factory(_settings())
        removed = orchestrator.cleanup(command.max_age_days)
        return [f"Cleaned {removed} old jobs"]

    def health(self) -> CommandResult:
        """Check that tmux (unless native-only) and the codex CLI are usable."""

        settings = _settings()
        lines: list[str] = []
        if os.name == "nt" or settings.backend.mode == "native":
            lines.append("tmux: n/a (native mode)")
        elif tmux.is_tmux_available():
            lines.append("tmux: OK")
        elif settings.backend.mode == "tmux":
            return CommandResult(lines=lines, error=f"tmux not found. {tmux.TMUX_INSTALL_HINT}")
        else:
            lines.append("tmux: not found, falling back to native mode")

        version = _codex_version(settings.agent.codex_bin)
        if version is None:
            return CommandResult(
                lines=lines,
                error="codex CLI not found. Install with: npm install -g @openai/codex",
            )
        lines.append(f"codex: {version}")
        lines.append(f"Jobs dir: {settings.jobs_dir}")
        lines.append("Status: Ready")
        return CommandResult(lines=lines)


def _settings() -> Settings:
    settings = Settings.from_env()
    settings.validate()
    return settings


def _pin_auth_token(orchestrator: JobOrchestrator) -> bool:
    """Resolve the credential once and hand the same value to the launch."""

    token = orchestrator.token_provider()
    if token is None:
        return False
    orchestrator.token_provider = lambda: token
    return True


def _build_prompt(command: StartCommand) -> tuple[str, list[str]]:
    notes: list[str] = []
    base_dir = command.cwd or Path.cwd()
    prompt = command.prompt
    if command.files:
        files = load_files(command.files, base_dir)
        prompt = format_prompt_with_files(prompt, files)
        notes.append(f"Included {len(files)} files")
    if command.include_map:
        codebase_map = load_codebase_map(base_dir)
        if codebase_map:
            prompt = f"## Codebase Map\n\n{codebase_map}\n\n---\n\n{prompt}"
            notes.append("Included codebase map")
        else:
            notes.append("No codebase map found")
    return prompt, notes


def _start_request(command: StartCommand, prompt: str, *, use_protocol: bool) -> StartJobRequest:
    return StartJobRequest(
        prompt=prompt,
        cwd=command.cwd,
        model=command.model,
        reasoning_effort=command.reasoning,
        subagent_reasoning_effort=command.subagent_reasoning,
        sandbox=command.sandbox,
        parent_session_id=command.parent_session,
        use_protocol=use_protocol,
        context_files=command.files,
    )


def _dry_run_lines(command: StartCommand, prompt: str, settings: Settings) -> list[str]:
    agent = settings.agent
    lines = [
        f"Would send ~{estimate_tokens(prompt):,} tokens",
        f"Model: {command.model or agent.model}",
        f"Reasoning: {command.reasoning or agent.reasoning_effort}",
        f"Subagent reasoning: {command.subagent_reasoning or agent.subagent_reasoning_effort}",
        f"Sandbox: {command.sandbox or agent.sandbox}",
        "",
        "--- Prompt Preview ---",
        "",
        prompt[:PROMPT_PREVIEW_CHARS],
    ]
    if len(prompt) > PROMPT_PREVIEW_CHARS:
        lines.append(f"\n... ({len(prompt) - PROMPT_PREVIEW_CHARS} more characters)")
    return lines


def _model_line(job: Job) -> str:
    return (
        f"Model: {job.model} ({job.reasoning_effort.value}, "
        f"subagents: {job.subagent_reasoning_effort.value})"
    )


def _job_row(job: Job, orchestrator: JobOrchestrator) -> str:
    elapsed = format_duration(orchestrator.elapsed_ms(job)) if job.started_at else "-"
    preview = job.prompt[:TABLE_PROMPT_CHARS].replace("\n", " ")
    if len(job.prompt) > TABLE_PROMPT_CHARS:
        preview += "..."
    return (
        f"{job.id}  {job.status.value.upper():<10}  {elapsed:<8}  "
        f"{job.reasoning_effort.value:<6}  {preview}"
    )


def format_duration(elapsed_ms: int) -> str:
    seconds = elapsed_ms // 1000
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _json_lines(payload: object) -> list[str]:
    return [json.dumps(payload, ensure_ascii=False, indent=2)]


def _clean(output: str, *, strip_ansi: bool) -> str:
    return strip_ansi_codes(output) if strip_ansi else output


def _emit_log_delta(log_path: Path, offset: int, emit: Callable[[str], None]) -> int:
    try:
        size = log_path.stat().st_size
    except OSError:
        return offset
    if size <= offset:
        return offset
    with log_path.open("rb") as handle:
        handle.seek(offset)
        chunk = handle.read(size - offset)
    text = chunk.decode("utf-8", errors="replace")
    if text.strip():
        emit(text.rstrip("\n"))
    return size


def _codex_version(codex_bin: str) -> str | None:
    if shutil.which(codex_bin) is None:
        return None
    try:
        completed = subprocess.run(  # noqa: S603
            [codex_bin, "--version"],
            check=False,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip() or "installed"
