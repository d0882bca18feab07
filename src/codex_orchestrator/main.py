"""CLI entrypoint for codex-agent."""

import logging
import os
import sys
from pathlib import Path

import rich_click as click

from codex_orchestrator import __version__
from codex_orchestrator.config import REASONING_EFFORTS, SANDBOX_MODES, Settings
from codex_orchestrator.jobs.controllers import (
    DEFAULT_CAPTURE_LINES,
    CaptureCommand,
    CleanCommand,
    CommandResult,
    JobCommand,
    JobsCliController,
    JobsCommand,
    OutputCommand,
    ProgressCommand,
    ResultCommand,
    RunCommand,
    SendCommand,
    StartCommand,
    WaitCommand,
    WatchCommand,
)

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()

_DEFAULT_TIMEOUT_SECONDS = 300


def _start_options(func):
    options = [
        click.option(
            "-r",
            "--reasoning",
            type=click.Choice(REASONING_EFFORTS, case_sensitive=False),
            default=None,
            help="Reasoning effort; defaults to CODEX_AGENT_REASONING.",
        ),
        click.option(
            "--subagent-reasoning",
            type=click.Choice(REASONING_EFFORTS, case_sensitive=False),
            default=None,
            help="Reasoning effort for subagents; defaults to CODEX_AGENT_SUBAGENT_REASONING.",
        ),
        click.option(
            "-m",
            "--model",
            default=None,
            help="Model id; defaults to CODEX_AGENT_MODEL.",
        ),
        click.option(
            "-s",
            "--sandbox",
            type=click.Choice(SANDBOX_MODES, case_sensitive=False),
            default=None,
            help="Sandbox policy; defaults to CODEX_AGENT_SANDBOX.",
        ),
        click.option(
            "-f",
            "--file",
            "files",
            multiple=True,
            help="Glob of files to include as context. Repeat; prefix with `!` to exclude.",
        ),
        click.option(
            "-d",
            "--dir",
            "cwd",
            type=click.Path(path_type=Path, file_okay=False),
            default=None,
            help="Working directory for the agent (default: current directory).",
        ),
        click.option(
            "--parent-session",
            default=None,
            help="Opaque id of the orchestrating session, recorded on the job.",
        ),
        click.option(
            "--map",
            "include_map",
            is_flag=True,
            default=False,
            help="Prepend docs/CODEBASE_MAP.md when present.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="codex-agent")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging.")
def codex_agent(verbose: bool) -> None:
    """Delegate tasks to codex agents running in tmux sessions or detached processes."""

    level_name = "DEBUG" if verbose else os.getenv("CODEX_AGENT_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        Settings.from_env().validate()
    except ValueError as error:
        raise click.ClickException(f"Invalid configuration: {error}") from error


@codex_agent.command("start")
@click.argument("prompt", nargs=-1, required=True)
@_start_options
@click.option(
    "--protocol",
    "use_protocol",
    is_flag=True,
    default=False,
    help="Prepend the status-event protocol instructions to the prompt.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Show the prompt without launching.")
def start(  # noqa: PLR0913
    prompt: tuple[str, ...],
    reasoning: str | None,
    subagent_reasoning: str | None,
    model: str | None,
    sandbox: str | None,
    files: tuple[str, ...],
    cwd: Path | None,
    parent_session: str | None,
    include_map: bool,
    use_protocol: bool,
    dry_run: bool,
) -> None:
    """Start a job in the background and print its id."""

    _finish(
        _guard(
            lambda: JOBS_CONTROLLER.start(
                StartCommand(
                    prompt=" ".join(prompt),
                    cwd=cwd,
                    model=model,
                    reasoning=reasoning,
                    subagent_reasoning=subagent_reasoning,
                    sandbox=sandbox,
                    files=files,
                    include_map=include_map,
                    parent_session=parent_session,
                    use_protocol=use_protocol,
                    dry_run=dry_run,
                ),
            ),
        ),
    )


@codex_agent.command("run")
@click.argument("prompt", nargs=-1, required=True)
@_start_options
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.IntRange(min=1),
    default=_DEFAULT_TIMEOUT_SECONDS,
    show_default=True,
    help="Seconds to wait before giving up (the agent keeps running).",
)
def run(  # noqa: PLR0913
    prompt: tuple[str, ...],
    reasoning: str | None,
    subagent_reasoning: str | None,
    model: str | None,
    sandbox: str | None,
    files: tuple[str, ...],
    cwd: Path | None,
    parent_session: str | None,
    include_map: bool,
    timeout_seconds: int,
) -> None:
    """Start a job with the event protocol, wait for it and print its JSON result."""

    _finish(
        _guard(
            lambda: JOBS_CONTROLLER.run(
                RunCommand(
                    start=StartCommand(
                        prompt=" ".join(prompt),
                        cwd=cwd,
                        model=model,
                        reasoning=reasoning,
                        subagent_reasoning=subagent_reasoning,
                        sandbox=sandbox,
                        files=files,
                        include_map=include_map,
                        parent_session=parent_session,
                        use_protocol=True,
                    ),
                    timeout_seconds=timeout_seconds,
                ),
            ),
        ),
    )


@codex_agent.command("status")
@click.argument("job_id")
def status(job_id: str) -> None:
    """Refresh and show one job."""

    _finish(JOBS_CONTROLLER.status(JobCommand(job_id=job_id)))


@codex_agent.command("result")
@click.argument("job_id")
@click.option(
    "--regenerate",
    is_flag=True,
    default=False,
    help="Recompute the result instead of using the cached one.",
)
def result(job_id: str, regenerate: bool) -> None:
    """Print the structured JSON result of a job."""

    _finish(JOBS_CONTROLLER.result(ResultCommand(job_id=job_id, regenerate=regenerate)))


@codex_agent.command("progress")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
def progress(job_id: str, as_json: bool) -> None:
    """Show the latest status, progress and findings reported by the agent."""

    _finish(JOBS_CONTROLLER.progress(ProgressCommand(job_id=job_id, as_json=as_json)))


@codex_agent.command("wait")
@click.argument("job_id")
@click.argument("timeout", type=click.IntRange(min=1), required=False)
@click.option(
    "--timeout",
    "timeout_option",
    type=click.IntRange(min=1),
    default=_DEFAULT_TIMEOUT_SECONDS,
    show_default=True,
    help="Seconds to wait.",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Also print the result.")
def wait(job_id: str, timeout: int | None, timeout_option: int, as_json: bool) -> None:
    """Block until a job finishes or the timeout elapses."""

    _finish(
        JOBS_CONTROLLER.wait(
            WaitCommand(
                job_id=job_id,
                timeout_seconds=timeout or timeout_option,
                as_json=as_json,
            ),
        ),
    )


@codex_agent.command("send")
@click.argument("job_id")
@click.argument("message", nargs=-1, required=True)
def send(job_id: str, message: tuple[str, ...]) -> None:
    """Type a message into a running tmux session."""

    _finish(JOBS_CONTROLLER.send(SendCommand(job_id=job_id, message=" ".join(message))))


@codex_agent.command("capture")
@click.argument("job_id")
@click.argument("lines", type=click.IntRange(min=1), default=DEFAULT_CAPTURE_LINES, required=False)
@click.option("--strip-ansi", is_flag=True, default=False, help="Remove terminal escapes.")
def capture(job_id: str, lines: int, strip_ansi: bool) -> None:
    """Show the last LINES lines of a job's output."""

    _finish(
        JOBS_CONTROLLER.capture(CaptureCommand(job_id=job_id, lines=lines, strip_ansi=strip_ansi)),
    )


@codex_agent.command("output")
@click.argument("job_id")
@click.option("--strip-ansi", is_flag=True, default=False, help="Remove terminal escapes.")
def output(job_id: str, strip_ansi: bool) -> None:
    """Show the full output of a job."""

    _finish(JOBS_CONTROLLER.output(OutputCommand(job_id=job_id, strip_ansi=strip_ansi)))


@codex_agent.command("attach")
@click.argument("job_id")
def attach(job_id: str) -> None:
    """Print the command that attaches to a job's tmux session."""

    _finish(JOBS_CONTROLLER.attach(JobCommand(job_id=job_id)))


@codex_agent.command("watch")
@click.argument("job_id")
@click.option(
    "--interval",
    "interval_seconds",
    type=click.FloatRange(min=0.1),
    default=1.0,
    show_default=True,
    help="Polling interval in seconds.",
)
def watch(job_id: str, interval_seconds: float) -> None:
    """Stream a job's output until it finishes (Ctrl+C to stop)."""

    try:
        outcome = JOBS_CONTROLLER.watch(
            WatchCommand(job_id=job_id, interval_seconds=interval_seconds),
            emit=click.echo,
        )
    except KeyboardInterrupt:
        click.echo("Stopped watching", err=True)
        return
    _finish(outcome)


@codex_agent.command("jobs")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
def jobs(as_json: bool) -> None:
    """List all jobs, newest first."""

    _emit_lines(JOBS_CONTROLLER.jobs(JobsCommand(as_json=as_json)))


@codex_agent.command("sessions")
def sessions() -> None:
    """List live codex-agent tmux sessions."""

    _emit_lines(JOBS_CONTROLLER.sessions())


@codex_agent.command("kill")
@click.argument("job_id")
def kill(job_id: str) -> None:
    """Stop a job and mark it failed."""

    _finish(JOBS_CONTROLLER.kill(JobCommand(job_id=job_id)))


@codex_agent.command("clean")
@click.option(
    "--max-age-days",
    type=click.IntRange(min=0),
    default=None,
    help="Age threshold; defaults to CODEX_AGENT_CLEANUP_MAX_AGE_DAYS (7).",
)
def clean(max_age_days: int | None) -> None:
    """Delete finished jobs older than the age threshold."""

    _emit_lines(JOBS_CONTROLLER.clean(CleanCommand(max_age_days=max_age_days)))


@codex_agent.command("delete")
@click.argument("job_id")
def delete(job_id: str) -> None:
    """Stop a job and remove its record and artifacts."""

    _finish(JOBS_CONTROLLER.delete(JobCommand(job_id=job_id)))


@codex_agent.command("health")
def health() -> None:
    """Check that tmux and the codex CLI are available."""

    _finish(JOBS_CONTROLLER.health())


def _guard(action) -> CommandResult:
    try:
        return action()
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _finish(outcome: CommandResult) -> None:
    for note in outcome.notes:
        click.echo(note, err=True)
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException(outcome.error or "Command failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    codex_agent()
