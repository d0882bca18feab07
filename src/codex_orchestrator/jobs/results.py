"""Structured result synthesis from captured agent output."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from codex_orchestrator.config import Settings
from codex_orchestrator.jobs.backend.base import SessionBackend
from codex_orchestrator.jobs.models import Job, JobBackend, JobStatus
from codex_orchestrator.jobs.store import JobStore, is_valid_job_id
from codex_orchestrator.protocol import (
    ResultOutput,
    TokenUsage,
    completion_from_events,
    empty_result,
    extract_findings,
    extract_modified_files,
    parse_agent_events,
)
from codex_orchestrator.session_metadata import load_session_metadata

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ResultSynthesizer:
    """Build, cache and serve ``ResultOutput`` artifacts per job."""

    def __init__(
        self,
        *,
        store: JobStore,
        backends: Mapping[JobBackend, SessionBackend],
        settings: Settings,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.backends = backends
        self.settings = settings
        self.clock = clock

    def get(self, job_id: str) -> ResultOutput | None:
        """Return the cached result when present, otherwise generate it."""

        if not is_valid_job_id(job_id):
            return None
        cached = self.store.read_artifact_json(self.store.result_path(job_id))
        if cached is not None:
            try:
                return ResultOutput.from_payload(cached)
            except ValueError as error:
                logger.warning("Regenerating unreadable result for job %s: %s", job_id, error)
        return self.regenerate(job_id)

    def regenerate(self, job_id: str) -> ResultOutput | None:
        """Recompute the result from current output and overwrite the cache.

        When no output can be obtained a ``partial`` template is returned
        and nothing is cached, so a later call can still produce the real one.
        """

        job = self.store.load(job_id)
        if job is None:
            return None

        output = self.full_output(job)
        if not output:
            return empty_result(job.id, completed_at=self.clock())

        events = parse_agent_events(output)
        findings = extract_findings(events)
        marker_files = extract_modified_files(events)
        completion = completion_from_events(events)
        metadata = load_session_metadata(
            self.store.read_log(job.id) or output,
            self.settings.codex_sessions_dir,
        )

        if completion.complete:
            status = "completed" if completion.success else "failed"
        else:
            status = "completed" if job.status is JobStatus.COMPLETED else "partial"

        files_modified = marker_files
        if not files_modified and metadata is not None:
            files_modified = list(metadata.files_modified)

        if metadata is not None and metadata.summary:
            summary = metadata.summary
        elif findings:
            summary = f"Found {len(findings)} issue(s)"
        else:
            summary = "No findings"

        tokens = None
        if metadata is not None and metadata.tokens is not None:
            tokens = TokenUsage(input=metadata.tokens.input, output=metadata.tokens.output)

        result = ResultOutput(
            task_id=job.id,
            status=status,
            findings=findings,
            files_modified=files_modified,
            summary=summary,
            tokens_used=tokens,
            completed_at=(job.completed_at or self.clock()).isoformat(),
            error=job.error,
        )
        self.store.write_artifact_json(self.store.result_path(job.id), result.to_payload())
        return result

    def full_output(self, job: Job) -> str | None:
        """Full captured output: live backend history first, then the job log."""

        backend = self.backends.get(job.backend) if job.backend is not None else None
        if backend is not None:
            output = backend.capture_full(job)
            if output:
                return output
        return self.store.read_log(job.id)
