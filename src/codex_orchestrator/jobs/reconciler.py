"""Status reconciliation for running jobs.

A job's true state lives outside the orchestrator: in an OS process or a tmux
session.  Reconciliation observes that state and folds it back into the job
record.  Only ``running`` jobs are examined; terminal records are returned
untouched so repeated refreshes are idempotent and never move a job backwards.

Transitions::

    native  pid missing                 -> failed
    native  pid not alive               -> completed   (result = job log)
    tmux    session handle missing      -> failed
    tmux    session gone                -> completed   (result = job log)
    tmux    sentinel in last pane lines -> completed   (result = full history)
    otherwise                           -> running
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from codex_orchestrator.config import Settings
from codex_orchestrator.jobs.backend.base import SessionBackend
from codex_orchestrator.jobs.models import Job, JobBackend, JobStatus
from codex_orchestrator.jobs.store import JobStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class StatusReconciler:
    """Fold backend liveness observations into persisted job records."""

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

    def refresh(self, job_id: str) -> Job | None:
        """Load, reconcile and persist one job; ``None`` when it does not exist."""

        job = self.store.load(job_id)
        if job is None:
            return None
        updated = self.reconcile(job)
        if updated is not job:
            self.store.save(updated)
            logger.info("Job %s is now %s", job.id, updated.status.value)
        return updated

    def reconcile(self, job: Job) -> Job:
        """Return the record that matches observed backend state (not persisted)."""

        if job.status is not JobStatus.RUNNING:
            return job
        if job.backend is JobBackend.NATIVE:
            return self.reconcile_native(job)
        return self.reconcile_tmux(job)

    def reconcile_native(self, job: Job) -> Job:
        if job.pid is None:
            return self._fail(job, "Native job missing PID")
        if self.backends[JobBackend.NATIVE].is_alive(job):
            return job
        return self._complete(job, self.store.read_log(job.id))

    def reconcile_tmux(self, job: Job) -> Job:
        if not job.session_name:
            return self._fail(job, "Tmux job missing session name")
        backend = self.backends[JobBackend.TMUX]
        if not backend.is_alive(job):
            return self._complete(job, self.store.read_log(job.id))

        tail = backend.capture_tail(job, lines=self.settings.backend.sentinel_scan_lines)
        if tail is None or self.settings.backend.completion_sentinel not in tail:
            return job
        history = backend.capture_full(job)
        return self._complete(job, history if history else self.store.read_log(job.id))

    def _complete(self, job: Job, output: str | None) -> Job:
        return dataclasses.replace(
            job,
            status=JobStatus.COMPLETED,
            completed_at=self._completion_time(job),
            result=self._snapshot(output) if output else job.result,
        )

    def _fail(self, job: Job, error: str) -> Job:
        logger.warning("Job %s failed: %s", job.id, error)
        return dataclasses.replace(
            job,
            status=JobStatus.FAILED,
            error=error,
            completed_at=self._completion_time(job),
        )

    def _completion_time(self, job: Job) -> datetime:
        now = self.clock()
        floor = job.started_at or job.created_at
        return max(now, floor)

    def _snapshot(self, output: str) -> str:
        limit = self.settings.polling.result_snapshot_chars
        return output if len(output) <= limit else output[-limit:]
