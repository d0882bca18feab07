"""Durable file-backed job store."""

from __future__ import annotations

import json
import logging
import os
import re
import secrets
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from codex_orchestrator.jobs.models import Job

logger = logging.getLogger(__name__)

JOB_ID_PATTERN = re.compile(r"^[0-9a-f]{8}$")

_RECORD_NAME = re.compile(r"^([0-9a-f]{8})\.json$")
_FILE_MODE = 0o600
_ARTIFACT_SUFFIXES = (
    ".prompt",
    ".log",
    ".runner.json",
    ".runner.env",
    ".done.json",
    ".task.json",
    ".result.json",
)


def is_valid_job_id(job_id: object) -> bool:
    """Return True when ``job_id`` is exactly 8 lowercase hex characters."""

    return isinstance(job_id, str) and JOB_ID_PATTERN.fullmatch(job_id) is not None


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Persist pretty-printed JSON via temp file + rename with owner-only mode."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    data = json.dumps(payload, ensure_ascii=False, indent=2)
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _FILE_MODE)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def read_json_object(path: Path) -> dict[str, Any] | None:
    """Load a JSON object, treating missing or corrupt files as absent."""

    try:
        raw = path.read_text("utf-8")
    except FileNotFoundError:
        return None
    except OSError as error:
        logger.warning("Could not read %s: %s", path, error)
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        logger.warning("Corrupt JSON in %s: %s", path, error)
        return None
    if not isinstance(payload, dict):
        logger.warning("Expected JSON object in %s", path)
        return None
    return payload


class JobStore:
    """Maps job ids to JSON records and per-job artifacts in one directory."""

    def __init__(self, jobs_dir: Path) -> None:
        self.jobs_dir = jobs_dir

    def ensure_dir(self) -> None:
        self.jobs_dir.mkdir(parents=True, exist_ok=True)

    def new_job_id(self) -> str:
        """Draw a fresh random id that has no record yet."""

        while True:
            job_id = secrets.token_hex(4)
            if not self.record_path(job_id).exists():
                return job_id

    def record_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".json")

    def log_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".log")

    def prompt_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".prompt")

    def task_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".task.json")

    def result_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".result.json")

    def done_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".done.json")

    def runner_config_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".runner.json")

    def runner_env_path(self, job_id: str) -> Path:
        return self._artifact(job_id, ".runner.env")

    def create(self, job: Job) -> None:
        """Persist a new record, refusing to overwrite an existing one."""

        if not is_valid_job_id(job.id):
            raise ValueError(f"Invalid job id: {job.id!r}")
        if self.record_path(job.id).exists():
            raise FileExistsError(f"Job already exists: {job.id}")
        self.save(job)

    def save(self, job: Job) -> None:
        if not is_valid_job_id(job.id):
            raise ValueError(f"Invalid job id: {job.id!r}")
        write_json_atomic(self.record_path(job.id), job.to_payload())

    def load(self, job_id: str) -> Job | None:
        if not is_valid_job_id(job_id):
            return None
        payload = read_json_object(self.record_path(job_id))
        if payload is None:
            return None
        try:
            return Job.from_payload(payload)
        except ValueError as error:
            logger.warning("Skipping malformed job record %s: %s", job_id, error)
            return None

    def list(self) -> list[Job]:
        """Return every readable job, newest ``created_at`` first."""

        if not self.jobs_dir.is_dir():
            return []
        jobs: list[Job] = []
        for path in self.jobs_dir.iterdir():
            match = _RECORD_NAME.match(path.name)
            if match is None:
                continue
            job = self.load(match.group(1))
            if job is not None:
                jobs.append(job)
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs

    def delete(self, job_id: str, *, teardown: Callable[[Job], object] | None = None) -> bool:
        """Remove a job record and all artifacts keyed by its id.

        ``teardown`` runs first so a live backend resource (process or tmux
        session) is stopped before its files disappear.
        """

        if not is_valid_job_id(job_id):
            return False
        job = self.load(job_id)
        if job is not None and teardown is not None:
            teardown(job)

        try:
            self.record_path(job_id).unlink()
        except FileNotFoundError:
            return False
        except OSError as error:
            logger.warning("Could not delete job record %s: %s", job_id, error)
            return False

        for suffix in _ARTIFACT_SUFFIXES:
            try:
                self._artifact(job_id, suffix).unlink(missing_ok=True)
            except OSError as error:
                logger.debug("Could not delete %s%s: %s", job_id, suffix, error)
        return True

    def read_log(self, job_id: str, *, lines: int | None = None) -> str | None:
        """Read the captured output log, optionally only its last ``lines`` lines."""

        if not is_valid_job_id(job_id):
            return None
        try:
            content = self.log_path(job_id).read_text("utf-8", errors="replace")
        except OSError:
            return None
        if lines:
            return "\n".join(content.split("\n")[-lines:])
        return content

    def write_artifact_json(self, path: Path, payload: dict[str, Any]) -> None:
        write_json_atomic(path, payload)

    def read_artifact_json(self, path: Path) -> dict[str, Any] | None:
        return read_json_object(path)

    def write_artifact_text(self, path: Path, text: str) -> None:
        """Write a private text artifact (prompt, credential) with owner-only mode."""

        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)

    def _artifact(self, job_id: str, suffix: str) -> Path:
        if not is_valid_job_id(job_id):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return self.jobs_dir / f"{job_id}{suffix}"
