"""In-band event marker protocol between the orchestrator and the agent.

The agent reports progress by printing markers of the form
``[CODEX-AGENT:TYPE:payload]`` anywhere in its regular output.  Parsing is a
pure function of the captured text: every read re-captures the (possibly
grown) output and re-scans it from the start, so no parser state is kept.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MARKER_NAMESPACE = "CODEX-AGENT"

_EVENT_PATTERN = re.compile(r"\[CODEX-AGENT:(\w+):([^\]]*)\]")
_FIRST_INT = re.compile(r"(\d+)")


class AgentEventType(str, Enum):
    STATUS = "STATUS"
    PROGRESS = "PROGRESS"
    FINDING = "FINDING"
    FILE_MODIFIED = "FILE_MODIFIED"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class FindingSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class AgentEvent:
    """One marker occurrence in agent output."""

    type: AgentEventType
    payload: str


@dataclass(slots=True)
class Finding:
    """One reported issue with severity and optional location."""

    severity: FindingSeverity
    issue: str
    file: str | None = None
    line: int | None = None
    suggestion: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"severity": self.severity.value}
        if self.file is not None:
            payload["file"] = self.file
        if self.line is not None:
            payload["line"] = self.line
        payload["issue"] = self.issue
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion
        return payload

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> Finding | None:
        """Build a finding from a decoded object; None when ``issue`` is missing."""

        issue = raw.get("issue")
        if not isinstance(issue, str):
            return None
        file_raw = raw.get("file")
        suggestion_raw = raw.get("suggestion")
        return cls(
            severity=_coerce_severity(raw.get("severity")),
            issue=issue,
            file=file_raw if isinstance(file_raw, str) else None,
            line=_coerce_line(raw.get("line")),
            suggestion=suggestion_raw if isinstance(suggestion_raw, str) else None,
        )


@dataclass(frozen=True, slots=True)
class Completion:
    """Completion signal derived from the last COMPLETE/ERROR marker."""

    complete: bool
    success: bool


@dataclass(slots=True)
class TaskEnvelope:
    """Structured task description written next to the job when the protocol is on."""

    task_id: str
    objective: str
    report_to: str
    created_at: str
    context_files: list[str] = field(default_factory=list)
    parent_session: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"task_id": self.task_id}
        if self.parent_session is not None:
            payload["parent_session"] = self.parent_session
        payload.update(
            {
                "objective": self.objective,
                "context_files": list(self.context_files),
                "report_to": self.report_to,
                "created_at": self.created_at,
            },
        )
        return payload


@dataclass(slots=True)
class TokenUsage:
    input: int
    output: int


@dataclass(slots=True)
class ResultOutput:
    """Synthesized, cached outcome of one job."""

    task_id: str
    status: str
    findings: list[Finding]
    files_modified: list[str]
    summary: str
    tokens_used: TokenUsage | None
    completed_at: str
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "task_id": self.task_id,
            "status": self.status,
            "findings": [finding.to_payload() for finding in self.findings],
            "files_modified": list(self.files_modified),
            "summary": self.summary,
            "tokens_used": (
                {"input": self.tokens_used.input, "output": self.tokens_used.output}
                if self.tokens_used is not None
                else None
            ),
            "completed_at": self.completed_at,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> ResultOutput:
        """Rebuild a cached result, raising ``ValueError`` when malformed."""

        try:
            findings_raw = raw.get("findings") or []
            findings: list[Finding] = []
            for item in findings_raw:
                finding = Finding.from_payload(item) if isinstance(item, dict) else None
                if finding is not None:
                    findings.append(finding)
            tokens_raw = raw.get("tokens_used")
            tokens = (
                TokenUsage(input=int(tokens_raw["input"]), output=int(tokens_raw["output"]))
                if isinstance(tokens_raw, dict)
                else None
            )
            error_raw = raw.get("error")
            return cls(
                task_id=str(raw["task_id"]),
                status=str(raw["status"]),
                findings=findings,
                files_modified=[str(item) for item in raw.get("files_modified") or []],
                summary=str(raw.get("summary") or ""),
                tokens_used=tokens,
                completed_at=str(raw["completed_at"]),
                error=str(error_raw) if error_raw is not None else None,
            )
        except (KeyError, TypeError) as error:
            raise ValueError(f"Invalid result payload: {error}") from error


def parse_agent_events(output: str) -> list[AgentEvent]:
    """Extract all markers from ``output`` in order of appearance."""

    events: list[AgentEvent] = []
    for match in _EVENT_PATTERN.finditer(output):
        try:
            event_type = AgentEventType(match.group(1))
        except ValueError:
            logger.debug("Ignoring unknown agent event type: %s", match.group(1))
            continue
        events.append(AgentEvent(type=event_type, payload=match.group(2)))
    return events


def extract_findings(events: list[AgentEvent]) -> list[Finding]:
    """Decode FINDING payloads, downgrading unparseable ones to ``info`` findings."""

    findings: list[Finding] = []
    for event in events:
        if event.type is not AgentEventType.FINDING:
            continue
        finding: Finding | None = None
        try:
            parsed = json.loads(event.payload)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            finding = Finding.from_payload(parsed)
        if finding is None:
            finding = Finding(severity=FindingSeverity.INFO, issue=event.payload)
        findings.append(finding)
    return findings


def extract_modified_files(events: list[AgentEvent]) -> list[str]:
    files: list[str] = []
    for event in events:
        if event.type is AgentEventType.FILE_MODIFIED and event.payload.strip():
            files.append(event.payload.strip())
    return files


def latest_status(events: list[AgentEvent]) -> str | None:
    for event in reversed(events):
        if event.type is AgentEventType.STATUS:
            return event.payload
    return None


def latest_progress(events: list[AgentEvent]) -> int | None:
    """Return the first integer of the most recent PROGRESS payload that has one."""

    for event in reversed(events):
        if event.type is not AgentEventType.PROGRESS:
            continue
        match = _FIRST_INT.search(event.payload)
        if match is not None:
            return int(match.group(1))
    return None


def completion_from_events(events: list[AgentEvent]) -> Completion:
    """Decide completion from the last COMPLETE or ERROR marker."""

    for event in reversed(events):
        if event.type is AgentEventType.COMPLETE:
            return Completion(complete=True, success=event.payload.lower() == "success")
        if event.type is AgentEventType.ERROR:
            return Completion(complete=True, success=False)
    return Completion(complete=False, success=False)


def protocol_instructions(envelope: TaskEnvelope) -> str:
    """Render the preamble that teaches the agent the marker vocabulary.

    The agent's own output usually echoes its prompt, so the preamble spells
    markers with a ``<TYPE>`` placeholder that the marker grammar never
    matches; otherwise the examples would be parsed back as real events.
    """

    parent_line = (
        f"- Parent Session: {envelope.parent_session}\n" if envelope.parent_session else ""
    )
    ns = MARKER_NAMESPACE
    return (
        "## Orchestration Protocol\n"
        "\n"
        "You are being orchestrated by a parent agent. "
        "Follow these communication guidelines:\n"
        "\n"
        "### Task Information\n"
        f"- Task ID: {envelope.task_id}\n"
        f"- Output Report: {envelope.report_to}\n"
        f"{parent_line}"
        "\n"
        "### Status Events\n"
        "Emit status events on their own line so the orchestrator can track progress.\n"
        f"Format: [{ns}:<TYPE>:<payload>] where <TYPE> is one of:\n"
        "\n"
        "- STATUS: current activity, for example analyzing\n"
        "- PROGRESS: percentage complete, for example 25%\n"
        "- FINDING: one issue as JSON with severity, file, line, issue, suggestion\n"
        "- FILE_MODIFIED: path of a file you changed\n"
        "- COMPLETE: success or failed, when you are done\n"
        "- ERROR: description, if something fails\n"
        "\n"
        "Payloads must not contain a closing square bracket.\n"
        "\n"
        "### Finding Severities\n"
        "- critical: Security vulnerability, data loss risk\n"
        "- high: Significant bug or security issue\n"
        "- medium: Code quality issue, potential bug\n"
        "- low: Minor improvement suggestion\n"
        "- info: Observation or note\n"
        "\n"
        "### Output Requirements\n"
        "1. Emit a STATUS event at major stages\n"
        "2. Emit a FINDING event for each issue found (JSON format preferred)\n"
        "3. Emit a FILE_MODIFIED event for each file you change\n"
        "4. End with a COMPLETE event whose payload is success or failed\n"
        "\n"
        "---\n"
        "\n"
    )


def empty_result(task_id: str, *, completed_at: datetime | None = None) -> ResultOutput:
    """Partial result template used when no output can be captured."""

    return ResultOutput(
        task_id=task_id,
        status="partial",
        findings=[],
        files_modified=[],
        summary="",
        tokens_used=None,
        completed_at=(completed_at or datetime.now(tz=UTC)).isoformat(),
    )


def _coerce_severity(value: object) -> FindingSeverity:
    if isinstance(value, str):
        try:
            return FindingSeverity(value.strip().lower())
        except ValueError:
            pass
    return FindingSeverity.INFO


def _coerce_line(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
