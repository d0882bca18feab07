from __future__ import annotations

import json

import allure
import pytest

from codex_orchestrator.protocol import (
    AgentEvent,
    AgentEventType,
    Finding,
    FindingSeverity,
    ResultOutput,
    TaskEnvelope,
    TokenUsage,
    completion_from_events,
    empty_result,
    extract_findings,
    extract_modified_files,
    latest_progress,
    latest_status,
    parse_agent_events,
    protocol_instructions,
)

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Event Protocol"),
]

_SAMPLE_OUTPUT = (
    "Booting agent...\n"
    "[CODEX-AGENT:STATUS:analyzing]\n"
    "Reading src/app.py\n"
    "[CODEX-AGENT:PROGRESS:40%]\n"
    "[CODEX-AGENT:COMPLETE:success]\n"
)


def test_parse_agent_events_in_order() -> None:
    events = parse_agent_events(_SAMPLE_OUTPUT)

    assert events == [
        AgentEvent(type=AgentEventType.STATUS, payload="analyzing"),
        AgentEvent(type=AgentEventType.PROGRESS, payload="40%"),
        AgentEvent(type=AgentEventType.COMPLETE, payload="success"),
    ]
    assert latest_status(events) == "analyzing"
    assert latest_progress(events) == 40
    assert completion_from_events(events).complete is True
    assert completion_from_events(events).success is True


def test_parse_agent_events_ignores_unknown_types_and_text_without_markers() -> None:
    output = "plain text\n[CODEX-AGENT:HEARTBEAT:ok]\n[OTHER:STATUS:x]\n[CODEX-AGENT:STATUS:done]"

    events = parse_agent_events(output)

    assert [event.type for event in events] == [AgentEventType.STATUS]
    assert parse_agent_events("") == []


def test_markers_inside_lines_are_found() -> None:
    events = parse_agent_events("prefix [CODEX-AGENT:FILE_MODIFIED: src/a.py ] suffix")

    assert extract_modified_files(events) == ["src/a.py"]


def test_latest_values_prefer_most_recent_marker() -> None:
    events = parse_agent_events(
        "[CODEX-AGENT:STATUS:starting][CODEX-AGENT:PROGRESS:10]"
        "[CODEX-AGENT:STATUS:reviewing][CODEX-AGENT:PROGRESS:about 75 percent]"
        "[CODEX-AGENT:PROGRESS:soon]",
    )

    assert latest_status(events) == "reviewing"
    assert latest_progress(events) == 75
    assert latest_progress([]) is None
    assert latest_status([]) is None


def test_extract_findings_decodes_json_payloads() -> None:
    payload = json.dumps(
        {
            "severity": "HIGH",
            "file": "src/auth.py",
            "line": "42",
            "issue": "Token compared with ==",
            "suggestion": "Use hmac.compare_digest",
        },
    )

    findings = extract_findings(parse_agent_events(f"[CODEX-AGENT:FINDING:{payload}]"))

    assert findings == [
        Finding(
            severity=FindingSeverity.HIGH,
            issue="Token compared with ==",
            file="src/auth.py",
            line=42,
            suggestion="Use hmac.compare_digest",
        ),
    ]


@pytest.mark.parametrize(
    "payload",
    [
        "Missing input validation",
        '{"severity": "high", "file": "a.py"}',
        '["not", "an", "object"]',
    ],
)
def test_extract_findings_downgrades_unstructured_payloads_to_info(payload: str) -> None:
    findings = extract_findings([AgentEvent(type=AgentEventType.FINDING, payload=payload)])

    assert findings == [Finding(severity=FindingSeverity.INFO, issue=payload)]


def test_unknown_severity_becomes_info() -> None:
    finding = Finding.from_payload({"severity": "catastrophic", "issue": "x", "line": True})

    assert finding == Finding(severity=FindingSeverity.INFO, issue="x")


@pytest.mark.parametrize(
    ("output", "complete", "success"),
    [
        ("no markers", False, False),
        ("[CODEX-AGENT:COMPLETE:failed]", True, False),
        ("[CODEX-AGENT:ERROR:disk full]", True, False),
        ("[CODEX-AGENT:ERROR:retrying][CODEX-AGENT:COMPLETE:SUCCESS]", True, True),
        ("[CODEX-AGENT:COMPLETE:success][CODEX-AGENT:ERROR:late crash]", True, False),
    ],
)
def test_completion_uses_last_terminal_marker(output: str, complete: bool, success: bool) -> None:
    completion = completion_from_events(parse_agent_events(output))

    assert (completion.complete, completion.success) == (complete, success)


def test_protocol_instructions_carry_task_details_but_no_parseable_markers() -> None:
    envelope = TaskEnvelope(
        task_id="0a1b2c3d",
        objective="Audit auth",
        report_to="/tmp/jobs/0a1b2c3d.result.json",
        created_at="2026-03-01T12:00:00+00:00",
        parent_session="parent-7",
    )

    preamble = protocol_instructions(envelope)

    assert "Task ID: 0a1b2c3d" in preamble
    assert "/tmp/jobs/0a1b2c3d.result.json" in preamble
    assert "parent-7" in preamble
    assert "[CODEX-AGENT:<TYPE>:<payload>]" in preamble
    assert parse_agent_events(preamble) == []


def test_task_envelope_payload_omits_missing_parent() -> None:
    envelope = TaskEnvelope(
        task_id="0a1b2c3d",
        objective="Audit auth",
        report_to="r.json",
        created_at="2026-03-01T12:00:00+00:00",
        context_files=["src/auth.py"],
    )

    assert envelope.to_payload() == {
        "task_id": "0a1b2c3d",
        "objective": "Audit auth",
        "context_files": ["src/auth.py"],
        "report_to": "r.json",
        "created_at": "2026-03-01T12:00:00+00:00",
    }


def test_result_output_payload_survives_reload() -> None:
    result = ResultOutput(
        task_id="0a1b2c3d",
        status="completed",
        findings=[Finding(severity=FindingSeverity.LOW, issue="Rename var", file="a.py")],
        files_modified=["a.py"],
        summary="Done",
        tokens_used=TokenUsage(input=10, output=5),
        completed_at="2026-03-01T12:00:00+00:00",
        error="warning",
    )

    assert ResultOutput.from_payload(result.to_payload()) == result


def test_result_output_rejects_missing_required_fields() -> None:
    with pytest.raises(ValueError, match="Invalid result payload"):
        ResultOutput.from_payload({"status": "completed"})


def test_empty_result_is_partial() -> None:
    result = empty_result("0a1b2c3d")

    assert result.status == "partial"
    assert result.findings == []
    assert result.files_modified == []
    assert result.summary == ""
    assert result.tokens_used is None
    assert "error" not in result.to_payload()


def test_parsing_and_finding_extraction_are_repeatable() -> None:
    output = (
        "noise [CODEX-AGENT:STATUS:scanning] more noise\n"
        '[CODEX-AGENT:FINDING:{"severity": "high", "issue": "Bug", "line": "x"}]\n'
        "[CODEX-AGENT:FINDING:{not json at all]\n"
        '[CODEX-AGENT:FINDING:{"severity": "low"}] trailing text\n'
        "mid-line [CODEX-AGENT:PROGRESS:55%] and [CODEX-AGENT:UNKNOWN:x]\n"
    )

    events = parse_agent_events(output)

    assert [event.type for event in events] == [
        AgentEventType.STATUS,
        AgentEventType.FINDING,
        AgentEventType.FINDING,
        AgentEventType.FINDING,
        AgentEventType.PROGRESS,
    ]
    assert parse_agent_events(output) == events
    assert extract_findings(events) == extract_findings(events)
    assert [finding.severity for finding in extract_findings(events)] == [
        FindingSeverity.HIGH,
        FindingSeverity.INFO,
        FindingSeverity.INFO,
    ]
