from __future__ import annotations

import json
from pathlib import Path

import allure

from codex_orchestrator.session_metadata import (
    SessionTokens,
    extract_session_id,
    find_session_file,
    load_session_metadata,
    parse_session_file,
)

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Session Metadata"),
]

_SESSION_ID = "0199a3e2-7c1d-7b20-9f55-3a1c2b4d5e6f"


def _rollout(sessions_dir: Path, entries: list[object]) -> Path:
    day_dir = sessions_dir / "2026" / "03" / "01"
    day_dir.mkdir(parents=True, exist_ok=True)
    path = day_dir / f"rollout-2026-03-01T12-00-00-{_SESSION_ID}.jsonl"
    path.write_text(
        "\n".join(entry if isinstance(entry, str) else json.dumps(entry) for entry in entries),
        "utf-8",
    )
    return path


def test_extract_session_id() -> None:
    assert extract_session_id(f"model: gpt\nsession id: {_SESSION_ID}\n") == _SESSION_ID
    assert extract_session_id("session id: not-a-uuid") is None


def test_find_session_file(tmp_path: Path) -> None:
    path = _rollout(tmp_path, [])

    assert find_session_file(tmp_path, _SESSION_ID) == path
    assert find_session_file(tmp_path, "00000000-0000-0000-0000-000000000000") is None
    assert find_session_file(tmp_path / "missing", _SESSION_ID) is None


def test_parse_session_file_keeps_latest_totals_and_dedupes_files(tmp_path: Path) -> None:
    patch = "*** Update File: a.py\n*** Add File: b.py\n*** Update File: a.py"
    path = _rollout(
        tmp_path,
        [
            {
                "type": "event_msg",
                "payload": {
                    "type": "token_count",
                    "info": {"total_token_usage": {"input_tokens": 5, "output_tokens": 1}},
                },
            },
            "{broken json",
            ["not", "a", "dict"],
            {
                "type": "response_item",
                "payload": {"type": "function_call", "name": "apply_patch", "arguments": patch},
            },
            {"type": "response_item", "payload": {"type": "message", "content": "*** Add File: x"}},
            {
                "type": "event_msg",
                "payload": {
                    "type": "token_count",
                    "info": {"total_token_usage": {"input_tokens": 50, "output_tokens": 10}},
                },
            },
            {"type": "event_msg", "payload": {"type": "agent_message", "message": "first"}},
            {"type": "event_msg", "payload": {"type": "agent_message", "message": " final "}},
        ],
    )

    metadata = parse_session_file(path, _SESSION_ID)

    assert metadata.tokens == SessionTokens(input=50, output=10)
    assert metadata.files_modified == ["a.py", "b.py"]
    assert metadata.summary == "final"


def test_load_session_metadata_degrades_to_none(tmp_path: Path) -> None:
    assert load_session_metadata(None, tmp_path) is None
    assert load_session_metadata("no id here", tmp_path) is None
    assert load_session_metadata(f"session id: {_SESSION_ID}", tmp_path) is None


def test_load_session_metadata_reads_rollout(tmp_path: Path) -> None:
    message = {"type": "event_msg", "payload": {"type": "agent_message", "message": "ok"}}
    _rollout(tmp_path, [message])

    metadata = load_session_metadata(f"session id: {_SESSION_ID}", tmp_path)

    assert metadata.session_id == _SESSION_ID
    assert metadata.summary == "ok"
    assert metadata.tokens is None
