"""Best-effort reader for codex session rollout files.

The codex CLI prints its session id near the top of its output and records
the whole conversation as JSON lines under ``$CODEX_HOME/sessions``.  Token
totals, patched files and the final agent message are recovered from there.
Every failure degrades to ``None``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(
    r"session id:\s*([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})",
)
_PATCH_FILE_LINE = re.compile(r"^\*\*\* (?:Update|Add) File:\s*(.+)$", re.MULTILINE)


@dataclass(slots=True)
class SessionTokens:
    input: int
    output: int


@dataclass(slots=True)
class SessionMetadata:
    """Facts recovered from one codex session file."""

    session_id: str
    tokens: SessionTokens | None = None
    files_modified: list[str] = field(default_factory=list)
    summary: str | None = None


def extract_session_id(output: str) -> str | None:
    match = _SESSION_ID.search(output)
    return match.group(1) if match else None


def find_session_file(sessions_dir: Path, session_id: str) -> Path | None:
    """Locate ``rollout-*-<session_id>.jsonl`` anywhere below ``sessions_dir``."""

    if not sessions_dir.is_dir():
        return None
    try:
        matches = sorted(sessions_dir.rglob(f"rollout-*{session_id}.jsonl"))
    except OSError as error:
        logger.debug("Could not scan %s: %s", sessions_dir, error)
        return None
    return matches[-1] if matches else None


def parse_session_file(path: Path, session_id: str) -> SessionMetadata | None:
    try:
        lines = path.read_text("utf-8", errors="replace").splitlines()
    except OSError as error:
        logger.debug("Could not read session file %s: %s", path, error)
        return None

    metadata = SessionMetadata(session_id=session_id)
    seen_files: set[str] = set()
    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue
        payload = entry.get("payload")
        if not isinstance(payload, dict):
            continue

        entry_type = entry.get("type")
        payload_type = payload.get("type")
        if entry_type == "event_msg" and payload_type == "token_count":
            tokens = _tokens_from_payload(payload)
            if tokens is not None:
                metadata.tokens = tokens
        elif entry_type == "event_msg" and payload_type == "agent_message":
            message = payload.get("message")
            if isinstance(message, str) and message.strip():
                metadata.summary = message.strip()
        elif entry_type == "response_item":
            for file_path in _patched_files(payload):
                if file_path not in seen_files:
                    seen_files.add(file_path)
                    metadata.files_modified.append(file_path)
    return metadata


def load_session_metadata(log_text: str | None, sessions_dir: Path) -> SessionMetadata | None:
    """Resolve session metadata from captured agent output."""

    if not log_text:
        return None
    session_id = extract_session_id(log_text)
    if session_id is None:
        return None
    session_file = find_session_file(sessions_dir, session_id)
    if session_file is None:
        logger.debug("No session file found for session %s", session_id)
        return None
    return parse_session_file(session_file, session_id)


def _tokens_from_payload(payload: dict[str, Any]) -> SessionTokens | None:
    info = payload.get("info")
    if not isinstance(info, dict):
        return None
    usage = info.get("total_token_usage")
    if not isinstance(usage, dict):
        return None
    try:
        return SessionTokens(
            input=int(usage.get("input_tokens") or 0),
            output=int(usage.get("output_tokens") or 0),
        )
    except (TypeError, ValueError):
        return None


def _patched_files(payload: dict[str, Any]) -> list[str]:
    if payload.get("name") != "apply_patch" and payload.get("type") != "custom_tool_call":
        return []
    patch_text = payload.get("input")
    if not isinstance(patch_text, str):
        arguments = payload.get("arguments")
        patch_text = arguments if isinstance(arguments, str) else ""
    return [match.strip() for match in _PATCH_FILE_LINE.findall(patch_text)]
