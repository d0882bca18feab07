"""File context loading for prompt injection."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 500_000
CODEBASE_MAP_CANDIDATES = (
    Path("docs") / "CODEBASE_MAP.md",
    Path("CODEBASE_MAP.md"),
    Path("docs") / "ARCHITECTURE.md",
)


@dataclass(slots=True)
class FileContent:
    """One text file included in the prompt."""

    path: str
    content: str


def load_files(patterns: list[str] | tuple[str, ...], base_dir: Path) -> list[FileContent]:
    """Load text files matching glob patterns; ``!pattern`` excludes matches.

    Files over 500 KB, binary files and unreadable files are skipped.
    """

    positive = [pattern for pattern in patterns if not pattern.startswith("!")]
    negative = [pattern[1:] for pattern in patterns if pattern.startswith("!")]
    base = base_dir.resolve()

    loaded: dict[Path, FileContent] = {}
    for pattern in positive:
        for match in sorted(base.glob(pattern)):
            resolved = match.resolve()
            if resolved in loaded:
                continue
            content = _read_text_file(resolved)
            if content is None:
                continue
            loaded[resolved] = FileContent(path=_relative(resolved, base), content=content)

    for pattern in negative:
        for match in base.glob(pattern):
            loaded.pop(match.resolve(), None)

    return list(loaded.values())


def format_prompt_with_files(prompt: str, files: list[FileContent]) -> str:
    if not files:
        return prompt

    parts = [prompt, "\n\n---\n\n## File Context\n\n"]
    for item in files:
        extension = item.path.rsplit(".", 1)[-1] if "." in item.path else ""
        parts.append(f"### {item.path}\n\n```{extension}\n{item.content}\n```\n\n")
    return "".join(parts)


def estimate_tokens(text: str) -> int:
    """Rough token estimate at ~4 characters per token."""

    return math.ceil(len(text) / 4)


def load_codebase_map(cwd: Path) -> str | None:
    for candidate in CODEBASE_MAP_CANDIDATES:
        try:
            return (cwd / candidate).read_text("utf-8")
        except OSError:
            continue
    return None


def _read_text_file(path: Path) -> str | None:
    try:
        if not path.is_file() or path.stat().st_size > MAX_FILE_BYTES:
            return None
        content = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        logger.debug("Skipping unreadable file %s: %s", path, error)
        return None
    if "\0" in content:
        return None
    return content


def _relative(path: Path, base: Path) -> str:
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return path.as_posix()
