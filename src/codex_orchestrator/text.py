"""Terminal output cleanup helpers."""

from __future__ import annotations

import re

_CSI_SEQUENCE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")
_OSC_SEQUENCE = re.compile(r"\x1b\][^\x07]*\x07")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escapes, carriage returns and control chars except newline/tab."""

    cleaned = _CSI_SEQUENCE.sub("", text)
    cleaned = _OSC_SEQUENCE.sub("", cleaned)
    cleaned = cleaned.replace("\r", "")
    return _CONTROL_CHARS.sub("", cleaned)
