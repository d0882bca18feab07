"""OAuth access token resolution for codex sessions."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from codex_orchestrator.config import Settings

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "OPENAI_ACCESS_TOKEN"

_ENV_CANDIDATES = ("OPENAI_ACCESS_TOKEN", "OPENAI_AUTH_TOKEN")
_TOKEN_KEYS = ("access_token", "accessToken", "token", "id_token")


def openai_auth_candidates(home: Path | None = None) -> list[Path]:
    root = home or Path.home()
    return [
        root / ".config" / "openai" / "auth.json",
        root / ".config" / "openai" / "credentials.json",
        root / ".openai" / "auth.json",
        root / ".openai" / "credentials.json",
    ]


def resolve_auth_token(settings: Settings, *, home: Path | None = None) -> str | None:
    """Find a bearer token: environment, then OpenAI config files, then local cache.

    Tokens found in the environment or config files are cached in
    ``settings.auth_file`` so later invocations can run without them.
    """

    env_token = _env_token()
    if env_token is not None:
        _save_cached_token(settings.auth_file, env_token, source="env")
        return env_token

    config_token = _openai_config_token(openai_auth_candidates(home))
    if config_token is not None:
        _save_cached_token(settings.auth_file, config_token, source="openai_config")
        return config_token

    return _load_cached_token(settings.auth_file)


def _env_token() -> str | None:
    for name in _ENV_CANDIDATES:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return None


def _openai_config_token(candidates: list[Path]) -> str | None:
    for path in candidates:
        if not path.exists():
            continue
        try:
            parsed = json.loads(path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            logger.warning("Unable to read OpenAI auth file %s: %s", path, error)
            continue
        token = _token_from_object(parsed)
        if token is not None:
            return token
    return None


def _token_from_object(data: object) -> str | None:
    if not isinstance(data, dict):
        return None
    for key in _TOKEN_KEYS:
        candidate = data.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def _load_cached_token(auth_file: Path) -> str | None:
    if not auth_file.exists():
        return None
    try:
        parsed = json.loads(auth_file.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        logger.warning("Unable to read cached auth token at %s: %s", auth_file, error)
        return None
    if not isinstance(parsed, dict):
        return None
    token = parsed.get("access_token")
    if isinstance(token, str) and token.strip():
        return token.strip()
    return None


def _save_cached_token(auth_file: Path, token: str, *, source: str) -> None:
    payload = {
        "access_token": token,
        "source": source,
        "updated_at": datetime.now(tz=UTC).isoformat(),
    }
    try:
        auth_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(auth_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, indent=2))
        os.chmod(auth_file, 0o600)
    except OSError as error:
        logger.warning("Unable to cache auth token at %s: %s", auth_file, error)
