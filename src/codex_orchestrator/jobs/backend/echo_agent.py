"""Local stand-in for the codex CLI used by backend integration tests.

Accepts the same argument shapes as ``codex`` (interactive prompt argument or
``exec ... -`` with the prompt on stdin) and answers with protocol markers.
"""

from __future__ import annotations

import argparse
import os
import sys
import uuid


def main(argv: list[str] | None = None) -> int:
    """Echo the task back with deterministic protocol markers."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-c", dest="overrides", action="append", default=[])
    parser.add_argument("-a", dest="approval", default=None)
    parser.add_argument("-s", dest="sandbox", default=None)
    parser.add_argument("--color", default=None)
    parser.add_argument("--skip-git-repo-check", action="store_true")
    parser.add_argument("--version", action="version", version="echo-agent 0.1.0")
    parser.add_argument("positional", nargs="*")
    args = parser.parse_intermixed_args(argv)

    positional = list(args.positional)
    if positional and positional[0] == "exec":
        positional = positional[1:]
    if not positional or positional[-1] == "-":
        prompt = sys.stdin.read()
    else:
        prompt = positional[-1]

    task = prompt.strip().splitlines()[-1] if prompt.strip() else "empty task"
    print(f"session id: {uuid.uuid4()}")
    print("[CODEX-AGENT:STATUS:echoing]")
    print(f"task: {task}")
    if os.getenv("OPENAI_ACCESS_TOKEN"):
        print("auth: token present")
    print("[CODEX-AGENT:PROGRESS:100%]")
    print("[CODEX-AGENT:COMPLETE:success]", flush=True)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
