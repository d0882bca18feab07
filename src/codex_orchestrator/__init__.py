"""Delegate tasks to Codex agents running in tmux sessions or detached processes."""

__version__ = "0.1.0"
