"""Quoting helpers for values interpolated into POSIX shell commands."""

from __future__ import annotations


def escape_shell_arg(value: str) -> str:
    """
    Quote ``value`` so a POSIX shell reads it back as one literal word.

    The whole value is wrapped in single quotes, inside which the shell
    performs no expansion at all; embedded single quotes become ``'\\''``.
    """
    return "'" + value.replace("'", "'\\''") + "'"


def escape_git_commit_message(message: str) -> str:
    """Quote a commit message for ``git commit -m``."""
    return escape_shell_arg(message)


def quote_command(argv: list[str]) -> str:
    """Join an argument vector into a shell-safe command line."""
    return " ".join(escape_shell_arg(arg) for arg in argv)
