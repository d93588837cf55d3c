"""Symlink-aware path containment checks."""

from __future__ import annotations

import os
from pathlib import Path

from agent_runtime.errors import PathSecurityError


def _within(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Different drives on Windows
        return False


def is_path_within_root(path: str | os.PathLike[str], root: str | os.PathLike[str]) -> bool:
    """
    Return True if ``path`` resolves to ``root`` or somewhere beneath it.

    Relative paths are taken relative to ``root``. ``..`` segments and
    symlinks are resolved first, so a path that looks contained but links
    outside of the root is rejected. Any resolution failure counts as
    "not contained".
    """
    try:
        real_root = os.path.realpath(root)
        real_path = os.path.realpath(os.path.join(real_root, os.fspath(path)))
    except (OSError, ValueError):
        return False
    return _within(real_path, real_root)


def safe_resolve_path(path: str | os.PathLike[str], root: str | os.PathLike[str]) -> Path:
    """
    Resolve ``path`` against ``root`` and return the real path.

    Components that do not exist yet are appended to the real path of
    their deepest existing parent.

    Raises:
        PathSecurityError: If the resolved path escapes ``root``.
    """
    real_root = os.path.realpath(root)
    try:
        real_path = os.path.realpath(os.path.join(real_root, os.fspath(path)))
    except (OSError, ValueError) as e:
        raise PathSecurityError(f"Cannot resolve path {path}: {e}") from e
    if not _within(real_path, real_root):
        raise PathSecurityError(
            f"Path traversal detected: {path} resolves outside of allowed directory"
        )
    return Path(real_path)
