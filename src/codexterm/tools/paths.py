"""Sandboxing of tool path arguments to the workspace root."""

from __future__ import annotations

from pathlib import Path

from codexterm.tools.base import ToolError


def resolve_in_workspace(root: Path, user_path: str | None) -> Path:
    """Resolve ``user_path`` against ``root``; anything outside is refused.

    Absolute paths are accepted only when they already lie inside the root.
    Symlinks are resolved before the containment check.

    Raises:
        ToolError: if the resolved path escapes the workspace.
    """
    root = Path(root).resolve()
    raw = (user_path or ".").strip() or "."
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    try:
        resolved.relative_to(root)
    except ValueError:
        raise ToolError(f"Path is outside workspace boundaries: {raw}") from None
    return resolved


def to_relative(path: Path, root: Path) -> str:
    """Workspace-relative posix path; ``.`` for the root itself."""
    rel = Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    return rel or "."
