"""list_tree tool: connector-drawn recursive directory view."""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import field_validator

from codexterm import config
from codexterm.tools.base import ToolArgs, ToolContext, ToolError, ToolResult, clamp, format_size
from codexterm.tools.paths import resolve_in_workspace

logger = logging.getLogger(__name__)

DESCRIPTION = (
    "Show a recursive directory tree of the workspace up to a maximum depth, "
    "skipping build output and VCS folders. Use this for a quick overview of the project layout."
)

DEFAULT_EXCLUDES = [
    "bin", "obj", ".git", ".vs", "node_modules", ".vscode", "__pycache__",
    config.INDEX_DIR_NAME.strip("/"),
]


class ListTreeArgs(ToolArgs):
    path: str = "."
    max_depth: int = 3
    show_files: bool = True
    exclude_patterns: list[str] = list(DEFAULT_EXCLUDES)

    @field_validator("max_depth")
    @classmethod
    def _clamp_depth(cls, v: int) -> int:
        return int(clamp(v, 1, 10))


@dataclass
class TreeStats:
    directories: int = 0
    files: int = 0
    excluded: int = 0


def _excluded(name: str, patterns: list[str]) -> bool:
    lower = name.lower()
    return any(fnmatch.fnmatch(lower, p.lower()) for p in patterns)


def _format_tree(
    directory: Path,
    prefix: str,
    depth: int,
    args: ListTreeArgs,
    stats: TreeStats,
    lines: list[str],
) -> None:
    if depth >= args.max_depth:
        return
    try:
        children = sorted(directory.iterdir(), key=lambda p: p.name.lower())
    except PermissionError:
        lines.append(f"{prefix}├── ❌ [access denied]")
        stats.excluded += 1
        return

    dirs, files = [], []
    for child in children:
        if _excluded(child.name, args.exclude_patterns):
            stats.excluded += 1
            continue
        if child.is_dir():
            dirs.append(child)
        elif args.show_files:
            files.append(child)

    entries = dirs + files
    detailed = args.response_format == "detailed"
    for i, entry in enumerate(entries):
        is_last = i == len(entries) - 1
        connector = "└── " if is_last else "├── "
        if entry.is_dir():
            line = f"{prefix}{connector}📁 {entry.name}/"
            if detailed:
                try:
                    line += f" ({sum(1 for _ in entry.iterdir())} items)"
                except OSError:
                    pass
            lines.append(line)
            stats.directories += 1
            extension = "    " if is_last else "│   "
            _format_tree(entry, prefix + extension, depth + 1, args, stats, lines)
        else:
            line = f"{prefix}{connector}📄 {entry.name}"
            if detailed:
                try:
                    line += f" ({format_size(entry.stat().st_size)})"
                except OSError:
                    pass
            lines.append(line)
            stats.files += 1


def list_tree(args: ListTreeArgs, ctx: ToolContext) -> ToolResult:
    full = resolve_in_workspace(ctx.workspace_root, args.path)
    if not full.is_dir():
        raise ToolError(f"Directory not found: {args.path}")

    ctx.append(f"\n 🌳 Directory tree: {args.path} (max depth: {args.max_depth})\n", "tool")

    stats = TreeStats()
    lines: list[str] = []
    _format_tree(full, "", 0, args, stats, lines)

    if args.response_format == "detailed":
        lines[:0] = [
            f"Directory tree for: {args.path}",
            f"Directories: {stats.directories}, Files: {stats.files}",
            "---",
        ]

    return ToolResult.ok(
        "\n".join(lines),
        root_path=args.path,
        max_depth=args.max_depth,
        total_directories=stats.directories,
        total_files=stats.files,
        excluded_items=stats.excluded,
    )
