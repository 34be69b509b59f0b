"""read_file tool: numbered line ranges from a workspace file."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

from pydantic import field_validator

from codexterm.tools.base import ToolArgs, ToolContext, ToolError, ToolResult, clamp
from codexterm.tools.paths import resolve_in_workspace

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES = 200
LINE_CEILING = 1000

DESCRIPTION = (
    "Read the contents of a file in the workspace, starting at a 1-based line and "
    "returning at most max_lines lines. Use this to inspect source code before answering."
)


class ReadFileArgs(ToolArgs):
    path: str
    start_line: int = 1
    max_lines: int = DEFAULT_MAX_LINES
    response_format: Literal["concise", "detailed"] = "detailed"

    @field_validator("path")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("File path is required")
        return v.strip()

    @field_validator("start_line")
    @classmethod
    def _clamp_start(cls, v: int) -> int:
        return max(1, v)

    @field_validator("max_lines")
    @classmethod
    def _clamp_lines(cls, v: int) -> int:
        return int(clamp(v, 1, LINE_CEILING))


def format_file_content(
    lines: list[str],
    path: str,
    start_line: int,
    total_lines: int,
    detailed: bool = True,
) -> str:
    """Render a slice of lines with a header and line numbers.

    Args:
        lines: The selected lines (already sliced).
        path: Display path for the header.
        start_line: 1-based number of ``lines[0]``.
        total_lines: Line count of the whole file.
        detailed: Without it, the raw lines are returned unnumbered.
    """
    if not detailed:
        return "\n".join(lines)

    end_line = start_line + len(lines) - 1
    header = f"File: {path} (lines {start_line}-{end_line} of {total_lines})"
    numbered = [f"{start_line + i:>6} | {line}" for i, line in enumerate(lines)]
    result = header + f"\n{'─' * 60}\n" + "\n".join(numbered)

    remaining = total_lines - end_line
    if remaining > 0:
        result += f"\n... ({remaining} more lines. Use start_line={end_line + 1} to read more.)"
    return result


def read_file(args: ReadFileArgs, ctx: ToolContext) -> ToolResult:
    full = resolve_in_workspace(ctx.workspace_root, args.path)
    if not full.exists():
        raise ToolError(f"File not found: {args.path}")
    if not full.is_file():
        raise ToolError(f"Not a file: {args.path}")

    ctx.append(f"\n 📄 Reading file: {args.path} (max {args.max_lines} lines)\n", "tool")

    text = full.read_text(encoding="utf-8", errors="replace")
    all_lines = text.splitlines()
    total = len(all_lines)
    if total and args.start_line > total:
        raise ToolError(f"start_line {args.start_line} is past the end of {args.path} ({total} lines)")

    start = args.start_line - 1
    selected = all_lines[start:start + args.max_lines]
    truncated = start + len(selected) < total

    stat = full.stat()
    content = format_file_content(
        selected, args.path, args.start_line, total,
        detailed=args.response_format == "detailed",
    )
    logger.debug("read_file %s: %d/%d lines", args.path, len(selected), total)
    return ToolResult.ok(
        content,
        file_path=args.path,
        total_lines=total,
        lines_read=len(selected),
        truncated=truncated,
        file_size=stat.st_size,
        last_modified=datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S"),
    )
