"""list_files tool: immediate children of one workspace directory."""

from __future__ import annotations

import logging

from codexterm.tools.base import ToolArgs, ToolContext, ToolError, ToolResult
from codexterm.tools.paths import resolve_in_workspace, to_relative

logger = logging.getLogger(__name__)

DESCRIPTION = (
    "List files and directories in a specified workspace path. Use this to explore "
    "the project structure and understand the codebase organization."
)


class ListFilesArgs(ToolArgs):
    path: str = "."


def list_files(args: ListFilesArgs, ctx: ToolContext) -> ToolResult:
    full = resolve_in_workspace(ctx.workspace_root, args.path)
    if not full.is_dir():
        raise ToolError(f"Directory not found: {args.path}")

    ctx.append(f"\n 🔍 Listing directory: {args.path}\n", "tool")
    detailed = args.response_format == "detailed"

    children = sorted(full.iterdir(), key=lambda p: p.name)
    dirs = [p for p in children if p.is_dir()]
    files = [p for p in children if p.is_file()]

    lines = [f"Directory: {to_relative(full, ctx.workspace_root)}"]
    for d in dirs:
        line = f"  [DIR]  {d.name}/"
        if detailed:
            try:
                line += f" ({sum(1 for _ in d.iterdir())} items)"
            except OSError:
                line += " (unreadable)"
        lines.append(line)

    for f in files:
        line = f"  [FILE] {f.name}"
        if detailed:
            line += f" ({f.stat().st_size} bytes)"
        lines.append(line)

    return ToolResult.ok(
        "\n".join(lines),
        directory_count=len(dirs),
        file_count=len(files),
        path=args.path,
    )
