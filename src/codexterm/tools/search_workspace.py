"""search_workspace tool: semantic file ranking with a literal-search fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import field_validator

from codexterm.indexer.discovery import discover_files, normalize_extensions
from codexterm.indexer.file_index import FileHit
from codexterm.tools.base import ToolArgs, ToolContext, ToolResult, clamp
from codexterm.tools.paths import to_relative

logger = logging.getLogger(__name__)

DESCRIPTION = (
    "Search the workspace for text. Uses the semantic file index when it is built, "
    "otherwise a literal substring search over source files. Returns file paths with matching lines."
)


class SearchWorkspaceArgs(ToolArgs):
    query: str
    max_results: int = 20
    file_extensions: list[str] = []
    case_sensitive: bool = False

    @field_validator("query")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Search query is required")
        return v

    @field_validator("max_results")
    @classmethod
    def _clamp_results(cls, v: int) -> int:
        return int(clamp(v, 1, 100))


@dataclass
class TextMatch:
    file_path: str
    line_number: int
    line: str
    before: str | None
    after: str | None


def literal_search(
    root: Path,
    query: str,
    max_results: int,
    extensions: list[str] | None = None,
    case_sensitive: bool = False,
    ctx: ToolContext | None = None,
) -> list[TextMatch]:
    """First ``max_results`` lines containing ``query``, in file order."""
    needle = query if case_sensitive else query.lower()
    matches: list[TextMatch] = []
    for path in discover_files(root, normalize_extensions(extensions)).files:
        if len(matches) >= max_results or (ctx is not None and ctx.cancelled()):
            break
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as e:
            logger.debug("Skipping unreadable %s: %s", path, e)
            continue
        rel = to_relative(path, root)
        for i, line in enumerate(lines):
            hay = line if case_sensitive else line.lower()
            if needle in hay:
                matches.append(TextMatch(
                    file_path=rel,
                    line_number=i + 1,
                    line=line.strip(),
                    before=lines[i - 1].strip() if i > 0 else None,
                    after=lines[i + 1].strip() if i < len(lines) - 1 else None,
                ))
                if len(matches) >= max_results:
                    break
    return matches


def _format_text(matches: list[TextMatch], detailed: bool) -> str:
    out: list[str] = []
    for m in matches:
        if detailed:
            out.append(f"📄 {m.file_path}:{m.line_number}")
            if m.before is not None:
                out.append(f"   - {m.before}")
            out.append(f"   > {m.line}")
            if m.after is not None:
                out.append(f"   + {m.after}")
            out.append("")
        else:
            out.append(f"{m.file_path}:{m.line_number}: {m.line}")
    return "\n".join(out)


def _format_semantic(hits: list[FileHit], detailed: bool) -> str:
    out: list[str] = []
    for h in hits:
        if not detailed:
            out.append(f"{h.file_path} (similarity: {h.score:.2f})")
            continue
        out.append(f"📄 {h.file_path} (similarity: {h.score:.2f})")
        lines = h.snippet.split("\n") if h.snippet else []
        out.extend(f"   {line.strip()}" for line in lines[:3])
        if len(lines) > 3:
            out.append("   ...")
    return "\n".join(out)


def search_workspace(args: SearchWorkspaceArgs, ctx: ToolContext) -> ToolResult:
    ctx.append(f'\n 🔎 Searching workspace for: "{args.query}" (max {args.max_results} results)\n', "tool")
    detailed = args.response_format == "detailed"

    index = ctx.file_index
    if index is not None and index.has_content():
        try:
            ctx.append(" Using semantic search...\n", "muted")
            hits = index.search(args.query, args.max_results, extensions=args.file_extensions)
            if not hits:
                return ToolResult.ok("No semantically similar content found.")
            return ToolResult.ok(
                _format_semantic(hits, detailed),
                query=args.query,
                total_matches=len(hits),
                search_type="semantic_search",
                case_sensitive=args.case_sensitive,
            )
        except Exception as e:
            logger.warning("Semantic workspace search failed, using text search: %s", e)
            ctx.append(" Semantic search failed, falling back to text search...\n", "muted")

    matches = literal_search(
        ctx.workspace_root, args.query, args.max_results,
        args.file_extensions, args.case_sensitive, ctx,
    )
    if not matches:
        return ToolResult.ok("No matches found for the search query.")

    return ToolResult.ok(
        _format_text(matches, detailed),
        query=args.query,
        total_matches=len(matches),
        search_type="text_search",
        case_sensitive=args.case_sensitive,
    )
