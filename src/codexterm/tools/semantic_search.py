"""semantic_search tool: chunk-level similarity search over the embedding index."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import field_validator

from codexterm.tools.base import ToolArgs, ToolContext, ToolError, ToolResult, clamp

logger = logging.getLogger(__name__)

DESCRIPTION = (
    "Find conceptually related code in the workspace by meaning rather than exact text. "
    "Use this for questions like 'where is authentication handled' or 'error handling patterns'."
)


class SemanticSearchArgs(ToolArgs):
    query: str
    max_results: int = 10
    similarity_threshold: float = 0.3
    response_format: Literal["concise", "detailed"] = "detailed"

    @field_validator("query")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Search query is required")
        return v

    @field_validator("max_results")
    @classmethod
    def _clamp_results(cls, v: int) -> int:
        return int(clamp(v, 1, 50))

    @field_validator("similarity_threshold")
    @classmethod
    def _clamp_threshold(cls, v: float) -> float:
        return float(clamp(v, 0.0, 1.0))


def semantic_search(args: SemanticSearchArgs, ctx: ToolContext) -> ToolResult:
    index = ctx.chunk_index
    if index is None:
        raise ToolError("Semantic search is not available. Embedding index not initialized.")
    if index.count == 0:
        raise ToolError("No files indexed yet. Run /index to build the index or use search_workspace instead.")

    ctx.append(f'\n 🧠 Semantic search for: "{args.query}" (max {args.max_results} results)\n', "tool")

    hits = index.search(args.query, args.max_results)
    passed = [h for h in hits if h.score >= args.similarity_threshold]

    if not passed:
        if hits:
            message = (
                f"No results above similarity threshold {args.similarity_threshold:.2f}. "
                f"Best match was {hits[0].score:.2f}"
            )
        else:
            message = "No semantically similar content found."
        return ToolResult.ok(message)

    out: list[str] = []
    for h in passed:
        if args.response_format == "detailed":
            out.append(f"📄 {h.file_path}:{h.start_line}")
            out.append(f"   Similarity: {h.score:.3f}")
            out.append(f"   {h.preview}")
            out.append("")
        else:
            out.append(f"{h.file_path}:{h.start_line} (similarity: {h.score:.2f})")

    scores = [h.score for h in passed]
    return ToolResult.ok(
        "\n".join(out),
        query=args.query,
        total_matches=len(passed),
        similarity_threshold=args.similarity_threshold,
        indexed_chunks=index.count,
        best_similarity=round(max(scores), 3),
        average_similarity=round(sum(scores) / len(scores), 3),
    )
