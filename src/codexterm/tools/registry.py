"""Tool registry: advertise tools, find calls in model output, run them."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from codexterm.tools import list_files, list_tree, read_file, search_workspace, semantic_search
from codexterm.tools.base import ToolContext, ToolError, ToolResult
from codexterm.tools.extract import (
    CallSpan,
    ToolCall,
    find_fenced_blocks,
    find_simple_calls,
    find_structured_calls,
    unwrap_status_fences,
)

logger = logging.getLogger(__name__)

RESULT_LINE_CAP = 500
DISPLAY_LINE_CAP = 20
META_PAIRS = 4

TOOL_ICONS = {
    "list_files": "🔍",
    "list_tree": "🌳",
    "read_file": "📄",
    "search_workspace": "🔎",
    "semantic_search": "🧠",
}
DEFAULT_ICON = "🔧"

# Synonym -> canonical argument name. Existing canonical keys are never overwritten.
GLOBAL_SYNONYMS = {
    "file_path": "path",
    "filepath": "path",
    "file": "path",
    "dir": "path",
    "directory": "path",
    "folder": "path",
    "text": "query",
    "search": "query",
    "q": "query",
}
TOOL_SYNONYMS = {
    "read_file": {"lines": "max_lines", "limit": "max_lines", "start": "start_line", "line": "start_line"},
    "list_tree": {"depth": "max_depth"},
    "search_workspace": {"limit": "max_results", "top_k": "max_results", "k": "max_results"},
    "semantic_search": {"limit": "max_results", "top_k": "max_results", "k": "max_results",
                        "threshold": "similarity_threshold"},
}

_MARKER_RE = re.compile(
    r"^(?:" + "|".join(re.escape(i) for i in [*TOOL_ICONS.values(), DEFAULT_ICON]) + r") \w+ result\b"
    r"|^❌ \w+ failed:",
    re.MULTILINE,
)


# ---------------------------------------------------------------------------
# Result formatting
# ---------------------------------------------------------------------------


def format_result(name: str, result: ToolResult) -> str:
    """Render a result the way it re-enters the conversation."""
    if not result.success:
        return f"\n❌ {name} failed: {result.error}\n"

    header = f"\n{TOOL_ICONS.get(name, DEFAULT_ICON)} {name} result"
    if result.metadata:
        pairs = list(result.metadata.items())[:META_PAIRS]
        header += " [" + ", ".join(f"{k}={v}" for k, v in pairs) + "]"
    out = [header + "\n"]

    if result.content and result.content.strip():
        lines = result.content.split("\n")
        out.extend(line + "\n" for line in lines[:RESULT_LINE_CAP])
        if len(lines) > RESULT_LINE_CAP:
            out.append("...\n")
    return "".join(out)


def contains_tool_markers(text: str) -> bool:
    """True when ``text`` holds at least one rendered tool result."""
    return _MARKER_RE.search(text) is not None


def preview(rendered: str, max_lines: int = DISPLAY_LINE_CAP) -> str:
    lines = rendered.strip("\n").split("\n")
    if len(lines) <= max_lines:
        return "\n".join(lines) + "\n"
    return "\n".join(lines[:max_lines]) + f"\n... ({len(lines) - max_lines} more lines)\n"


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------


def normalize_arguments(tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
    """Lower-case keys and rewrite known synonyms to canonical names."""
    out = {str(k).lower(): v for k, v in args.items()}

    def remap(mapping: dict[str, str]) -> None:
        for src, dst in mapping.items():
            if src in out and dst not in out:
                out[dst] = out.pop(src)

    remap(GLOBAL_SYNONYMS)
    remap(TOOL_SYNONYMS.get(tool_name, {}))
    return out


def _describe_validation(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass
class ToolDef:
    """Definition of a tool callable from model output."""

    fn: Callable[[Any, ToolContext], ToolResult]
    args_model: type[BaseModel]
    description: str

    @property
    def schema(self) -> dict:
        return self.args_model.model_json_schema()


@dataclass
class ExecutedCall:
    name: str
    arguments: str
    result: ToolResult
    rendered: str


@dataclass
class ProcessedText:
    """Model output after tool calls were replaced by their results."""

    text: str
    executed: list[ExecutedCall] = field(default_factory=list)
    skipped: int = 0

    @property
    def used_tools(self) -> bool:
        return bool(self.executed)


@dataclass
class _Segment:
    text: str
    final: bool = False


@dataclass
class _Pass:
    seen: set[str] = field(default_factory=set)
    executed: list[ExecutedCall] = field(default_factory=list)
    skipped: int = 0


class ToolRegistry:
    """Registry of workspace tools."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def register(
        self,
        name: str,
        fn: Callable[[Any, ToolContext], ToolResult],
        args_model: type[BaseModel],
        description: str,
    ) -> None:
        if name in self._tools:
            raise ValueError(f"Tool {name!r} is already registered")
        self._tools[name] = ToolDef(fn=fn, args_model=args_model, description=description)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def describe_prompt(self) -> str:
        return "\n".join(f"- {name}: {d.description}" for name, d in self._tools.items())

    def get_declarations(self) -> list[dict]:
        """Provider-agnostic function declarations."""
        return [
            {
                "type": "function",
                "function": {"name": name, "description": d.description, "parameters": d.schema},
            }
            for name, d in self._tools.items()
        ]

    def signature(self, call: ToolCall) -> str:
        """Dedup key: tool name plus canonical JSON of the normalized arguments."""
        try:
            args = json.loads(call.arguments) if call.arguments.strip() else {}
        except ValueError:
            return f"{call.name}({call.arguments.strip()})"
        if isinstance(args, dict):
            args = normalize_arguments(call.name, args)
        return f"{call.name}({json.dumps(args, sort_keys=True)})"

    def execute(self, name: str, args_json: str, ctx: ToolContext) -> ToolResult:
        """Run one tool. Every failure comes back as a failed ToolResult."""
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {name}. Available tools: {', '.join(self._tools)}")

        try:
            raw = json.loads(args_json) if args_json and args_json.strip() else {}
        except ValueError as e:
            return ToolResult.fail(f"Invalid parameters for {name}: {e}")
        if not isinstance(raw, dict):
            return ToolResult.fail(f"Invalid parameters for {name}: arguments must be a JSON object")

        args = normalize_arguments(name, raw)
        try:
            model = tool.args_model.model_validate(args)
        except ValidationError as e:
            return ToolResult.fail(f"Invalid parameters for {name}: {_describe_validation(e)}")

        logger.debug("  tool exec: %s(%s)", name, args)
        t0 = time.perf_counter()
        try:
            result = tool.fn(model, ctx)
        except ToolError as e:
            result = ToolResult.fail(str(e))
        except Exception as e:
            logger.error("  tool error: %s: %s", name, e)
            result = ToolResult.fail(f"Tool {name} execution failed: {e}")

        elapsed = time.perf_counter() - t0
        if result.success:
            logger.info("Tool %s executed successfully. Metadata: %s", name, json.dumps(result.metadata, default=str))
        logger.debug("  tool done: %s -> %d chars (%.3fs)", name, len(result.content or result.error or ""), elapsed)
        return result

    # -- call processing --

    def _run(self, call: ToolCall, ctx: ToolContext, state: _Pass) -> str:
        sig = self.signature(call)
        if sig in state.seen:
            state.skipped += 1
            logger.debug("  duplicate call skipped: %s", sig)
            return ""
        state.seen.add(sig)
        result = self.execute(call.name, call.arguments, ctx)
        rendered = format_result(call.name, result)
        state.executed.append(ExecutedCall(call.name, call.arguments, result, rendered))
        return rendered

    def _apply(
        self,
        segments: list[_Segment],
        finder: Callable[[str], list[CallSpan]],
        ctx: ToolContext,
        state: _Pass,
    ) -> tuple[list[_Segment], int]:
        """Replace calls found in non-final segments with their results."""
        out: list[_Segment] = []
        found = 0
        for seg in segments:
            if seg.final:
                out.append(seg)
                continue
            pos = 0
            for span in finder(seg.text):
                found += 1
                out.append(_Segment(seg.text[pos:span.start]))
                out.append(_Segment(self._run(span.call, ctx, state), final=True))
                pos = span.end
            out.append(_Segment(seg.text[pos:]))
        return out, found

    def _structured(self, text: str) -> list[CallSpan]:
        return find_structured_calls(text, self._tools)

    def _simple(self, text: str) -> list[CallSpan]:
        return find_simple_calls(text, self._tools)

    def process(self, text: str, ctx: ToolContext) -> ProcessedText:
        """Execute every tool call in ``text`` and splice in the results.

        Stages, in order: fenced blocks containing calls are replaced whole,
        then structured JSON calls, then ``name({...})`` calls, then fences
        left around pure status text are unwrapped. Result text is never
        rescanned, and a repeated call signature runs only once per pass.
        """
        state = _Pass()
        segments: list[_Segment] = []

        # 1) fenced blocks
        pos = 0
        for block in find_fenced_blocks(text):
            inner = [_Segment(text[block.inner_start:block.inner_end])]
            inner, n_structured = self._apply(inner, self._structured, ctx, state)
            inner, n_simple = self._apply(inner, self._simple, ctx, state)
            if n_structured + n_simple == 0:
                continue
            segments.append(_Segment(text[pos:block.start]))
            segments.extend(_Segment(s.text, final=True) for s in inner)
            pos = block.end
        segments.append(_Segment(text[pos:]))

        # 2) structured JSON calls, 3) simple calls
        segments, _ = self._apply(segments, self._structured, ctx, state)
        segments, _ = self._apply(segments, self._simple, ctx, state)

        # 4) unwrap status-only fences outside tool output
        rewritten = "".join(s.text if s.final else unwrap_status_fences(s.text) for s in segments)

        if state.executed or state.skipped:
            logger.info("Processed %d tool call(s), %d duplicate(s) skipped", len(state.executed), state.skipped)
        return ProcessedText(text=rewritten, executed=state.executed, skipped=state.skipped)


# ---------------------------------------------------------------------------
# build_tool_registry: wires up the five workspace tools
# ---------------------------------------------------------------------------


def build_tool_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register("list_files", list_files.list_files, list_files.ListFilesArgs, list_files.DESCRIPTION)
    registry.register("list_tree", list_tree.list_tree, list_tree.ListTreeArgs, list_tree.DESCRIPTION)
    registry.register("read_file", read_file.read_file, read_file.ReadFileArgs, read_file.DESCRIPTION)
    registry.register(
        "search_workspace",
        search_workspace.search_workspace,
        search_workspace.SearchWorkspaceArgs,
        search_workspace.DESCRIPTION,
    )
    registry.register(
        "semantic_search",
        semantic_search.semantic_search,
        semantic_search.SemanticSearchArgs,
        semantic_search.DESCRIPTION,
    )
    return registry
