"""Locate tool-call candidates inside free-form model output.

Everything here is a plain left-to-right scanner: fenced blocks are paired
by their ``` markers and JSON objects are delimited by brace balancing that
respects string literals and escapes. Candidates are only accepted once they
parse as strict JSON.
"""

from __future__ import annotations

import json
import re
from collections.abc import Collection, Iterator
from dataclasses import dataclass

FENCE = "```"
_LANG_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789+-#_.")


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: str


@dataclass(frozen=True)
class FencedBlock:
    start: int
    end: int
    inner_start: int
    inner_end: int
    lang: str


@dataclass(frozen=True)
class CallSpan:
    start: int
    end: int
    call: ToolCall


def find_fenced_blocks(text: str) -> list[FencedBlock]:
    """Pair up ``` markers. An unterminated fence is left alone."""
    blocks: list[FencedBlock] = []
    pos = 0
    n = len(text)
    while True:
        open_at = text.find(FENCE, pos)
        if open_at < 0:
            break
        i = open_at + len(FENCE)
        j = i
        while j < n and text[j] in _LANG_CHARS:
            j += 1
        # An info string must be followed by whitespace; otherwise it is content.
        if j < n and text[j] not in " \t\r\n":
            j = i
        lang = text[i:j]
        k = j
        while k < n and text[k] in " \t":
            k += 1
        if k < n and text[k] == "\r":
            k += 1
        if k < n and text[k] == "\n":
            k += 1
        close_at = text.find(FENCE, k)
        if close_at < 0:
            break
        blocks.append(FencedBlock(open_at, close_at + len(FENCE), k, close_at, lang))
        pos = close_at + len(FENCE)
    return blocks


def match_brace(text: str, start: int) -> int | None:
    """Index just past the ``}`` that closes the ``{`` at ``start``."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def iter_json_objects(text: str) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` of each outermost brace-balanced object."""
    pos = 0
    while True:
        start = text.find("{", pos)
        if start < 0:
            return
        end = match_brace(text, start)
        if end is None:
            pos = start + 1
            continue
        yield start, end
        pos = end


def _arguments_json(args: object) -> str:
    if isinstance(args, str):
        return args
    return json.dumps({} if args is None else args)


def parse_structured_call(candidate: str, names: Collection[str]) -> ToolCall | None:
    """Interpret one JSON object as a function call, if it has a known shape.

    Accepted shapes::

        {"type": "function", "function": {"name": ..., "arguments": {...}}}
        {"function": {"name": ..., "arguments": {...}}}
        {"function": "name", "arguments": {...}}
        {"name": "registered_tool", "arguments": {...}}

    ``arguments`` may also be a JSON-encoded string.
    """
    try:
        data = json.loads(candidate)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    fn = data.get("function")
    if isinstance(fn, dict):
        if str(data.get("type", "function")).lower() != "function":
            return None
        name = fn.get("name")
        args = fn.get("arguments", fn.get("parameters"))
    elif isinstance(fn, str) and ("arguments" in data or "parameters" in data):
        name = fn
        args = data.get("arguments", data.get("parameters"))
    elif data.get("name") in names and ("arguments" in data or "parameters" in data):
        name = data["name"]
        args = data.get("arguments", data.get("parameters"))
    else:
        return None

    if not isinstance(name, str) or not name.strip():
        return None
    return ToolCall(name.strip(), _arguments_json(args))


def find_structured_calls(text: str, names: Collection[str]) -> list[CallSpan]:
    spans = []
    for start, end in iter_json_objects(text):
        call = parse_structured_call(text[start:end], names)
        if call is not None:
            spans.append(CallSpan(start, end, call))
    return spans


def find_simple_calls(text: str, names: Collection[str]) -> list[CallSpan]:
    """``tool_name({...})`` where ``tool_name`` is registered."""
    if not names:
        return []
    pattern = re.compile(
        r"(?<![\w.])(" + "|".join(re.escape(n) for n in sorted(names, key=len, reverse=True)) + r")\s*\(\s*"
    )
    spans: list[CallSpan] = []
    pos = 0
    while True:
        m = pattern.search(text, pos)
        if m is None:
            break
        brace = m.end()
        if brace >= len(text) or text[brace] != "{":
            pos = m.end()
            continue
        obj_end = match_brace(text, brace)
        if obj_end is None:
            pos = m.end()
            continue
        close = obj_end
        while close < len(text) and text[close] in " \t\r\n":
            close += 1
        if close >= len(text) or text[close] != ")":
            pos = m.end()
            continue
        # Arguments are not validated here; the registry reports bad JSON.
        spans.append(CallSpan(m.start(), close + 1, ToolCall(m.group(1), text[brace:obj_end])))
        pos = close + 1
    return spans


_STATUS_MARKERS = ("🔍", "🌳", "📄", "🔎", "🧠", "🔧", "❌")
_CODE_MARKERS = (";", "class ", "using ", "public ", "private ", "{ ", "def ", "import ")


def looks_like_status(inner: str) -> bool:
    """Tool-status text with nothing resembling code."""
    lower = inner.lower()
    status = any(m in inner for m in _STATUS_MARKERS) or "result" in lower or "completed" in lower
    code = any(m in inner for m in _CODE_MARKERS)
    return status and not code


def unwrap_status_fences(text: str) -> str:
    """Drop the fences around blocks that only hold tool-status text."""
    blocks = find_fenced_blocks(text)
    if not blocks:
        return text
    out: list[str] = []
    pos = 0
    for b in blocks:
        inner = text[b.inner_start:b.inner_end].strip()
        if looks_like_status(inner):
            out.append(text[pos:b.start])
            out.append(inner + "\n")
            pos = b.end
    out.append(text[pos:])
    return "".join(out)
