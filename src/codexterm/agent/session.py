"""Interactive coding-assistant session: conversation state and the tool loop."""

from __future__ import annotations

import enum
import json
import logging
import re
import shlex
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from codexterm import config
from codexterm.agent.provider import LLMProvider, ProviderError
from codexterm.agent.streaming import StreamingDispatcher
from codexterm.indexer.embedding_index import EmbeddingIndex
from codexterm.indexer.file_index import FileEmbeddingIndex
from codexterm.tools.base import ToolContext
from codexterm.tools.registry import ToolRegistry, contains_tool_markers, format_result, preview

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are Codex, a helpful coding assistant working in a terminal environment.
You have access to workspace tools through function calls. Always use tools when \
the user asks about files or code; never guess file contents.

Available tools:
{tools}

Call a tool by writing JSON like:
{{"function": "read_file", "arguments": {{"path": "src/app.py", "max_lines": 50}}}}
or the short form: list_files({{"path": "."}})

Tool results are inserted into the conversation after your message. Keep responses \
concise and actionable. Show code examples when helpful."""

FINAL_ANSWER_INSTRUCTION = (
    "Using the tool results above, answer the user's request directly. "
    "Do not call any more tools."
)

HELP_TEXT = """\
 Management commands:
  /models              List available models
  /model <name>        Switch to a different model
  /pull <name>         Download a new model
  /clear               Clear conversation history
  /index               Update the semantic index (new/modified files only)
  /reindex             Rebuild the semantic index from scratch
  /exit                Exit codex mode

 Shortcuts: list files [path], tree [path], open <path> [--head N], search <text> [--max N]
"""

_LIST_RE = re.compile(r"^(?:list files|ls)(?:\s+(?P<path>.+))?$", re.IGNORECASE)
_TREE_RE = re.compile(r"^tree(?:\s+(?P<path>.+))?$", re.IGNORECASE)
_OPEN_RE = re.compile(r"^open\s+(?P<path>.+?)(?:\s+--head\s+(?P<n>\d+))?$", re.IGNORECASE)
_SEARCH_RE = re.compile(r"^search\s+(?P<q>.+?)(?:\s+--max\s+(?P<m>\d+))?$", re.IGNORECASE)


class SessionState(enum.Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


@dataclass
class Message:
    role: str
    content: str


def split_args(command: str) -> list[str]:
    """Whitespace split honoring double quotes."""
    try:
        parts = shlex.split(command, posix=True)
    except ValueError:
        parts = command.split()
    return parts or [command]


def describe_progress(event: dict) -> str | None:
    """One display line for an index progress event, or None to stay quiet."""
    status = event.get("status")
    if event.get("step") == "file_index" and status not in ("done", "cancelled"):
        return None
    if status == "rules":
        return f"📋 Loaded {event['rules']} ignore rules"
    if status == "scan":
        return f"🔍 {event['pending']} new/modified files (out of {event['total']} total)"
    if status == "skipped":
        return f"⚠️ Skipping large file: {event['file']} ({event['chars']:,} chars)"
    if status == "error":
        return f"⚠️ Failed to read {event['file']}: {event['error']}"
    if status == "embedding":
        return f"📄 Processed {event['current']}/{event['total']} files..."
    if status == "done":
        label = "File index" if event.get("step") == "file_index" else "Chunk index"
        return (
            f"✅ {label}: updated {event['files_indexed']} files, "
            f"{event['total_records']} entries total ({event['elapsed']:.1f}s)"
        )
    if status == "cancelled":
        return "⏹ Indexing cancelled; completed files were saved"
    return None


class CodexSession:
    """One interactive assistant session bound to a workspace.

    Input is routed three ways: ``/`` management commands, plain-language
    shortcuts that run a tool directly, and everything else which goes to the
    model. Model output is scanned for tool calls; while a round's output still
    holds tool results another round is requested, up to ``max_rounds``.
    Rounds that ran tools are followed by one final-answer request.
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        workspace_root: Path,
        append: Callable[[str, str], None],
        chunk_index: EmbeddingIndex | None = None,
        file_index: FileEmbeddingIndex | None = None,
        max_rounds: int | None = None,
        history_window: int | None = None,
        dispatcher: StreamingDispatcher | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.workspace_root = Path(workspace_root).resolve()
        self.chunk_index = chunk_index
        self.file_index = file_index
        self.max_rounds = max_rounds or config.MAX_TOOL_ROUNDS
        self.history_window = history_window or config.HISTORY_WINDOW
        self.dispatcher = dispatcher or StreamingDispatcher(append)
        self.state = SessionState.INACTIVE
        self.messages: list[Message] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def _say(self, text: str, style: str = "info") -> None:
        self.dispatcher.put(text, style)

    def system_prompt(self) -> str:
        return SYSTEM_PROMPT.format(tools=self.registry.describe_prompt())

    def start(self) -> bool:
        """Connect to the provider and enter the active state."""
        if self.is_active:
            return True
        if not self.provider.test_connection():
            logger.error("Provider connection failed; session stays inactive")
            self._say(" CODEX ", "info")
            self._say(
                "Error: Cannot connect to the LLM provider. Make sure it is running "
                f"(OLLAMA_URL={config.OLLAMA_URL}).\n",
                "error",
            )
            self.dispatcher.flush()
            return False

        self.state = SessionState.ACTIVE
        self.messages = [Message("system", self.system_prompt())]
        self.dispatcher.start()
        logger.info("Session started: model=%s workspace=%s", self.provider.current_model, self.workspace_root)
        self._say(f"\n CODEX interactive mode enabled. Current model: {self.provider.current_model}\n", "info")
        self._say(" Commands: /help, /models, /model <name>, /pull <name>, /clear, /index, /reindex, /exit\n", "muted")
        self._say(f" Workspace: {self.workspace_root}\n\n", "muted")

        if config.AUTO_INDEX and self.chunk_index is not None:
            self.build_index()
        self.dispatcher.flush()
        return True

    def stop(self) -> None:
        if not self.is_active:
            return
        self.state = SessionState.INACTIVE
        self.messages = []
        self._say("\n CODEX mode exited.\n", "info")
        self.dispatcher.close()
        logger.info("Session stopped")

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    def truncate_history(self) -> None:
        """Keep the system message plus the newest ``history_window`` messages."""
        system = [m for m in self.messages if m.role == "system"][:1]
        rest = [m for m in self.messages if m.role != "system"]
        if len(rest) > self.history_window:
            dropped = len(rest) - self.history_window
            rest = rest[-self.history_window:]
            logger.debug("Truncated %d old messages", dropped)
        self.messages = system + rest

    def render_prompt(self, extra_instruction: str | None = None) -> str:
        parts = [f"{m.role.capitalize()}: {m.content}" for m in self.messages]
        if extra_instruction:
            parts.append(f"System: {extra_instruction}")
        parts.append("Assistant:")
        return "\n\n".join(parts)

    def _tool_context(self, cancel: threading.Event | None) -> ToolContext:
        return ToolContext(
            workspace_root=self.workspace_root,
            append=self._say,
            chunk_index=self.chunk_index,
            file_index=self.file_index,
            cancel=cancel,
        )

    def _generate(self, prompt: str, cancel: threading.Event | None) -> str:
        chunks: list[str] = []

        def on_token(token: str) -> None:
            chunks.append(token)
            self.dispatcher.put(token, "assistant")

        t0 = time.perf_counter()
        self.provider.stream_generate(prompt, on_token, cancel)
        text = "".join(chunks)
        logger.debug("Model response: %d chars (%.2fs)", len(text), time.perf_counter() - t0)
        return text

    def handle_input(self, text: str, cancel: threading.Event | None = None) -> None:
        """Route one line of user input."""
        try:
            if not self.is_active:
                self._say(" CODEX mode is not active.\n", "warning")
                return
            normalized = text.strip()
            if not normalized:
                return
            if normalized.startswith("/"):
                self.handle_command(normalized, cancel)
                return
            if self.try_shortcut(normalized, cancel):
                return
            self._run_turn(normalized, cancel)
        finally:
            self.dispatcher.flush()

    def _run_turn(self, text: str, cancel: threading.Event | None) -> None:
        self.messages.append(Message("user", text))
        ctx = self._tool_context(cancel)
        used_tools = False
        rounds = 0
        t0 = time.perf_counter()

        try:
            while True:
                rounds += 1
                self.truncate_history()
                logger.info("--- Round %d/%d ---", rounds, self.max_rounds)
                raw = self._generate(self.render_prompt(), cancel)
                if not raw.strip():
                    if rounds == 1:
                        self._say(" [No response from model. Try /models or switch with /model <name>]\n", "warning")
                    break

                processed = self.registry.process(raw, ctx)
                for call in processed.executed:
                    self._say(preview(call.rendered), "tool" if call.result.success else "error")
                self.messages.append(Message("assistant", processed.text.strip()))
                used_tools = used_tools or processed.used_tools

                if not contains_tool_markers(processed.text):
                    break
                if cancel is not None and cancel.is_set():
                    logger.info("Turn cancelled after %d rounds", rounds)
                    break
                if rounds >= self.max_rounds:
                    logger.warning("Tool loop hit the round ceiling (%d)", self.max_rounds)
                    self._say(
                        f" ⚠️ Stopped after {self.max_rounds} tool rounds; answering with the context gathered so far.\n",
                        "warning",
                    )
                    break

            if used_tools and not (cancel is not None and cancel.is_set()):
                self._final_answer(cancel)
        except ProviderError as e:
            logger.error("Provider error during turn: %s", e)
            self._say(f" Error: {e}\n", "error")

        logger.info("Turn finished: %d rounds, tools=%s (%.2fs)", rounds, used_tools, time.perf_counter() - t0)

    def _final_answer(self, cancel: threading.Event | None) -> None:
        self.truncate_history()
        self._say("\n", "assistant")
        answer = self._generate(self.render_prompt(FINAL_ANSWER_INSTRUCTION), cancel)
        if answer.strip():
            self.messages.append(Message("assistant", answer.strip()))

    # ------------------------------------------------------------------
    # Shortcuts
    # ------------------------------------------------------------------

    def _run_tool(self, name: str, args: dict, cancel: threading.Event | None) -> None:
        result = self.registry.execute(name, json.dumps(args), self._tool_context(cancel))
        self._say(format_result(name, result), "tool" if result.success else "error")

    def try_shortcut(self, text: str, cancel: threading.Event | None = None) -> bool:
        """Run a tool directly for the common plain-language requests."""
        if m := _LIST_RE.match(text):
            self._run_tool("list_files", {"path": (m.group("path") or ".").strip()}, cancel)
            return True
        if m := _TREE_RE.match(text):
            self._run_tool("list_tree", {"path": (m.group("path") or ".").strip()}, cancel)
            return True
        if m := _OPEN_RE.match(text):
            args: dict = {"path": m.group("path").strip()}
            if m.group("n"):
                args["max_lines"] = int(m.group("n"))
            self._run_tool("read_file", args, cancel)
            return True
        if m := _SEARCH_RE.match(text):
            args = {"query": m.group("q").strip()}
            if m.group("m"):
                args["max_results"] = int(m.group("m"))
            self._run_tool("search_workspace", args, cancel)
            return True
        return False

    # ------------------------------------------------------------------
    # Management commands
    # ------------------------------------------------------------------

    def handle_command(self, text: str, cancel: threading.Event | None = None) -> None:
        parts = split_args(text)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else None
        logger.debug("Management command: %s", parts)

        if cmd == "/help":
            self._say(HELP_TEXT, "info")
        elif cmd == "/exit":
            self.stop()
        elif cmd == "/models":
            self.list_models()
        elif cmd == "/model":
            if arg:
                self.switch_model(arg)
            else:
                self._say(" Usage: /model <name>\n", "warning")
        elif cmd == "/pull":
            if arg:
                self.pull_model(arg)
            else:
                self._say(" Usage: /pull <model-name>\n", "warning")
        elif cmd == "/clear":
            self.messages = [Message("system", self.system_prompt())]
            self._say(" Conversation cleared.\n", "success")
        elif cmd == "/index":
            self.build_index(cancel=cancel)
        elif cmd == "/reindex":
            self.build_index(rebuild=True, cancel=cancel)
        else:
            self._say(f" Unknown command {cmd}. Use /help.\n", "warning")

    def list_models(self) -> None:
        models = self.provider.list_models()
        self._say(" Available models:\n", "info")
        if not models:
            self._say("  No models found. Use /pull to download a model.\n", "warning")
            return
        for model in models:
            current = model.name == self.provider.current_model
            self._say(f"{' *' if current else '  '} {model.name}\n", "success" if current else "muted")

    def switch_model(self, name: str) -> None:
        self._say(f" Switching to model: {name}...\n", "info")
        if self.provider.switch_model(name):
            self._say(f" Successfully switched to {self.provider.current_model}\n", "success")
        else:
            self._say(f" Failed to switch to {name}. Model may not be available.\n", "error")

    def pull_model(self, name: str) -> None:
        self._say(f" Pulling model: {name}...\n", "info")
        result = self.provider.pull_model(name, lambda line: self._say(line, "muted"))
        if result.ok:
            self._say(f" Successfully pulled {name}\n", "success")
        else:
            self._say(f" {result.message}\n", "error")

    def build_index(self, rebuild: bool = False, cancel: threading.Event | None = None) -> None:
        """Bring both indexes up to date; ``rebuild`` discards them first."""
        if self.chunk_index is None and self.file_index is None:
            self._say(" Semantic index is not configured.\n", "warning")
            return

        def on_progress(event: dict) -> None:
            line = describe_progress(event)
            if line:
                self._say(f" {line}\n", "muted")

        if rebuild:
            self._say(" Clearing semantic index...\n", "info")
        for index in (self.chunk_index, self.file_index):
            if index is None:
                continue
            if rebuild:
                index.invalidate()
            index.build_or_update(on_progress=on_progress, cancel=cancel)
            if cancel is not None and cancel.is_set():
                break
