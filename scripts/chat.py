#!/usr/bin/env python3
"""CLI: Interactive coding-assistant session over a local workspace."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from codexterm import config
from codexterm.agent.provider import ProviderError, create_provider
from codexterm.agent.session import CodexSession
from codexterm.indexer.embedding_index import EmbeddingIndex
from codexterm.indexer.file_index import FileEmbeddingIndex
from codexterm.tools.registry import build_tool_registry

STYLES = {
    "assistant": "",
    "user": "\033[1m",
    "info": "\033[36m",
    "muted": "\033[90m",
    "tool": "\033[35m",
    "success": "\033[32m",
    "warning": "\033[33m",
    "error": "\033[31m",
}
RESET = "\033[0m"


def _configure_logging() -> None:
    handlers: list[logging.Handler] = []
    if config.LOG_FILE:
        handlers.append(logging.FileHandler(config.LOG_FILE, encoding="utf-8"))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )


def _make_sink(color: bool):
    def append(text: str, style: str) -> None:
        prefix = STYLES.get(style, "") if color else ""
        sys.stdout.write(f"{prefix}{text}{RESET if prefix else ''}")
        sys.stdout.flush()

    return append


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with a local model about a workspace")
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Workspace root (default: WORKSPACE_ROOT or the current directory)",
    )
    parser.add_argument("--provider", choices=["ollama", "gemini"], default=None, help="LLM provider")
    parser.add_argument("--model", type=str, default=None, help="Model to switch to after connecting")
    parser.add_argument("--no-index", action="store_true", help="Run without the semantic indexes")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI colors")
    args = parser.parse_args()

    _configure_logging()

    root = (args.root or config.get_workspace_root()).expanduser().resolve()
    if not root.is_dir():
        print(f"Error: workspace {root} is not a directory.", file=sys.stderr)
        sys.exit(1)

    try:
        provider = create_provider(args.provider)
    except ProviderError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    chunk_index = file_index = None
    if not args.no_index:
        chunk_index = EmbeddingIndex(root, provider)
        file_index = FileEmbeddingIndex(root, provider)

    session = CodexSession(
        provider,
        build_tool_registry(),
        root,
        _make_sink(not args.no_color and sys.stdout.isatty()),
        chunk_index=chunk_index,
        file_index=file_index,
    )
    if not session.start():
        sys.exit(1)
    if args.model:
        session.handle_input(f"/model {args.model}")

    while session.is_active:
        try:
            line = input("\n> ")
        except (EOFError, KeyboardInterrupt):
            print()
            break
        cancel = threading.Event()
        try:
            session.handle_input(line, cancel)
        except KeyboardInterrupt:
            cancel.set()
            print("\n[interrupted]")

    session.stop()


if __name__ == "__main__":
    main()
