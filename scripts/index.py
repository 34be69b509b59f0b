#!/usr/bin/env python3
"""CLI: Build or update the semantic indexes for a workspace."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from codexterm import config
from codexterm.agent.provider import ProviderError, create_provider
from codexterm.agent.session import describe_progress
from codexterm.indexer.discovery import DEFAULT_EXTENSIONS, discover_files
from codexterm.indexer.embedding_index import EmbeddingIndex
from codexterm.indexer.file_index import FileEmbeddingIndex
from codexterm.indexer.ignore import IgnoreRuleSet

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)


def _print_progress(event: dict) -> None:
    line = describe_progress(event)
    if line:
        print(f"  {line}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Index a workspace for semantic search")
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Workspace root (default: WORKSPACE_ROOT or the current directory)",
    )
    parser.add_argument("--provider", choices=["ollama", "gemini"], default=None, help="Embedding provider")
    parser.add_argument("--chunk", type=int, default=config.CHUNK_CHARS, help="Window size in characters")
    parser.add_argument("--stride", type=int, default=config.STRIDE_CHARS, help="Window advance in characters")
    parser.add_argument(
        "--ext",
        action="append",
        default=None,
        help=f"Allowed extension, repeatable (default: {' '.join(sorted(DEFAULT_EXTENSIONS))})",
    )
    parser.add_argument("--reindex", action="store_true", help="Discard existing indexes and rebuild")
    parser.add_argument("--chunks-only", action="store_true", help="Skip the whole-file index")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which files would be indexed without calling the embedding model",
    )
    args = parser.parse_args()

    root = (args.root or config.get_workspace_root()).expanduser().resolve()
    if not root.is_dir():
        print(f"Error: workspace {root} is not a directory.", file=sys.stderr)
        sys.exit(1)

    # ── Dry run: report what would happen, then exit ──
    if args.dry_run:
        rules = IgnoreRuleSet.load(root)
        found = discover_files(root, args.ext, rules)
        print(f"Workspace: {root}")
        print(f"Ignore rules: {len(rules)}")
        print(f"Files: {len(found.files)} ({found.ignored} ignored)")
        for path in found.files[:50]:
            print(f"  {path.relative_to(root).as_posix()}")
        if len(found.files) > 50:
            print(f"  ... {len(found.files) - 50} more")
        return

    # ── Real run ──
    try:
        provider = create_provider(args.provider)
    except ProviderError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    indexes = [EmbeddingIndex(root, provider)]
    if not args.chunks_only:
        indexes.append(FileEmbeddingIndex(root, provider))

    print(f"Indexing workspace: {root}")
    print(f"Embedding model: {provider.model_id}")
    start = time.time()
    cancel = threading.Event()

    try:
        for index in indexes:
            if args.reindex:
                index.invalidate()
            if isinstance(index, EmbeddingIndex):
                print("\nChunk index:")
                index.build_or_update(
                    chunk_size=args.chunk,
                    stride=args.stride,
                    extensions=args.ext,
                    on_progress=_print_progress,
                    cancel=cancel,
                )
            else:
                print("\nFile index:")
                index.build_or_update(extensions=args.ext, on_progress=_print_progress, cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        print("\nInterrupted.")

    elapsed = time.time() - start
    print(f"\nDone in {elapsed:.1f}s")
    print(f"  Index directory: {config.get_index_dir(root)}")


if __name__ == "__main__":
    main()
