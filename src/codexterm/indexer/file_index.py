"""Whole-file embedding index used for document-level workspace search."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from codexterm import config
from codexterm.agent.provider import EmbeddingProvider
from codexterm.indexer.discovery import discover_files, normalize_extensions, relative_posix
from codexterm.indexer.embedding_index import PROGRESS_EVERY, IndexStats, embed_safely
from codexterm.indexer.ignore import IgnoreRuleSet
from codexterm.indexer.manifest import MANIFEST_VERSION, delete_manifest, load_manifest, now_iso, save_manifest
from codexterm.indexer.vectors import cosine_similarity

logger = logging.getLogger(__name__)

MANIFEST_NAME = "file_embeddings.json"
EMBED_INPUT_CHARS = 8000
RELEVANCE_CUTOFF = 0.3
SNIPPET_CHARS = 200


@dataclass
class FileHit:
    file_path: str
    score: float
    snippet: str


def relevant_snippet(content: str, query: str, max_length: int = SNIPPET_CHARS) -> str:
    """The line with the most query-word hits, with two lines of context each side."""
    lines = content.split("\n")
    words = [w for w in query.lower().split() if w]

    best_line, best_score = 0, 0
    for i, line in enumerate(lines):
        lower = line.lower()
        score = sum(1 for w in words if w in lower)
        if score > best_score:
            best_line, best_score = i, score

    start = max(0, best_line - 2)
    end = min(len(lines), best_line + 3)
    snippet = "\n".join(lines[start:end])
    if len(snippet) > max_length:
        return snippet[:max_length] + "..."
    return snippet


class FileEmbeddingIndex:
    """One vector and one content snapshot per workspace file."""

    def __init__(
        self,
        root: Path,
        provider: EmbeddingProvider,
        max_file_chars: int | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self._provider = provider
        self._max_file_chars = max_file_chars or config.MAX_FILE_CHARS
        self._embeddings: dict[str, list[float]] = {}
        self._contents: dict[str, str] = {}
        self._mod_times: dict[str, float] = {}
        self._lock = threading.Lock()
        self._load()

    @property
    def manifest_path(self) -> Path:
        return config.get_index_dir(self.root) / MANIFEST_NAME

    @property
    def model_id(self) -> str:
        return self._provider.model_id

    @property
    def count(self) -> int:
        return len(self._embeddings)

    def has_content(self) -> bool:
        return bool(self._embeddings)

    def content_of(self, rel: str) -> str | None:
        return self._contents.get(rel)

    def _forget(self, rel: str) -> None:
        self._embeddings.pop(rel, None)
        self._contents.pop(rel, None)
        self._mod_times.pop(rel, None)

    def _load(self) -> None:
        data = load_manifest(self.manifest_path, self.model_id)
        if data is None:
            return
        try:
            embeddings = {k: [float(x) for x in v] for k, v in data.get("file_embeddings", {}).items()}
            contents = {k: str(v) for k, v in data.get("file_contents", {}).items()}
            mod_times = {k: float(v) for k, v in data.get("file_mod_times", {}).items()}
        except (AttributeError, TypeError, ValueError) as e:
            logger.info("Discarding malformed file index %s: %s", self.manifest_path, e)
            return
        self._embeddings = embeddings
        self._contents = contents
        self._mod_times = mod_times
        logger.info("Loaded %d cached file embeddings", len(embeddings))

    def _save(self) -> int:
        return save_manifest(self.manifest_path, {
            "version": MANIFEST_VERSION,
            "model_id": self.model_id,
            "created_at": now_iso(),
            "file_embeddings": self._embeddings,
            "file_contents": self._contents,
            "file_mod_times": self._mod_times,
        })

    def invalidate(self) -> None:
        with self._lock:
            delete_manifest(self.manifest_path)
            self._embeddings.clear()
            self._contents.clear()
            self._mod_times.clear()

    def build_or_update(
        self,
        extensions: Iterable[str] | None = None,
        on_progress: Callable[[dict], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> IndexStats:
        """Embed new or modified files; drop files that no longer exist."""
        t0 = time.perf_counter()
        stats = IndexStats()

        def emit(event: dict) -> None:
            if on_progress:
                on_progress({"step": "file_index", **event})

        found = discover_files(self.root, extensions, IgnoreRuleSet.load(self.root))
        stats.files_seen = len(found.files)
        stats.files_ignored = found.ignored

        with self._lock:
            current = {relative_posix(p, self.root): p for p in found.files}
            removed = [rel for rel in self._mod_times if rel not in current]
            for rel in removed:
                self._forget(rel)
            stats.files_removed = len(removed)

            pending = []
            for rel, path in current.items():
                try:
                    mtime = path.stat().st_mtime
                except OSError:
                    continue
                seen = self._mod_times.get(rel)
                if rel not in self._embeddings or seen is None or seen < mtime:
                    pending.append((rel, path, mtime))

            emit({"status": "scan", "total": len(current), "pending": len(pending)})

            for i, (rel, path, mtime) in enumerate(pending, 1):
                if cancel is not None and cancel.is_set():
                    stats.cancelled = True
                    break
                try:
                    content = path.read_text(encoding="utf-8", errors="replace")
                except OSError as e:
                    logger.warning("Failed to read %s: %s", path, e)
                    self._forget(rel)
                    stats.files_skipped += 1
                    continue
                if len(content) > self._max_file_chars:
                    self._forget(rel)
                    stats.files_skipped += 1
                    emit({"status": "skipped", "file": rel, "chars": len(content)})
                    continue

                vec = embed_safely(self._provider, content[:EMBED_INPUT_CHARS])
                if vec is None:
                    self._forget(rel)
                    stats.embed_failures += 1
                else:
                    self._embeddings[rel] = vec
                    self._contents[rel] = content
                    self._mod_times[rel] = mtime
                    stats.files_indexed += 1
                    stats.chunks_embedded += 1

                if i % PROGRESS_EVERY == 0:
                    emit({"status": "embedding", "current": i, "total": len(pending)})

            stats.total_records = len(self._embeddings)
            if pending or removed:
                self._save()

        stats.elapsed = time.perf_counter() - t0
        emit({"status": "cancelled" if stats.cancelled else "done", **stats.to_dict()})
        logger.info(
            "File index: %d updated, %d total, %d skipped (%.2fs)",
            stats.files_indexed, stats.total_records, stats.files_skipped, stats.elapsed,
        )
        return stats

    def search(
        self,
        query: str,
        max_results: int = 10,
        extensions: Iterable[str] | None = None,
    ) -> list[FileHit]:
        """Files scoring above the relevance cutoff, best first.

        When ``extensions`` is given, only files with those suffixes are
        ranked, so the cap applies to the filtered list.
        """
        allowed = normalize_extensions(extensions) if extensions else None
        if not self._embeddings:
            return []
        qvec = embed_safely(self._provider, query)
        if qvec is None:
            return []
        hits = []
        for rel, vec in self._embeddings.items():
            if allowed is not None and Path(rel).suffix.lower() not in allowed:
                continue
            score = cosine_similarity(qvec, vec)
            if score > RELEVANCE_CUTOFF:
                hits.append(FileHit(rel, score, relevant_snippet(self._contents.get(rel, ""), query)))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:max(1, max_results)]
