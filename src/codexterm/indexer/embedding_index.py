"""Chunk-level semantic index over workspace files.

Files are cut into overlapping character windows, each window is embedded
through an ``EmbeddingProvider``, and the resulting records are persisted to
``<root>/.codex/embeddings_index.json``. Rebuilds are incremental: only files
whose mtime moved past the recorded value are re-embedded, and records for
files that disappeared are dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from pathlib import Path

import numpy as np

from codexterm import config
from codexterm.agent.provider import EmbeddingProvider
from codexterm.indexer.chunking import line_start_offsets, make_preview, offset_to_line, sliding_window
from codexterm.indexer.discovery import discover_files, relative_posix
from codexterm.indexer.ignore import IgnoreRuleSet
from codexterm.indexer.manifest import MANIFEST_VERSION, delete_manifest, load_manifest, now_iso, save_manifest
from codexterm.indexer.vectors import cosine_similarities, to_matrix

logger = logging.getLogger(__name__)

MANIFEST_NAME = "embeddings_index.json"
PROGRESS_EVERY = 5
MAX_TOP_K = 100


@dataclass(frozen=True)
class EmbeddingRecord:
    """One embedded chunk."""

    file_path: str
    start_line: int
    preview: str
    vector: list[float]


@dataclass
class ChunkHit:
    file_path: str
    start_line: int
    preview: str
    score: float


@dataclass
class IndexStats:
    """Outcome of one build."""

    files_seen: int = 0
    files_indexed: int = 0
    files_skipped: int = 0
    files_ignored: int = 0
    files_removed: int = 0
    chunks_embedded: int = 0
    embed_failures: int = 0
    total_records: int = 0
    cancelled: bool = False
    elapsed: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def embed_safely(provider: EmbeddingProvider, text: str) -> list[float] | None:
    """Embed ``text``; provider failures come back as None."""
    try:
        vec = provider.embed(text)
    except Exception as e:
        logger.warning("Embedding request failed: %s", e)
        return None
    if not vec:
        return None
    return [float(v) for v in vec]


class EmbeddingIndex:
    """Sliding-window embedding index rooted at one workspace."""

    def __init__(
        self,
        root: Path,
        provider: EmbeddingProvider,
        max_file_chars: int | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self._provider = provider
        self._max_file_chars = max_file_chars or config.MAX_FILE_CHARS
        self._records: list[EmbeddingRecord] = []
        self._mod_times: dict[str, float] = {}
        self._matrix: np.ndarray | None = None
        self._manifest_bytes = 0
        self._lock = threading.Lock()
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def manifest_path(self) -> Path:
        return config.get_index_dir(self.root) / MANIFEST_NAME

    @property
    def model_id(self) -> str:
        return self._provider.model_id

    def _load(self) -> None:
        data = load_manifest(self.manifest_path, self.model_id)
        if data is None:
            return
        try:
            records = [
                EmbeddingRecord(
                    file_path=r["file_path"],
                    start_line=int(r["start_line"]),
                    preview=r.get("preview", ""),
                    vector=[float(v) for v in r["vector"]],
                )
                for r in data.get("records", [])
            ]
            mod_times = {k: float(v) for k, v in data.get("file_mod_times", {}).items()}
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.info("Discarding malformed index records in %s: %s", self.manifest_path, e)
            return
        self._records = records
        self._mod_times = mod_times
        self._manifest_bytes = self.manifest_path.stat().st_size
        logger.info("Loaded %d chunk embeddings for %d files", len(records), len(mod_times))

    def _save(self) -> None:
        data = {
            "version": MANIFEST_VERSION,
            "model_id": self.model_id,
            "created_at": now_iso(),
            "records": [asdict(r) for r in self._records],
            "file_mod_times": self._mod_times,
        }
        self._manifest_bytes = save_manifest(self.manifest_path, data)

    def invalidate(self) -> None:
        """Forget everything and delete the manifest."""
        with self._lock:
            delete_manifest(self.manifest_path)
            self._records = []
            self._mod_times = {}
            self._matrix = None
            self._manifest_bytes = 0
        logger.info("Chunk index invalidated for %s", self.root)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def count(self) -> int:
        return len(self._records)

    @property
    def indexed_files(self) -> list[str]:
        return sorted(self._mod_times)

    @property
    def records(self) -> list[EmbeddingRecord]:
        return list(self._records)

    def stats(self) -> tuple[int, int]:
        """(record count, manifest size in bytes)."""
        return len(self._records), self._manifest_bytes

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def _needs_update(self, rel: str, mtime: float) -> bool:
        seen = self._mod_times.get(rel)
        return seen is None or seen < mtime

    def _forget(self, rel: str) -> None:
        self._records = [r for r in self._records if r.file_path != rel]
        self._mod_times.pop(rel, None)

    def _embed_file(
        self,
        rel: str,
        text: str,
        chunk_size: int,
        stride: int,
        stats: IndexStats,
        cancel: threading.Event | None,
    ) -> list[EmbeddingRecord] | None:
        """Embed every window of one file. None means cancelled part-way."""
        starts = line_start_offsets(text)
        out: list[EmbeddingRecord] = []
        for chunk, offset in sliding_window(text, chunk_size, stride):
            if cancel is not None and cancel.is_set():
                return None
            if not chunk.strip():
                continue
            vec = embed_safely(self._provider, chunk)
            if vec is None:
                stats.embed_failures += 1
                continue
            out.append(EmbeddingRecord(
                file_path=rel,
                start_line=offset_to_line(starts, offset),
                preview=make_preview(chunk),
                vector=vec,
            ))
        return out

    def build_or_update(
        self,
        chunk_size: int | None = None,
        stride: int | None = None,
        extensions: Iterable[str] | None = None,
        on_progress: Callable[[dict], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> IndexStats:
        """Bring the index up to date with the workspace.

        Args:
            chunk_size: Window length in characters (minimum 100).
            stride: Window advance in characters (minimum 50).
            extensions: Allowed file extensions; defaults when None.
            on_progress: Optional callback receiving progress event dicts.
            cancel: Set to stop early. Finished files are kept and persisted.

        Returns:
            IndexStats for this build.
        """
        chunk_size = chunk_size or config.CHUNK_CHARS
        stride = stride or config.STRIDE_CHARS
        t0 = time.perf_counter()
        stats = IndexStats()

        def emit(event: dict) -> None:
            if on_progress:
                on_progress({"step": "index", **event})

        rules = IgnoreRuleSet.load(self.root)
        emit({"status": "rules", "rules": len(rules)})
        found = discover_files(self.root, extensions, rules)
        stats.files_seen = len(found.files)
        stats.files_ignored = found.ignored

        with self._lock:
            current: dict[str, Path] = {relative_posix(p, self.root): p for p in found.files}

            removed = [rel for rel in self._mod_times if rel not in current]
            if removed:
                gone = set(removed)
                self._records = [r for r in self._records if r.file_path not in gone]
                for rel in removed:
                    del self._mod_times[rel]
                stats.files_removed = len(removed)
                logger.info("Dropped %d removed files from the chunk index", len(removed))

            pending: list[tuple[str, Path, float]] = []
            for rel, path in current.items():
                try:
                    mtime = path.stat().st_mtime
                except OSError as e:
                    logger.warning("Cannot stat %s: %s", path, e)
                    continue
                if self._needs_update(rel, mtime):
                    pending.append((rel, path, mtime))

            emit({"status": "scan", "total": len(current), "pending": len(pending), "ignored": found.ignored})
            logger.info(
                "Chunk index: %d files, %d new/modified, %d ignored",
                len(current), len(pending), found.ignored,
            )

            for i, (rel, path, mtime) in enumerate(pending, 1):
                if cancel is not None and cancel.is_set():
                    stats.cancelled = True
                    break
                try:
                    text = path.read_text(encoding="utf-8", errors="replace")
                except OSError as e:
                    logger.warning("Failed to read %s: %s", path, e)
                    self._forget(rel)
                    stats.files_skipped += 1
                    emit({"status": "error", "file": rel, "error": str(e)})
                    continue

                if len(text) > self._max_file_chars:
                    self._forget(rel)
                    stats.files_skipped += 1
                    emit({"status": "skipped", "file": rel, "chars": len(text)})
                    logger.info("Skipping large file %s (%d chars)", rel, len(text))
                    continue

                new_records = self._embed_file(rel, text, chunk_size, stride, stats, cancel)
                if new_records is None:
                    stats.cancelled = True
                    break

                self._records = [r for r in self._records if r.file_path != rel]
                self._records.extend(new_records)
                stats.chunks_embedded += len(new_records)
                # Files whose every chunk failed are retried on the next build.
                if new_records or not text.strip():
                    self._mod_times[rel] = mtime
                    stats.files_indexed += 1

                if i % PROGRESS_EVERY == 0 or i == len(pending):
                    emit({"status": "embedding", "current": i, "total": len(pending), "file": rel})

            self._matrix = None
            stats.total_records = len(self._records)
            if pending or removed or not self.manifest_path.exists():
                self._save()

        stats.elapsed = time.perf_counter() - t0
        emit({"status": "cancelled" if stats.cancelled else "done", **stats.to_dict()})
        logger.info(
            "Chunk index %s: %d files embedded (%d chunks), %d skipped, %d failures (%.2fs)",
            "cancelled" if stats.cancelled else "built",
            stats.files_indexed, stats.chunks_embedded, stats.files_skipped,
            stats.embed_failures, stats.elapsed,
        )
        return stats

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def _vectors(self) -> np.ndarray:
        if self._matrix is None:
            self._matrix = to_matrix([r.vector for r in self._records])
        return self._matrix

    def search(self, query: str, top_k: int = 10) -> list[ChunkHit]:
        """Rank stored chunks by cosine similarity to ``query``.

        ``top_k`` is clamped to 1..100. An empty index or a failed query
        embedding gives an empty list.
        """
        top_k = max(1, min(MAX_TOP_K, top_k))
        if not self._records:
            return []
        t0 = time.perf_counter()
        qvec = embed_safely(self._provider, query)
        if qvec is None:
            logger.warning("Query embedding failed for %r", query[:80])
            return []

        with self._lock:
            records = self._records
            scores = cosine_similarities(qvec, self._vectors())
        order = np.argsort(-scores, kind="stable")[:top_k]
        hits = [
            ChunkHit(
                file_path=records[i].file_path,
                start_line=records[i].start_line,
                preview=records[i].preview,
                score=float(scores[i]),
            )
            for i in order
        ]
        logger.debug("Chunk search %r: %d hits (%.0fms)", query[:60], len(hits), (time.perf_counter() - t0) * 1000)
        return hits
