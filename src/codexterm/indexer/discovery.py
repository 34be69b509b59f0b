"""Workspace file enumeration shared by the indexes and literal search."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from codexterm.indexer.ignore import IgnoreRuleSet

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = frozenset({
    ".cs", ".csproj", ".sln", ".json", ".xml", ".config", ".md", ".txt", ".resx",
    ".py",
})


@dataclass
class Discovery:
    """Files selected for indexing, plus how many were filtered by ignore rules."""

    files: list[Path] = field(default_factory=list)
    ignored: int = 0


def normalize_extensions(extensions: Iterable[str] | None) -> frozenset[str]:
    """Lower-case, dot-prefixed extension set; defaults when empty."""
    if not extensions:
        return DEFAULT_EXTENSIONS
    out = set()
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        out.add(ext if ext.startswith(".") else f".{ext}")
    return frozenset(out) or DEFAULT_EXTENSIONS


def discover_files(
    root: Path,
    extensions: Iterable[str] | None = None,
    rules: IgnoreRuleSet | None = None,
) -> Discovery:
    """Walk ``root`` and return allowed, non-ignored files in sorted order.

    Ignored directories are pruned rather than descended into.
    """
    root = Path(root).resolve()
    allowed = normalize_extensions(extensions)
    if rules is None:
        rules = IgnoreRuleSet.load(root)

    result = Discovery()
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        kept = []
        for d in sorted(dirnames):
            rel = f"{rel_dir}/{d}" if rel_dir else d
            if rules.is_dir_ignored(rel):
                result.ignored += 1
                continue
            kept.append(d)
        dirnames[:] = kept

        for name in sorted(filenames):
            if Path(name).suffix.lower() not in allowed:
                continue
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if rules.is_ignored(rel):
                result.ignored += 1
                continue
            result.files.append(current / name)

    logger.debug("Discovered %d files under %s (%d ignored)", len(result.files), root, result.ignored)
    return result


def relative_posix(path: Path, root: Path) -> str:
    return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
