"""Gitignore-style path filtering for workspace enumeration."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from codexterm import config

logger = logging.getLogger(__name__)

IGNORE_FILE = ".gitignore"

# Build output, IDE state and VCS metadata. The index directory is added by
# default_rules() since its name is configurable.
DEFAULT_RULES = [
    "bin/",
    "obj/",
    ".vs/",
    "*.user",
    ".git/",
    "__pycache__/",
    "node_modules/",
    ".venv/",
]


def default_rules() -> list[str]:
    return [*DEFAULT_RULES, f"{config.INDEX_DIR_NAME.strip('/')}/"]


@dataclass(frozen=True)
class IgnoreRule:
    """One parsed ignore line."""

    pattern: str
    is_negation: bool
    is_directory_only: bool
    regex: re.Pattern

    def matches(self, relative_path: str) -> bool:
        return self.regex.search(relative_path) is not None


def pattern_to_regex(pattern: str, directory_only: bool = False) -> str:
    """Translate a gitignore glob into a regex over ``/``-separated paths.

    ``**`` crosses separators and ``**/`` also matches zero directories, so
    ``**/foo`` matches a root-level ``foo`` and ``a/**/b`` matches ``a/b``.
    ``*`` and ``?`` stay inside one segment.
    """
    anchored = pattern.startswith("/")
    body = pattern[1:] if anchored else pattern

    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "*":
            if body.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
                continue
            if body.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(ch))
        i += 1

    prefix = "^" if anchored else "(^|/)"
    # A directory-only rule needs something beneath the matched component.
    suffix = "/" if directory_only else "($|/)"
    return prefix + "".join(out) + suffix


def parse_line(line: str) -> IgnoreRule | None:
    """Parse one ignore-file line; blank lines and comments yield None."""
    text = line.strip()
    if not text or text.startswith("#"):
        return None

    negation = text.startswith("!")
    if negation:
        text = text[1:]

    directory_only = text.endswith("/")
    if directory_only:
        text = text.rstrip("/")
    if not text:
        return None

    try:
        regex = re.compile(pattern_to_regex(text, directory_only), re.IGNORECASE)
    except re.error as e:
        logger.debug("Skipping unparseable ignore pattern %r: %s", line, e)
        return None
    return IgnoreRule(
        pattern=text,
        is_negation=negation,
        is_directory_only=directory_only,
        regex=regex,
    )


def normalize_path(relative_path: str) -> str:
    path = relative_path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


class IgnoreRuleSet:
    """Ordered rule list; the last matching rule decides."""

    def __init__(self, rules: list[IgnoreRule] | None = None) -> None:
        self.rules: list[IgnoreRule] = list(rules or [])

    def __len__(self) -> int:
        return len(self.rules)

    @classmethod
    def from_lines(cls, lines: list[str]) -> IgnoreRuleSet:
        rules = [r for r in (parse_line(line) for line in lines) if r is not None]
        return cls(rules)

    @classmethod
    def load(cls, root: Path, include_defaults: bool = True) -> IgnoreRuleSet:
        """Collect ignore rules from ``root`` and every ancestor directory.

        Files are read farthest ancestor first so rules nearer the workspace
        come later and override. The default rules are appended last.
        """
        root = Path(root).resolve()
        chain = [root, *root.parents]
        rules: list[IgnoreRule] = []
        for directory in reversed(chain):
            path = directory / IGNORE_FILE
            if not path.is_file():
                continue
            try:
                lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError as e:
                logger.warning("Could not read %s: %s", path, e)
                continue
            parsed = [r for r in (parse_line(line) for line in lines) if r is not None]
            logger.debug("Loaded %d ignore rules from %s", len(parsed), path)
            rules.extend(parsed)

        if include_defaults:
            rules.extend(r for r in (parse_line(p) for p in default_rules()) if r is not None)
        return cls(rules)

    def add(self, line: str) -> None:
        rule = parse_line(line)
        if rule is not None:
            self.rules.append(rule)

    def is_ignored(self, relative_path: str) -> bool:
        path = normalize_path(relative_path)
        ignored = False
        for rule in self.rules:
            if rule.matches(path):
                ignored = not rule.is_negation
        return ignored

    def is_dir_ignored(self, relative_dir: str) -> bool:
        """Whether a directory (and so everything under it) is excluded."""
        path = normalize_path(relative_dir).rstrip("/")
        return self.is_ignored(path + "/")
