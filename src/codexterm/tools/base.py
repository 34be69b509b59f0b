"""Types shared by every workspace tool."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

if TYPE_CHECKING:
    from codexterm.indexer.embedding_index import EmbeddingIndex
    from codexterm.indexer.file_index import FileEmbeddingIndex


class ToolError(Exception):
    """Raised by a tool body for an expected, user-facing failure."""


@dataclass
class ToolResult:
    """Outcome of one tool execution. Never raised."""

    success: bool
    content: str = ""
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, content: str, **metadata: Any) -> ToolResult:
        return cls(success=True, content=content, metadata=metadata)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)


def _discard(text: str, style: str) -> None:
    pass


@dataclass
class ToolContext:
    """What a tool may touch: the sandbox root, the display, and the indexes."""

    workspace_root: Path
    append: Callable[[str, str], None] = _discard
    chunk_index: EmbeddingIndex | None = None
    file_index: FileEmbeddingIndex | None = None
    cancel: threading.Event | None = None

    def __post_init__(self) -> None:
        self.workspace_root = Path(self.workspace_root).resolve()

    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


def clamp(value: int | float, lo: int | float, hi: int | float) -> int | float:
    return max(lo, min(hi, value))


class ToolArgs(BaseModel):
    """Base for tool argument models; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    response_format: Literal["concise", "detailed"] = "concise"

    @field_validator("response_format", mode="before")
    @classmethod
    def _lenient_format(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in ("concise", "detailed"):
                return cls.model_fields["response_format"].default
        return v


def format_size(n: int) -> str:
    """Human-readable byte count: 512 B, 1.5 KB, 2 MB."""
    size = float(n)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.2f}".rstrip("0").rstrip(".") + f" {unit}"
        size /= 1024
    return f"{size:.2f}".rstrip("0").rstrip(".") + " GB"
