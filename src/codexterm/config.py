"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Provider
LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "ollama").lower()
OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://localhost:11434").rstrip("/")
CODEX_MODEL: str = os.getenv("CODEX_MODEL", "qwen2.5-coder:7b")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "embeddinggemma:latest")

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

# Gemini models
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
GEMINI_EMBEDDING_MODEL: str = os.getenv("GEMINI_EMBEDDING_MODEL", "gemini-embedding-001")
EMBEDDING_DIMS: int = int(os.getenv("EMBEDDING_DIMS", "768"))

# Workspace / index
WORKSPACE_ROOT: Path = Path(os.getenv("WORKSPACE_ROOT", "."))
INDEX_DIR_NAME: str = os.getenv("INDEX_DIR_NAME", ".codex")
CHUNK_CHARS: int = int(os.getenv("CHUNK_CHARS", "800"))
STRIDE_CHARS: int = int(os.getenv("STRIDE_CHARS", "200"))
MAX_FILE_CHARS: int = int(os.getenv("MAX_FILE_CHARS", "50000"))
AUTO_INDEX: bool = _flag("AUTO_INDEX")

# Session
MAX_TOOL_ROUNDS: int = int(os.getenv("MAX_TOOL_ROUNDS", "50"))
HISTORY_WINDOW: int = int(os.getenv("HISTORY_WINDOW", "8"))
REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "120"))

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE: str = os.getenv("LOG_FILE", "")


def get_workspace_root() -> Path:
    """Return the absolute workspace root the tools are sandboxed to."""
    return WORKSPACE_ROOT.expanduser().resolve()


def get_index_dir(root: Path) -> Path:
    """Return the hidden per-workspace directory holding index manifests."""
    return Path(root) / INDEX_DIR_NAME
