"""LLM provider interface with Ollama and Gemini implementations."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import requests

from codexterm import config

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Transport or protocol failure talking to the LLM service."""


@dataclass
class ModelInfo:
    name: str
    size: int = 0
    modified_at: str = ""


@dataclass
class PullResult:
    ok: bool
    message: str


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""

    @property
    def model_id(self) -> str:
        """Identifier stamped into index manifests."""
        ...

    def embed(self, text: str) -> list[float] | None:
        """Embed one text, returning None on failure."""
        ...


class LLMProvider(Protocol):
    """Protocol for chat/generation providers."""

    @property
    def current_model(self) -> str: ...

    def test_connection(self) -> bool: ...

    def list_models(self) -> list[ModelInfo]: ...

    def switch_model(self, name: str) -> bool: ...

    def stream_generate(
        self,
        prompt: str,
        on_token: Callable[[str], None],
        cancel: threading.Event | None = None,
    ) -> None:
        """Deliver tokens as they arrive, then a final newline.

        Raises:
            ProviderError: on transport failure.
        """
        ...

    def pull_model(self, name: str, on_progress: Callable[[str], None]) -> PullResult: ...


def match_model_name(requested: str, available: list[str]) -> str | None:
    """Resolve a user-typed model name against installed ones.

    Exact names win, then ``name:latest``, then a unique base-name match.
    """
    if requested in available:
        return requested
    if ":" not in requested and f"{requested}:latest" in available:
        return f"{requested}:latest"
    base = requested.split(":", 1)[0]
    candidates = [n for n in available if n.split(":", 1)[0] == base]
    if len(candidates) == 1:
        return candidates[0]
    return None


class OllamaProvider:
    """Ollama HTTP API client for generation, model management and embeddings."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        embedding_model: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or config.OLLAMA_URL).rstrip("/")
        self._model = model or config.CODEX_MODEL
        self._embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self._http = session or requests.Session()
        self.is_connected = False

    @property
    def current_model(self) -> str:
        return self._model

    @property
    def model_id(self) -> str:
        return self._embedding_model

    def test_connection(self) -> bool:
        try:
            resp = self._http.get(f"{self.base_url}/api/tags", timeout=5)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Ollama not reachable at %s: %s", self.base_url, e)
            self.is_connected = False
            return False
        self.is_connected = True
        return True

    def list_models(self) -> list[ModelInfo]:
        try:
            resp = self._http.get(f"{self.base_url}/api/tags", timeout=10)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Listing Ollama models failed: %s", e)
            return []
        return [
            ModelInfo(
                name=m.get("name", ""),
                size=int(m.get("size") or 0),
                modified_at=m.get("modified_at", ""),
            )
            for m in payload.get("models", [])
            if m.get("name")
        ]

    def switch_model(self, name: str) -> bool:
        """Select ``name`` if it is installed. The current model is kept otherwise."""
        available = [m.name for m in self.list_models()]
        resolved = match_model_name(name, available)
        if resolved is None:
            logger.info("Model %r not installed (have: %s)", name, ", ".join(available) or "none")
            return False
        logger.info("Switched model %s -> %s", self._model, resolved)
        self._model = resolved
        return True

    def stream_generate(
        self,
        prompt: str,
        on_token: Callable[[str], None],
        cancel: threading.Event | None = None,
    ) -> None:
        logger.debug("Generate via %s (%d char prompt)", self._model, len(prompt))
        t0 = time.perf_counter()
        n_chars = 0
        try:
            with self._http.post(
                f"{self.base_url}/api/generate",
                json={"model": self._model, "prompt": prompt, "stream": True},
                stream=True,
                timeout=self.timeout,
            ) as resp:
                resp.raise_for_status()
                for line in resp.iter_lines(decode_unicode=True):
                    if cancel is not None and cancel.is_set():
                        logger.info("Generation cancelled after %d chars", n_chars)
                        break
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except ValueError:
                        logger.debug("Skipping non-JSON stream line: %r", line[:80])
                        continue
                    if event.get("error"):
                        raise ProviderError(event["error"])
                    token = event.get("response") or ""
                    if token:
                        n_chars += len(token)
                        on_token(token)
                    if event.get("done"):
                        break
        except requests.RequestException as e:
            raise ProviderError(str(e)) from e
        on_token("\n")
        logger.debug("Generate complete: %d chars, %.0fms", n_chars, (time.perf_counter() - t0) * 1000)

    def pull_model(self, name: str, on_progress: Callable[[str], None]) -> PullResult:
        """Download a model, reporting each distinct status/percent change."""
        last_status = ""
        last_percent = -1
        try:
            with self._http.post(
                f"{self.base_url}/api/pull",
                json={"model": name, "stream": True},
                stream=True,
                timeout=self.timeout,
            ) as resp:
                resp.raise_for_status()
                for line in resp.iter_lines(decode_unicode=True):
                    if not line:
                        continue
                    event = json.loads(line)
                    if event.get("error"):
                        return PullResult(False, f"Error: {event['error']}")
                    status = event.get("status") or ""
                    if not status:
                        continue
                    changed = status != last_status
                    last_status = status
                    message = status
                    total = event.get("total") or 0
                    completed = event.get("completed") or 0
                    if total > 0 and completed > 0:
                        percent = completed * 100 // total
                        if percent != last_percent:
                            message = f"{status} ({percent}%)"
                            last_percent = percent
                            changed = True
                    if changed:
                        on_progress(f"{message}\n")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Pull of %s failed: %s", name, e)
            return PullResult(False, f"Error: {e}")
        return PullResult(True, "Success")

    def embed(self, text: str) -> list[float] | None:
        t0 = time.perf_counter()
        try:
            resp = self._http.post(
                f"{self.base_url}/api/embed",
                json={"model": self._embedding_model, "input": text},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            embeddings = resp.json().get("embeddings") or []
        except (requests.RequestException, ValueError) as e:
            logger.debug("Embed via %s failed: %s", self._embedding_model, e)
            return None
        logger.debug("Embed complete: %d chars, %.0fms", len(text), (time.perf_counter() - t0) * 1000)
        return embeddings[0] if embeddings else None


class GeminiProvider:
    """Gemini implementation of generation and embedding."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        embedding_model: str | None = None,
        embedding_dims: int | None = None,
    ) -> None:
        from google import genai

        self._client = genai.Client(api_key=api_key or config.GEMINI_API_KEY)
        self._model = model or config.GEMINI_MODEL
        self._embedding_model = embedding_model or config.GEMINI_EMBEDDING_MODEL
        self._embedding_dims = embedding_dims or config.EMBEDDING_DIMS

    @property
    def current_model(self) -> str:
        return self._model

    @property
    def model_id(self) -> str:
        return f"{self._embedding_model}@{self._embedding_dims}"

    def test_connection(self) -> bool:
        try:
            next(iter(self._client.models.list()), None)
        except Exception as e:
            logger.warning("Gemini not reachable: %s", e)
            return False
        return True

    def list_models(self) -> list[ModelInfo]:
        try:
            models = list(self._client.models.list())
        except Exception as e:
            logger.warning("Listing Gemini models failed: %s", e)
            return []
        out = []
        for m in models:
            name = (m.name or "").removeprefix("models/")
            if name:
                out.append(ModelInfo(name=name))
        return out

    def switch_model(self, name: str) -> bool:
        available = [m.name for m in self.list_models()]
        resolved = match_model_name(name.removeprefix("models/"), available)
        if resolved is None:
            return False
        self._model = resolved
        return True

    def stream_generate(
        self,
        prompt: str,
        on_token: Callable[[str], None],
        cancel: threading.Event | None = None,
    ) -> None:
        logger.debug("Generate via %s (%d char prompt)", self._model, len(prompt))
        t0 = time.perf_counter()
        try:
            for chunk in self._client.models.generate_content_stream(model=self._model, contents=prompt):
                if cancel is not None and cancel.is_set():
                    break
                if chunk.text:
                    on_token(chunk.text)
        except Exception as e:
            raise ProviderError(str(e)) from e
        on_token("\n")
        logger.debug("Generate complete: %.0fms", (time.perf_counter() - t0) * 1000)

    def pull_model(self, name: str, on_progress: Callable[[str], None]) -> PullResult:
        return PullResult(False, "Error: hosted Gemini models do not need to be pulled")

    def embed(self, text: str) -> list[float] | None:
        from google.genai import types

        try:
            result = self._client.models.embed_content(
                model=self._embedding_model,
                contents=text,
                config=types.EmbedContentConfig(output_dimensionality=self._embedding_dims),
            )
        except Exception as e:
            logger.debug("Gemini embed failed: %s", e)
            return None
        if not result.embeddings:
            return None
        return list(result.embeddings[0].values)


def create_provider(name: str | None = None) -> OllamaProvider | GeminiProvider:
    """Build the provider selected by ``LLM_PROVIDER``."""
    name = (name or config.LLM_PROVIDER).lower()
    if name == "ollama":
        return OllamaProvider()
    if name == "gemini":
        if not config.GEMINI_API_KEY:
            raise ProviderError("GEMINI_API_KEY is not set")
        return GeminiProvider()
    raise ProviderError(f"Unknown LLM_PROVIDER {name!r} (expected 'ollama' or 'gemini')")
