"""Shared test helpers: deterministic embedder and scripted LLM provider fakes."""

from __future__ import annotations

import re
import threading

from codexterm.agent.provider import ModelInfo, PullResult, match_model_name

_WORD_RE = re.compile(r"[a-z]+")


class FakeEmbedder:
    """Bag-of-words embedder: every distinct word gets its own dimension.

    Words are assigned dimensions in first-seen order, so vectors are stable
    within one instance and collision-free below ``dims`` distinct words.
    """

    def __init__(
        self,
        model_id: str = "fake-embed",
        dims: int = 128,
        fail_on: str | None = None,
        cancel_after: tuple[threading.Event, int] | None = None,
    ):
        self._model_id = model_id
        self.dims = dims
        self.fail_on = fail_on
        self.cancel_after = cancel_after
        self.vocab: dict[str, int] = {}
        self.calls = 0
        self.inputs: list[str] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    def embed(self, text: str) -> list[float] | None:
        self.calls += 1
        self.inputs.append(text)
        if self.cancel_after is not None:
            event, n = self.cancel_after
            if self.calls >= n:
                event.set()
        if self.fail_on is not None and self.fail_on in text:
            return None
        vec = [0.0] * self.dims
        for word in _WORD_RE.findall(text.lower()):
            idx = self.vocab.setdefault(word, len(self.vocab)) % self.dims
            vec[idx] += 1.0
        return vec


class ScriptedProvider:
    """LLM provider that replays canned responses and records prompts.

    A response that is an exception instance is raised from
    ``stream_generate``. Once the script runs out, ``default`` is returned.
    """

    def __init__(
        self,
        responses: list | None = None,
        default: str = "",
        connected: bool = True,
        models: list[str] | None = None,
        model: str = "qwen2.5-coder:7b",
    ):
        self.responses = list(responses or [])
        self.default = default
        self.connected = connected
        self.models = models if models is not None else [model, "llama3:latest"]
        self._model = model
        self.prompts: list[str] = []
        self.pulled: list[str] = []

    @property
    def current_model(self) -> str:
        return self._model

    def test_connection(self) -> bool:
        return self.connected

    def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(name=n) for n in self.models]

    def switch_model(self, name: str) -> bool:
        resolved = match_model_name(name, self.models)
        if resolved is None:
            return False
        self._model = resolved
        return True

    def stream_generate(self, prompt, on_token, cancel=None) -> None:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        # Deliver in small pieces the way a streaming API would.
        for i in range(0, len(response), 7):
            on_token(response[i:i + 7])
        on_token("\n")

    def pull_model(self, name, on_progress) -> PullResult:
        self.pulled.append(name)
        on_progress("pulling manifest\n")
        on_progress("success\n")
        self.models.append(name)
        return PullResult(True, "Success")


class RecordingSink:
    """Display sink that records every ``append(text, style)`` call."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def __call__(self, text: str, style: str) -> None:
        with self._lock:
            self.calls.append((text, style))

    @property
    def text(self) -> str:
        return "".join(t for t, _ in self.calls)

    def styled(self, style: str) -> str:
        return "".join(t for t, s in self.calls if s == style)
