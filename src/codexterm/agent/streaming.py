"""Queued, batched delivery of streamed text to the display sink."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

TICK_SECONDS = 1 / 60
MAX_BATCH = 100


class StreamingDispatcher:
    """Decouples token arrival from display writes.

    Producers call :meth:`put` from any thread. A daemon consumer drains the
    queue every tick, merging consecutive chunks of the same style into one
    ``append`` call and handling at most ``max_batch`` chunks per tick.
    """

    def __init__(
        self,
        append: Callable[[str, str], None],
        tick: float = TICK_SECONDS,
        max_batch: int = MAX_BATCH,
    ) -> None:
        self._append = append
        self._tick = tick
        self._max_batch = max_batch
        self._queue: queue.Queue[tuple[str, str]] = queue.Queue()
        self._drain_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> StreamingDispatcher:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def put(self, text: str, style: str = "assistant") -> None:
        if text:
            self._queue.put((text, style))

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="stream-dispatcher", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._tick):
            self._drain(self._max_batch)

    def _drain(self, limit: int) -> int:
        """Deliver up to ``limit`` queued chunks; returns how many were taken."""
        with self._drain_lock:
            taken = 0
            batch: list[str] = []
            batch_style: str | None = None
            while taken < limit:
                try:
                    text, style = self._queue.get_nowait()
                except queue.Empty:
                    break
                taken += 1
                if batch and style != batch_style:
                    self._emit("".join(batch), batch_style)
                    batch = []
                batch.append(text)
                batch_style = style
            if batch:
                self._emit("".join(batch), batch_style)
            return taken

    def _emit(self, text: str, style: str | None) -> None:
        try:
            self._append(text, style or "assistant")
        except Exception:
            logger.exception("Display sink raised; dropped %d chars", len(text))

    def flush(self) -> None:
        """Synchronously deliver everything queued so far."""
        while self._drain(self._max_batch):
            pass

    def close(self) -> None:
        """Stop the consumer thread and deliver whatever is left."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        self.flush()
