import sys
import time
from typing import Protocol, TextIO


class ProgressSink(Protocol):
    def tick(self, step: int = 1) -> None: ...


class ProgressTracker:
    """Single-line text progress bar, redrawn at most every 120 ms."""

    def __init__(self, total: int, label: str = "Progress", width: int = 24, stream: TextIO | None = None):
        self.total = max(0, total)
        self.label = label
        self.width = width
        self.stream = stream or sys.stdout
        self.current = 0
        self._last_render = 0.0

    def tick(self, step: int = 1) -> None:
        if self.total <= 0:
            return
        self.current = min(self.total, self.current + step)
        self._render()

    def complete(self) -> None:
        if self.total <= 0:
            return
        self.current = self.total
        self._render(force=True)

    def _render(self, force: bool = False) -> None:
        now = time.monotonic()
        if not force and self.current < self.total and now - self._last_render < 0.12:
            return
        self._last_render = now
        ratio = self.current / self.total
        filled = round(self.width * ratio)
        bar = "#" * filled + "-" * (self.width - filled)
        self.stream.write(f"\r{self.label} [{bar}] {round(ratio * 100)}% ({self.current}/{self.total})")
        if force or self.current >= self.total:
            self.stream.write("\n")
        self.stream.flush()


class ProgressRelay:
    """Replaceable slot for the active sink.

    Injected into CompletionClient; a renderer attaches itself for the
    duration of a run. Ticks with nothing attached are only counted.
    """

    def __init__(self, sink: ProgressSink | None = None):
        self._sink = sink
        self.count = 0

    @property
    def sink(self) -> ProgressSink | None:
        return self._sink

    def attach(self, sink: ProgressSink | None) -> None:
        self._sink = sink

    def detach(self) -> None:
        self._sink = None

    def tick(self, step: int = 1) -> None:
        # only mutated from the event loop thread
        self.count += step
        if self._sink is not None:
            self._sink.tick(step)
