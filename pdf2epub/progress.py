"""
Terminal progress for transcription runs.

Provides a single updating status line instead of log spam.
"""

import sys
import time
from dataclasses import dataclass, field

from .library import PageSlot, Provenance


@dataclass
class ProgressStats:
    """Page counters for one run.

    ``start`` is the page a resumed run began at; rate and ETA only count
    pages processed in this run.
    """

    total: int
    start: int = 0
    current: int = 0
    failed: int = 0
    start_time: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.current = max(self.current, self.start)

    @property
    def done_this_run(self) -> int:
        return self.current - self.start

    @property
    def elapsed(self) -> float:
        return time.time() - self.start_time

    @property
    def rate(self) -> float:
        """Pages per second."""
        if self.elapsed == 0:
            return 0
        return self.done_this_run / self.elapsed

    @property
    def eta(self) -> float | None:
        """Estimated seconds remaining."""
        if self.rate == 0 or self.done_this_run == 0:
            return None
        return (self.total - self.current) / self.rate

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return (self.current / self.total) * 100


def format_time(seconds: float | None) -> str:
    """Format seconds as human-readable time."""
    if seconds is None:
        return "--:--"

    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        return f"{hours}h {mins}m"


class TranscriptionProgress:
    """Progress line fed by transcription driver page events.

    Usage:
        with TranscriptionProgress(total=120, start=40) as progress:
            driver.listeners.append(progress.on_page)
            ...
    """

    def __init__(self, total: int, start: int = 0, desc: str = "Transcribing", stream=None):
        self.stats = ProgressStats(total=total, start=start)
        self.desc = desc
        self._output = stream or (sys.stderr if sys.stderr.isatty() else sys.stdout)
        self._is_tty = self._output.isatty()
        self._last_line_len = 0
        self.cancelled = False

    def __enter__(self):
        self.stats.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()

    def on_page(self, run, index: int, slot: PageSlot) -> None:
        """Driver listener: record one finished page."""
        self.update(index + 1, failed=slot.provenance is Provenance.VLM_ERROR)

    def update(self, current: int, failed: bool = False) -> None:
        self.stats.current = current
        if failed:
            self.stats.failed += 1
        self._render()

    def render_line(self) -> str:
        stats = self.stats
        bar_width = 20
        filled = int(bar_width * stats.percent / 100)
        bar = "█" * filled + "░" * (bar_width - filled)

        parts = [
            f"{self.desc}: [{bar}]",
            f"{stats.current}/{stats.total}",
            f"({stats.percent:.0f}%)",
            f"[{format_time(stats.elapsed)}<{format_time(stats.eta)}]",
        ]
        if stats.rate > 0:
            parts.append(f"{1 / stats.rate:.1f}s/page")
        if stats.failed:
            parts.append(f"| {stats.failed} failed")
        return " ".join(parts)

    def _render(self) -> None:
        line = self.render_line()
        stats = self.stats

        if self._is_tty:
            clear = " " * max(0, self._last_line_len - len(line))
            self._output.write(f"\r{line}{clear}")
            self._output.flush()
            self._last_line_len = len(line)
        elif stats.current == stats.total or stats.current % max(1, stats.total // 10) == 0:
            # Non-TTY: roughly every 10%
            self._output.write(line + "\n")
            self._output.flush()

    def finish(self) -> None:
        stats = self.stats
        if self._is_tty:
            self._output.write("\n")

        elapsed = format_time(stats.elapsed)
        if self.cancelled:
            summary = f"■ {self.desc} cancelled at page {stats.current}/{stats.total} ({elapsed})"
        elif stats.failed:
            summary = (
                f"✓ {self.desc} complete: {stats.current - stats.failed}/{stats.total} "
                f"pages, {stats.failed} failed ({elapsed})"
            )
        else:
            summary = f"✓ {self.desc} complete: {stats.total} pages ({elapsed})"

        self._output.write(summary + "\n")
        self._output.flush()
