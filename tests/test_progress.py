"""Tests for transcription progress reporting."""

import io
import time

import pytest

from pdf2epub.library import PageSlot, Provenance
from pdf2epub.progress import ProgressStats, TranscriptionProgress, format_time


class TestFormatTime:
    """Tests for time formatting."""

    def test_format_seconds(self):
        assert format_time(5) == "5s"

    def test_format_minutes(self):
        assert format_time(90) == "1m 30s"

    def test_format_hours(self):
        assert format_time(3661) == "1h 1m"

    def test_format_none(self):
        assert format_time(None) == "--:--"


class TestProgressStats:
    """Tests for progress statistics."""

    def test_resume_starts_at_offset(self):
        stats = ProgressStats(total=10, start=4)
        assert stats.current == 4
        assert stats.done_this_run == 0
        assert stats.percent == 40.0

    def test_eta_counts_only_this_run(self):
        stats = ProgressStats(total=10, start=4, current=6)
        stats.start_time = time.time() - 2  # 2 pages in 2 seconds
        assert stats.rate == pytest.approx(1.0, rel=0.05)
        assert stats.eta == pytest.approx(4.0, rel=0.05)

    def test_percent_zero_total(self):
        assert ProgressStats(total=0).percent == 100.0


class TestTranscriptionProgress:
    """Tests for the progress line."""

    def test_on_page_updates_counts(self):
        out = io.StringIO()
        with TranscriptionProgress(total=3, stream=out) as progress:
            progress.on_page(None, 0, PageSlot("ok", Provenance.VLM_FILLED))
            progress.on_page(None, 1, PageSlot("[failed]", Provenance.VLM_ERROR))
            assert progress.stats.current == 2
            assert progress.stats.failed == 1

        assert "1 failed" in out.getvalue()

    def test_cancelled_summary(self):
        out = io.StringIO()
        with TranscriptionProgress(total=5, stream=out) as progress:
            progress.update(2)
            progress.cancelled = True

        assert "cancelled at page 2/5" in out.getvalue()

    def test_render_line(self):
        progress = TranscriptionProgress(total=4, stream=io.StringIO())
        progress.update(2)
        assert "2/4" in progress.render_line()
        assert "(50%)" in progress.render_line()
