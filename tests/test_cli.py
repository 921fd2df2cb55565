"""Tests for the command-line interface."""

import argparse
import sys
import zipfile

import pytest

from pdf2epub.cli import main, parse_chapter


class TestParseChapter:
    """Tests for --chapter PAGE:TITLE parsing."""

    def test_one_based_page(self):
        assert parse_chapter("9:Chapter One") == (8, "Chapter One")

    def test_title_may_be_omitted(self):
        assert parse_chapter("3:") == (2, "")
        assert parse_chapter("3") == (2, "")

    @pytest.mark.parametrize("value", ["x:Title", "0:Zero"])
    def test_rejected(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_chapter(value)


class TestConvert:
    """Tests for the convert command on text PDFs."""

    def run(self, monkeypatch, *args):
        monkeypatch.setattr(sys, "argv", ["pdf2epub", *args])
        return main()

    def test_untitled_marks_numbered_by_order(self, monkeypatch, tmp_path, text_pdf):
        pdf = tmp_path / "Novel.pdf"
        pdf.write_bytes(text_pdf)
        out = tmp_path / "out"

        code = self.run(
            monkeypatch,
            "--settings", str(tmp_path / "settings.json"),
            "convert", str(pdf), "-o", str(out),
            "--chapter", "3:", "--chapter", "2:",
        )

        assert code == 0
        nav = zipfile.ZipFile(out / "Novel.epub").read("OEBPS/nav.xhtml").decode()
        assert "1. Preface" in nav
        assert "2. Chapter 1" in nav
        assert "3. Chapter 2" in nav

    def test_chapter_past_the_end(self, monkeypatch, tmp_path, text_pdf):
        pdf = tmp_path / "Novel.pdf"
        pdf.write_bytes(text_pdf)

        code = self.run(
            monkeypatch,
            "--settings", str(tmp_path / "settings.json"),
            "convert", str(pdf), "-o", str(tmp_path / "out"),
            "--chapter", "9:Nowhere",
        )

        assert code == 1
