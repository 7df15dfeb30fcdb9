"""Tests for the file report writer."""

from __future__ import annotations

import json

import pytest

from qadigest.core.errors import WriteError
from qadigest.core.models import FinalAnalysis
from qadigest.surfaces.file import FileReportWriter, resolve_output_path, write_analysis_json
from tests.helpers.builders import make_partial


class TestFileReportWriter:
    def test_writes_utf8_and_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "report.md"
        FileReportWriter().write(str(target), "# Café ✓")
        assert target.read_text(encoding="utf-8") == "# Café ✓"

    def test_overwrites_existing(self, tmp_path):
        target = tmp_path / "report.md"
        target.write_text("old")
        FileReportWriter().write(str(target), "new")
        assert target.read_text() == "new"
        assert list(tmp_path.iterdir()) == [target]

    def test_file_uri(self, tmp_path):
        target = tmp_path / "report.md"
        FileReportWriter().write(f"file://{target}", "x")
        assert target.read_text() == "x"

    def test_failure_raises_write_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("i am a file")
        with pytest.raises(WriteError) as exc_info:
            FileReportWriter().write(str(blocker / "report.md"), "x")
        assert isinstance(exc_info.value.__cause__, OSError)


def test_resolve_output_path_plain(tmp_path):
    assert resolve_output_path(tmp_path / "x.md") == tmp_path / "x.md"


def test_write_analysis_json(tmp_path):
    analysis = FinalAnalysis(
        total_chunks=1, total_messages=3, partial_analyses=(make_partial(0, 3),), final_report="# R"
    )
    target = tmp_path / "analysis.json"
    write_analysis_json(target, analysis)
    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["totalChunks"] == 1
    assert data["totalMessages"] == 3
    assert data["partialAnalyses"][0]["messageCount"] == 3
    assert data["finalReport"] == "# R"
