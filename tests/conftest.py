"""Shared test fixtures for qadigest."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from qadigest.config import reset_settings
from tests.helpers.builders import FakeBackend, RecordingSleep, RecordingWriter

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep QADIGEST_* env vars and stray .env files out of tests."""
    for key in list(os.environ):
        if key.startswith("QADIGEST_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def sample_transcript_path() -> Path:
    return FIXTURES_DIR / "sample_transcript.json"


@pytest.fixture
def write_transcript(tmp_path):
    """Write a transcript dict to a temp file and return its path."""

    def _write(data: dict | list | str, name: str = "transcript.json") -> Path:
        path = tmp_path / name
        text = data if isinstance(data, str) else json.dumps(data)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def recording_writer():
    return RecordingWriter()
