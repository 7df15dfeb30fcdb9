"""Transcript reading capability."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from qadigest.core.errors import TranscriptReadError


class TranscriptReader(Protocol):
    """Anything that can turn an input reference into raw bytes."""

    def read(self, input_ref: str) -> bytes: ...


class FileTranscriptReader:
    """Read transcripts from the local filesystem."""

    def read(self, input_ref: str) -> bytes:
        path = expand_path(str(input_ref))
        if not path.exists():
            raise TranscriptReadError(str(path), FileNotFoundError(f"No such file: {path}"))
        if not path.is_file():
            raise TranscriptReadError(str(path), IsADirectoryError(f"Not a file: {path}"))
        try:
            return path.read_bytes()
        except OSError as exc:
            raise TranscriptReadError(str(path), exc) from exc


def expand_path(path: str) -> Path:
    """Expand user home directory and resolve path."""
    return Path(path).expanduser().resolve()
