"""Transcript sources."""

from qadigest.sources.base import FileTranscriptReader, TranscriptReader
from qadigest.sources.transcript import TranscriptLoader, load_transcript

__all__ = [
    "FileTranscriptReader",
    "TranscriptLoader",
    "TranscriptReader",
    "load_transcript",
]
