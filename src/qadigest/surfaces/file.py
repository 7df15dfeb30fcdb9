"""File surface for persisting reports to the filesystem."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

from qadigest.core.errors import WriteError, atomic_write
from qadigest.core.models import FinalAnalysis


class ReportWriter(Protocol):
    """The "write report" capability."""

    def write(self, output_ref: str, content: str) -> None: ...


class FileReportWriter:
    """Write UTF-8 text to a path, atomically, creating parent directories.

    Supports ``file://`` URIs as well as plain paths.
    """

    def write(self, output_ref: str, content: str) -> None:
        path = resolve_output_path(output_ref)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(path, content)
        except OSError as exc:
            raise WriteError(str(path), exc) from exc


def resolve_output_path(output_ref: str | Path) -> Path:
    ref = str(output_ref)
    if ref.startswith("file://"):
        ref = ref[len("file://"):]
    return Path(ref).expanduser()


def write_analysis_json(
    output_ref: str | Path,
    analysis: FinalAnalysis,
    writer: ReportWriter | None = None,
) -> None:
    """Write ``FinalAnalysis.to_dict()`` as pretty JSON."""
    writer = writer or FileReportWriter()
    writer.write(str(output_ref), json.dumps(analysis.to_dict(), indent=2, ensure_ascii=False) + "\n")
