"""Report publishing surfaces."""

from qadigest.surfaces.file import FileReportWriter, ReportWriter, write_analysis_json

__all__ = [
    "FileReportWriter",
    "ReportWriter",
    "write_analysis_json",
]
