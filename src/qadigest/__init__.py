"""qadigest - distill Q&A chat transcripts into a markdown knowledge report.

Usage:
    from qadigest import AnalyzerConfig, run

    analysis = run("export.json", "report.md", AnalyzerConfig(chunk_size=50))
    print(analysis.total_chunks, analysis.final_report[:80])
"""

from qadigest.build.runner import Pipeline, PipelineState, Stage, run
from qadigest.core.config import AnalyzerConfig, LLMConfig
from qadigest.core.errors import PipelineError, QADigestError
from qadigest.core.models import Chunk, FinalAnalysis, Message, PartialAnalysis, Transcript

__all__ = [
    "AnalyzerConfig",
    "Chunk",
    "FinalAnalysis",
    "LLMConfig",
    "Message",
    "PartialAnalysis",
    "Pipeline",
    "PipelineError",
    "PipelineState",
    "QADigestError",
    "Stage",
    "Transcript",
    "run",
]

__version__ = "0.1.0"
