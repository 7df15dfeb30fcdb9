"""LLM boundary for qadigest."""

from qadigest.llm.backend import AnalysisBackend, LLMAnalysisBackend
from qadigest.llm.client import LLMClient, LLMResponse, classify_error

__all__ = [
    "AnalysisBackend",
    "LLMAnalysisBackend",
    "LLMClient",
    "LLMResponse",
    "classify_error",
]
