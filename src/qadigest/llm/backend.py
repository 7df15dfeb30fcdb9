"""The "analyze text" capability: prompt construction plus one LLM call."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from qadigest.core.models import Chunk, PartialAnalysis
from qadigest.llm.client import LLMClient, LLMResponse

if TYPE_CHECKING:
    from qadigest.core.logging import AnalysisLogger

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"


class AnalysisBackend(Protocol):
    """External analysis capability consumed by the pipeline.

    Implementations raise ``LLMServiceError`` subclasses on failure and
    return the raw model text on success. They do not retry.
    """

    def analyze_chunk(self, chunk: Chunk) -> str: ...

    def aggregate_analyses(self, partials: list[PartialAnalysis]) -> str: ...


def load_prompt(name: str) -> str:
    """Load a prompt template from the prompts/ directory."""
    return (PROMPTS_DIR / f"{name}.txt").read_text(encoding="utf-8")


def render_chunk_prompt(chunk: Chunk, template: str | None = None) -> str:
    template = template if template is not None else load_prompt("chunk_analysis")
    messages_json = json.dumps([m.to_dict() for m in chunk.messages], indent=2, ensure_ascii=False)
    return (
        template.replace("{message_count}", str(chunk.message_count))
        .replace("{messages}", messages_json)
    )


def render_aggregate_prompt(partials: list[PartialAnalysis], template: str | None = None) -> str:
    template = template if template is not None else load_prompt("aggregate")
    analyses_json = json.dumps([p.to_dict() for p in partials], indent=2, ensure_ascii=False)
    return (
        template.replace("{analysis_count}", str(len(partials)))
        .replace("{analyses}", analyses_json)
    )


class LLMAnalysisBackend:
    """AnalysisBackend backed by an ``LLMClient``.

    Optionally reports each call to an ``AnalysisLogger`` for timing and
    token accounting.
    """

    def __init__(self, client: LLMClient, logger: AnalysisLogger | None = None):
        self.client = client
        self.logger = logger
        self._chunk_template = load_prompt("chunk_analysis")
        self._aggregate_template = load_prompt("aggregate")

    def analyze_chunk(self, chunk: Chunk) -> str:
        prompt = render_chunk_prompt(chunk, self._chunk_template)
        return self._call("chunk_analysis", f"chunk {chunk.chunk_id}", prompt).content

    def aggregate_analyses(self, partials: list[PartialAnalysis]) -> str:
        prompt = render_aggregate_prompt(partials, self._aggregate_template)
        return self._call("aggregation", f"aggregate of {len(partials)} analyses", prompt).content

    def _call(self, stage: str, desc: str, prompt: str) -> LLMResponse:
        start = None
        if self.logger is not None:
            start = self.logger.llm_call_start(stage, desc, self.client.config.model)
        response = self.client.complete(
            messages=[{"role": "user", "content": prompt}],
            artifact_desc=desc,
        )
        if self.logger is not None and start is not None:
            self.logger.llm_call_finish(
                stage,
                desc,
                start,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            )
        return response
