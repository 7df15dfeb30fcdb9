"""Per-chunk analysis: one external call per chunk, classified retry, strict parsing."""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from qadigest.build.retry import RetryPolicy, call_with_retry
from qadigest.core.errors import AnalysisError, LLMError, LLMServiceError
from qadigest.core.models import Chunk, CodeExample, EffectPattern, PartialAnalysis

if TYPE_CHECKING:
    from qadigest.core.logging import AnalysisLogger
    from qadigest.llm.backend import AnalysisBackend

logger = logging.getLogger(__name__)

STAGE = "chunk_analysis"

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n(.*?)\n?\s*```\s*$", re.S)


class _EffectPatternOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pattern: str = Field(min_length=1)
    description: str = ""
    example_message_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("exampleMessageIds", "example_message_ids"),
    )

    @field_validator("example_message_ids", mode="before")
    @classmethod
    def _ids_as_strings(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(v) for v in value]
        return value


class _CodeExampleOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pattern: str = Field(min_length=1)
    code: str = Field(min_length=1)
    context: str = Field(default="", validation_alias=AliasChoices("context", "explanation"))


class _PartialAnalysisOut(BaseModel):
    """Shape of the JSON the model is asked to return."""

    model_config = ConfigDict(extra="ignore")

    common_questions: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("commonQuestions", "common_questions")
    )
    effect_patterns: list[_EffectPatternOut] = Field(
        default_factory=list, validation_alias=AliasChoices("effectPatterns", "effect_patterns")
    )
    pain_points: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("painPoints", "pain_points")
    )
    best_practices: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("bestPractices", "best_practices")
    )
    code_examples: list[_CodeExampleOut] = Field(
        default_factory=list, validation_alias=AliasChoices("codeExamples", "code_examples")
    )

    @field_validator("effect_patterns", mode="before")
    @classmethod
    def _bare_pattern_names(cls, value: Any) -> Any:
        # Models sometimes list patterns as plain strings
        if isinstance(value, list):
            return [{"pattern": v} if isinstance(v, str) else v for v in value]
        return value


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text.strip()


def parse_partial_analysis(raw: str, chunk: Chunk) -> PartialAnalysis:
    """Parse model output for ``chunk`` into a PartialAnalysis.

    Raises:
        AnalysisError: the text is not a JSON object of the expected shape.
    """
    try:
        data = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as exc:
        raise AnalysisError(STAGE, f"Malformed JSON response: {exc}", chunk.chunk_id, exc) from exc
    if not isinstance(data, dict):
        raise AnalysisError(
            STAGE,
            f"Expected a JSON object, got {type(data).__name__}",
            chunk.chunk_id,
        )
    try:
        parsed = _PartialAnalysisOut.model_validate(data)
    except ValidationError as exc:
        raise AnalysisError(
            STAGE, f"Response failed validation: {exc.error_count()} error(s)", chunk.chunk_id, exc
        ) from exc

    return PartialAnalysis(
        chunk_id=chunk.chunk_id,
        message_count=chunk.message_count,
        common_questions=list(parsed.common_questions),
        effect_patterns=[
            EffectPattern(p.pattern, p.description, list(p.example_message_ids))
            for p in parsed.effect_patterns
        ],
        pain_points=list(parsed.pain_points),
        best_practices=list(parsed.best_practices),
        code_examples=[CodeExample(c.pattern, c.code, c.context) for c in parsed.code_examples],
    )


class ChunkAnalyzer:
    """Analyze one chunk at a time through an injected backend.

    Timeouts and rate limits are retried per ``policy``; everything else is
    terminal. Terminal failures always carry ``stage`` and ``chunk_id``.
    """

    def __init__(
        self,
        backend: AnalysisBackend,
        policy: RetryPolicy | None = None,
        logger: AnalysisLogger | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], object] | None = None,
    ):
        self.backend = backend
        self.policy = policy or RetryPolicy()
        self.logger = logger
        self.cancel_event = cancel_event
        self.sleep = sleep

    def analyze(self, chunk: Chunk) -> PartialAnalysis:
        desc = f"chunk {chunk.chunk_id}"

        def _on_retry(attempt: int, delay: float, error: BaseException) -> None:
            if self.logger is not None:
                self.logger.retry(STAGE, desc, attempt, delay, error)

        try:
            raw = call_with_retry(
                lambda: self.backend.analyze_chunk(chunk),
                self.policy,
                description=desc,
                cancel_event=self.cancel_event,
                sleep=self.sleep,
                on_retry=_on_retry,
            )
        except LLMError as exc:
            raise AnalysisError(STAGE, exc.message, chunk.chunk_id, exc) from exc
        except LLMServiceError as exc:
            exc.stage = STAGE
            exc.chunk_id = chunk.chunk_id
            logger.error("Chunk %d analysis failed: %s", chunk.chunk_id, exc)
            raise

        return parse_partial_analysis(raw, chunk)
