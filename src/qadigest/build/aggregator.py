"""Synthesize ordered partial analyses into the final markdown report."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from qadigest.build.retry import RetryPolicy, call_with_retry
from qadigest.core.errors import AnalysisError, LLMError, LLMServiceError
from qadigest.core.models import FinalAnalysis, PartialAnalysis, Transcript

if TYPE_CHECKING:
    from qadigest.core.logging import AnalysisLogger
    from qadigest.llm.backend import AnalysisBackend

logger = logging.getLogger(__name__)

STAGE = "aggregation"


def check_ordered(partials: Sequence[PartialAnalysis]) -> None:
    """Require strictly ascending, hence unique, chunk ids."""
    for prev, curr in zip(partials, partials[1:]):
        if curr.chunk_id <= prev.chunk_id:
            raise AnalysisError(
                STAGE,
                f"Partial analyses must be sorted by chunk id with no duplicates "
                f"(chunk {curr.chunk_id} follows chunk {prev.chunk_id})",
            )


class Aggregator:
    """Second LLM pass over all partial analyses.

    Uses the same retry policy and error classification as ChunkAnalyzer.
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

    def aggregate(self, partials: Sequence[PartialAnalysis]) -> str:
        """Return the final markdown report for ``partials``."""
        partials = list(partials)
        if not partials:
            raise AnalysisError(STAGE, "No partial analyses to aggregate")
        check_ordered(partials)

        desc = f"aggregate of {len(partials)} analyses"

        def _on_retry(attempt: int, delay: float, error: BaseException) -> None:
            if self.logger is not None:
                self.logger.retry(STAGE, desc, attempt, delay, error)

        try:
            report = call_with_retry(
                lambda: self.backend.aggregate_analyses(partials),
                self.policy,
                description=desc,
                cancel_event=self.cancel_event,
                sleep=self.sleep,
                on_retry=_on_retry,
            )
        except LLMError as exc:
            raise AnalysisError(STAGE, exc.message, cause=exc) from exc
        except LLMServiceError as exc:
            exc.stage = STAGE
            logger.error("Aggregation failed: %s", exc)
            raise

        if not isinstance(report, str) or not report.strip():
            raise AnalysisError(STAGE, "Model returned an empty report")
        return report


def build_final_analysis(
    transcript: Transcript,
    partials: Sequence[PartialAnalysis],
    report: str,
) -> FinalAnalysis:
    """Wrap the report and bookkeeping into the terminal artifact."""
    ordered = tuple(sorted(partials, key=lambda p: p.chunk_id))
    return FinalAnalysis(
        total_chunks=len(ordered),
        total_messages=len(transcript),
        partial_analyses=ordered,
        final_report=report,
    )
