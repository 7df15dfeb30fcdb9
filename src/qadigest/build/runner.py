"""Pipeline runner: load, chunk, analyze concurrently, aggregate, persist.

The run is an explicit state machine::

    IDLE -> LOADING -> CHUNKING -> ANALYZING -> AGGREGATING -> COMPLETED
                  \\________\\__________\\____________\\________-> FAILED

Transition functions are pure: they take a ``PipelineState`` and return a
new one, so every intermediate state can be built and inspected in tests.
``Pipeline`` drives the transitions and owns all side effects.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from qadigest.build.aggregator import Aggregator, build_final_analysis
from qadigest.build.analyzer import ChunkAnalyzer
from qadigest.build.chunker import ChunkingConfig, chunk_messages
from qadigest.build.retry import RetryCancelled
from qadigest.core.config import AnalyzerConfig, LLMConfig
from qadigest.core.errors import PipelineError
from qadigest.core.logging import AnalysisLogger, Verbosity
from qadigest.core.models import Chunk, FinalAnalysis, PartialAnalysis, Transcript
from qadigest.llm.backend import AnalysisBackend
from qadigest.sources.transcript import TranscriptLoader
from qadigest.surfaces.file import FileReportWriter, ReportWriter


class Stage(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    CHUNKING = "chunking"
    ANALYZING = "analyzing"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.COMPLETED, Stage.FAILED)


_NEXT_STAGE = {
    Stage.IDLE: Stage.LOADING,
    Stage.LOADING: Stage.CHUNKING,
    Stage.CHUNKING: Stage.ANALYZING,
    Stage.ANALYZING: Stage.AGGREGATING,
    Stage.AGGREGATING: Stage.COMPLETED,
}


@dataclass(frozen=True)
class PipelineState:
    """Everything a run has accumulated so far."""

    input_ref: str
    output_ref: str
    stage: Stage = Stage.IDLE
    transcript: Transcript | None = None
    chunks: tuple[Chunk, ...] | None = None
    partial_analyses: tuple[PartialAnalysis, ...] = ()
    final_report: str | None = None
    final_analysis: FinalAnalysis | None = None
    error: BaseException | None = None
    failed_stage: Stage | None = None
    failed_chunk_id: int | None = None


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _advance(state: PipelineState, target: Stage, **changes) -> PipelineState:
    if _NEXT_STAGE.get(state.stage) is not target:
        raise PipelineError(
            f"Illegal transition {state.stage.value} -> {target.value}",
            stage=state.stage.value,
        )
    return replace(state, stage=target, **changes)


def start(state: PipelineState) -> PipelineState:
    return _advance(state, Stage.LOADING)


def loaded(state: PipelineState, transcript: Transcript) -> PipelineState:
    return _advance(state, Stage.CHUNKING, transcript=transcript)


def chunked(state: PipelineState, chunks: Sequence[Chunk]) -> PipelineState:
    if not chunks:
        raise PipelineError("Cannot analyze an empty chunk list", stage=state.stage.value)
    return _advance(state, Stage.ANALYZING, chunks=tuple(chunks))


def analyzed(state: PipelineState, partials: Sequence[PartialAnalysis]) -> PipelineState:
    """Close the barrier. Every chunk must have exactly one partial analysis."""
    ordered = tuple(sorted(partials, key=lambda p: p.chunk_id))
    expected = [c.chunk_id for c in state.chunks or ()]
    actual = [p.chunk_id for p in ordered]
    if actual != expected:
        missing = sorted(set(expected) - set(actual))
        raise PipelineError(
            f"Barrier closed with unresolved chunks {missing or actual}",
            stage=state.stage.value,
        )
    return _advance(state, Stage.AGGREGATING, partial_analyses=ordered)


def completed(state: PipelineState, final: FinalAnalysis) -> PipelineState:
    return _advance(
        state, Stage.COMPLETED, final_report=final.final_report, final_analysis=final
    )


def failed(state: PipelineState, error: BaseException, chunk_id: int | None = None) -> PipelineState:
    if state.stage.is_terminal:
        raise PipelineError(
            f"Cannot fail a run that is already {state.stage.value}", stage=state.stage.value
        )
    return replace(
        state,
        stage=Stage.FAILED,
        error=error,
        failed_stage=state.stage,
        failed_chunk_id=chunk_id,
    )


def failure_error(state: PipelineState) -> PipelineError:
    """Build the PipelineError describing a FAILED state.

    The originating error is attached as ``__cause__`` so ``format_error``
    can name the stage and chunk.
    """
    stage = state.failed_stage.value if state.failed_stage else None
    where = f" (chunk {state.failed_chunk_id})" if state.failed_chunk_id is not None else ""
    error = PipelineError(
        f"Pipeline failed during {stage}{where}: {state.error}",
        stage=stage,
        chunk_id=state.failed_chunk_id,
    )
    error.__cause__ = state.error
    return error


# ---------------------------------------------------------------------------
# Result collection
# ---------------------------------------------------------------------------


class ResultCollector:
    """Thread-safe, write-once map of chunk id -> PartialAnalysis."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[int, PartialAnalysis] = {}

    def put(self, partial: PartialAnalysis) -> None:
        with self._lock:
            if partial.chunk_id in self._results:
                raise PipelineError(
                    f"Chunk {partial.chunk_id} produced more than one result",
                    stage=Stage.ANALYZING.value,
                    chunk_id=partial.chunk_id,
                )
            self._results[partial.chunk_id] = partial

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def ordered(self) -> list[PartialAnalysis]:
        with self._lock:
            return [self._results[k] for k in sorted(self._results)]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Pipeline:
    """Drive one transcript through the analysis state machine.

    Args:
        backend: The external analysis capability.
        config: Chunking, concurrency and retry settings.
        loader: Transcript loader (defaults to filesystem).
        writer: Report writer (defaults to atomic file write).
        logger: Structured logger; a quiet one is created if omitted.
        sleep: Backoff sleep override, mainly for tests.
    """

    def __init__(
        self,
        backend: AnalysisBackend,
        config: AnalyzerConfig | None = None,
        *,
        loader: TranscriptLoader | None = None,
        writer: ReportWriter | None = None,
        logger: AnalysisLogger | None = None,
        sleep: Callable[[float], object] | None = None,
    ):
        self.backend = backend
        self.config = config or AnalyzerConfig()
        self.config.validate()
        self.loader = loader or TranscriptLoader()
        self.writer = writer or FileReportWriter()
        self.logger = logger or AnalysisLogger(verbosity=Verbosity.QUIET)
        self.sleep = sleep
        self.state: PipelineState | None = None

    def run(self, input_ref: str | Path, output_ref: str | Path) -> FinalAnalysis:
        """Run to completion and return the FinalAnalysis.

        Raises:
            PipelineError: naming the failed stage (and chunk, if any); the
                originating error is chained as ``__cause__``.
        """
        state = self.execute(input_ref, output_ref)
        if state.stage is Stage.FAILED:
            raise failure_error(state) from state.error
        assert state.final_analysis is not None
        return state.final_analysis

    def execute(self, input_ref: str | Path, output_ref: str | Path) -> PipelineState:
        """Run and return the terminal state. Never raises for stage failures."""
        run_start = time.time()
        state = self._set(start(PipelineState(str(input_ref), str(output_ref))))
        self.logger.run_start(state.input_ref, state.output_ref)

        try:
            self.logger.stage_start(Stage.LOADING.value)
            transcript = self.loader.load(state.input_ref)
            state = self._set(loaded(state, transcript))
            self.logger.stage_finish(Stage.LOADING.value, messages=len(transcript))

            self.logger.stage_start(Stage.CHUNKING.value)
            result = chunk_messages(transcript, self._chunking_config())
            state = self._set(chunked(state, result.chunks))
            self.logger.stage_finish(
                Stage.CHUNKING.value,
                chunks=result.chunk_count,
                strategy=result.strategy,
                average_chunk_size=result.average_chunk_size,
            )

            self.logger.stage_start(
                Stage.ANALYZING.value,
                chunks=len(result.chunks),
                concurrency=self.config.concurrency_limit,
            )
            partials = self._analyze_all(state.chunks)
            state = self._set(analyzed(state, partials))
            self.logger.stage_finish(Stage.ANALYZING.value)

            self.logger.stage_start(Stage.AGGREGATING.value, partials=len(partials))
            aggregator = Aggregator(
                self.backend, self.config.retry_policy(), logger=self.logger, sleep=self.sleep
            )
            report = aggregator.aggregate(state.partial_analyses)
            final = build_final_analysis(transcript, state.partial_analyses, report)
            self.writer.write(state.output_ref, report)
            state = self._set(completed(state, final))
            self.logger.stage_finish(Stage.AGGREGATING.value, output=state.output_ref)
        except Exception as exc:
            state = self._set(failed(state, exc, getattr(exc, "chunk_id", None)))
            self.logger.run_failed(state.failed_stage.value, exc, time.time() - run_start)
            return state

        self.logger.run_finish(time.time() - run_start)
        return state

    def _set(self, state: PipelineState) -> PipelineState:
        self.state = state
        return state

    def _chunking_config(self) -> ChunkingConfig:
        return ChunkingConfig(
            target_size=self.config.chunk_size,
            strategy=self.config.chunking_strategy,
            min_relationship_score=self.config.min_relationship_score,
            max_chunk_overflow=self.config.max_chunk_overflow,
        )

    def _analyze_all(self, chunks: Sequence[Chunk]) -> list[PartialAnalysis]:
        """Fan out over a bounded pool; barrier on completion; cancel on first failure."""
        cancel = threading.Event()
        collector = ResultCollector()
        analyzer = ChunkAnalyzer(
            self.backend,
            self.config.retry_policy(),
            logger=self.logger,
            cancel_event=cancel,
            sleep=self.sleep,
        )

        def _task(chunk: Chunk) -> None:
            if cancel.is_set():
                raise RetryCancelled()
            try:
                self.logger.chunk_start(chunk.chunk_id, chunk.message_count)
                started = time.time()
                collector.put(analyzer.analyze(chunk))
                self.logger.chunk_finish(chunk.chunk_id, time.time() - started)
            except BaseException:
                # Stop queued chunks before this worker picks up the next one
                cancel.set()
                raise

        workers = max(1, min(self.config.concurrency_limit, len(chunks)))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="qadigest-chunk")
        try:
            futures: dict[Future, int] = {pool.submit(_task, c): c.chunk_id for c in chunks}
            done, _pending = wait(futures, return_when=FIRST_EXCEPTION)
            error = _first_failure(done, futures)
            if error is not None:
                raise error
        except BaseException:
            cancel.set()
            # In-flight calls end at their next retry boundary or request timeout
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return collector.ordered()


def _first_failure(done: set[Future], futures: dict[Future, int]) -> BaseException | None:
    """Pick the terminal error to report: lowest chunk id, ignoring cancellations."""
    failures = [
        (futures[f], f.exception())
        for f in done
        if not f.cancelled() and f.exception() is not None
    ]
    real = [item for item in failures if not isinstance(item[1], RetryCancelled)]
    chosen = sorted(real or failures, key=lambda item: item[0])
    return chosen[0][1] if chosen else None


def run(
    input_ref: str | Path,
    output_ref: str | Path,
    config: AnalyzerConfig | None = None,
    *,
    backend: AnalysisBackend | None = None,
    llm_config: LLMConfig | None = None,
    logger: AnalysisLogger | None = None,
) -> FinalAnalysis:
    """Analyze ``input_ref`` and write the report to ``output_ref``.

    Builds an LLM-backed backend from ``llm_config`` (or the environment)
    when no backend is supplied.
    """
    if backend is None:
        from qadigest.llm.backend import LLMAnalysisBackend
        from qadigest.llm.client import LLMClient

        client = LLMClient(llm_config or LLMConfig.from_dict({}))
        backend = LLMAnalysisBackend(client, logger=logger)
    return Pipeline(backend, config, logger=logger).run(input_ref, output_ref)
