"""Structured logging and verbosity levels for qadigest runs."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape


class Verbosity(IntEnum):
    """Verbosity levels for console output."""

    QUIET = -1    # No console output
    DEFAULT = 0   # Stage transitions
    VERBOSE = 1   # + per-chunk status, retries
    DEBUG = 2     # + LLM request/response details, timing


@dataclass
class StageLog:
    """Per-stage statistics."""

    name: str
    llm_calls: int = 0
    retries: int = 0
    completed_chunks: list[int] = field(default_factory=list)
    time_seconds: float = 0.0
    tokens_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "llm_calls": self.llm_calls,
            "retries": self.retries,
            "completed_chunks": sorted(self.completed_chunks),
            "time_seconds": self.time_seconds,
            "tokens_used": self.tokens_used,
        }


@dataclass
class RunLog:
    """Structured log of a complete pipeline run.

    The dict format is::

        {
            "run_id": "20240315T100000Z",
            "status": "completed",
            "stages": {
                "chunk_analysis": {
                    "llm_calls": 3,
                    "retries": 2,
                    "completed_chunks": [0, 1, 2],
                    "time_seconds": 4.1,
                    "tokens_used": 5200,
                },
                ...
            },
            "total_llm_calls": 4,
            "total_retries": 2,
            "total_time": 6.3,
            "total_tokens": 7100,
            "error": None,
        }
    """

    run_id: str = ""
    status: str = "running"
    stages: dict[str, StageLog] = field(default_factory=dict)
    total_time: float = 0.0
    total_llm_calls: int = 0
    total_retries: int = 0
    total_tokens: int = 0
    error: str | None = None

    def get_or_create_stage(self, name: str) -> StageLog:
        """Get existing stage log or create a new one."""
        if name not in self.stages:
            self.stages[name] = StageLog(name=name)
        return self.stages[name]

    def finalize(self) -> None:
        """Compute totals from stage data."""
        self.total_llm_calls = sum(s.llm_calls for s in self.stages.values())
        self.total_retries = sum(s.retries for s in self.stages.values())
        self.total_tokens = sum(s.tokens_used for s in self.stages.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "stages": {name: stage.to_dict() for name, stage in self.stages.items()},
            "total_llm_calls": self.total_llm_calls,
            "total_retries": self.total_retries,
            "total_time": self.total_time,
            "total_tokens": self.total_tokens,
            "error": self.error,
        }


class AnalysisLogger:
    """Structured logger for pipeline runs.

    Writes JSONL log files to ``log_dir`` and optionally emits console
    output via Rich based on verbosity level. Safe to call from worker
    threads.
    """

    def __init__(
        self,
        verbosity: Verbosity = Verbosity.DEFAULT,
        log_dir: Path | None = None,
        console: Console | None = None,
    ):
        self.verbosity = verbosity
        self.log_dir = log_dir
        self.console = console or Console(stderr=True)
        self.run_log = RunLog(
            run_id=datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"),
        )
        self._lock = threading.Lock()
        self._log_file = None
        self._log_path: Path | None = None
        self._stage_start: dict[str, float] = {}

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            self._log_path = log_dir / f"{self.run_log.run_id}.jsonl"
            self._log_file = open(self._log_path, "a", encoding="utf-8")

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def _write_event(self, event: dict[str, Any]) -> None:
        """Write a JSON event to the JSONL log file. Caller holds the lock."""
        if self._log_file is not None:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
            self._log_file.write(json.dumps(event) + "\n")
            self._log_file.flush()

    def _console_print(self, message: str, min_verbosity: Verbosity) -> None:
        if self.verbosity >= min_verbosity:
            self.console.print(message)

    # -- Run lifecycle --

    def run_start(self, input_ref: str, output_ref: str) -> None:
        with self._lock:
            self._write_event({
                "event": "run_start",
                "input": str(input_ref),
                "output": str(output_ref),
            })

    def run_finish(self, total_time: float) -> None:
        """Log a completed run and finalize stats."""
        with self._lock:
            self.run_log.status = "completed"
            self.run_log.total_time = total_time
            self.run_log.finalize()
            self._write_event({
                "event": "run_finish",
                "total_time": round(total_time, 3),
                "total_llm_calls": self.run_log.total_llm_calls,
                "total_retries": self.run_log.total_retries,
                "total_tokens": self.run_log.total_tokens,
            })
        self._console_print(
            f"[green]Run complete[/green] in {total_time:.1f}s",
            Verbosity.DEFAULT,
        )

    def run_failed(self, stage: str, error: BaseException, total_time: float) -> None:
        with self._lock:
            self.run_log.status = "failed"
            self.run_log.error = str(error)
            self.run_log.total_time = total_time
            self.run_log.finalize()
            self._write_event({
                "event": "run_failed",
                "stage": stage,
                "error_type": type(error).__name__,
                "error": str(error),
                "total_time": round(total_time, 3),
            })
        self._console_print(
            f"[red]Run failed[/red] during {stage}: {escape(str(error))}",
            Verbosity.DEFAULT,
        )

    # -- Stage events --

    def stage_start(self, stage: str, **details: Any) -> None:
        with self._lock:
            self._stage_start[stage] = time.time()
            self.run_log.get_or_create_stage(stage)
            self._write_event({"event": "stage_start", "stage": stage, **details})
        suffix = "".join(f" {k}={v}" for k, v in details.items())
        self._console_print(f"  [bold]{stage}[/bold]{suffix}", Verbosity.DEFAULT)

    def stage_finish(self, stage: str, **details: Any) -> None:
        with self._lock:
            elapsed = time.time() - self._stage_start.get(stage, time.time())
            self.run_log.get_or_create_stage(stage).time_seconds = elapsed
            self._write_event({
                "event": "stage_finish",
                "stage": stage,
                "time_seconds": round(elapsed, 3),
                **details,
            })
        self._console_print(f"    {stage} done ({elapsed:.1f}s)", Verbosity.VERBOSE)

    # -- Chunk events --

    def chunk_start(self, chunk_id: int, message_count: int) -> None:
        with self._lock:
            self._write_event({
                "event": "chunk_start",
                "chunk_id": chunk_id,
                "message_count": message_count,
            })
        self._console_print(
            f"      [dim]chunk {chunk_id}: {message_count} messages[/dim]",
            Verbosity.DEBUG,
        )

    def chunk_finish(self, chunk_id: int, elapsed: float) -> None:
        with self._lock:
            self.run_log.get_or_create_stage("chunk_analysis").completed_chunks.append(chunk_id)
            self._write_event({
                "event": "chunk_finish",
                "chunk_id": chunk_id,
                "duration_seconds": round(elapsed, 3),
            })
        self._console_print(
            f"      [green]+[/green] chunk {chunk_id} ({elapsed:.1f}s)",
            Verbosity.VERBOSE,
        )

    def retry(self, stage: str, desc: str, attempt: int, delay: float, error: BaseException) -> None:
        kind = getattr(error, "kind", type(error).__name__)
        with self._lock:
            self.run_log.get_or_create_stage(stage).retries += 1
            self._write_event({
                "event": "retry",
                "stage": stage,
                "desc": desc,
                "attempt": attempt,
                "delay_seconds": round(delay, 3),
                "error_kind": kind,
            })
        self._console_print(
            f"      [yellow]~[/yellow] {desc}: {kind}, retrying in {delay:.1f}s",
            Verbosity.VERBOSE,
        )

    # -- LLM call events --

    def llm_call_start(self, stage: str, desc: str, model: str) -> float:
        """Log the start of an LLM call. Returns start time for pairing with llm_call_finish."""
        start = time.time()
        with self._lock:
            self._write_event({
                "event": "llm_call_start",
                "stage": stage,
                "desc": desc,
                "model": model,
            })
        self._console_print(f"        [dim]LLM call: {desc} ({model})[/dim]", Verbosity.DEBUG)
        return start

    def llm_call_finish(
        self,
        stage: str,
        desc: str,
        start_time: float,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        elapsed = time.time() - start_time
        with self._lock:
            step = self.run_log.get_or_create_stage(stage)
            step.llm_calls += 1
            step.tokens_used += input_tokens + output_tokens
            self._write_event({
                "event": "llm_call_finish",
                "stage": stage,
                "desc": desc,
                "duration_seconds": round(elapsed, 3),
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
            })
        self._console_print(
            f"        [dim]  -> {elapsed:.1f}s, {input_tokens}in/{output_tokens}out tokens[/dim]",
            Verbosity.DEBUG,
        )

    def close(self) -> None:
        """Close the log file if open."""
        with self._lock:
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None
