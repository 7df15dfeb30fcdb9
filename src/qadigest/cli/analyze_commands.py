"""Analysis commands: qadigest analyze, qadigest plan."""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path

import click
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from qadigest.cli.main import console, setup_logging, verbosity_for
from qadigest.core.config import CHUNKING_STRATEGIES, AnalyzerConfig, LLMConfig, redact_api_key
from qadigest.core.errors import QADigestError, format_error

STRATEGY_CHOICE = click.Choice(list(CHUNKING_STRATEGIES))


def _analyzer_config(**overrides) -> AnalyzerConfig:
    try:
        return AnalyzerConfig.from_settings(overrides)
    except QADigestError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        sys.exit(1)


def _llm_config(provider: str | None, model: str | None) -> LLMConfig:
    from qadigest.config import get_settings

    settings = get_settings()
    try:
        return LLMConfig.from_dict({
            "provider": provider or settings.llm_provider,
            "model": model or settings.llm_model,
            "base_url": settings.llm_base_url,
            "temperature": settings.llm_temperature,
            "request_timeout": settings.request_timeout,
        })
    except QADigestError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        sys.exit(1)


@click.command()
@click.argument("input_path", type=click.Path(dir_okay=False))
@click.argument("output_path", type=click.Path(dir_okay=False))
@click.option("--chunk-size", default=None, type=int, help="Messages per chunk (default 50)")
@click.option("--concurrency", "-j", default=None, type=int, help="Number of concurrent LLM requests (default 5)")
@click.option("--max-retries", default=None, type=int, help="Retries for timeouts and rate limits (default 2)")
@click.option("--strategy", default=None, type=STRATEGY_CHOICE, help="Chunking strategy (default simple)")
@click.option("--provider", default=None, help="LLM provider: openai, anthropic, deepseek, openai-compatible")
@click.option("--model", default=None, help="LLM model name")
@click.option("--json-out", default=None, type=click.Path(dir_okay=False), help="Also write the full analysis as JSON")
@click.option("--log-dir", default=None, type=click.Path(file_okay=False), help="Directory for JSONL run logs")
@click.option("--verbose", "-v", count=True, help="Verbosity level: -v per-chunk, -vv debug/LLM details")
def analyze(
    input_path: str,
    output_path: str,
    chunk_size: int | None,
    concurrency: int | None,
    max_retries: int | None,
    strategy: str | None,
    provider: str | None,
    model: str | None,
    json_out: str | None,
    log_dir: str | None,
    verbose: int,
):
    """Analyze a transcript and write a markdown report to OUTPUT_PATH."""
    from qadigest.build.runner import Pipeline, Stage, failure_error
    from qadigest.config import get_settings
    from qadigest.core.logging import AnalysisLogger
    from qadigest.llm.backend import LLMAnalysisBackend
    from qadigest.llm.client import LLMClient
    from qadigest.surfaces.file import write_analysis_json

    setup_logging(verbose)
    config = _analyzer_config(
        chunk_size=chunk_size,
        concurrency_limit=concurrency,
        max_retries=max_retries,
        chunking_strategy=strategy,
    )
    llm_config = _llm_config(provider, model)

    resolved_log_dir = Path(log_dir) if log_dir else get_settings().log_dir
    logger = AnalysisLogger(
        verbosity=verbosity_for(verbose), log_dir=resolved_log_dir, console=console
    )

    concurrency_label = (
        f"{config.concurrency_limit} threads" if config.concurrency_limit > 1 else "sequential"
    )
    console.print(
        Panel(
            f"[bold]Input:[/bold] {input_path}\n"
            f"[bold]Output:[/bold] {output_path}\n"
            f"[bold]Model:[/bold] {llm_config.model} ({llm_config.provider})\n"
            f"[bold]Chunking:[/bold] {config.chunk_size} messages, {config.chunking_strategy}\n"
            f"[bold]Concurrency:[/bold] {concurrency_label}",
            title="[bold cyan]qadigest analyze[/bold cyan]",
            border_style="cyan",
        )
    )

    try:
        backend = LLMAnalysisBackend(LLMClient(llm_config), logger=logger)
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        sys.exit(1)

    pipeline = Pipeline(backend, config, logger=logger)
    start_time = time.time()
    try:
        state = pipeline.execute(input_path, output_path)
    finally:
        logger.close()

    if state.stage is Stage.FAILED:
        console.print(f"\n[red]Analysis failed:[/red] {escape(format_error(failure_error(state)))}")
        if logger.log_path is not None:
            console.print(f"[dim]Run log: {logger.log_path}[/dim]")
        sys.exit(1)

    analysis = state.final_analysis
    elapsed = time.time() - start_time

    table = Table(title="Chunk Summary", box=box.ROUNDED)
    table.add_column("Chunk", justify="right", style="bold")
    table.add_column("Messages", justify="right")
    table.add_column("seqId range", style="dim")
    table.add_column("Questions", justify="right", style="green")
    table.add_column("Patterns", justify="right", style="cyan")
    table.add_column("Pain points", justify="right", style="yellow")
    for chunk, partial in zip(state.chunks, analysis.partial_analyses):
        table.add_row(
            str(partial.chunk_id),
            str(partial.message_count),
            f"{chunk.first_seq_id}-{chunk.last_seq_id}",
            str(len(partial.common_questions)),
            str(len(partial.effect_patterns)),
            str(len(partial.pain_points)),
        )
    console.print()
    console.print(table)

    if json_out:
        try:
            write_analysis_json(json_out, analysis)
        except QADigestError as e:
            console.print(f"[red]Failed to write JSON:[/red] {escape(str(e))}")
            sys.exit(1)

    run_log = logger.run_log
    console.print(
        f"\n[bold]Total:[/bold] {analysis.total_messages} messages in "
        f"{analysis.total_chunks} chunks"
    )
    console.print(f"[bold]Report:[/bold] {output_path}")
    if json_out:
        console.print(f"[bold]JSON:[/bold] {json_out}")
    console.print(f"[bold]Time:[/bold] {elapsed:.1f}s")
    if run_log.total_llm_calls > 0:
        console.print(
            f"[bold]LLM calls:[/bold] {run_log.total_llm_calls}, "
            f"[bold]Retries:[/bold] {run_log.total_retries}, "
            f"[bold]Tokens:[/bold] {run_log.total_tokens:,}"
        )


@click.command()
@click.argument("input_path", type=click.Path(dir_okay=False))
@click.option("--chunk-size", default=None, type=int, help="Messages per chunk (default 50)")
@click.option("--strategy", default=None, type=STRATEGY_CHOICE, help="Chunking strategy (default simple)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output the plan as JSON")
def plan(input_path: str, chunk_size: int | None, strategy: str | None, as_json: bool):
    """Show how a transcript would be chunked, without calling the LLM."""
    from qadigest.build.chunker import ChunkingConfig, chunk_messages
    from qadigest.sources.transcript import load_transcript

    config = _analyzer_config(chunk_size=chunk_size, chunking_strategy=strategy)
    try:
        transcript = load_transcript(input_path)
        result = chunk_messages(
            transcript,
            ChunkingConfig(
                target_size=config.chunk_size,
                strategy=config.chunking_strategy,
                min_relationship_score=config.min_relationship_score,
                max_chunk_overflow=config.max_chunk_overflow,
            ),
        )
    except QADigestError as e:
        console.print(f"[red]Error:[/red] {escape(format_error(e))}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({
            "totalMessages": result.total_messages,
            "totalChunks": result.chunk_count,
            "strategy": result.strategy,
            "chunks": [
                {
                    "chunkId": c.chunk_id,
                    "messageCount": c.message_count,
                    "firstSeqId": c.first_seq_id,
                    "lastSeqId": c.last_seq_id,
                }
                for c in result.chunks
            ],
        }, indent=2))
        return

    llm_config = _llm_config(None, None)
    console.print(
        Panel(
            f"[bold]Input:[/bold] {input_path}\n"
            f"[bold]Messages:[/bold] {result.total_messages}\n"
            f"[bold]Chunks:[/bold] {result.chunk_count} "
            f"(avg {result.average_chunk_size}, {result.strategy})\n"
            f"[bold]LLM calls:[/bold] {result.chunk_count + 1}\n"
            f"[bold]Model:[/bold] {llm_config.model} ({llm_config.provider}), "
            f"key {redact_api_key(llm_config.resolve_api_key()) or '[red]missing[/red]'}",
            title="[bold cyan]qadigest plan[/bold cyan]",
            border_style="cyan",
        )
    )

    table = Table(box=box.ROUNDED)
    table.add_column("Chunk", justify="right", style="bold")
    table.add_column("Messages", justify="right")
    table.add_column("seqId range", style="dim")
    table.add_column("Authors", justify="right")
    for chunk in result.chunks:
        table.add_row(
            str(chunk.chunk_id),
            str(chunk.message_count),
            f"{chunk.first_seq_id}-{chunk.last_seq_id}",
            str(len({m.author.id for m in chunk.messages})),
        )
    console.print(table)
