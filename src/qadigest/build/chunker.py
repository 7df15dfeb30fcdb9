"""Split an ordered transcript into bounded chunks.

Two strategies:

- ``simple``: fixed-size walk, ``chunk_size`` messages per chunk with a
  possibly smaller last chunk. ``len(chunks) == ceil(N / chunk_size)``.
- ``smart``: grows each chunk to the target size, then keeps appending while
  consecutive messages look related (Q&A pairs, same author, close in time)
  so answers are not cut off from their questions.

Both are deterministic and produce contiguous, non-overlapping chunks whose
ids run ``0..n-1`` in transcript order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from pydantic import TypeAdapter, ValidationError

from qadigest.core.config import MAX_CHUNK_SIZE
from qadigest.core.errors import ChunkError, InvalidChunkSizeError
from qadigest.core.models import Chunk, ChunkingResult, Message, Transcript

logger = logging.getLogger(__name__)

_DATETIME = TypeAdapter(datetime)

_QUESTION_RE = re.compile(r"how (do|to|can)|is there|what('s| is)|can i|why (does|is|are)", re.I)
_ANSWER_RE = re.compile(r"^(yes|no|you can|try|use|the answer|check out)", re.I)

# Relationship score weights
SEQUENTIAL_SCORE = 100
NEAR_SEQUENTIAL_SCORE = 50
QA_PAIR_SCORE = 50
SAME_AUTHOR_SCORE = 30
CLOSE_IN_TIME_SCORE = 25      # <= 5 minutes
NEARBY_IN_TIME_SCORE = 10     # <= 15 minutes
DISTANT_IN_TIME_PENALTY = -20  # > 30 minutes
FORCE_BREAK_SCORE = 50


@dataclass(frozen=True)
class ChunkingConfig:
    target_size: int = 50
    strategy: str = "simple"
    min_relationship_score: int = 75
    max_chunk_overflow: float = 1.5


def _messages_of(transcript: Transcript | Sequence[Message]) -> tuple[Message, ...]:
    if isinstance(transcript, Transcript):
        return transcript.messages
    return tuple(transcript)


def split(transcript: Transcript | Sequence[Message], chunk_size: int) -> list[Chunk]:
    """Fixed-size chunking in transcript order.

    Raises:
        InvalidChunkSizeError: ``chunk_size <= 0``.
        ChunkError: the transcript is empty.
    """
    if chunk_size <= 0:
        raise InvalidChunkSizeError(chunk_size, 1)
    messages = _messages_of(transcript)
    if not messages:
        raise ChunkError("No messages to chunk")

    return [
        Chunk(chunk_id=chunk_id, messages=messages[start:start + chunk_size])
        for chunk_id, start in enumerate(range(0, len(messages), chunk_size))
    ]


def is_likely_question(message: Message) -> bool:
    return "?" in message.content or bool(_QUESTION_RE.search(message.content))


def is_likely_answer(message: Message) -> bool:
    content = message.content
    return len(content) > 100 or "```" in content or bool(_ANSWER_RE.match(content))


def _parse_time(value: str) -> datetime | None:
    try:
        return _DATETIME.validate_python(value)
    except ValidationError:
        return None


def relationship_score(current: Message, previous: Message) -> int:
    """Score how strongly ``current`` belongs with ``previous``."""
    score = 0

    if current.seq_id == previous.seq_id + 1:
        score += SEQUENTIAL_SCORE
    elif current.seq_id == previous.seq_id + 2:
        score += NEAR_SEQUENTIAL_SCORE

    same_author = current.author.id == previous.author.id
    if is_likely_question(previous) and is_likely_answer(current) and not same_author:
        score += QA_PAIR_SCORE
    if same_author:
        score += SAME_AUTHOR_SCORE

    prev_time, curr_time = _parse_time(previous.timestamp), _parse_time(current.timestamp)
    if prev_time is not None and curr_time is not None:
        try:
            minutes = (curr_time - prev_time).total_seconds() / 60
        except TypeError:
            # naive vs aware timestamps; treat as no signal
            minutes = None
        if minutes is not None:
            if minutes <= 5:
                score += CLOSE_IN_TIME_SCORE
            elif minutes <= 15:
                score += NEARBY_IN_TIME_SCORE
            elif minutes > 30:
                score += DISTANT_IN_TIME_PENALTY

    return score


def _smart_groups(messages: tuple[Message, ...], config: ChunkingConfig) -> list[tuple[Message, ...]]:
    if len(messages) <= config.target_size:
        return [messages]

    max_size = config.target_size * config.max_chunk_overflow
    groups: list[tuple[Message, ...]] = []
    start = 0
    for i in range(1, len(messages)):
        current_len = i - start
        score = relationship_score(messages[i], messages[i - 1])
        soft_break = current_len >= config.target_size and score < config.min_relationship_score
        force_break = current_len > max_size and score < FORCE_BREAK_SCORE
        if soft_break or force_break:
            groups.append(messages[start:i])
            start = i
    groups.append(messages[start:])
    return groups


def chunk_messages(
    transcript: Transcript | Sequence[Message],
    config: ChunkingConfig,
) -> ChunkingResult:
    """Chunk with the configured strategy and report statistics."""
    if not 1 <= config.target_size <= MAX_CHUNK_SIZE:
        raise InvalidChunkSizeError(config.target_size, 1, MAX_CHUNK_SIZE)
    messages = _messages_of(transcript)
    if not messages:
        raise ChunkError("No messages to chunk")

    if config.strategy == "smart":
        chunks = tuple(
            Chunk(chunk_id=i, messages=group)
            for i, group in enumerate(_smart_groups(messages, config))
        )
    elif config.strategy == "simple":
        chunks = tuple(split(messages, config.target_size))
    else:
        raise ChunkError(f"Unknown chunking strategy: {config.strategy!r}")

    result = ChunkingResult(chunks=chunks, total_messages=len(messages), strategy=config.strategy)
    logger.debug(
        "Chunking complete: %d messages -> %d chunks (strategy=%s, sizes=%s)",
        result.total_messages,
        result.chunk_count,
        result.strategy,
        [c.message_count for c in chunks],
    )
    return result
