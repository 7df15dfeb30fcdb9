"""Core data models for qadigest."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Author:
    id: str
    name: str


@dataclass(frozen=True)
class Message:
    """A single transcript message. ``seq_id`` defines total order."""

    seq_id: int
    id: str
    content: str
    author: Author
    timestamp: str  # ISO-8601

    def to_dict(self) -> dict:
        return {
            "seqId": self.seq_id,
            "id": self.id,
            "content": self.content,
            "author": {"id": self.author.id, "name": self.author.name},
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Transcript:
    """Non-empty message history sorted ascending by ``seq_id``."""

    messages: tuple[Message, ...]

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass(frozen=True)
class Chunk:
    """A contiguous, ordered slice of a transcript sized for one LLM call."""

    chunk_id: int
    messages: tuple[Message, ...]

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def first_seq_id(self) -> int:
        return self.messages[0].seq_id

    @property
    def last_seq_id(self) -> int:
        return self.messages[-1].seq_id


@dataclass(frozen=True)
class ChunkingResult:
    """Chunks plus bookkeeping about how they were produced."""

    chunks: tuple[Chunk, ...]
    total_messages: int
    strategy: str  # "simple" or "smart"

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def average_chunk_size(self) -> int:
        if not self.chunks:
            return 0
        return round(self.total_messages / len(self.chunks))


@dataclass(frozen=True)
class EffectPattern:
    pattern: str
    description: str
    example_message_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern,
            "description": self.description,
            "exampleMessageIds": list(self.example_message_ids),
        }


@dataclass(frozen=True)
class CodeExample:
    pattern: str
    code: str
    context: str

    def to_dict(self) -> dict:
        return {"pattern": self.pattern, "code": self.code, "context": self.context}


@dataclass(frozen=True)
class PartialAnalysis:
    """Structured analysis of one chunk.

    ``chunk_id`` and ``message_count`` always come from the chunk itself,
    never from the model output.
    """

    chunk_id: int
    message_count: int
    common_questions: list[str] = field(default_factory=list)
    effect_patterns: list[EffectPattern] = field(default_factory=list)
    pain_points: list[str] = field(default_factory=list)
    best_practices: list[str] = field(default_factory=list)
    code_examples: list[CodeExample] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "chunkId": self.chunk_id,
            "messageCount": self.message_count,
            "commonQuestions": list(self.common_questions),
            "effectPatterns": [p.to_dict() for p in self.effect_patterns],
            "painPoints": list(self.pain_points),
            "bestPractices": list(self.best_practices),
            "codeExamples": [c.to_dict() for c in self.code_examples],
        }


@dataclass(frozen=True)
class FinalAnalysis:
    """Terminal artifact of a successful run."""

    total_chunks: int
    total_messages: int
    partial_analyses: tuple[PartialAnalysis, ...]
    final_report: str

    def to_dict(self) -> dict:
        return {
            "totalChunks": self.total_chunks,
            "totalMessages": self.total_messages,
            "partialAnalyses": [p.to_dict() for p in self.partial_analyses],
            "finalReport": self.final_report,
        }
