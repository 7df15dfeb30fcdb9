"""Q&A transcript loader.

Exports have this structure::

    {
        "messages": [
            {
                "seqId": 1,
                "id": "1190000000000000001",
                "content": "How do I provide a layer to a test?",
                "author": {"id": "u-17", "name": "alice"},
                "timestamp": "2024-03-15T10:00:00Z"
            }
        ]
    }

Input order is not trusted; the loader sorts by ``seqId``.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from qadigest.core.errors import (
    InsufficientDataError,
    InvalidJSONError,
    SchemaValidationError,
    TranscriptFormatError,
)
from qadigest.core.models import Author, Message, Transcript
from qadigest.sources.base import FileTranscriptReader, TranscriptReader

logger = logging.getLogger(__name__)

_DATETIME = TypeAdapter(datetime)
# pydantic also reads bare numbers as unix time
_NUMERIC_RE = re.compile(r"^\s*[+-]?\d+(\.\d+)?\s*$")


class AuthorSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)


class MessageSchema(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    seq_id: int = Field(alias="seqId", gt=0)
    id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    author: AuthorSchema
    timestamp: str = Field(min_length=1)

    @field_validator("seq_id", mode="before")
    @classmethod
    def _numeric_seq_id(cls, value: Any) -> Any:
        # Integral floats such as 1.0 pass; numeric strings and booleans do not
        if isinstance(value, (bool, str)):
            raise ValueError(f"seqId must be a number, got {type(value).__name__}")
        return value

    @field_validator("timestamp")
    @classmethod
    def _iso_timestamp(cls, value: str) -> str:
        if _NUMERIC_RE.match(value):
            raise ValueError(f"not an ISO-8601 timestamp: {value!r}")
        try:
            _DATETIME.validate_python(value)
        except ValidationError as exc:
            raise ValueError(f"not an ISO-8601 timestamp: {value!r}") from exc
        return value

    def to_message(self) -> Message:
        return Message(
            seq_id=self.seq_id,
            id=self.id,
            content=self.content,
            author=Author(id=self.author.id, name=self.author.name),
            timestamp=self.timestamp,
        )


class MessageCollectionSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: list[MessageSchema]


def _validation_messages(error: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into ``path: message`` strings."""
    messages = []
    for issue in error.errors():
        path = ".".join(str(part) for part in issue.get("loc", ())) or "unknown"
        messages.append(f"{path}: {issue.get('msg', 'invalid value')}")
    return messages or [str(error)]


class TranscriptLoader:
    """Read, validate and order a transcript.

    Accepts a filesystem reference, raw ``bytes`` or an already-decoded
    JSON value. All failures are LoadError subclasses and are never retried.
    """

    def __init__(self, reader: TranscriptReader | None = None, min_messages: int = 1):
        self.reader = reader or FileTranscriptReader()
        # A transcript is never empty, whatever minimum the caller asks for
        self.min_messages = max(1, min_messages)

    def load(self, source: str | Path | bytes | dict | list) -> Transcript:
        label, data = self._decode(source)
        transcript = self.validate(data)
        logger.debug("Loaded %d messages from %s", len(transcript), label)
        return transcript

    def _decode(self, source: str | Path | bytes | dict | list) -> tuple[str, Any]:
        if isinstance(source, (dict, list)):
            return f"<{type(source).__name__}>", source
        if isinstance(source, (bytes, bytearray)):
            label, raw = "<bytes>", bytes(source)
        else:
            label = str(source)
            raw = self.reader.read(label)
        try:
            return label, json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidJSONError(label, exc) from exc

    def validate(self, data: Any) -> Transcript:
        """Validate decoded JSON and return a Transcript sorted by seq_id."""
        if not isinstance(data, dict):
            raise TranscriptFormatError("object with 'messages' array", type(data).__name__)
        if "messages" not in data:
            keys = ", ".join(sorted(data)) or "none"
            raise TranscriptFormatError("object with 'messages' property", f"object with keys: {keys}")
        if not isinstance(data["messages"], list):
            raise TranscriptFormatError("'messages' to be an array", type(data["messages"]).__name__)

        count = len(data["messages"])
        if count < self.min_messages:
            raise InsufficientDataError(count, self.min_messages)

        try:
            collection = MessageCollectionSchema.model_validate(data)
        except ValidationError as exc:
            raise SchemaValidationError(_validation_messages(exc)) from exc

        seen: set[int] = set()
        duplicates: list[str] = []
        for index, msg in enumerate(collection.messages):
            if msg.seq_id in seen:
                duplicates.append(f"messages.{index}.seqId: duplicate seqId {msg.seq_id}")
            seen.add(msg.seq_id)
        if duplicates:
            raise SchemaValidationError(duplicates)

        ordered = sorted((m.to_message() for m in collection.messages), key=lambda m: m.seq_id)
        return Transcript(messages=tuple(ordered))


def load_transcript(
    source: str | Path | bytes | dict | list,
    min_messages: int = 1,
    reader: TranscriptReader | None = None,
) -> Transcript:
    """Convenience wrapper around ``TranscriptLoader(...).load(source)``."""
    return TranscriptLoader(reader=reader, min_messages=min_messages).load(source)
