"""qadigest error types and utilities."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write(path: Path, content: str) -> None:
    """Write content to a file atomically using temp file + rename.

    Writes to a temporary file in the same directory, fsyncs it,
    then atomically replaces the target path.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        os.write(fd, content.encode("utf-8"))
        os.fsync(fd)
        os.close(fd)
        os.replace(tmp, str(path))
    except BaseException:
        try:
            os.close(fd)
        except OSError:
            pass
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class QADigestError(Exception):
    """Base exception for qadigest."""

    pass


class ConfigurationError(QADigestError):
    """A configuration value is missing or out of range."""

    def __init__(self, key: str, value: object, reason: str):
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid configuration for {key}: {reason} (got {value!r})")


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class LoadError(QADigestError):
    """The transcript could not be loaded. Never retried."""

    pass


class TranscriptReadError(LoadError):
    def __init__(self, path: str, cause: BaseException | None = None):
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to read transcript {path}{detail}")


class InvalidJSONError(LoadError):
    def __init__(self, path: str, cause: BaseException | None = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Invalid JSON in transcript {path}: {cause}")


class TranscriptFormatError(LoadError):
    """Top-level structure is not an object with a ``messages`` array."""

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(f"Invalid data format: expected {expected}, received {received}")


class SchemaValidationError(LoadError):
    """One or more messages failed schema validation."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Schema validation failed:\n" + "\n".join(self.errors))


class InsufficientDataError(LoadError):
    def __init__(self, count: int, minimum: int):
        self.count = count
        self.minimum = minimum
        super().__init__(
            f"Insufficient data: found {count} messages, need at least {minimum}"
        )


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class ChunkError(QADigestError):
    """Invalid chunking input or configuration."""

    pass


class InvalidChunkSizeError(ChunkError):
    def __init__(self, size: int, minimum: int, maximum: int | None = None):
        self.size = size
        self.minimum = minimum
        self.maximum = maximum
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        super().__init__(f"Invalid chunk size: {size} (must be {bounds})")


# ---------------------------------------------------------------------------
# LLM service errors, classified once at the client boundary
# ---------------------------------------------------------------------------


class LLMServiceError(QADigestError):
    """Failure of the external analysis call.

    ``stage`` and ``chunk_id`` are filled in by the component that made the
    call so the orchestrator can report which unit failed.
    """

    kind = "generic"
    retryable = False

    def __init__(self, message: str = "", cause: BaseException | None = None):
        self.message = message or "LLM operation failed"
        self.cause = cause
        self.stage: str | None = None
        self.chunk_id: int | None = None
        super().__init__(self.message)


class LLMError(LLMServiceError):
    """Unclassified external failure (unexpected status, connection reset, ...)."""

    pass


class LLMTimeoutError(LLMServiceError):
    kind = "timeout"
    retryable = True

    def __init__(self, message: str = "", cause: BaseException | None = None):
        super().__init__(message or "LLM request timed out", cause)


class LLMRateLimitError(LLMServiceError):
    kind = "rate_limit"
    retryable = True

    def __init__(
        self,
        message: str = "",
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ):
        self.retry_after = retry_after
        if not message:
            message = "Rate limit exceeded"
            if retry_after is not None:
                message += f". Retry after {retry_after:g}s"
        super().__init__(message, cause)


class LLMAuthenticationError(LLMServiceError):
    kind = "authentication"

    def __init__(self, message: str = "", cause: BaseException | None = None):
        super().__init__(message or "LLM authentication failed - check API key", cause)


# ---------------------------------------------------------------------------
# Analysis, persistence, pipeline
# ---------------------------------------------------------------------------


class AnalysisError(QADigestError):
    """Malformed response or generic failure while analyzing. Terminal."""

    def __init__(
        self,
        stage: str,
        message: str,
        chunk_id: int | None = None,
        cause: BaseException | None = None,
    ):
        self.stage = stage
        self.message = message
        self.chunk_id = chunk_id
        self.cause = cause
        where = f' (chunk {chunk_id})' if chunk_id is not None else ""
        super().__init__(f'Analysis failed at stage "{stage}"{where}: {message}')


class WriteError(QADigestError):
    def __init__(self, path: str, cause: BaseException | None = None):
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to write report {path}{detail}")


class PipelineError(QADigestError):
    """Terminal pipeline failure. The originating error is ``__cause__``."""

    def __init__(self, message: str, stage: str | None = None, chunk_id: int | None = None):
        self.stage = stage
        self.chunk_id = chunk_id
        super().__init__(message)


def format_error(error: BaseException) -> str:
    """Render an error as a single user-facing line."""
    if isinstance(error, PipelineError) and error.__cause__ is not None:
        inner = format_error(error.__cause__)
        location = f"stage {error.stage}" if error.stage else "pipeline"
        if error.chunk_id is not None:
            location += f", chunk {error.chunk_id}"
        return f"[{location}] {inner}"
    if isinstance(error, LLMServiceError):
        label = error.kind.replace("_", " ")
        return f"LLM {label} error: {error.message}"
    if isinstance(error, SchemaValidationError):
        return f"Schema validation failed: {'; '.join(error.errors)}"
    return str(error)
