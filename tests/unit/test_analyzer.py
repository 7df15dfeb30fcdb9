"""Tests for per-chunk analysis and response parsing."""

from __future__ import annotations

import json

import pytest

from qadigest.build.analyzer import ChunkAnalyzer, parse_partial_analysis, strip_code_fence
from qadigest.build.retry import RetryPolicy
from qadigest.core.errors import (
    AnalysisError,
    LLMAuthenticationError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from tests.helpers.builders import FakeBackend, RecordingSleep, make_chunk, partial_json


class TestStripCodeFence:
    def test_plain_text_untouched(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'

    def test_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fence('```\n{"a": 1}\n```\n') == '{"a": 1}'


class TestParsePartialAnalysis:
    def test_camel_case_response(self):
        chunk = make_chunk(3, range(1, 5))
        partial = parse_partial_analysis(partial_json(3), chunk)
        assert partial.chunk_id == 3
        assert partial.message_count == 4
        assert partial.common_questions == ["How do I use layers? (chunk 3)"]
        assert partial.effect_patterns[0].pattern == "Layer.provide"
        assert partial.effect_patterns[0].example_message_ids == ["msg-1"]
        assert partial.code_examples[0].context == "basic"

    def test_chunk_identity_comes_from_chunk(self):
        chunk = make_chunk(1, range(1, 3))
        raw = json.dumps({"chunkId": 99, "messageCount": 500, "commonQuestions": []})
        partial = parse_partial_analysis(raw, chunk)
        assert partial.chunk_id == 1
        assert partial.message_count == 2

    def test_snake_case_and_loose_shapes(self):
        raw = json.dumps({
            "common_questions": ["q"],
            "effect_patterns": ["Effect.gen"],
            "code_examples": [{"pattern": "p", "code": "c", "explanation": "why"}],
        })
        partial = parse_partial_analysis(raw, make_chunk(0, [1]))
        assert partial.effect_patterns[0].pattern == "Effect.gen"
        assert partial.effect_patterns[0].description == ""
        assert partial.code_examples[0].context == "why"
        assert partial.pain_points == []

    def test_numeric_message_ids_coerced(self):
        raw = json.dumps({"effectPatterns": [{"pattern": "p", "exampleMessageIds": [1, 2]}]})
        partial = parse_partial_analysis(raw, make_chunk(0, [1]))
        assert partial.effect_patterns[0].example_message_ids == ["1", "2"]

    def test_fenced_response(self):
        raw = f"```json\n{partial_json(0)}\n```"
        assert parse_partial_analysis(raw, make_chunk(0, [1])).best_practices

    def test_malformed_json(self):
        with pytest.raises(AnalysisError) as exc_info:
            parse_partial_analysis("not json at all", make_chunk(2, [5]))
        assert exc_info.value.chunk_id == 2
        assert exc_info.value.stage == "chunk_analysis"
        assert "Malformed JSON" in exc_info.value.message

    def test_json_array_rejected(self):
        with pytest.raises(AnalysisError, match="Expected a JSON object"):
            parse_partial_analysis("[]", make_chunk(0, [1]))

    def test_wrong_field_type(self):
        with pytest.raises(AnalysisError, match="failed validation"):
            parse_partial_analysis(json.dumps({"commonQuestions": "one"}), make_chunk(0, [1]))


class TestChunkAnalyzer:
    def test_success(self):
        backend = FakeBackend()
        partial = ChunkAnalyzer(backend, sleep=RecordingSleep()).analyze(make_chunk(0, range(1, 4)))
        assert partial.chunk_id == 0
        assert backend.calls[0] == 1

    def test_timeout_twice_then_success(self):
        backend = FakeBackend(scripts={0: [LLMTimeoutError(), LLMTimeoutError()]})
        sleep = RecordingSleep()
        partial = ChunkAnalyzer(backend, RetryPolicy(), sleep=sleep).analyze(make_chunk(0, [1, 2]))
        assert partial.chunk_id == 0
        assert backend.calls[0] == 3
        assert sleep.delays == [1.0, 2.0]

    def test_timeout_exhausted_carries_chunk(self):
        backend = FakeBackend(scripts={4: [LLMTimeoutError()] * 3})
        with pytest.raises(LLMTimeoutError) as exc_info:
            ChunkAnalyzer(backend, sleep=RecordingSleep()).analyze(make_chunk(4, [9]))
        assert exc_info.value.chunk_id == 4
        assert exc_info.value.stage == "chunk_analysis"
        assert backend.calls[4] == 3

    def test_rate_limit_exhausted(self):
        backend = FakeBackend(scripts={0: [LLMRateLimitError(retry_after=1)] * 3})
        with pytest.raises(LLMRateLimitError):
            ChunkAnalyzer(backend, sleep=RecordingSleep()).analyze(make_chunk(0, [1]))
        assert backend.calls[0] == 3

    def test_authentication_not_retried(self):
        backend = FakeBackend(scripts={1: [LLMAuthenticationError()]})
        sleep = RecordingSleep()
        with pytest.raises(LLMAuthenticationError) as exc_info:
            ChunkAnalyzer(backend, sleep=sleep).analyze(make_chunk(1, [3]))
        assert exc_info.value.chunk_id == 1
        assert backend.calls[1] == 1
        assert sleep.delays == []

    def test_generic_error_becomes_analysis_error(self):
        backend = FakeBackend(scripts={0: [LLMError("LLM invocation failed: 500")]})
        with pytest.raises(AnalysisError) as exc_info:
            ChunkAnalyzer(backend, sleep=RecordingSleep()).analyze(make_chunk(0, [1]))
        assert exc_info.value.chunk_id == 0
        assert isinstance(exc_info.value.__cause__, LLMError)
        assert backend.calls[0] == 1

    def test_malformed_response_not_retried(self):
        backend = FakeBackend(scripts={2: ["oops"]})
        with pytest.raises(AnalysisError):
            ChunkAnalyzer(backend, sleep=RecordingSleep()).analyze(make_chunk(2, [5]))
        assert backend.calls[2] == 1

    def test_retries_reported_to_logger(self):
        class Logger:
            def __init__(self):
                self.retries = []

            def retry(self, stage, desc, attempt, delay, error):
                self.retries.append((stage, desc, attempt, delay))

        logger = Logger()
        backend = FakeBackend(scripts={0: [LLMTimeoutError()]})
        ChunkAnalyzer(backend, logger=logger, sleep=RecordingSleep()).analyze(make_chunk(0, [1]))
        assert logger.retries == [("chunk_analysis", "chunk 0", 1, 1.0)]
