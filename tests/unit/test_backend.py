"""Tests for prompt rendering and the LLM-backed analysis backend."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

from qadigest.core.config import LLMConfig
from qadigest.llm.backend import (
    LLMAnalysisBackend,
    load_prompt,
    render_aggregate_prompt,
    render_chunk_prompt,
)
from qadigest.llm.client import LLMResponse
from tests.helpers.builders import make_chunk, make_partial


class TestPrompts:
    def test_templates_ship_with_package(self):
        assert "{messages}" in load_prompt("chunk_analysis")
        assert "{analyses}" in load_prompt("aggregate")

    def test_chunk_prompt_embeds_messages(self):
        chunk = make_chunk(0, [1, 2])
        prompt = render_chunk_prompt(chunk, "Analyze {message_count}:\n{messages}")
        header, body = prompt.split("\n", 1)
        assert header == "Analyze 2:"
        messages = json.loads(body)
        assert [m["seqId"] for m in messages] == [1, 2]
        assert messages[0]["author"]["id"] == "u-1"

    def test_aggregate_prompt_embeds_partials(self):
        prompt = render_aggregate_prompt([make_partial(0), make_partial(1)], "{analysis_count}|{analyses}")
        count, body = prompt.split("|", 1)
        assert count == "2"
        assert [p["chunkId"] for p in json.loads(body)] == [0, 1]

    def test_default_template_fully_rendered(self):
        prompt = render_chunk_prompt(make_chunk(0, [1]))
        assert "{messages}" not in prompt
        assert "{message_count}" not in prompt


class TestLLMAnalysisBackend:
    def _client(self, content: str) -> MagicMock:
        client = MagicMock()
        client.config = LLMConfig(model="test-model")
        client.complete.return_value = LLMResponse(
            content=content, model="test-model", input_tokens=11, output_tokens=7
        )
        return client

    def test_analyze_chunk_returns_raw_text(self):
        client = self._client('{"commonQuestions": []}')
        backend = LLMAnalysisBackend(client)
        assert backend.analyze_chunk(make_chunk(4, [1])) == '{"commonQuestions": []}'
        kwargs = client.complete.call_args.kwargs
        assert kwargs["messages"][0]["role"] == "user"
        assert kwargs["artifact_desc"] == "chunk 4"

    def test_aggregate(self):
        client = self._client("# Report")
        assert LLMAnalysisBackend(client).aggregate_analyses([make_partial(0)]) == "# Report"

    def test_calls_reported_to_logger(self):
        logger = MagicMock()
        logger.llm_call_start.return_value = 123.0
        backend = LLMAnalysisBackend(self._client("{}"), logger=logger)

        backend.analyze_chunk(make_chunk(0, [1]))

        logger.llm_call_start.assert_called_once_with("chunk_analysis", "chunk 0", "test-model")
        logger.llm_call_finish.assert_called_once_with(
            "chunk_analysis", "chunk 0", 123.0, input_tokens=11, output_tokens=7
        )
