"""End-to-end runs: real client and backend, SDK mocked at the HTTP-client seam."""

from __future__ import annotations

import json
import threading
from unittest.mock import MagicMock

import openai
import pytest
from click.testing import CliRunner

from qadigest import AnalyzerConfig, LLMConfig, PipelineError, run
from qadigest.cli import main
from tests.helpers.builders import partial_json

pytestmark = pytest.mark.e2e


class ScriptedOpenAI:
    """Stands in for ``openai.OpenAI``: answers chunk prompts with JSON and
    the aggregate prompt with markdown. ``failures`` holds exceptions raised
    for the first N chunk calls."""

    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.prompts: list[str] = []
        self.kwargs: list[dict] = []
        self._lock = threading.Lock()
        self.chat = MagicMock()
        self.chat.completions.create.side_effect = self._create

    def __call__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        return self

    def _create(self, **kwargs):
        prompt = kwargs["messages"][0]["content"]
        with self._lock:
            self.prompts.append(prompt)
            self.kwargs.append(kwargs)
            is_aggregate = "partial analyses" in prompt
            failure = self.failures.pop(0) if self.failures and not is_aggregate else None
        if failure is not None:
            raise failure
        content = "## Executive Summary\n\nLayers everywhere." if is_aggregate else partial_json()
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content=content))]
        response.model = kwargs["model"]
        response.usage = MagicMock(prompt_tokens=100, completion_tokens=50)
        return response


@pytest.fixture
def scripted_openai(monkeypatch):
    fake = ScriptedOpenAI()
    monkeypatch.setattr("openai.OpenAI", fake)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key-123456")
    return fake


def _timeout():
    return openai.APITimeoutError(request=MagicMock())


class TestPythonAPI:
    def test_full_run(self, scripted_openai, sample_transcript_path, tmp_path):
        output = tmp_path / "report.md"

        final = run(sample_transcript_path, output, AnalyzerConfig(chunk_size=4), llm_config=LLMConfig())

        assert final.total_chunks == 3
        assert final.total_messages == 10
        assert [p.chunk_id for p in final.partial_analyses] == [0, 1, 2]
        assert output.read_text(encoding="utf-8").startswith("## Executive Summary")
        # three chunk calls plus one aggregate call
        assert len(scripted_openai.prompts) == 4
        assert scripted_openai.client_kwargs == {"max_retries": 0, "api_key": "sk-test-key-123456"}
        assert all(k["timeout"] == 30.0 for k in scripted_openai.kwargs)

    def test_chunk_prompts_carry_messages_in_order(self, scripted_openai, sample_transcript_path, tmp_path):
        run(sample_transcript_path, tmp_path / "r.md", AnalyzerConfig(chunk_size=5, concurrency_limit=1))
        chunk_prompts = [p for p in scripted_openai.prompts if "partial analyses" not in p]
        first = chunk_prompts[0]
        assert "How do I provide a layer to a test?" in first
        assert first.index('"seqId": 1') < first.index('"seqId": 5')

    def test_aggregate_prompt_sees_sorted_partials(self, scripted_openai, sample_transcript_path, tmp_path):
        run(sample_transcript_path, tmp_path / "r.md", AnalyzerConfig(chunk_size=3))
        aggregate_prompt = scripted_openai.prompts[-1]
        body = aggregate_prompt.split("Partial analyses:\n", 1)[1].split("\n\nWrite the report", 1)[0]
        assert [p["chunkId"] for p in json.loads(body)] == [0, 1, 2, 3]

    def test_sdk_timeout_is_retried(self, scripted_openai, sample_transcript_path, tmp_path, monkeypatch):
        scripted_openai.failures = [_timeout(), _timeout()]
        monkeypatch.setattr("qadigest.build.retry._event_sleep", lambda event: lambda seconds: False)

        final = run(sample_transcript_path, tmp_path / "r.md", AnalyzerConfig(chunk_size=50))

        assert final.total_chunks == 1
        assert len(scripted_openai.prompts) == 4

    def test_sdk_authentication_error_fails_run(self, scripted_openai, sample_transcript_path, tmp_path):
        response = MagicMock(status_code=401)
        scripted_openai.failures = [openai.AuthenticationError(message="bad key", response=response, body=None)]
        output = tmp_path / "r.md"

        with pytest.raises(PipelineError) as exc_info:
            run(sample_transcript_path, output, AnalyzerConfig(chunk_size=50))

        assert exc_info.value.stage == "analyzing"
        assert exc_info.value.chunk_id == 0
        assert len(scripted_openai.prompts) == 1
        assert not output.exists()


class TestCLI:
    def test_analyze_then_plan(self, scripted_openai, sample_transcript_path, tmp_path):
        runner = CliRunner()
        output = tmp_path / "report.md"
        json_out = tmp_path / "analysis.json"

        result = runner.invoke(
            main,
            [
                "analyze",
                str(sample_transcript_path),
                str(output),
                "--chunk-size",
                "4",
                "-j",
                "2",
                "--json-out",
                str(json_out),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "## Executive Summary" in output.read_text(encoding="utf-8")
        data = json.loads(json_out.read_text(encoding="utf-8"))
        assert data["totalChunks"] == 3
        assert data["partialAnalyses"][2]["messageCount"] == 2
        assert "LLM calls:" in result.output

        plan = runner.invoke(main, ["plan", str(sample_transcript_path), "--chunk-size", "4", "--json"])
        assert plan.exit_code == 0, plan.output
        assert json.loads(plan.output)["totalChunks"] == data["totalChunks"]

    def test_env_configuration(self, scripted_openai, sample_transcript_path, tmp_path, monkeypatch):
        monkeypatch.setenv("QADIGEST_CHUNK_SIZE", "2")
        monkeypatch.setenv("QADIGEST_LLM_MODEL", "gpt-4o-mini")
        runner = CliRunner()

        result = runner.invoke(main, ["analyze", str(sample_transcript_path), str(tmp_path / "r.md")])

        assert result.exit_code == 0, result.output
        # five chunk calls plus the aggregate
        assert len(scripted_openai.prompts) == 6
        assert {k["model"] for k in scripted_openai.kwargs} == {"gpt-4o-mini"}
