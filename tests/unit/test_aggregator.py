"""Tests for the aggregation pass."""

from __future__ import annotations

import pytest

from qadigest.build.aggregator import Aggregator, build_final_analysis, check_ordered
from qadigest.core.errors import AnalysisError, LLMAuthenticationError, LLMError, LLMTimeoutError
from tests.helpers.builders import FakeBackend, RecordingSleep, make_partial, make_transcript


class TestCheckOrdered:
    def test_sorted_unique_ok(self):
        check_ordered([make_partial(0), make_partial(1), make_partial(5)])

    def test_unsorted_rejected(self):
        with pytest.raises(AnalysisError) as exc_info:
            check_ordered([make_partial(1), make_partial(0)])
        assert exc_info.value.stage == "aggregation"

    def test_duplicate_rejected(self):
        with pytest.raises(AnalysisError):
            check_ordered([make_partial(0), make_partial(0)])


class TestAggregator:
    def test_returns_report(self):
        backend = FakeBackend(report="# Report")
        partials = [make_partial(0), make_partial(1)]
        assert Aggregator(backend, sleep=RecordingSleep()).aggregate(partials) == "# Report"
        assert backend.aggregate_calls == [partials]

    def test_empty_input(self):
        backend = FakeBackend()
        with pytest.raises(AnalysisError, match="No partial analyses"):
            Aggregator(backend).aggregate([])
        assert backend.aggregate_calls == []

    def test_unordered_input_never_calls_backend(self):
        backend = FakeBackend()
        with pytest.raises(AnalysisError):
            Aggregator(backend).aggregate([make_partial(2), make_partial(1)])
        assert backend.aggregate_calls == []

    def test_timeout_retried(self):
        backend = FakeBackend(aggregate_script=[LLMTimeoutError()])
        sleep = RecordingSleep()
        Aggregator(backend, sleep=sleep).aggregate([make_partial(0)])
        assert len(backend.aggregate_calls) == 2
        assert sleep.delays == [1.0]

    def test_authentication_propagates_with_stage(self):
        backend = FakeBackend(aggregate_script=[LLMAuthenticationError()])
        with pytest.raises(LLMAuthenticationError) as exc_info:
            Aggregator(backend, sleep=RecordingSleep()).aggregate([make_partial(0)])
        assert exc_info.value.stage == "aggregation"
        assert len(backend.aggregate_calls) == 1

    def test_generic_error(self):
        backend = FakeBackend(aggregate_script=[LLMError("bad gateway")])
        with pytest.raises(AnalysisError) as exc_info:
            Aggregator(backend, sleep=RecordingSleep()).aggregate([make_partial(0)])
        assert exc_info.value.chunk_id is None
        assert "bad gateway" in str(exc_info.value)

    @pytest.mark.parametrize("report", ["", "   \n"])
    def test_blank_report_rejected(self, report):
        backend = FakeBackend(aggregate_script=[report])
        with pytest.raises(AnalysisError, match="empty report"):
            Aggregator(backend, sleep=RecordingSleep()).aggregate([make_partial(0)])


def test_build_final_analysis():
    transcript = make_transcript(10)
    partials = [make_partial(1, 4), make_partial(0, 4), make_partial(2, 2)]
    final = build_final_analysis(transcript, partials, "# Report")
    assert final.total_chunks == 3
    assert final.total_messages == 10
    assert [p.chunk_id for p in final.partial_analyses] == [0, 1, 2]
    assert final.to_dict()["finalReport"] == "# Report"
    assert final.to_dict()["partialAnalyses"][0]["chunkId"] == 0
