"""Tests for thumbgen.core.analysis — title suggestion and CTR comparison.

Tests cover:
- Code-fence stripping and JSON parsing of model answers.
- Typed validation of titles and CTR verdicts.
- Mode validation before any upstream call.
- Image-count requirements per mode.
- Error classification of upstream analysis failures.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from conftest import FakeGeminiClient, make_image
from thumbgen.core.analysis import (
    AnalysisDispatcher,
    CtrVerdict,
    TitlesOutcome,
    parse_ctr_verdict,
    parse_titles,
    strip_fences,
)
from thumbgen.core.errors import (
    GenerationTimeoutError,
    InvalidModeError,
    MalformedAnalysisResponseError,
    QuotaExceededError,
    UpstreamError,
)

VERDICT = {
    "winner": 2,
    "reasoning": "Higher contrast and a readable face.",
    "comparison": {"clarity": "Image 2 reads better at small sizes."},
}


class TestStripFences:
    """Test strip_fences()."""

    def test_json_fence(self):
        assert strip_fences('```json\n["A","B"]\n```') == '["A","B"]'

    def test_bare_fence(self):
        assert strip_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_uppercase_tag(self):
        assert strip_fences("```JSON\n[]\n```") == "[]"

    def test_no_fence(self):
        assert strip_fences('  ["A"]  ') == '["A"]'

    def test_none(self):
        assert strip_fences(None) == ""


class TestParseTitles:
    """Test parse_titles()."""

    def test_fenced_array(self):
        assert parse_titles('```json\n["A","B"]\n```') == ["A", "B"]

    def test_five_titles(self):
        titles = [f"Title {i}" for i in range(5)]
        assert parse_titles(json.dumps(titles)) == titles

    def test_not_json(self):
        with pytest.raises(MalformedAnalysisResponseError) as exc_info:
            parse_titles("not json")
        assert exc_info.value.message == "Analysis failed"
        assert exc_info.value.raw_text == "not json"

    @pytest.mark.parametrize("text", ['{"titles": ["A"]}', '["A", 2]', '"A"'])
    def test_wrong_shape(self, text):
        with pytest.raises(MalformedAnalysisResponseError):
            parse_titles(text)


class TestParseCtrVerdict:
    """Test parse_ctr_verdict()."""

    def test_valid(self):
        verdict = parse_ctr_verdict("```json\n" + json.dumps(VERDICT) + "\n```")
        assert verdict.winner == 2
        assert verdict.comparison == {"clarity": "Image 2 reads better at small sizes."}

    def test_arbitrary_comparison_keys(self):
        data = dict(VERDICT, comparison={"emotion": "1 wins", "text": "tie"})
        assert set(parse_ctr_verdict(json.dumps(data)).comparison) == {"emotion", "text"}

    def test_non_string_criteria_stringified(self):
        data = dict(VERDICT, comparison={"score": {"1": 6, "2": 8}})
        verdict = parse_ctr_verdict(json.dumps(data))
        assert verdict.comparison["score"] == '{"1": 6, "2": 8}'

    @pytest.mark.parametrize("winner", [0, 3, "2", 1.5, None])
    def test_invalid_winner(self, winner):
        data = dict(VERDICT, winner=winner)
        with pytest.raises(MalformedAnalysisResponseError):
            parse_ctr_verdict(json.dumps(data))

    def test_missing_reasoning(self):
        data = {"winner": 1, "comparison": {}}
        with pytest.raises(MalformedAnalysisResponseError):
            parse_ctr_verdict(json.dumps(data))

    def test_array_is_malformed(self):
        with pytest.raises(MalformedAnalysisResponseError):
            parse_ctr_verdict("[1, 2]")


# ---------------------------------------------------------------------------
# Dispatcher.
# ---------------------------------------------------------------------------


class TestAnalysisDispatcher:
    """Test AnalysisDispatcher.analyze()."""

    @pytest.mark.parametrize("mode", ["thumbnail", "", None, "CTR"])
    def test_invalid_mode_makes_no_call(self, mode):
        client = FakeGeminiClient(analysis_text="[]")
        dispatcher = AnalysisDispatcher(client)

        with pytest.raises(InvalidModeError) as exc_info:
            asyncio.run(dispatcher.analyze(mode, [make_image()]))

        assert exc_info.value.message == "Invalid mode"
        assert exc_info.value.status_code == 400
        assert client.analysis_calls == []

    def test_titles(self):
        client = FakeGeminiClient(analysis_text='```json\n["A","B","C","D","E"]\n```')
        dispatcher = AnalysisDispatcher(client)

        outcome = asyncio.run(dispatcher.analyze("titles", [make_image()], "cooking video"))

        assert isinstance(outcome, TitlesOutcome)
        assert outcome.titles == ["A", "B", "C", "D", "E"]
        prompt, images = client.analysis_calls[0]
        assert "cooking video" in prompt
        assert len(images) == 1

    def test_titles_default_context(self):
        client = FakeGeminiClient(analysis_text='["A"]')
        asyncio.run(AnalysisDispatcher(client).analyze("titles", [make_image()]))
        assert "YouTube video" in client.analysis_calls[0][0]

    def test_titles_without_image(self):
        client = FakeGeminiClient(analysis_text="[]")
        with pytest.raises(ValueError):
            asyncio.run(AnalysisDispatcher(client).analyze("titles", []))
        assert client.analysis_calls == []

    def test_ctr_preserves_image_order(self):
        first = make_image((255, 0, 0))
        second = make_image((0, 255, 0))
        client = FakeGeminiClient(analysis_text=json.dumps(VERDICT))

        verdict = asyncio.run(AnalysisDispatcher(client).analyze("ctr", [first, second]))

        assert isinstance(verdict, CtrVerdict)
        assert verdict.winner == 2
        assert client.analysis_calls[0][1] == [first, second]

    @pytest.mark.parametrize("count", [1, 3])
    def test_ctr_needs_two_images(self, count):
        client = FakeGeminiClient(analysis_text=json.dumps(VERDICT))
        with pytest.raises(ValueError):
            asyncio.run(AnalysisDispatcher(client).analyze("ctr", [make_image()] * count))
        assert client.analysis_calls == []

    def test_malformed_answer(self):
        client = FakeGeminiClient(analysis_text="Sure! Here are some titles.")
        with pytest.raises(MalformedAnalysisResponseError):
            asyncio.run(AnalysisDispatcher(client).analyze("titles", [make_image()]))

    def test_quota_failure_classified(self):
        client = FakeGeminiClient(analysis_text=Exception("429 Too Many Requests"))
        with pytest.raises(QuotaExceededError):
            asyncio.run(AnalysisDispatcher(client).analyze("titles", [make_image()]))

    def test_other_failure_classified(self):
        client = FakeGeminiClient(analysis_text=RuntimeError("backend unavailable"))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(AnalysisDispatcher(client).analyze("titles", [make_image()]))
        assert exc_info.value.message == "backend unavailable"

    def test_timeout(self):
        class SlowClient:
            async def analyze_images(self, prompt, images):
                await asyncio.sleep(60)
                return "[]"

        dispatcher = AnalysisDispatcher(SlowClient(), timeout=0.05)
        with pytest.raises(GenerationTimeoutError):
            asyncio.run(dispatcher.analyze("titles", [make_image()]))
