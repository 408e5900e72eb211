"""
Tests for the content generation pipeline: parsing, deterministic repair,
and the bank → hardcoded fallback chain.

All tests run fully offline — the generative service is a MagicMock.
Async generate() is exercised via asyncio.run() in sync wrappers.
"""
import sys
import os
import asyncio
import json
import random
import time
from unittest.mock import MagicMock

# Ensure backend/ is on the path when running from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from app.core.errors import MalformedResponseError
from app.models.progress import DifficultyDecision, GenerationRequest
from app.services.content_pipeline import (
    FALLBACK_BANK,
    FALLBACK_HARDCODED,
    SUCCESS,
    ContentGenerationPipeline,
    extract_json_text,
    find_field_problems,
    hardcoded_question,
    parse_response,
    repair_payload,
)
from app.services.question_bank import QuestionBank


def _run(coro):
    return asyncio.run(coro)


def _request(region="western-europe", tier="easy"):
    return GenerationRequest(
        region=region,
        category="Geography & Environment",
        difficulty=DifficultyDecision(tier=tier, adjustment="perfect", requested_tier=tier),
    )


def _ai(response=None, side_effect=None):
    ai = MagicMock()
    ai.model = "test-model"
    if side_effect is not None:
        ai.generate_completion.side_effect = side_effect
    else:
        ai.generate_completion.return_value = response
    return ai


def _payload(**overrides):
    data = {
        "question": "Which river flows through Paris?",
        "options": ["Seine", "Thames", "Danube", "Rhine"],
        "correctAnswer": 0,
        "difficulty": "easy",
        "hint": "It ends in the English Channel",
        "explanation": "The Seine flows through the heart of Paris.",
    }
    data.update(overrides)
    return data


def _pipeline(ai, bank="default", recorder=None, timeout=5.0):
    if bank == "default":
        bank = QuestionBank.from_file(rng=random.Random(7))
    recorder = recorder or MagicMock()
    return ContentGenerationPipeline(ai, bank, recorder, timeout_seconds=timeout)


def _assert_playable(question):
    assert len(question.options) == 4
    assert 0 <= question.correct_index <= 3


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestExtractJson:
    def test_fenced_json(self):
        assert extract_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_json_with_prose(self):
        assert extract_json_text('Here you go: {"a": 1} good luck') == '{"a": 1}'


class TestParseResponse:
    def test_non_json_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_response("not json at all")

    def test_missing_question_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_response(json.dumps({"options": ["a", "b", "c", "d"]}))

    def test_missing_options_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_response(json.dumps({"question": "Q?"}))

    def test_array_body_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_response("[1, 2, 3]")


class TestRepair:
    def test_clean_payload_needs_no_repair(self):
        fixed, repairs = repair_payload(_payload())
        assert repairs == []
        assert fixed["correctAnswer"] == 0

    def test_long_options_truncated(self):
        fixed, repairs = repair_payload(_payload(options=["a", "b", "c", "d", "e", "f"]))
        assert fixed["options"] == ["a", "b", "c", "d"]
        assert repairs == ["options_truncated:6"]

    def test_short_options_padded(self):
        fixed, _ = repair_payload(_payload(options=["a", "b"]))
        assert fixed["options"] == ["a", "b", "Option 3", "Option 4"]

    def test_missing_correct_answer_becomes_zero(self):
        data = _payload()
        del data["correctAnswer"]
        fixed, repairs = repair_payload(data)
        assert fixed["correctAnswer"] == 0
        assert "correct_answer_missing" in repairs

    def test_out_of_range_index_becomes_zero(self):
        fixed, repairs = repair_payload(_payload(correctAnswer=7))
        assert fixed["correctAnswer"] == 0
        assert repairs == ["correct_answer_out_of_range:7"]

    def test_numeric_string_index_accepted(self):
        fixed, repairs = repair_payload(_payload(correctAnswer="2"))
        assert fixed["correctAnswer"] == 2
        assert repairs == []

    def test_problems_are_listed(self):
        problems = find_field_problems(_payload(correctAnswer="abc", options=["a"]))
        assert [str(p) for p in problems] == ["options_padded:1", "correct_answer_not_a_number"]


class TestHardcoded:
    def test_names_region_and_is_valid(self):
        q = hardcoded_question("south-asia", "History & Civilizations", "hard")
        assert q.source == "hardcoded"
        assert "South Asia" in q.text
        _assert_playable(q)


# ---------------------------------------------------------------------------
# Pipeline runs
# ---------------------------------------------------------------------------

class TestPipelineSuccess:
    def test_valid_response_is_generated(self):
        recorder = MagicMock()
        pipeline = _pipeline(_ai(json.dumps(_payload())), recorder=recorder)
        q = _run(pipeline.generate(_request()))
        assert q.source == "ai"
        assert q.text == "Which river flows through Paris?"
        assert q.metadata["ai_model"] == "test-model"
        result = recorder.record.call_args[0][0]
        assert result.source == "ai"
        assert result.stages[-1] == SUCCESS
        assert result.cost_estimate > 0

    def test_repaired_response_stays_generated(self):
        raw = json.dumps(_payload(options=["a", "b", "c", "d", "e"], correctAnswer=9))
        q = _run(_pipeline(_ai(raw)).generate(_request()))
        assert q.source == "ai"
        assert q.options == ["a", "b", "c", "d"]
        assert q.correct_index == 0
        assert q.metadata["repairs"] == ["options_truncated:5", "correct_answer_out_of_range:9"]

    def test_difficulty_metadata_from_decision(self):
        q = _run(_pipeline(_ai(json.dumps(_payload()))).generate(_request(tier="hard")))
        assert q.difficulty == "hard"
        assert q.metadata["adaptive_difficulty"] == "hard"


class TestPipelineFallback:
    @pytest.mark.parametrize("raw", [
        "",
        "total garbage",
        "[]",
        json.dumps({"options": ["a", "b", "c", "d"]}),
        json.dumps({"question": "Q?", "options": "abcd"}),
        json.dumps({"question": "   ", "options": ["a"]}),
        None,
    ])
    def test_malformed_responses_fall_back_to_bank(self, raw):
        q = _run(_pipeline(_ai(raw)).generate(_request()))
        assert q.source == "bank"
        _assert_playable(q)

    def test_network_error_falls_back(self):
        q = _run(_pipeline(_ai(side_effect=ConnectionError("boom"))).generate(_request()))
        assert q.source == "bank"
        assert q.region == "western-europe"

    def test_timeout_falls_back(self):
        def slow(*args, **kwargs):
            time.sleep(0.5)
            return json.dumps(_payload())

        recorder = MagicMock()
        pipeline = _pipeline(_ai(side_effect=slow), recorder=recorder, timeout=0.05)
        q = _run(pipeline.generate(_request()))
        assert q.source == "bank"
        result = recorder.record.call_args[0][0]
        assert result.error_type == "TransientGenerationError"
        assert FALLBACK_BANK in result.stages

    def test_unknown_region_uses_default_pool(self):
        q = _run(_pipeline(_ai("nope")).generate(_request(region="atlantis")))
        assert q.source == "bank"
        assert q.region == "atlantis"
        assert q.metadata["pool"] == "default"

    def test_no_bank_uses_hardcoded(self):
        recorder = MagicMock()
        pipeline = _pipeline(_ai("nope"), bank=None, recorder=recorder)
        q = _run(pipeline.generate(_request()))
        assert q.source == "hardcoded"
        assert recorder.record.call_args[0][0].stages[-1] == FALLBACK_HARDCODED

    def test_broken_bank_uses_hardcoded(self):
        bank = MagicMock()
        bank.select.side_effect = RuntimeError("corrupt")
        q = _run(_pipeline(_ai("nope"), bank=bank).generate(_request()))
        assert q.source == "hardcoded"
        _assert_playable(q)

    def test_recorder_failure_does_not_affect_question(self):
        recorder = MagicMock()
        recorder.record.side_effect = RuntimeError("telemetry down")
        q = _run(_pipeline(_ai(json.dumps(_payload())), recorder=recorder).generate(_request()))
        assert q.source == "ai"
