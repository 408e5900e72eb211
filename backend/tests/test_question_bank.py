"""
Tests for the curated fallback bank: loading, startup validation and the
region → default selection order.
"""
import sys
import os
import json
import random

# Ensure backend/ is on the path when running from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from app.core.errors import ConfigurationError
from app.services.question_bank import QuestionBank
from app.services.regions import ALL_REGION_IDS


def _entry(text="Q?", difficulty="easy", correct_index=0):
    return {
        "text": text,
        "options": ["a", "b", "c", "d"],
        "correct_index": correct_index,
        "difficulty": difficulty,
    }


class TestShippedBank:
    def test_loads_and_covers_every_region(self):
        bank = QuestionBank.from_file()
        assert set(ALL_REGION_IDS) <= set(bank.region_ids())
        assert bank.size > len(ALL_REGION_IDS)

    def test_every_region_and_tier_selects_valid_question(self):
        bank = QuestionBank.from_file(rng=random.Random(1))
        for region in ALL_REGION_IDS + ["unknown-place"]:
            for tier in ["beginner", "easy", "medium", "hard", "expert"]:
                q = bank.select(region, tier)
                assert q.source == "bank"
                assert len(q.options) == 4
                assert 0 <= q.correct_index <= 3


class TestValidation:
    def test_empty_default_pool_rejected(self):
        with pytest.raises(ConfigurationError):
            QuestionBank.from_dict({"default": [], "regions": {"africa": [_entry()]}})

    def test_invalid_entry_rejected(self):
        with pytest.raises(ConfigurationError):
            QuestionBank.from_dict({"default": [_entry(correct_index=9)]})

    def test_missing_field_rejected(self):
        with pytest.raises(ConfigurationError):
            QuestionBank.from_dict({"default": [{"text": "Q?"}]})

    def test_unreadable_file_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError):
            QuestionBank.from_file(tmp_path / "missing.json")

    def test_invalid_json_rejected(self, tmp_path):
        path = tmp_path / "bank.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            QuestionBank.from_file(path)

    def test_valid_file_loads(self, tmp_path):
        path = tmp_path / "bank.json"
        path.write_text(json.dumps({"default": [_entry()]}), encoding="utf-8")
        assert QuestionBank.from_file(path).size == 1


class TestSelection:
    def _bank(self):
        return QuestionBank.from_dict({
            "default": [_entry("default-easy"), _entry("default-hard", "hard")],
            "regions": {
                "africa": [_entry("africa-easy"), _entry("africa-medium", "medium")],
            },
        }, rng=random.Random(3))

    def test_region_and_tier_match(self):
        q = self._bank().select("africa", "medium")
        assert q.text == "africa-medium"
        assert q.metadata["pool"] == "region"
        assert q.metadata["tier_match"] is True

    def test_region_any_tier(self):
        q = self._bank().select("africa", "expert")
        assert q.text in {"africa-easy", "africa-medium"}
        assert q.metadata["tier_match"] is False

    def test_default_pool_for_unknown_region(self):
        q = self._bank().select("oceania", "hard")
        assert q.text == "default-hard"
        assert q.region == "oceania"
        assert q.metadata["pool"] == "default"

    def test_selection_does_not_mutate_bank(self):
        bank = self._bank()
        bank.select("oceania", "hard")
        q = bank.select("africa", "medium")
        assert q.region == "africa"
        assert bank.size == 4
