"""
Tests for the progression state machine: mission sequencing, unlocks,
promotion and the idempotent progress merge.
No Supabase connection required — all tests run fully offline.
"""
import sys
import os
import random

# Ensure the backend/ directory is on the path when running from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from app.core.errors import RegionLockedError
from app.models.progress import AnswerRecord, SessionDelta, UserProgress
from app.services.progression import (
    ProgressionStateMachine,
    build_mission_sequence,
    checkpoint_progress,
    merge_progress,
    mission_score_percent,
    session_delta,
)
from app.services.regions import ALL_REGION_IDS, REGION_TIER_ORDER, REGIONS


def _tier_index(region_id):
    return REGION_TIER_ORDER.index(REGIONS[region_id].tier)


# ---------------------------------------------------------------------------
# Mission sequencing
# ---------------------------------------------------------------------------

class TestMissionSequence:
    @pytest.mark.parametrize("start", [None] + ALL_REGION_IDS)
    def test_permutation_of_all_regions(self, start):
        seq = build_mission_sequence(starting_region=start, rng=random.Random(11))
        assert sorted(seq) == sorted(ALL_REGION_IDS)
        assert len(seq) == len(set(seq))

    @pytest.mark.parametrize("start", ALL_REGION_IDS)
    def test_requested_start_is_first(self, start):
        assert build_mission_sequence(starting_region=start)[0] == start

    def test_tiers_non_decreasing_without_start(self):
        for seed in range(20):
            seq = build_mission_sequence(rng=random.Random(seed))
            tiers = [_tier_index(r) for r in seq]
            assert tiers == sorted(tiers)

    def test_tiers_non_decreasing_after_start(self):
        seq = build_mission_sequence(starting_region="oceania", rng=random.Random(5))
        tiers = [_tier_index(r) for r in seq[1:]]
        assert tiers == sorted(tiers)

    def test_order_within_tier_is_randomised(self):
        seen = {tuple(build_mission_sequence(rng=random.Random(seed))[4:7]) for seed in range(30)}
        assert len(seen) > 1

    def test_unknown_start_rejected(self):
        with pytest.raises(ValueError):
            build_mission_sequence(starting_region="atlantis")

    def test_custom_grouping(self):
        seq = build_mission_sequence({"beginner": ["a"], "expert": ["b", "c"]}, rng=random.Random(0))
        assert seq[0] == "a"
        assert sorted(seq[1:]) == ["b", "c"]


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class TestStartAndPromote:
    def test_anonymous_session_is_ephemeral(self):
        session = ProgressionStateMachine(random.Random(1)).start_session("Nova")
        assert session.kind == "ephemeral"
        assert session.unlocked_regions == [session.mission_sequence[0]]
        assert session.completed_regions == []
        assert session.agent_level == "Trainee"

    def test_authenticated_session_is_persisted(self):
        session = ProgressionStateMachine().start_session("Nova", "africa", user_id="u1")
        assert session.kind == "persisted"
        assert session.user_id == "u1"
        assert session.unlocked_regions == ["africa"]

    def test_promote_keeps_id_and_fields(self):
        psm = ProgressionStateMachine(random.Random(2))
        session = psm.start_session("Nova")
        session.score = 150
        promoted = psm.promote(session, "u1")
        assert promoted.id == session.id
        assert promoted.kind == "persisted"
        assert promoted.user_id == "u1"
        assert promoted.score == 150
        assert promoted.mission_sequence == session.mission_sequence

    def test_promote_is_idempotent(self):
        psm = ProgressionStateMachine()
        promoted = psm.promote(psm.start_session("Nova"), "u1")
        again = psm.promote(promoted, "someone-else")
        assert again is promoted
        assert again.user_id == "u1"

    def test_record_answer_appends(self):
        psm = ProgressionStateMachine()
        session = psm.start_session("Nova")
        psm.record_answer(session, AnswerRecord(correct=True, elapsed_seconds=8, region="africa"))
        assert len(session.answers) == 1


class TestCompleteMission:
    def _session(self):
        return ProgressionStateMachine(random.Random(4)).start_session("Nova", "western-europe")

    def test_success_unlocks_next_region(self):
        psm = ProgressionStateMachine()
        session = self._session()
        outcome = psm.complete_mission(session, "western-europe", 5, 4, 400)
        assert outcome["success"] is True
        assert outcome["score_percent"] == 80
        assert outcome["unlocked_region"] == session.mission_sequence[1]
        assert session.completed_regions == ["western-europe"]
        assert session.unlocked_regions == session.mission_sequence[:2]
        assert session.score == 400
        assert session.agent_level == "Field Agent"

    def test_exactly_seventy_percent_succeeds(self):
        session = self._session()
        outcome = ProgressionStateMachine().complete_mission(session, "western-europe", 10, 7, 700)
        assert outcome["success"] is True

    def test_failure_keeps_unlock_set(self):
        session = self._session()
        before = list(session.unlocked_regions)
        outcome = ProgressionStateMachine().complete_mission(session, "western-europe", 5, 3, 300)
        assert outcome["success"] is False
        assert outcome["unlocked_region"] is None
        assert session.unlocked_regions == before
        assert session.completed_regions == []
        assert session.questions_answered == 5
        assert session.score == 300

    def test_locked_region_rejected(self):
        session = self._session()
        locked = session.mission_sequence[3]
        with pytest.raises(RegionLockedError):
            ProgressionStateMachine().complete_mission(session, locked, 5, 5, 500)

    def test_unlocks_are_monotonic_over_replays(self):
        psm = ProgressionStateMachine()
        session = self._session()
        history = []
        for correct in (5, 1, 5, 0, 4):
            region = session.unlocked_regions[-1]
            before = set(session.unlocked_regions)
            psm.complete_mission(session, region, 5, correct, correct * 100)
            assert before <= set(session.unlocked_regions)
            history.append(len(session.unlocked_regions))
        assert history == sorted(history)

    def test_replaying_completed_region_does_not_duplicate(self):
        psm = ProgressionStateMachine()
        session = self._session()
        psm.complete_mission(session, "western-europe", 5, 5, 500)
        psm.complete_mission(session, "western-europe", 5, 5, 500)
        assert session.completed_regions == ["western-europe"]
        assert len(session.unlocked_regions) == 2

    def test_last_region_unlocks_nothing(self):
        psm = ProgressionStateMachine()
        session = self._session()
        session.unlocked_regions = list(session.mission_sequence)
        outcome = psm.complete_mission(session, session.mission_sequence[-1], 5, 5, 500)
        assert outcome["success"] is True
        assert outcome["unlocked_region"] is None

    def test_correct_cannot_exceed_answered(self):
        with pytest.raises(ValueError):
            ProgressionStateMachine().complete_mission(self._session(), "western-europe", 2, 3, 0)

    def test_score_percent(self):
        assert mission_score_percent(0, 0) == 0
        assert mission_score_percent(3, 2) == 67


# ---------------------------------------------------------------------------
# Progress merge
# ---------------------------------------------------------------------------

def _delta(score=100, completed=("africa",), unlocked=("africa", "oceania")):
    return SessionDelta(
        questions_answered=10,
        correct_answers=8,
        score_gained=score,
        completed_regions=list(completed),
        unlocked_regions=list(unlocked),
    )


class TestMergeProgress:
    def test_first_merge_adds_counters(self):
        progress = merge_progress(UserProgress(user_id="u1"), "s1", _delta())
        assert progress.total_score == 100
        assert progress.total_questions == 10
        assert progress.correct_answers == 8
        assert progress.games_played == 1
        assert progress.completed_regions == ["africa"]
        assert progress.agent_level == "Field Agent"

    def test_same_session_twice_is_idempotent(self):
        once = merge_progress(UserProgress(user_id="u1"), "s1", _delta())
        twice = merge_progress(once, "s1", _delta())
        assert twice == once

    def test_retried_submission_counts_score_once(self):
        start = UserProgress(user_id="u1", total_score=50)
        first = merge_progress(start, "s1", _delta(score=100))
        retried = merge_progress(first, "s1", _delta(score=100))
        assert retried.total_score - start.total_score == 100

    def test_distinct_sessions_accumulate(self):
        p = merge_progress(UserProgress(user_id="u1"), "s1", _delta())
        p = merge_progress(p, "s2", _delta(completed=("oceania",), unlocked=("oceania",)))
        assert p.total_score == 200
        assert p.games_played == 2
        assert p.completed_regions == ["africa", "oceania"]
        assert p.agent_level == "Senior Agent"

    def test_regions_are_unioned_not_replaced(self):
        start = UserProgress(user_id="u1", completed_regions=["east-asia"], unlocked_regions=["east-asia"])
        p = merge_progress(start, "s1", _delta())
        assert p.completed_regions == ["east-asia", "africa"]
        assert set(p.unlocked_regions) == {"east-asia", "africa", "oceania"}

    def test_checkpoint_leaves_counters(self):
        start = UserProgress(user_id="u1", total_score=10, total_questions=2, correct_answers=1)
        p = checkpoint_progress(start, ["africa"], ["africa", "oceania"])
        assert p.total_score == 10
        assert p.games_played == 0
        assert p.completed_regions == ["africa"]

    def test_session_delta_from_session(self):
        psm = ProgressionStateMachine()
        session = psm.start_session("Nova", "africa")
        psm.complete_mission(session, "africa", 4, 4, 400)
        delta = session_delta(session)
        assert delta.score_gained == 400
        assert delta.completed_regions == ["africa"]
        assert delta.questions_answered == 4
