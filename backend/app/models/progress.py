from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

DifficultyTier = Literal["beginner", "easy", "medium", "hard", "expert"]
Adjustment = Literal["too_easy", "slightly_easy", "perfect", "slightly_hard", "too_hard"]
SessionKind = Literal["ephemeral", "persisted"]

TIER_ORDER: list[str] = ["beginner", "easy", "medium", "hard", "expert"]

# (min completed regions, rank); first match wins
_AGENT_LEVELS: list[tuple[int, str]] = [
    (4, "Master Agent"),
    (3, "Elite Agent"),
    (2, "Senior Agent"),
    (1, "Field Agent"),
    (0, "Trainee"),
]


def agent_level_for(completed_count: int) -> str:
    """Rank is a pure function of how many regions have been completed."""
    for threshold, level in _AGENT_LEVELS:
        if completed_count >= threshold:
            return level
    return "Trainee"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnswerRecord(BaseModel):
    correct: bool
    elapsed_seconds: float
    region: str = "unknown"
    question_ref: Optional[str] = None
    selected_index: Optional[int] = None
    points: int = 0
    answered_at: datetime = Field(default_factory=_utcnow)


class PerformanceWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    recent_accuracy: float = Field(0.7, ge=0.0, le=1.0)
    average_response_seconds: float = 20.0
    current_streak: int = Field(0, ge=0)
    sample_size: int = Field(0, ge=0)
    strong_topics: set[str] = set()
    struggling_topics: set[str] = set()

    @property
    def is_default(self) -> bool:
        return self.sample_size == 0


class DifficultyDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: DifficultyTier
    adjustment: Adjustment
    age_ceiling: Optional[DifficultyTier] = None
    requested_tier: DifficultyTier
    reasoning: str = ""


class PlayerProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_level: str = "Trainee"
    completed_regions: list[str] = []
    total_score: int = 0


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    region: str
    category: str
    difficulty: DifficultyDecision
    player_profile: PlayerProfile = PlayerProfile()
    performance_window: PerformanceWindow = PerformanceWindow()
    age_years: Optional[int] = None


class Session(BaseModel):
    id: str
    kind: SessionKind = "ephemeral"
    agent_name: str
    user_id: Optional[str] = None
    score: int = Field(0, ge=0)
    completed_regions: list[str] = []
    unlocked_regions: list[str] = []
    mission_sequence: list[str] = []
    questions_answered: int = Field(0, ge=0)
    correct_answers: int = Field(0, ge=0)
    answers: list[AnswerRecord] = []
    started_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)

    @computed_field
    @property
    def agent_level(self) -> str:
        return agent_level_for(len(self.completed_regions))

    @model_validator(mode="after")
    def _check_invariants(self):
        if len(set(self.mission_sequence)) != len(self.mission_sequence):
            raise ValueError("mission_sequence contains duplicates")
        if len(set(self.completed_regions)) != len(self.completed_regions):
            raise ValueError("completed_regions contains duplicates")
        missing = set(self.completed_regions) - set(self.unlocked_regions)
        if missing:
            raise ValueError(f"completed regions not unlocked: {sorted(missing)}")
        return self


class SessionDelta(BaseModel):
    questions_answered: int = Field(0, ge=0)
    correct_answers: int = Field(0, ge=0)
    score_gained: int = Field(0, ge=0)
    completed_regions: list[str] = []
    unlocked_regions: list[str] = []


class UserProgress(BaseModel):
    user_id: str
    total_score: int = Field(0, ge=0)
    total_questions: int = Field(0, ge=0)
    correct_answers: int = Field(0, ge=0)
    completed_regions: list[str] = []
    unlocked_regions: list[str] = []
    games_played: int = Field(0, ge=0)
    processed_session_ids: list[str] = []

    @computed_field
    @property
    def agent_level(self) -> str:
        return agent_level_for(len(self.completed_regions))

    @computed_field
    @property
    def accuracy(self) -> int:
        if not self.total_questions:
            return 0
        return round(self.correct_answers / self.total_questions * 100)

    @model_validator(mode="after")
    def _correct_not_above_total(self):
        if self.correct_answers > self.total_questions:
            raise ValueError("correct_answers cannot exceed total_questions")
        return self
