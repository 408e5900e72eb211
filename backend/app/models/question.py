from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

OPTION_COUNT = 4


class QuestionBase(BaseModel):
    text: str
    options: list[str]
    correct_index: int
    hint: str = ""
    explanation: str = ""
    region: str
    category: str
    difficulty: str
    spy_context: str = ""
    educational_value: str = ""
    metadata: dict = {}

    @field_validator("options")
    @classmethod
    def _exactly_four_options(cls, v: list[str]) -> list[str]:
        if len(v) != OPTION_COUNT:
            raise ValueError(f"expected {OPTION_COUNT} options, got {len(v)}")
        return v

    @model_validator(mode="after")
    def _index_in_range(self):
        if not 0 <= self.correct_index < OPTION_COUNT:
            raise ValueError(f"correct_index {self.correct_index} outside [0, {OPTION_COUNT - 1}]")
        return self

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]


class GeneratedQuestion(QuestionBase):
    source: Literal["ai"] = "ai"


class FallbackQuestion(QuestionBase):
    source: Literal["bank"] = "bank"


class HardcodedQuestion(QuestionBase):
    source: Literal["hardcoded"] = "hardcoded"


Question = Annotated[
    Union[GeneratedQuestion, FallbackQuestion, HardcodedQuestion],
    Field(discriminator="source"),
]


class GenerationResult(BaseModel):
    """Observability record for one pipeline run."""
    source: Literal["ai", "bank", "hardcoded"]
    region: str
    category: str
    tier: str
    stages: list[str]
    repairs: list[str] = []
    cost_estimate: float = 0.0
    latency_ms: int = 0
    error_type: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
