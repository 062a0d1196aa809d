"""
Learner data models and JSON persistence.
Pydantic v2 models for diagnostic placement, skill mastery and learning plans.
"""

import hashlib
import json
import os
import re
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

DATA_DIR = Path(os.getenv("PLACEMENT_DATA_DIR", Path.home() / ".placement" / "learners"))

Subject = Literal["math", "reading", "science", "social-studies"]
SUBJECTS: tuple[str, ...] = ("math", "reading", "science", "social-studies")

ABILITY_MIN, ABILITY_MAX = -3.0, 3.0
THETA_MIN, THETA_MAX = -2.0, 2.0

# Plan items at or above this priority are spaced reviews, never new lessons.
REVIEW_PRIORITY_OFFSET = 1000

# Scheduled reviews are stored as "review-<lesson id>".
REVIEW_PREFIX = "review-"


def base_lesson_id(lesson_id: str) -> str:
    if lesson_id.startswith(REVIEW_PREFIX):
        return lesson_id[len(REVIEW_PREFIX):]
    return lesson_id


# ---------------------------------------------------------------------------
# Diagnostic items
# ---------------------------------------------------------------------------

def _norm(text: str) -> str:
    return text.strip().lower()


class _ItemBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    subject: Subject
    skill: str = Field(min_length=1)
    grade_hint: str = Field(default="K-2", alias="gradeHint")
    difficulty: float = Field(ge=-2.0, le=2.0)
    prompt: str
    choices: Optional[list[str]] = None
    answer: str = Field(
        min_length=1,
        validation_alias=AliasChoices("answer", "correctAnswer"),
    )

    @field_validator("difficulty", mode="before")
    @classmethod
    def _numeric_difficulty(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("difficulty must be a number")
        return v

    @field_validator("answer")
    @classmethod
    def _answer_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("answer must not be blank")
        return v


class _ChoiceItem(_ItemBase):
    choices: list[str] = Field(min_length=2)

    @model_validator(mode="after")
    def _answer_among_choices(self):
        if _norm(self.answer) not in {_norm(c) for c in self.choices}:
            raise ValueError(f"answer {self.answer!r} is not one of the choices")
        return self


class McqItem(_ChoiceItem):
    type: Literal["mcq"] = "mcq"


class MapItem(_ChoiceItem):
    type: Literal["map"] = "map"


class CountItem(_ItemBase):
    type: Literal["count"] = "count"

    @field_validator("answer")
    @classmethod
    def _whole_number(cls, v: str) -> str:
        if not v.strip().lstrip("-").isdigit():
            raise ValueError("count answers must be whole numbers")
        return v


class PhonemeItem(_ItemBase):
    type: Literal["phoneme"] = "phoneme"


Item = Annotated[
    Union[McqItem, CountItem, PhonemeItem, MapItem],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Diagnostic session
# ---------------------------------------------------------------------------

class Blueprint(BaseModel):
    """Per-subject diagnostic configuration. Validated when built."""

    model_config = ConfigDict(frozen=True)

    subject: Subject
    min_items: int = Field(default=6, ge=1)
    max_items: int = Field(default=15, ge=1)
    break_after_attempts: int = Field(default=8, ge=1)
    start_difficulty: float = Field(default=0.0, ge=ABILITY_MIN, le=ABILITY_MAX)
    stop_streak_threshold: int = Field(default=4, ge=1)
    min_distinct_skills: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def _item_bounds(self):
        if self.min_items > self.max_items:
            raise ValueError(
                f"min_items ({self.min_items}) exceeds max_items ({self.max_items})"
            )
        return self


class DiagAttempt(BaseModel):
    item_id: str
    response: str
    correct: bool
    ability_after: float
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class SessionState(BaseModel):
    learner_id: str
    subject: Subject
    ability: float = 0.0
    items_asked: list[str] = Field(default_factory=list)
    skills_seen: set[str] = Field(default_factory=set)
    correct_count: int = 0
    attempts: int = 0
    streak: int = 0  # positive = run of correct, negative = run of incorrect
    mood: int = Field(default=3, ge=1, le=5)
    needs_break: bool = False
    break_triggered: bool = False
    attempt_log: list[DiagAttempt] = Field(default_factory=list)
    started_at: str = Field(default_factory=lambda: datetime.now().isoformat())


class Placement(BaseModel):
    subject: Subject
    ability: float
    standard_error: float
    label: str
    recommended_grade: str
    recommended_unit: Optional[str] = None


class PlacementRecord(BaseModel):
    placement: Placement
    attempts: list[DiagAttempt] = Field(default_factory=list)
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class LevelRecord(BaseModel):
    subject: Subject
    level_label: str
    grade: str
    unit: str
    ability: float
    confidence: float
    last_updated: str = Field(default_factory=lambda: datetime.now().isoformat())


# ---------------------------------------------------------------------------
# Mastery and plans
# ---------------------------------------------------------------------------

MasteryLevel = Literal["beginning", "developing", "proficient", "advanced"]
PlanStatus = Literal["todo", "inprogress", "done", "locked"]


class MasteryRecord(BaseModel):
    skill_id: str
    theta: float = Field(default=0.0, ge=THETA_MIN, le=THETA_MAX)
    attempts: int = 0
    last_practiced_at: datetime = Field(default_factory=datetime.now)
    next_review_at: datetime = Field(default_factory=datetime.now)
    mastery_level: MasteryLevel = "beginning"


class PlanItem(BaseModel):
    lesson_id: str
    skills: list[str] = Field(default_factory=list)
    scheduled_for: date
    status: PlanStatus = "todo"
    priority: int = 0
    completed_on: Optional[date] = None
    review_type: Optional[str] = None  # spaced, immediate, remediation

    @property
    def is_review(self) -> bool:
        return self.priority >= REVIEW_PRIORITY_OFFSET


class LessonMeta(BaseModel):
    id: str
    title: str
    skills: list[str] = Field(default_factory=list)
    minutes: int = 10
    difficulty: float = 0.0
    standards: list[str] = Field(default_factory=list)


class Unit(BaseModel):
    title: str = ""
    description: Optional[str] = None
    lessons: list[LessonMeta] = Field(default_factory=list)


# subject -> grade -> unit slug -> Unit, in curriculum order
Manifest = dict[str, dict[str, dict[str, Unit]]]

# skill -> prerequisite skills
SkillGraph = dict[str, list[str]]


# ---------------------------------------------------------------------------
# Learner profile
# ---------------------------------------------------------------------------

class LearnerProfile(BaseModel):
    """Everything stored for one learner, keyed by subject."""

    learner_id: str
    sessions: dict[str, SessionState] = Field(default_factory=dict)
    placements: dict[str, PlacementRecord] = Field(default_factory=dict)
    levels: dict[str, LevelRecord] = Field(default_factory=dict)
    mastery: dict[str, dict[str, MasteryRecord]] = Field(default_factory=dict)
    plans: dict[str, list[PlanItem]] = Field(default_factory=dict)

    def mastery_for(self, subject: str) -> dict[str, MasteryRecord]:
        return self.mastery.setdefault(subject, {})

    def plan_for(self, subject: str) -> list[PlanItem]:
        return self.plans.setdefault(subject, [])


def _learner_path(learner_id: str) -> Path:
    safe = re.sub(r"[^A-Za-z0-9_.-]", "_", learner_id.strip()).lstrip(".") or "default"
    if safe != learner_id:
        # Distinct ids that clean up to the same name must not share a file
        digest = hashlib.sha1(learner_id.encode("utf-8")).hexdigest()[:8]
        safe = f"{safe}-{digest}"
    return DATA_DIR / f"{safe}.json"


def load_learner(learner_id: str) -> LearnerProfile:
    path = _learner_path(learner_id)
    if path.exists():
        data = json.loads(path.read_text())
        return LearnerProfile.model_validate(data)
    return LearnerProfile(learner_id=learner_id)


def save_learner(profile: LearnerProfile) -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    path = _learner_path(profile.learner_id)
    path.write_text(profile.model_dump_json(indent=2))


def list_learner_ids() -> list[str]:
    """Learner ids as stored in each profile, since file names may be mangled."""
    if not DATA_DIR.exists():
        return []
    ids = []
    for path in DATA_DIR.glob("*.json"):
        data = json.loads(path.read_text())
        ids.append(data.get("learner_id", path.stem))
    return sorted(ids)
