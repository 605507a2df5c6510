from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from backend.days import day_key

TimeOfDay = Literal["morning", "evening"]
SkinStatus = Literal["better", "same", "worse"]
Mood = Literal["good", "neutral", "challenging"]
MeditationLevel = Literal["beginner", "intermediate", "advanced"]


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== AUTH MODELS ====================

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(CamelModel):
    id: str
    email: str
    name: str
    created_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ==================== ROUTINE MODELS ====================

class RoutineStep(CamelModel):
    id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    completed: bool = False
    time_of_day: TimeOfDay


class RoutineStepIn(CamelModel):
    """A step as submitted by the client; new steps may omit their id."""
    id: Optional[int] = Field(None, ge=1)
    name: str = Field(..., min_length=1)
    completed: bool = False
    time_of_day: TimeOfDay


def assign_step_ids(steps: List[RoutineStepIn]) -> List[RoutineStep]:
    """Give id-less steps the next id after the current maximum, in order."""
    next_id = max((s.id for s in steps if s.id is not None), default=0) + 1
    assigned = []
    for step in steps:
        step_id = step.id
        if step_id is None:
            step_id = next_id
            next_id += 1
        assigned.append(RoutineStep(
            id=step_id,
            name=step.name,
            completed=step.completed,
            time_of_day=step.time_of_day,
        ))
    return assigned


class RoutineSave(CamelModel):
    date: str
    steps: List[RoutineStepIn]
    notes: Optional[str] = None
    skin_status: Optional[SkinStatus] = None

    @field_validator('date')
    @classmethod
    def normalize_date(cls, value: str) -> str:
        try:
            return day_key(value)
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}")

    @model_validator(mode='after')
    def check_unique_step_ids(self):
        ids = [s.id for s in self.steps if s.id is not None]
        if len(ids) != len(set(ids)):
            raise ValueError("Step ids must be unique within a routine")
        return self


class RoutineRecord(CamelModel):
    id: str
    user_id: str
    date: str
    steps: List[RoutineStep]
    notes: Optional[str] = None
    skin_status: Optional[SkinStatus] = None
    created_at: datetime
    updated_at: datetime


class RoutinePlaceholder(BaseModel):
    date: str


# ==================== CONSISTENCY MODELS ====================

class DayCompletion(CamelModel):
    day_label: str
    completed: bool


class ConsistencyView(CamelModel):
    completed_days: int
    weekly_goal: int
    streak: int
    last_seven_days: List[DayCompletion]


# ==================== SKIN ANALYSIS MODELS ====================

class SkinAnalysisCreate(CamelModel):
    """An analysis result produced elsewhere, stored for the user's history."""
    image: str = Field(..., min_length=1)
    analysis: Dict[str, Any]
    summary: Optional[str] = None

    @model_validator(mode='after')
    def fill_summary(self):
        if not self.summary:
            condition = self.analysis.get('skinCondition')
            if not isinstance(condition, str) or not condition.strip():
                raise ValueError("summary is required when analysis has no skinCondition")
            self.summary = condition
        return self


class SkinAnalysis(CamelModel):
    id: str
    user_id: str
    image: str  # thumbnail, not the full upload
    analysis: Dict[str, Any]
    summary: str
    created_at: datetime


# ==================== JOURNAL MODELS ====================

class JournalEntryCreate(CamelModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    mood: Optional[Mood] = None
    is_private: bool = True


class JournalEntry(CamelModel):
    id: str
    user_id: str
    title: str
    content: str
    mood: Optional[Mood] = None
    is_private: bool = True
    created_at: datetime
    updated_at: datetime


# ==================== MEDITATION MODELS ====================

class Meditation(CamelModel):
    id: int
    title: str
    description: str
    audio_url: str
    image_url: str
    duration: int  # in minutes
    category: str
    level: MeditationLevel


class MeditationCategory(BaseModel):
    id: int
    name: str
    icon: str
    count: int
    color: str


class MeditationComplete(CamelModel):
    is_favorite: bool = False


class MeditationHistory(CamelModel):
    id: str
    user_id: str
    meditation_id: int
    completed_at: datetime
    is_favorite: bool = False


class RecentMeditation(CamelModel):
    id: int
    title: str
    duration: int
    last_played: str
    color: str
