"""
=============================================================================
SCHEMAS.PY — Validation Schemas (Pydantic)
=============================================================================
Models (SQLAlchemy) describe TABLES; schemas describe what the API ACCEPTS
and RETURNS. Request bodies are parsed here once, at the edge, and the
handlers only ever see typed, validated data.

Naming:
  XxxCreate   → body of a POST
  XxxUpdate   → body of a PUT/PATCH (every field optional)
  XxxResponse → what the API returns inside the envelope

Every response is wrapped in the envelope:
  {"success": true, "data": ...}
  {"success": false, "error": "...", "type": "not_found"}
"""

from datetime import date, datetime
from typing import Annotated, Generic, Optional, TypeVar

import pytz
from pydantic import (
    AfterValidator, BaseModel, Field, EmailStr, ValidationInfo, field_validator, model_validator
)

from gamification import level_for_xp
from models import (
    JournalStatus, TaskType, ProjectType, EnergyLevel, InteractionFrequency
)

T = TypeVar("T")

ZIP_PATTERN = r"^\d{5}(-\d{4})?$"
MAX_INTENT_LENGTH = 500


# =============================================================================
# ===================== ENVELOPE ==============================================
# =============================================================================

class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    type: str


class LevelFields(BaseModel):
    """Derived from current_xp, never stored"""
    level: int
    xp_into_level: int
    xp_for_next_level: int
    progress_percent: float


def _level_fields(current_xp: int) -> dict:
    return level_for_xp(current_xp or 0)._asdict()


def _check_timezone(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in pytz.all_timezones_set:
        raise ValueError(f"Unknown timezone '{v}'")
    return v


TimezoneName = Annotated[str, AfterValidator(_check_timezone)]


def _reject_null(value, info: ValidationInfo):
    """Update bodies may omit a field, but a NOT NULL column cannot be set to null"""
    if value is None:
        raise ValueError(f"{info.field_name} cannot be null")
    return value


# =============================================================================
# ===================== AUTH ==================================================
# =============================================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, description="At least 6 characters")
    name: str = Field(min_length=1, max_length=100)
    timezone: TimezoneName = "UTC"
    zip_code: Optional[str] = Field(default=None, pattern=ZIP_PATTERN)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    name: str

class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    timezone: str
    zip_code: Optional[str]
    created_at: datetime
    last_active: Optional[datetime]
    model_config = {"from_attributes": True}

class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    timezone: Optional[TimezoneName] = None
    zip_code: Optional[str] = Field(default=None, pattern=ZIP_PATTERN)

    @field_validator("name", "timezone", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)


# =============================================================================
# ===================== CHARACTER STATS + XP ==================================
# =============================================================================

class StatCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None

class StatUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    enabled: Optional[bool] = None

    @field_validator("name", "enabled", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class StatResponse(LevelFields):
    id: int
    name: str
    description: Optional[str]
    current_xp: int
    enabled: bool
    created_at: datetime

    @classmethod
    def from_stat(cls, stat) -> "StatResponse":
        return cls(
            id=stat.id,
            name=stat.name,
            description=stat.description,
            current_xp=stat.current_xp or 0,
            enabled=stat.enabled,
            created_at=stat.created_at,
            **_level_fields(stat.current_xp),
        )

class ManualGrantCreate(BaseModel):
    """XP the user awards by hand (e.g. "read 50 pages")"""
    amount: int = Field(gt=0, le=1000)
    reason: Optional[str] = Field(default=None, max_length=500)

class XpGrantResponse(BaseModel):
    id: int
    entity_type: str
    stat_id: Optional[int]
    family_member_id: Optional[int]
    amount: int
    source_type: str
    source_id: Optional[int]
    reason: Optional[str]
    created_at: datetime
    model_config = {"from_attributes": True}

class LevelRequirement(BaseModel):
    level: int
    total_xp_required: int
    xp_for_next_level: int


# =============================================================================
# ===================== JOURNAL ===============================================
# =============================================================================

class JournalCreate(BaseModel):
    entry_date: date
    content: str = Field(default="", max_length=50000)

class JournalUpdate(BaseModel):
    content: str = Field(max_length=50000)

class JournalMessage(BaseModel):
    message: str = Field(min_length=1, max_length=5000)

class JournalFinish(BaseModel):
    day_rating: Optional[int] = Field(default=None, ge=1, le=5)
    # overrides the AI's suggestion when given

class ConversationTurn(BaseModel):
    role: str
    content: str
    timestamp: str

class JournalResponse(BaseModel):
    id: int
    entry_date: date
    status: JournalStatus
    content: str
    title: Optional[str]
    synopsis: Optional[str]
    summary: Optional[str]
    tone_tags: list[str]
    content_tags: list[str]
    day_rating: Optional[int]
    conversation_history: list[ConversationTurn]
    pending_recalculation: bool
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]
    model_config = {"from_attributes": True}

    @field_validator("tone_tags", "content_tags", "conversation_history", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []


# =============================================================================
# ===================== GOALS =================================================
# =============================================================================

class GoalCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    tags: list[str] = []
    is_active: bool = True
    include_in_ai_generation: bool = True

class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    is_active: Optional[bool] = None
    is_archived: Optional[bool] = None
    include_in_ai_generation: Optional[bool] = None

    @field_validator("title", "tags", "is_active", "is_archived", "include_in_ai_generation", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class GoalResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    tags: list[str]
    is_active: bool
    is_archived: bool
    include_in_ai_generation: bool
    created_at: datetime
    model_config = {"from_attributes": True}

    @field_validator("tags", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []


# =============================================================================
# ===================== QUESTS ================================================
# =============================================================================

class QuestCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    goal_id: Optional[int] = None
    start_date: Optional[date] = None
    # defaults to the user's today
    end_date: Optional[date] = None

class QuestUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    goal_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_completed: Optional[bool] = None

    @field_validator("title", "start_date", "is_completed", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class QuestResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    goal_id: Optional[int]
    start_date: date
    end_date: Optional[date]
    is_completed: bool
    completed_at: Optional[datetime]
    is_active: bool
    created_at: datetime

    @classmethod
    def from_quest(cls, quest, today: date) -> "QuestResponse":
        return cls(
            id=quest.id,
            title=quest.title,
            description=quest.description,
            goal_id=quest.goal_id,
            start_date=quest.start_date,
            end_date=quest.end_date,
            is_completed=quest.is_completed,
            completed_at=quest.completed_at,
            is_active=quest_is_active(quest, today),
            created_at=quest.created_at,
        )


def quest_is_active(quest, today: date) -> bool:
    if quest.is_completed or quest.start_date > today:
        return False
    return quest.end_date is None or today <= quest.end_date


# =============================================================================
# ===================== EXPERIMENTS ===========================================
# =============================================================================

class ExperimentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    goal_id: Optional[int] = None
    start_date: date
    end_date: date
    daily_task_description: Optional[str] = None
    stat_id: Optional[int] = None
    xp_reward: int = Field(default=10, ge=1, le=100)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self

class ExperimentUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    goal_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    daily_task_description: Optional[str] = None
    stat_id: Optional[int] = None
    xp_reward: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator("title", "start_date", "end_date", "xp_reward", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class ExperimentReflection(BaseModel):
    reflection: Optional[str] = Field(default=None, max_length=10000)
    would_repeat: Optional[bool] = None
    # null = "not sure yet"

class ExperimentDayComplete(BaseModel):
    completed_date: Optional[date] = None
    notes: Optional[str] = None

class ExperimentCompletionResponse(BaseModel):
    id: int
    completed_date: date
    notes: Optional[str]
    model_config = {"from_attributes": True}

class ExperimentResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    goal_id: Optional[int]
    start_date: date
    end_date: date
    daily_task_description: Optional[str]
    stat_id: Optional[int]
    xp_reward: int
    reflection: Optional[str]
    would_repeat: Optional[bool]
    is_active: bool
    total_days: int
    completions: list[ExperimentCompletionResponse]
    created_at: datetime

    @classmethod
    def from_experiment(cls, exp, today: date) -> "ExperimentResponse":
        return cls(
            id=exp.id,
            title=exp.title,
            description=exp.description,
            goal_id=exp.goal_id,
            start_date=exp.start_date,
            end_date=exp.end_date,
            daily_task_description=exp.daily_task_description,
            stat_id=exp.stat_id,
            xp_reward=exp.xp_reward,
            reflection=exp.reflection,
            would_repeat=exp.would_repeat,
            is_active=experiment_is_active(exp, today),
            total_days=(exp.end_date - exp.start_date).days + 1,
            completions=[
                ExperimentCompletionResponse.model_validate(c)
                for c in sorted(exp.completions, key=lambda c: c.completed_date)
            ],
            created_at=exp.created_at,
        )


def experiment_is_active(exp, today: date) -> bool:
    return exp.start_date <= today <= exp.end_date


# =============================================================================
# ===================== PROJECTS ==============================================
# =============================================================================

class SubtaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None

class SubtaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_completed: Optional[bool] = None

    @field_validator("title", "is_completed", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class SubtaskReorder(BaseModel):
    subtask_ids: list[int] = Field(min_length=1)
    # the new order, every subtask of the project exactly once

class SubtaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    sort_order: int
    is_completed: bool
    completed_at: Optional[datetime]
    model_config = {"from_attributes": True}

class ProjectCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    type: ProjectType = ProjectType.project
    goal_id: Optional[int] = None
    start_date: Optional[date] = None
    target_date: Optional[date] = None
    include_in_ai_generation: bool = True
    subtasks: list[SubtaskCreate] = []

class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[ProjectType] = None
    goal_id: Optional[int] = None
    start_date: Optional[date] = None
    target_date: Optional[date] = None
    is_completed: Optional[bool] = None
    include_in_ai_generation: Optional[bool] = None

    @field_validator("title", "type", "is_completed", "include_in_ai_generation", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class ProjectResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    type: str
    goal_id: Optional[int]
    start_date: Optional[date]
    target_date: Optional[date]
    is_completed: bool
    completed_at: Optional[datetime]
    include_in_ai_generation: bool
    subtasks: list[SubtaskResponse]
    created_at: datetime
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== TASKS =================================================
# =============================================================================

class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    task_type: TaskType = TaskType.personal
    stat_id: Optional[int] = None
    family_member_id: Optional[int] = None
    xp_reward: int = Field(default=0, ge=0, le=1000)
    due_date: Optional[date] = None

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    stat_id: Optional[int] = None
    family_member_id: Optional[int] = None
    xp_reward: Optional[int] = Field(default=None, ge=0, le=1000)
    due_date: Optional[date] = None

    @field_validator("title", "xp_reward", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class TaskComplete(BaseModel):
    feedback: Optional[str] = Field(default=None, max_length=2000)

class AdhocTaskCreate(BaseModel):
    """Something already done, logged after the fact for XP"""
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    stat_id: int
    xp_reward: int = Field(gt=0, le=100)
    family_member_id: Optional[int] = None

class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    source: str
    task_type: str
    stat_id: Optional[int]
    family_member_id: Optional[int]
    xp_reward: int
    due_date: Optional[date]
    is_completed: bool
    completed_at: Optional[datetime]
    feedback: Optional[str]
    created_at: datetime
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== FAMILY ================================================
# =============================================================================

class FamilyMemberCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    relationship_type: str = Field(min_length=1, max_length=50)
    likes: list[str] = []
    dislikes: list[str] = []
    energy_level: EnergyLevel = EnergyLevel.medium
    interaction_frequency: InteractionFrequency = InteractionFrequency.weekly
    last_interaction_date: Optional[date] = None

class FamilyMemberUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    relationship_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    likes: Optional[list[str]] = None
    dislikes: Optional[list[str]] = None
    energy_level: Optional[EnergyLevel] = None
    interaction_frequency: Optional[InteractionFrequency] = None
    last_interaction_date: Optional[date] = None

    @field_validator("name", "relationship_type", "likes", "dislikes", "energy_level", "interaction_frequency", mode="before")
    @classmethod
    def not_null(cls, v, info: ValidationInfo):
        return _reject_null(v, info)

class FamilyMemberResponse(LevelFields):
    id: int
    name: str
    relationship_type: str
    likes: list[str]
    dislikes: list[str]
    energy_level: str
    interaction_frequency: str
    last_interaction_date: Optional[date]
    current_xp: int
    created_at: datetime

    @classmethod
    def from_member(cls, member) -> "FamilyMemberResponse":
        return cls(
            id=member.id,
            name=member.name,
            relationship_type=member.relationship_type,
            likes=member.likes or [],
            dislikes=member.dislikes or [],
            energy_level=member.energy_level,
            interaction_frequency=member.interaction_frequency,
            last_interaction_date=member.last_interaction_date,
            current_xp=member.current_xp or 0,
            created_at=member.created_at,
            **_level_fields(member.current_xp),
        )

class FamilyFeedbackCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    interaction_date: Optional[date] = None
    xp_awarded: int = Field(default=10, ge=0, le=100)

class FamilyFeedbackResponse(BaseModel):
    id: int
    family_member_id: int
    content: str
    interaction_date: date
    xp_awarded: int
    created_at: datetime
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== TASK GENERATION + WEATHER =============================
# =============================================================================

class GenerateTasksRequest(BaseModel):
    intent: Optional[str] = Field(default=None, max_length=MAX_INTENT_LENGTH)
    # "I want a calm day with the kids"
    target_date: Optional[date] = None
    # defaults to the user's today
    zip_code: Optional[str] = Field(default=None, pattern=ZIP_PATTERN)

class GenerateTasksResponse(BaseModel):
    tasks: list[TaskResponse]
    weather: Optional[dict] = None
    family_needing_attention: list[str] = []


# =============================================================================
# ===================== DASHBOARD =============================================
# =============================================================================

class DashboardResponse(BaseModel):
    today: date
    stats: list[StatResponse]
    journal_status: Optional[str]
    open_tasks: list[TaskResponse]
    active_quests: list[QuestResponse]
    active_experiments: list[ExperimentResponse]
    family_needing_attention: list[FamilyMemberResponse]
