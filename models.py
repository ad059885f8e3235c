"""
=============================================================================
MODELS.PY — Database Models (Tables)
=============================================================================
Each class here = one table. Each attribute = one column.

RELATIONSHIPS:
  USER
  ├── character_stats[]
  ├── xp_grants[] ──→ (character_stat | family_member)
  ├── journal_entries[]
  ├── goals[]
  ├── quests[] ──→ goal?
  ├── experiments[] ──→ experiment_completions[]
  ├── projects[] ──→ project_subtasks[]
  ├── tasks[]
  └── family_members[] ──→ family_feedback[]

Deleting a user deletes everything it owns (ORM cascade + ON DELETE CASCADE).

Levels are NEVER stored: they are derived from current_xp by
gamification.level_for_xp(). current_xp itself only moves through the XP
ledger (gamification.grant_xp / delete_grants_for_source).
"""

from datetime import datetime, date
import pytz
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Date,
    DateTime, ForeignKey, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from database import Base
import enum


# =============================================================================
# ===================== ENUMS =================================================
# =============================================================================

class JournalStatus(str, enum.Enum):
    """Lifecycle of a journal entry (transitions live in journal.py)"""
    draft = "draft"              # content editable, no AI summary
    reflecting = "reflecting"    # conversation with the AI in progress
    complete = "complete"        # summary written, XP granted

class GrantEntity(str, enum.Enum):
    """What an XP grant is credited to"""
    character_stat = "character_stat"
    family_member = "family_member"

class GrantSource(str, enum.Enum):
    """Which activity produced an XP grant"""
    journal = "journal"
    task = "task"
    adhoc = "adhoc"
    experiment = "experiment"
    family_interaction = "family_interaction"
    manual = "manual"

class TaskSource(str, enum.Enum):
    manual = "manual"
    ai = "ai"
    adhoc = "adhoc"

class TaskType(str, enum.Enum):
    personal = "personal"
    family = "family"

class ProjectType(str, enum.Enum):
    project = "project"
    adventure = "adventure"

class EnergyLevel(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"

class InteractionFrequency(str, enum.Enum):
    """How often a family member should get attention"""
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"

# days allowed between interactions before a member "needs attention"
INTERACTION_FREQUENCY_DAYS = {
    InteractionFrequency.daily: 1,
    InteractionFrequency.weekly: 7,
    InteractionFrequency.biweekly: 14,
    InteractionFrequency.monthly: 30,
}


# =============================================================================
# ===================== TABLE 1: USERS ========================================
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # ── Identity ──
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)

    # ── Preferences ──
    timezone = Column(String(50), default="UTC", nullable=False)
    # pytz name, decides what "today" means for this user
    zip_code = Column(String(10), nullable=True)
    # used for weather-aware task generation

    created_at = Column(DateTime, default=datetime.utcnow)
    last_active = Column(DateTime, default=datetime.utcnow)

    # ── Relationships ──
    character_stats = relationship("CharacterStat", back_populates="user", cascade="all, delete-orphan")
    xp_grants = relationship("XpGrant", back_populates="user", cascade="all, delete-orphan")
    journal_entries = relationship("JournalEntry", back_populates="user", cascade="all, delete-orphan")
    goals = relationship("Goal", back_populates="user", cascade="all, delete-orphan")
    quests = relationship("Quest", back_populates="user", cascade="all, delete-orphan")
    experiments = relationship("Experiment", back_populates="user", cascade="all, delete-orphan")
    projects = relationship("Project", back_populates="user", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="user", cascade="all, delete-orphan")
    family_members = relationship("FamilyMember", back_populates="user", cascade="all, delete-orphan")

    def local_today(self) -> date:
        """Today's date in the user's own timezone"""
        try:
            tz = pytz.timezone(self.timezone or "UTC")
        except pytz.UnknownTimeZoneError:
            tz = pytz.utc
        return datetime.now(tz).date()


# =============================================================================
# ===================== TABLE 2: CHARACTER STATS ==============================
# =============================================================================

class CharacterStat(Base):
    __tablename__ = "character_stats"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_stat_user_name"),
        CheckConstraint("current_xp >= 0", name="ck_stat_xp_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    current_xp = Column(Integer, default=0, nullable=False)
    # running total of this stat's grants, changed in the same transaction as the ledger
    enabled = Column(Boolean, default=True, nullable=False)
    # "deleting" a stat only flips this flag, its grants stay auditable

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="character_stats")


# =============================================================================
# ===================== TABLE 3: XP GRANTS (ledger) ===========================
# =============================================================================

class XpGrant(Base):
    """
    One immutable row per XP award. Never updated: a correction deletes
    the grants of a source and inserts new ones.
    """
    __tablename__ = "xp_grants"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_grant_amount_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    entity_type = Column(String(20), nullable=False)
    # GrantEntity: exactly one of stat_id / family_member_id is set
    stat_id = Column(Integer, ForeignKey("character_stats.id"), nullable=True, index=True)
    # no ON DELETE action: history must not vanish with the stat
    family_member_id = Column(Integer, ForeignKey("family_members.id", ondelete="CASCADE"), nullable=True)

    amount = Column(Integer, nullable=False)
    source_type = Column(String(30), nullable=False)
    source_id = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="xp_grants")
    stat = relationship("CharacterStat")
    family_member = relationship("FamilyMember", back_populates="xp_grants")


# =============================================================================
# ===================== TABLE 4: JOURNAL ENTRIES ==============================
# =============================================================================

class JournalEntry(Base):
    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint("user_id", "entry_date", name="uq_journal_user_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    entry_date = Column(Date, nullable=False)

    status = Column(String(20), default=JournalStatus.draft.value, nullable=False)
    content = Column(Text, default="", nullable=False)

    # ── Filled by the AI when the entry is finished ──
    title = Column(String(200), nullable=True)
    synopsis = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    tone_tags = Column(JSON, default=list)
    # ["calm", "energized"]
    content_tags = Column(JSON, default=list)
    day_rating = Column(Integer, nullable=True)
    # 1-5

    conversation_history = Column(JSON, default=list)
    # [{"role": "assistant", "content": "...", "timestamp": "2024-01-01T20:00:00"}, ...]

    pending_recalculation = Column(Boolean, default=False, nullable=False)
    # True between "edit" of a complete entry and the next save/cancel

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="journal_entries")


# =============================================================================
# ===================== TABLE 5: GOALS ========================================
# =============================================================================

class Goal(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    tags = Column(JSON, default=list)

    is_active = Column(Boolean, default=True, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    # archived goals keep their history but never feed generation
    include_in_ai_generation = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="goals")


# =============================================================================
# ===================== TABLE 6: QUESTS =======================================
# =============================================================================

class Quest(Base):
    __tablename__ = "quests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    # open-ended when NULL

    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="quests")
    goal = relationship("Goal")


# =============================================================================
# ===================== TABLE 7: EXPERIMENTS ==================================
# =============================================================================

class Experiment(Base):
    __tablename__ = "experiments"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_experiment_dates"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # ── Daily task template ──
    daily_task_description = Column(Text, nullable=True)
    stat_id = Column(Integer, ForeignKey("character_stats.id", ondelete="SET NULL"), nullable=True)
    xp_reward = Column(Integer, default=10, nullable=False)

    # ── Post-hoc reflection ──
    reflection = Column(Text, nullable=True)
    would_repeat = Column(Boolean, nullable=True)
    # tri-state: True / False / not answered yet

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="experiments")
    goal = relationship("Goal")
    stat = relationship("CharacterStat")
    completions = relationship(
        "ExperimentCompletion", back_populates="experiment",
        cascade="all, delete-orphan", order_by="ExperimentCompletion.completed_date"
    )


class ExperimentCompletion(Base):
    __tablename__ = "experiment_completions"
    __table_args__ = (
        UniqueConstraint("experiment_id", "completed_date", name="uq_experiment_completion_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    experiment_id = Column(Integer, ForeignKey("experiments.id", ondelete="CASCADE"), nullable=False)
    completed_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    experiment = relationship("Experiment", back_populates="completions")


# =============================================================================
# ===================== TABLE 8: PROJECTS =====================================
# =============================================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), default=ProjectType.project.value, nullable=False)
    start_date = Column(Date, nullable=True)
    target_date = Column(Date, nullable=True)

    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    include_in_ai_generation = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="projects")
    goal = relationship("Goal")
    subtasks = relationship(
        "ProjectSubtask", back_populates="project",
        cascade="all, delete-orphan", order_by="ProjectSubtask.sort_order"
    )


class ProjectSubtask(Base):
    __tablename__ = "project_subtasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)

    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    project = relationship("Project", back_populates="subtasks")


# =============================================================================
# ===================== TABLE 9: TASKS ========================================
# =============================================================================

class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("xp_reward >= 0", name="ck_task_xp_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    source = Column(String(20), default=TaskSource.manual.value, nullable=False)
    task_type = Column(String(20), default=TaskType.personal.value, nullable=False)

    stat_id = Column(Integer, ForeignKey("character_stats.id", ondelete="SET NULL"), nullable=True)
    family_member_id = Column(Integer, ForeignKey("family_members.id", ondelete="SET NULL"), nullable=True)
    xp_reward = Column(Integer, default=0, nullable=False)

    due_date = Column(Date, nullable=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    # setting it grants XP, clearing it removes that XP
    feedback = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="tasks")
    stat = relationship("CharacterStat")
    family_member = relationship("FamilyMember")

    def source_grant_type(self) -> str:
        """Grant source of this task's XP: ad-hoc logs and regular tasks are kept apart"""
        if self.source == TaskSource.adhoc.value:
            return GrantSource.adhoc.value
        return GrantSource.task.value


# =============================================================================
# ===================== TABLE 10: FAMILY ======================================
# =============================================================================

class FamilyMember(Base):
    __tablename__ = "family_members"
    __table_args__ = (
        CheckConstraint("current_xp >= 0", name="ck_family_xp_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    relationship_type = Column(String(50), nullable=False)
    # "daughter", "wife", "father"...
    likes = Column(JSON, default=list)
    dislikes = Column(JSON, default=list)
    energy_level = Column(String(10), default=EnergyLevel.medium.value, nullable=False)
    interaction_frequency = Column(String(10), default=InteractionFrequency.weekly.value, nullable=False)
    last_interaction_date = Column(Date, nullable=True)

    current_xp = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="family_members")
    feedback_entries = relationship(
        "FamilyFeedback", back_populates="family_member",
        cascade="all, delete-orphan", order_by="FamilyFeedback.interaction_date.desc()"
    )
    xp_grants = relationship("XpGrant", back_populates="family_member", cascade="all, delete-orphan")


class FamilyFeedback(Base):
    __tablename__ = "family_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    family_member_id = Column(Integer, ForeignKey("family_members.id", ondelete="CASCADE"), nullable=False)

    content = Column(Text, nullable=False)
    interaction_date = Column(Date, nullable=False)
    xp_awarded = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    family_member = relationship("FamilyMember", back_populates="feedback_entries")
