"""
=============================================================================
TASK_GENERATION.PY — AI-Suggested Daily Tasks
=============================================================================
  1. Gather context: the user's intent, goals and projects marked for AI
     generation, active quests, enabled stats, the weather (if a zip code
     is known) and the family members who need attention.
  2. ONE request to the AI for a few personal and family suggestions.
  3. Every suggestion becomes a Task row (source = "ai"), all in one commit.

All or nothing: if the AI fails or answers garbage, no task is written and
the caller gets "Task generation failed, please try again".
A weather failure is NOT fatal, the tasks are generated without it.
"""

import logging
from datetime import date
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from errors import AppError, ConfigurationError, GenerationFailed, ValidationFailed
from gamification import find_stat_by_name, find_family_member_by_name
from models import (
    User, Goal, Project, Quest, CharacterStat, FamilyMember, Task,
    TaskSource, TaskType, INTERACTION_FREQUENCY_DAYS, InteractionFrequency
)
from schemas import MAX_INTENT_LENGTH, quest_is_active

logger = logging.getLogger("liferpg.tasks")


class GenerationResult(NamedTuple):
    tasks: list[Task]
    weather: Optional[dict]
    family_needing_attention: list[str]


# =============================================================================
# ===================== FAMILY ATTENTION ======================================
# =============================================================================

def needs_attention(member: FamilyMember, today: date) -> bool:
    """Never contacted, or longer ago than their interaction frequency allows"""
    if member.last_interaction_date is None:
        return True
    try:
        allowed = INTERACTION_FREQUENCY_DAYS[InteractionFrequency(member.interaction_frequency)]
    except ValueError:
        allowed = INTERACTION_FREQUENCY_DAYS[InteractionFrequency.weekly]
    return (today - member.last_interaction_date).days > allowed


def members_needing_attention(db: Session, user_id: int, today: date) -> list[FamilyMember]:
    members = db.query(FamilyMember).filter(
        FamilyMember.user_id == user_id
    ).order_by(FamilyMember.name).all()
    return [m for m in members if needs_attention(m, today)]


# =============================================================================
# ===================== CONTEXT ===============================================
# =============================================================================

def build_context(
    db: Session,
    user: User,
    today: date,
    intent: Optional[str],
    weather: Optional[dict],
    attention: list[FamilyMember],
) -> dict:
    goals = db.query(Goal).filter(
        Goal.user_id == user.id,
        Goal.is_active.is_(True),
        Goal.is_archived.is_(False),
        Goal.include_in_ai_generation.is_(True),
    ).all()
    projects = db.query(Project).filter(
        Project.user_id == user.id,
        Project.is_completed.is_(False),
        Project.include_in_ai_generation.is_(True),
    ).all()
    quests = db.query(Quest).filter(Quest.user_id == user.id, Quest.is_completed.is_(False)).all()
    stats = db.query(CharacterStat).filter(
        CharacterStat.user_id == user.id, CharacterStat.enabled.is_(True)
    ).order_by(CharacterStat.name).all()

    return {
        "date": today.isoformat(),
        "intent": intent or None,
        "goals": [{"title": g.title, "description": g.description, "tags": g.tags or []} for g in goals],
        "projects": [{"title": p.title, "type": p.type} for p in projects],
        "quests": [q.title for q in quests if quest_is_active(q, today)],
        "stats": [s.name for s in stats],
        "weather": weather,
        "family_needing_attention": [
            {
                "name": m.name,
                "relationship": m.relationship_type,
                "likes": m.likes or [],
                "dislikes": m.dislikes or [],
                "energy_level": m.energy_level,
            }
            for m in attention
        ],
    }


def _weather_context(weather_service, zip_code: Optional[str]) -> Optional[dict]:
    if not zip_code or weather_service is None:
        return None
    try:
        conditions, classification = weather_service.get_classified(zip_code)
    except AppError as e:
        logger.warning(f"⚠️ Generating without weather ({e.error_type}): {e.message}")
        return None
    return {
        "condition": conditions.condition,
        "temperature": conditions.temperature,
        "is_outdoor_friendly": classification.is_outdoor_friendly,
        "is_indoor_friendly": classification.is_indoor_friendly,
        "recommended_activities": classification.recommended_activities,
        "avoid_activities": classification.avoid_activities,
    }


# =============================================================================
# ===================== GENERATION ============================================
# =============================================================================

def generate_tasks(
    db: Session,
    user: User,
    ai,
    weather_service=None,
    intent: Optional[str] = None,
    target_date: Optional[date] = None,
    zip_code: Optional[str] = None,
) -> GenerationResult:
    if intent is not None and len(intent) > MAX_INTENT_LENGTH:
        raise ValidationFailed(f"Intent must be at most {MAX_INTENT_LENGTH} characters")
    intent = (intent or "").strip() or None

    today = target_date or user.local_today()
    weather = _weather_context(weather_service, zip_code or user.zip_code)
    attention = members_needing_attention(db, user.id, today)
    context = build_context(db, user, today, intent, weather, attention)

    try:
        suggestions = ai.suggest_tasks(context)
    except ConfigurationError:
        raise
    except AppError as e:
        logger.error(f"❌ Task generation failed for user {user.id}: {e.message}")
        raise GenerationFailed("Task generation failed, please try again") from e

    if not suggestions.personal and not suggestions.family:
        raise GenerationFailed("Task generation failed, please try again")

    tasks = []
    for s in suggestions.personal:
        stat = find_stat_by_name(db, user.id, s.stat)
        tasks.append(Task(
            user_id=user.id,
            title=s.title,
            description=s.description,
            source=TaskSource.ai.value,
            task_type=TaskType.personal.value,
            stat_id=stat.id if stat else None,
            xp_reward=s.xp_reward,
            due_date=today,
        ))
    for s in suggestions.family:
        stat = find_stat_by_name(db, user.id, s.stat)
        member = find_family_member_by_name(db, user.id, s.family_member)
        tasks.append(Task(
            user_id=user.id,
            title=s.title,
            description=s.description,
            source=TaskSource.ai.value,
            task_type=TaskType.family.value,
            stat_id=stat.id if stat else None,
            family_member_id=member.id if member else None,
            xp_reward=s.xp_reward,
            due_date=today,
        ))

    db.add_all(tasks)
    db.commit()

    logger.info(f"🎲 {len(tasks)} tasks generated for user {user.id} ({today})")
    return GenerationResult(
        tasks=tasks,
        weather=weather,
        family_needing_attention=[m.name for m in attention],
    )


def generated_tasks_for(db: Session, user_id: int, day: date) -> list[Task]:
    return db.query(Task).filter(
        Task.user_id == user_id,
        Task.source == TaskSource.ai.value,
        Task.due_date == day,
    ).order_by(Task.id).all()
