"""
=============================================================================
MAIN.PY — The LifeRPG API
=============================================================================
Every REST endpoint of the API, grouped by section:

  1. AUTH        → register, login, profile
  2. STATS       → character stats, XP grants, level table
  3. JOURNAL     → entries and their draft → reflecting → complete cycle
  4. GOALS       → long-term objectives (context for AI generation)
  5. QUESTS      → open-ended commitments
  6. EXPERIMENTS → fixed-window commitments with a daily task
  7. PROJECTS    → projects / adventures and their ordered subtasks
  8. TASKS       → to-dos, completion XP, ad-hoc tasks
  9. FAMILY      → family members, feedback, who needs attention
  10. GENERATION → AI-suggested daily tasks
  11. WEATHER    → current conditions + classification
  12. DASHBOARD  → everything for today in one call

Every answer uses the envelope {"success": ..., "data": ... | "error": ...}.

The app is built by create_app(): settings, database, AI client and weather
service are created there (or passed in by tests) and live on app.state.
"""

import logging
import traceback
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Optional

from fastapi import FastAPI, APIRouter, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from ai import AIService
from auth import hash_password, verify_password, create_access_token, get_current_user
from config import Settings
from database import create_db_engine, create_session_factory, init_db, get_db
from errors import AppError, Conflict, NotFound, Unauthorized, ValidationFailed
from gamification import (
    grant_xp, grant_family_xp, delete_grants_for_source, recalculate_totals,
    level_requirements, get_owned_stat, seed_default_stats
)
from models import (
    User, CharacterStat, XpGrant, JournalEntry, Goal, Quest, Experiment,
    ExperimentCompletion, Project, ProjectSubtask, Task, FamilyMember,
    FamilyFeedback, GrantSource, TaskSource, TaskType
)
from schemas import *
from weather import WeatherService
import journal as journal_service
from task_generation import generate_tasks, generated_tasks_for, members_needing_attention

logger = logging.getLogger("liferpg.api")

router = APIRouter(prefix="/api")


# ─────────────────────────────────────────────────────────────────────────────
# SHARED DEPENDENCIES + HELPERS
# ─────────────────────────────────────────────────────────────────────────────

def get_ai(request: Request) -> AIService:
    return request.app.state.ai


def get_weather(request: Request) -> WeatherService:
    return request.app.state.weather


def ok(data=None) -> dict:
    return {"success": True, "data": data}


def _owned(db: Session, model, obj_id: int, user_id: int, label: str):
    """A row of the current user, or 404 (someone else's rows do not exist for you)"""
    obj = db.query(model).filter(model.id == obj_id, model.user_id == user_id).first()
    if not obj:
        raise NotFound(f"{label} not found")
    return obj


def _check_goal(db: Session, goal_id: Optional[int], user_id: int):
    if goal_id is not None:
        _owned(db, Goal, goal_id, user_id, "Goal")


def _check_stat(db: Session, stat_id: Optional[int], user_id: int):
    if stat_id is not None:
        _owned(db, CharacterStat, stat_id, user_id, "Stat")


def _check_member(db: Session, member_id: Optional[int], user_id: int):
    if member_id is not None:
        _owned(db, FamilyMember, member_id, user_id, "Family member")


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

health_router = APIRouter()


@health_router.get("/", tags=["Health"])
def health_check(request: Request):
    """Is the API alive?"""
    return ok({
        "status": "ok",
        "app": "LifeRPG",
        "version": request.app.version,
        "ai_configured": request.app.state.ai.configured,
        "timestamp": datetime.utcnow().isoformat()
    })


# =============================================================================
# ===================== SECTION 1: AUTH =======================================
# =============================================================================

@router.post("/auth/register", response_model=ApiResponse[TokenResponse],
             status_code=status.HTTP_201_CREATED, tags=["Auth"])
def register(data: UserRegister, request: Request, db: Session = Depends(get_db)):
    """
    Creates an account.
      1. The email must be free
      2. The password is hashed
      3. The user gets the default character stats
      4. A JWT is returned
    """
    email = data.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("An account with this email already exists")

    user = User(
        email=email,
        password_hash=hash_password(data.password),
        name=data.name,
        timezone=data.timezone,
        zip_code=data.zip_code,
    )
    db.add(user)
    db.flush()
    seed_default_stats(db, user.id)
    db.commit()

    settings = request.app.state.settings
    token = create_access_token(user.id, user.email, settings.secret_key, settings.access_token_expire_days)
    logger.info(f"👤 New user registered: {user.id}")

    return ok(TokenResponse(access_token=token, user_id=user.id, name=user.name))


@router.post("/auth/login", response_model=ApiResponse[TokenResponse], tags=["Auth"])
def login(data: UserLogin, request: Request, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email.lower()).first()
    if not user or not verify_password(data.password, user.password_hash):
        raise Unauthorized("Incorrect email or password")

    settings = request.app.state.settings
    token = create_access_token(user.id, user.email, settings.secret_key, settings.access_token_expire_days)
    return ok(TokenResponse(access_token=token, user_id=user.id, name=user.name))


@router.get("/auth/me", response_model=ApiResponse[UserResponse], tags=["Auth"])
def get_me(user: User = Depends(get_current_user)):
    return ok(UserResponse.model_validate(user))


@router.patch("/auth/me", response_model=ApiResponse[UserResponse], tags=["Auth"])
def update_me(data: UserUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    db.commit()
    return ok(UserResponse.model_validate(user))


@router.delete("/auth/me", tags=["Auth"])
def delete_account(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Deletes the account and everything it owns"""
    user_id = user.id
    db.delete(user)
    db.commit()
    logger.info(f"🗑️ Account deleted: {user_id}")
    return ok({"deleted": True})


# =============================================================================
# ===================== SECTION 2: STATS + XP =================================
# =============================================================================

@router.get("/stats", response_model=ApiResponse[list[StatResponse]], tags=["Stats"])
def list_stats(
    include_disabled: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(CharacterStat).filter(CharacterStat.user_id == user.id)
    if not include_disabled:
        query = query.filter(CharacterStat.enabled.is_(True))
    return ok([StatResponse.from_stat(s) for s in query.order_by(CharacterStat.name).all()])


@router.post("/stats", response_model=ApiResponse[StatResponse],
             status_code=status.HTTP_201_CREATED, tags=["Stats"])
def create_stat(data: StatCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    existing = db.query(CharacterStat).filter(
        CharacterStat.user_id == user.id,
        func.lower(CharacterStat.name) == data.name.strip().lower(),
    ).first()
    if existing:
        if existing.enabled:
            raise Conflict(f"Stat '{data.name}' already exists")
        # re-creating a disabled stat brings it back with its history
        existing.enabled = True
        if data.description is not None:
            existing.description = data.description
        db.commit()
        return ok(StatResponse.from_stat(existing))

    stat = CharacterStat(user_id=user.id, name=data.name, description=data.description)
    db.add(stat)
    db.commit()
    return ok(StatResponse.from_stat(stat))


@router.get("/stats/levels", response_model=ApiResponse[list[LevelRequirement]], tags=["Stats"])
def get_level_table(max_level: int = Query(default=20, ge=1, le=100)):
    """XP needed for each level"""
    return ok(level_requirements(max_level))


@router.post("/stats/recalculate", tags=["Stats"])
def recalculate_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Rebuilds every XP total from the ledger"""
    result = recalculate_totals(db, user.id)
    db.commit()
    return ok(result)


@router.get("/stats/{stat_id}", response_model=ApiResponse[StatResponse], tags=["Stats"])
def get_stat(stat_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(StatResponse.from_stat(get_owned_stat(db, user.id, stat_id)))


@router.put("/stats/{stat_id}", response_model=ApiResponse[StatResponse], tags=["Stats"])
def update_stat(
    stat_id: int,
    data: StatUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Name, description, enabled. XP is not editable here: it only moves through grants."""
    stat = get_owned_stat(db, user.id, stat_id)
    changes = data.model_dump(exclude_unset=True)

    if "name" in changes and changes["name"].strip().lower() != stat.name.lower():
        clash = db.query(CharacterStat).filter(
            CharacterStat.user_id == user.id,
            func.lower(CharacterStat.name) == changes["name"].strip().lower(),
            CharacterStat.id != stat.id,
        ).first()
        if clash:
            raise Conflict(f"Stat '{changes['name']}' already exists")

    for field, value in changes.items():
        setattr(stat, field, value)
    db.commit()
    return ok(StatResponse.from_stat(stat))


@router.delete("/stats/{stat_id}", response_model=ApiResponse[StatResponse], tags=["Stats"])
def delete_stat(stat_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Soft delete: the stat is disabled, its XP grants stay in the ledger.
    Whether grant history should ever be purged with a stat is an open
    product decision, so nothing is hard-deleted here.
    """
    stat = get_owned_stat(db, user.id, stat_id)
    stat.enabled = False
    db.commit()
    logger.info(f"🔕 Stat {stat.id} disabled")
    return ok(StatResponse.from_stat(stat))


@router.get("/stats/{stat_id}/grants", response_model=ApiResponse[list[XpGrantResponse]], tags=["Stats"])
def list_stat_grants(
    stat_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    stat = get_owned_stat(db, user.id, stat_id)
    grants = db.query(XpGrant).filter(XpGrant.stat_id == stat.id).order_by(
        XpGrant.created_at.desc(), XpGrant.id.desc()
    ).limit(limit).all()
    return ok([XpGrantResponse.model_validate(g) for g in grants])


@router.post("/stats/{stat_id}/grants", response_model=ApiResponse[XpGrantResponse],
             status_code=status.HTTP_201_CREATED, tags=["Stats"])
def create_manual_grant(
    stat_id: int,
    data: ManualGrantCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    stat = get_owned_stat(db, user.id, stat_id)
    grant = grant_xp(db, stat, data.amount, GrantSource.manual.value, None, data.reason)
    db.commit()
    return ok(XpGrantResponse.model_validate(grant))


@router.get("/xp-grants/recent", response_model=ApiResponse[list[XpGrantResponse]], tags=["Stats"])
def recent_grants(
    limit: int = Query(default=20, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    grants = db.query(XpGrant).filter(XpGrant.user_id == user.id).order_by(
        XpGrant.created_at.desc(), XpGrant.id.desc()
    ).limit(limit).all()
    return ok([XpGrantResponse.model_validate(g) for g in grants])


# =============================================================================
# ===================== SECTION 3: JOURNAL ====================================
# =============================================================================

def _entry_out(entry: JournalEntry) -> JournalResponse:
    return JournalResponse.model_validate(entry)


@router.get("/journal", response_model=ApiResponse[list[JournalResponse]], tags=["Journal"])
def list_journal(
    start: Optional[date] = None,
    end: Optional[date] = None,
    tone: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    entries = journal_service.list_entries(db, user.id, start, end, tone, limit)
    return ok([_entry_out(e) for e in entries])


@router.post("/journal", response_model=ApiResponse[JournalResponse],
             status_code=status.HTTP_201_CREATED, tags=["Journal"])
def create_journal(data: JournalCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = journal_service.create_entry(db, user.id, data.entry_date, data.content)
    return ok(_entry_out(entry))


@router.get("/journal/date/{entry_date}", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def get_journal_by_date(entry_date: date, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(_entry_out(journal_service.get_entry_by_date(db, user.id, entry_date)))


@router.get("/journal/{entry_id}", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def get_journal(entry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(_entry_out(journal_service.get_entry(db, user.id, entry_id)))


@router.put("/journal/{entry_id}", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def save_journal(
    entry_id: int,
    data: JournalUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Saves the draft (and drops stale XP if this is a saved edit)"""
    entry = journal_service.get_entry(db, user.id, entry_id)
    return ok(_entry_out(journal_service.save_entry(db, entry, data.content)))


@router.delete("/journal/{entry_id}", tags=["Journal"])
def delete_journal(entry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = journal_service.get_entry(db, user.id, entry_id)
    journal_service.delete_entry(db, entry)
    return ok({"deleted": True})


@router.post("/journal/{entry_id}/reflection/start", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def start_journal_reflection(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai)
):
    entry = journal_service.get_entry(db, user.id, entry_id)
    return ok(_entry_out(journal_service.start_reflection(db, entry, ai)))


@router.post("/journal/{entry_id}/reflection/message", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def send_journal_message(
    entry_id: int,
    data: JournalMessage,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai)
):
    entry = journal_service.get_entry(db, user.id, entry_id)
    return ok(_entry_out(journal_service.add_message(db, entry, data.message, ai)))


@router.post("/journal/{entry_id}/finish", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def finish_journal(
    entry_id: int,
    data: Optional[JournalFinish] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai)
):
    entry = journal_service.get_entry(db, user.id, entry_id)
    day_rating = data.day_rating if data else None
    return ok(_entry_out(journal_service.finish_entry(db, entry, ai, day_rating)))


@router.post("/journal/{entry_id}/edit", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def edit_journal(entry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = journal_service.get_entry(db, user.id, entry_id)
    return ok(_entry_out(journal_service.edit_entry(db, entry)))


@router.post("/journal/{entry_id}/cancel-edit", response_model=ApiResponse[JournalResponse], tags=["Journal"])
def cancel_journal_edit(entry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = journal_service.get_entry(db, user.id, entry_id)
    return ok(_entry_out(journal_service.cancel_edit(db, entry)))


@router.get("/journal/{entry_id}/grants", response_model=ApiResponse[list[XpGrantResponse]], tags=["Journal"])
def list_journal_grants(entry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = journal_service.get_entry(db, user.id, entry_id)
    return ok([XpGrantResponse.model_validate(g) for g in journal_service.entry_grants(db, entry)])


# =============================================================================
# ===================== SECTION 4: GOALS ======================================
# =============================================================================

@router.get("/goals", response_model=ApiResponse[list[GoalResponse]], tags=["Goals"])
def list_goals(
    include_archived: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(Goal).filter(Goal.user_id == user.id)
    if not include_archived:
        query = query.filter(Goal.is_archived.is_(False))
    return ok([GoalResponse.model_validate(g) for g in query.order_by(Goal.created_at.desc()).all()])


@router.post("/goals", response_model=ApiResponse[GoalResponse],
             status_code=status.HTTP_201_CREATED, tags=["Goals"])
def create_goal(data: GoalCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    goal = Goal(user_id=user.id, **data.model_dump())
    db.add(goal)
    db.commit()
    return ok(GoalResponse.model_validate(goal))


@router.get("/goals/{goal_id}", response_model=ApiResponse[GoalResponse], tags=["Goals"])
def get_goal(goal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(GoalResponse.model_validate(_owned(db, Goal, goal_id, user.id, "Goal")))


@router.put("/goals/{goal_id}", response_model=ApiResponse[GoalResponse], tags=["Goals"])
def update_goal(
    goal_id: int,
    data: GoalUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    goal = _owned(db, Goal, goal_id, user.id, "Goal")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(goal, field, value)
    db.commit()
    return ok(GoalResponse.model_validate(goal))


@router.delete("/goals/{goal_id}", tags=["Goals"])
def delete_goal(goal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    goal = _owned(db, Goal, goal_id, user.id, "Goal")
    # quests, experiments and projects survive without their goal
    for model in (Quest, Experiment, Project):
        db.query(model).filter(model.goal_id == goal.id).update({"goal_id": None})
    db.delete(goal)
    db.commit()
    return ok({"deleted": True})


# =============================================================================
# ===================== SECTION 5: QUESTS =====================================
# =============================================================================

@router.get("/quests", response_model=ApiResponse[list[QuestResponse]], tags=["Quests"])
def list_quests(
    active_only: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    today = user.local_today()
    quests = db.query(Quest).filter(Quest.user_id == user.id).order_by(Quest.start_date.desc()).all()
    if active_only:
        quests = [q for q in quests if quest_is_active(q, today)]
    return ok([QuestResponse.from_quest(q, today) for q in quests])


@router.post("/quests", response_model=ApiResponse[QuestResponse],
             status_code=status.HTTP_201_CREATED, tags=["Quests"])
def create_quest(data: QuestCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _check_goal(db, data.goal_id, user.id)
    today = user.local_today()
    start = data.start_date or today
    if data.end_date and data.end_date < start:
        raise ValidationFailed("end_date must be on or after start_date")

    quest = Quest(
        user_id=user.id,
        goal_id=data.goal_id,
        title=data.title,
        description=data.description,
        start_date=start,
        end_date=data.end_date,
    )
    db.add(quest)
    db.commit()
    return ok(QuestResponse.from_quest(quest, today))


@router.get("/quests/{quest_id}", response_model=ApiResponse[QuestResponse], tags=["Quests"])
def get_quest(quest_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    quest = _owned(db, Quest, quest_id, user.id, "Quest")
    return ok(QuestResponse.from_quest(quest, user.local_today()))


@router.put("/quests/{quest_id}", response_model=ApiResponse[QuestResponse], tags=["Quests"])
def update_quest(
    quest_id: int,
    data: QuestUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    quest = _owned(db, Quest, quest_id, user.id, "Quest")
    changes = data.model_dump(exclude_unset=True)
    _check_goal(db, changes.get("goal_id"), user.id)

    if "is_completed" in changes:
        done = changes.pop("is_completed")
        quest.is_completed = done
        quest.completed_at = datetime.utcnow() if done else None
    for field, value in changes.items():
        setattr(quest, field, value)
    if quest.end_date and quest.end_date < quest.start_date:
        raise ValidationFailed("end_date must be on or after start_date")

    db.commit()
    return ok(QuestResponse.from_quest(quest, user.local_today()))


@router.delete("/quests/{quest_id}", tags=["Quests"])
def delete_quest(quest_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db.delete(_owned(db, Quest, quest_id, user.id, "Quest"))
    db.commit()
    return ok({"deleted": True})


# =============================================================================
# ===================== SECTION 6: EXPERIMENTS ================================
# =============================================================================

def _delete_completion(db: Session, user_id: int, experiment: Experiment, completion: ExperimentCompletion):
    delete_grants_for_source(db, user_id, GrantSource.experiment.value, completion.id)
    experiment.completions.remove(completion)


@router.get("/experiments", response_model=ApiResponse[list[ExperimentResponse]], tags=["Experiments"])
def list_experiments(
    active_only: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    today = user.local_today()
    experiments = db.query(Experiment).filter(
        Experiment.user_id == user.id
    ).order_by(Experiment.start_date.desc()).all()
    if active_only:
        experiments = [e for e in experiments if experiment_is_active(e, today)]
    return ok([ExperimentResponse.from_experiment(e, today) for e in experiments])


@router.post("/experiments", response_model=ApiResponse[ExperimentResponse],
             status_code=status.HTTP_201_CREATED, tags=["Experiments"])
def create_experiment(data: ExperimentCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _check_goal(db, data.goal_id, user.id)
    _check_stat(db, data.stat_id, user.id)

    experiment = Experiment(user_id=user.id, **data.model_dump())
    db.add(experiment)
    db.commit()
    return ok(ExperimentResponse.from_experiment(experiment, user.local_today()))


@router.get("/experiments/{experiment_id}", response_model=ApiResponse[ExperimentResponse], tags=["Experiments"])
def get_experiment(experiment_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    experiment = _owned(db, Experiment, experiment_id, user.id, "Experiment")
    return ok(ExperimentResponse.from_experiment(experiment, user.local_today()))


@router.put("/experiments/{experiment_id}", response_model=ApiResponse[ExperimentResponse], tags=["Experiments"])
def update_experiment(
    experiment_id: int,
    data: ExperimentUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    experiment = _owned(db, Experiment, experiment_id, user.id, "Experiment")
    changes = data.model_dump(exclude_unset=True)
    _check_goal(db, changes.get("goal_id"), user.id)
    _check_stat(db, changes.get("stat_id"), user.id)

    for field, value in changes.items():
        setattr(experiment, field, value)
    if experiment.end_date < experiment.start_date:
        raise ValidationFailed("end_date must be on or after start_date")

    db.commit()
    return ok(ExperimentResponse.from_experiment(experiment, user.local_today()))


@router.delete("/experiments/{experiment_id}", tags=["Experiments"])
def delete_experiment(experiment_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    experiment = _owned(db, Experiment, experiment_id, user.id, "Experiment")
    for completion in list(experiment.completions):
        delete_grants_for_source(db, user.id, GrantSource.experiment.value, completion.id)
    db.delete(experiment)
    db.commit()
    return ok({"deleted": True})


@router.post("/experiments/{experiment_id}/complete-day", response_model=ApiResponse[ExperimentResponse],
             status_code=status.HTTP_201_CREATED, tags=["Experiments"])
def complete_experiment_day(
    experiment_id: int,
    data: Optional[ExperimentDayComplete] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Marks the daily task as done for one date and grants its XP to the linked stat"""
    experiment = _owned(db, Experiment, experiment_id, user.id, "Experiment")
    today = user.local_today()
    day = (data.completed_date if data else None) or today

    if not (experiment.start_date <= day <= experiment.end_date):
        raise ValidationFailed("Date is outside the experiment window")
    if any(c.completed_date == day for c in experiment.completions):
        raise Conflict(f"Already completed on {day.isoformat()}")

    completion = ExperimentCompletion(completed_date=day, notes=data.notes if data else None)
    experiment.completions.append(completion)
    db.flush()
    # flush → completion.id exists and can be the grant's source

    if experiment.stat_id:
        stat = db.get(CharacterStat, experiment.stat_id)
        if stat is not None and stat.enabled:
            grant_xp(db, stat, experiment.xp_reward, GrantSource.experiment.value,
                     completion.id, f"{experiment.title}: {day.isoformat()}")

    db.commit()
    return ok(ExperimentResponse.from_experiment(experiment, today))


@router.delete("/experiments/{experiment_id}/complete-day/{day}",
               response_model=ApiResponse[ExperimentResponse], tags=["Experiments"])
def uncomplete_experiment_day(
    experiment_id: int,
    day: date,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    experiment = _owned(db, Experiment, experiment_id, user.id, "Experiment")
    completion = next((c for c in experiment.completions if c.completed_date == day), None)
    if completion is None:
        raise NotFound(f"No completion on {day.isoformat()}")

    _delete_completion(db, user.id, experiment, completion)
    db.commit()
    return ok(ExperimentResponse.from_experiment(experiment, user.local_today()))


@router.put("/experiments/{experiment_id}/reflection",
            response_model=ApiResponse[ExperimentResponse], tags=["Experiments"])
def reflect_on_experiment(
    experiment_id: int,
    data: ExperimentReflection,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """would_repeat is tri-state: true / false / null ("not sure yet")"""
    experiment = _owned(db, Experiment, experiment_id, user.id, "Experiment")
    experiment.reflection = data.reflection
    experiment.would_repeat = data.would_repeat
    db.commit()
    return ok(ExperimentResponse.from_experiment(experiment, user.local_today()))


# =============================================================================
# ===================== SECTION 7: PROJECTS ===================================
# =============================================================================

def _project_out(project: Project) -> ProjectResponse:
    out = ProjectResponse.model_validate(project)
    out.subtasks.sort(key=lambda s: s.sort_order)
    return out


def _owned_subtask(project: Project, subtask_id: int) -> ProjectSubtask:
    subtask = next((s for s in project.subtasks if s.id == subtask_id), None)
    if subtask is None:
        raise NotFound("Subtask not found")
    return subtask


@router.get("/projects", response_model=ApiResponse[list[ProjectResponse]], tags=["Projects"])
def list_projects(
    include_completed: bool = True,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(Project).filter(Project.user_id == user.id)
    if not include_completed:
        query = query.filter(Project.is_completed.is_(False))
    return ok([_project_out(p) for p in query.order_by(Project.created_at.desc()).all()])


@router.post("/projects", response_model=ApiResponse[ProjectResponse],
             status_code=status.HTTP_201_CREATED, tags=["Projects"])
def create_project(data: ProjectCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _check_goal(db, data.goal_id, user.id)

    project = Project(
        user_id=user.id,
        title=data.title,
        description=data.description,
        type=data.type.value,
        goal_id=data.goal_id,
        start_date=data.start_date,
        target_date=data.target_date,
        include_in_ai_generation=data.include_in_ai_generation,
    )
    for i, sub in enumerate(data.subtasks):
        project.subtasks.append(ProjectSubtask(title=sub.title, description=sub.description, sort_order=i))
    db.add(project)
    db.commit()
    return ok(_project_out(project))


@router.get("/projects/{project_id}", response_model=ApiResponse[ProjectResponse], tags=["Projects"])
def get_project(project_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(_project_out(_owned(db, Project, project_id, user.id, "Project")))


@router.put("/projects/{project_id}", response_model=ApiResponse[ProjectResponse], tags=["Projects"])
def update_project(
    project_id: int,
    data: ProjectUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = _owned(db, Project, project_id, user.id, "Project")
    changes = data.model_dump(exclude_unset=True)
    _check_goal(db, changes.get("goal_id"), user.id)

    if "is_completed" in changes:
        done = changes.pop("is_completed")
        project.is_completed = done
        project.completed_at = datetime.utcnow() if done else None
    if changes.get("type") is not None:
        changes["type"] = changes["type"].value
    for field, value in changes.items():
        setattr(project, field, value)
    db.commit()
    return ok(_project_out(project))


@router.delete("/projects/{project_id}", tags=["Projects"])
def delete_project(project_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db.delete(_owned(db, Project, project_id, user.id, "Project"))
    db.commit()
    return ok({"deleted": True})


@router.post("/projects/{project_id}/subtasks", response_model=ApiResponse[ProjectResponse],
             status_code=status.HTTP_201_CREATED, tags=["Projects"])
def add_subtask(
    project_id: int,
    data: SubtaskCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = _owned(db, Project, project_id, user.id, "Project")
    next_order = max((s.sort_order for s in project.subtasks), default=-1) + 1
    project.subtasks.append(ProjectSubtask(
        title=data.title, description=data.description, sort_order=next_order
    ))
    db.commit()
    return ok(_project_out(project))


@router.put("/projects/{project_id}/subtasks/reorder", response_model=ApiResponse[ProjectResponse], tags=["Projects"])
def reorder_subtasks(
    project_id: int,
    data: SubtaskReorder,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The body lists every subtask id of the project exactly once, in the new order"""
    project = _owned(db, Project, project_id, user.id, "Project")
    by_id = {s.id: s for s in project.subtasks}
    if sorted(data.subtask_ids) != sorted(by_id):
        raise ValidationFailed("subtask_ids must list every subtask of the project exactly once")

    for position, subtask_id in enumerate(data.subtask_ids):
        by_id[subtask_id].sort_order = position
    db.commit()
    return ok(_project_out(project))


@router.put("/projects/{project_id}/subtasks/{subtask_id}", response_model=ApiResponse[ProjectResponse],
            tags=["Projects"])
def update_subtask(
    project_id: int,
    subtask_id: int,
    data: SubtaskUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = _owned(db, Project, project_id, user.id, "Project")
    subtask = _owned_subtask(project, subtask_id)
    changes = data.model_dump(exclude_unset=True)

    if "is_completed" in changes:
        done = changes.pop("is_completed")
        subtask.is_completed = done
        subtask.completed_at = datetime.utcnow() if done else None
    for field, value in changes.items():
        setattr(subtask, field, value)
    db.commit()
    return ok(_project_out(project))


@router.delete("/projects/{project_id}/subtasks/{subtask_id}", response_model=ApiResponse[ProjectResponse],
               tags=["Projects"])
def delete_subtask(
    project_id: int,
    subtask_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = _owned(db, Project, project_id, user.id, "Project")
    project.subtasks.remove(_owned_subtask(project, subtask_id))
    # close the gap in sort_order
    for position, subtask in enumerate(project.subtasks):
        subtask.sort_order = position
    db.commit()
    return ok(_project_out(project))


# =============================================================================
# ===================== SECTION 8: TASKS ======================================
# =============================================================================

def _task_out(task: Task) -> TaskResponse:
    return TaskResponse.model_validate(task)


@router.get("/tasks", response_model=ApiResponse[list[TaskResponse]], tags=["Tasks"])
def list_tasks(
    due_date: Optional[date] = None,
    completed: Optional[bool] = None,
    source: Optional[TaskSource] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(Task).filter(Task.user_id == user.id)
    if due_date is not None:
        query = query.filter(Task.due_date == due_date)
    if completed is not None:
        query = query.filter(Task.is_completed.is_(completed))
    if source is not None:
        query = query.filter(Task.source == source.value)
    return ok([_task_out(t) for t in query.order_by(Task.created_at.desc(), Task.id.desc()).all()])


@router.post("/tasks", response_model=ApiResponse[TaskResponse],
             status_code=status.HTTP_201_CREATED, tags=["Tasks"])
def create_task(data: TaskCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _check_stat(db, data.stat_id, user.id)
    _check_member(db, data.family_member_id, user.id)

    task = Task(
        user_id=user.id,
        title=data.title,
        description=data.description,
        source=TaskSource.manual.value,
        task_type=data.task_type.value,
        stat_id=data.stat_id,
        family_member_id=data.family_member_id,
        xp_reward=data.xp_reward,
        due_date=data.due_date,
    )
    db.add(task)
    db.commit()
    return ok(_task_out(task))


@router.get("/tasks/{task_id}", response_model=ApiResponse[TaskResponse], tags=["Tasks"])
def get_task(task_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(_task_out(_owned(db, Task, task_id, user.id, "Task")))


@router.put("/tasks/{task_id}", response_model=ApiResponse[TaskResponse], tags=["Tasks"])
def update_task(
    task_id: int,
    data: TaskUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task = _owned(db, Task, task_id, user.id, "Task")
    changes = data.model_dump(exclude_unset=True)
    _check_stat(db, changes.get("stat_id"), user.id)
    _check_member(db, changes.get("family_member_id"), user.id)

    for field, value in changes.items():
        setattr(task, field, value)
    db.commit()
    return ok(_task_out(task))


@router.delete("/tasks/{task_id}", tags=["Tasks"])
def delete_task(task_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """The task and any XP it earned go together"""
    task = _owned(db, Task, task_id, user.id, "Task")
    delete_grants_for_source(db, user.id, task.source_grant_type(), task.id)
    db.delete(task)
    db.commit()
    return ok({"deleted": True})


@router.post("/tasks/{task_id}/complete", response_model=ApiResponse[TaskResponse], tags=["Tasks"])
def complete_task(
    task_id: int,
    data: Optional[TaskComplete] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Completion timestamp → XP:
      - stat linked + enabled  → grant to the stat
      - family member linked   → grant to the member (and counts as an interaction)
    """
    task = _owned(db, Task, task_id, user.id, "Task")
    if task.is_completed:
        raise Conflict("Task is already completed")

    task.is_completed = True
    task.completed_at = datetime.utcnow()
    if data and data.feedback is not None:
        task.feedback = data.feedback

    if task.xp_reward > 0:
        if task.stat_id:
            stat = db.get(CharacterStat, task.stat_id)
            if stat is not None and stat.enabled:
                grant_xp(db, stat, task.xp_reward, task.source_grant_type(), task.id, task.title)
        if task.family_member_id:
            member = db.get(FamilyMember, task.family_member_id)
            if member is not None:
                grant_family_xp(db, member, task.xp_reward, task.source_grant_type(), task.id, task.title)

    if task.family_member_id and task.task_type == TaskType.family.value:
        member = db.get(FamilyMember, task.family_member_id)
        if member is not None:
            today = user.local_today()
            if member.last_interaction_date is None or member.last_interaction_date < today:
                member.last_interaction_date = today

    db.commit()
    return ok(_task_out(task))


@router.post("/tasks/{task_id}/uncomplete", response_model=ApiResponse[TaskResponse], tags=["Tasks"])
def uncomplete_task(task_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Reopens the task and takes back the XP its completion granted"""
    task = _owned(db, Task, task_id, user.id, "Task")
    if not task.is_completed:
        raise Conflict("Task is not completed")

    delete_grants_for_source(db, user.id, task.source_grant_type(), task.id)
    task.is_completed = False
    task.completed_at = None
    db.commit()
    return ok(_task_out(task))


@router.post("/adhoc-tasks", response_model=ApiResponse[TaskResponse],
             status_code=status.HTTP_201_CREATED, tags=["Tasks"])
def create_adhoc_task(data: AdhocTaskCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Logs something already done: a completed task plus its grant, in one commit"""
    stat = get_owned_stat(db, user.id, data.stat_id)
    if not stat.enabled:
        raise ValidationFailed(f"Stat '{stat.name}' is disabled")
    member = None
    if data.family_member_id is not None:
        member = _owned(db, FamilyMember, data.family_member_id, user.id, "Family member")

    task = Task(
        user_id=user.id,
        title=data.title,
        description=data.description,
        source=TaskSource.adhoc.value,
        task_type=TaskType.family.value if member else TaskType.personal.value,
        stat_id=stat.id,
        family_member_id=member.id if member else None,
        xp_reward=data.xp_reward,
        due_date=user.local_today(),
        is_completed=True,
        completed_at=datetime.utcnow(),
    )
    db.add(task)
    db.flush()

    grant_xp(db, stat, data.xp_reward, GrantSource.adhoc.value, task.id, data.title)
    if member is not None:
        grant_family_xp(db, member, data.xp_reward, GrantSource.adhoc.value, task.id, data.title)
        member.last_interaction_date = user.local_today()

    db.commit()
    return ok(_task_out(task))


# =============================================================================
# ===================== SECTION 9: FAMILY =====================================
# =============================================================================

@router.get("/family", response_model=ApiResponse[list[FamilyMemberResponse]], tags=["Family"])
def list_family(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    members = db.query(FamilyMember).filter(FamilyMember.user_id == user.id).order_by(FamilyMember.name).all()
    return ok([FamilyMemberResponse.from_member(m) for m in members])


@router.post("/family", response_model=ApiResponse[FamilyMemberResponse],
             status_code=status.HTTP_201_CREATED, tags=["Family"])
def create_family_member(
    data: FamilyMemberCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    values = data.model_dump()
    values["energy_level"] = data.energy_level.value
    values["interaction_frequency"] = data.interaction_frequency.value
    member = FamilyMember(user_id=user.id, **values)
    db.add(member)
    db.commit()
    return ok(FamilyMemberResponse.from_member(member))


@router.get("/family/attention", response_model=ApiResponse[list[FamilyMemberResponse]], tags=["Family"])
def family_needing_attention(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Never contacted, or contacted longer ago than their frequency allows"""
    members = members_needing_attention(db, user.id, user.local_today())
    return ok([FamilyMemberResponse.from_member(m) for m in members])


@router.get("/family/{member_id}", response_model=ApiResponse[FamilyMemberResponse], tags=["Family"])
def get_family_member(member_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    member = _owned(db, FamilyMember, member_id, user.id, "Family member")
    return ok(FamilyMemberResponse.from_member(member))


@router.put("/family/{member_id}", response_model=ApiResponse[FamilyMemberResponse], tags=["Family"])
def update_family_member(
    member_id: int,
    data: FamilyMemberUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    member = _owned(db, FamilyMember, member_id, user.id, "Family member")
    for field, value in data.model_dump(exclude_unset=True).items():
        if field in ("energy_level", "interaction_frequency") and value is not None:
            value = value.value
        setattr(member, field, value)
    db.commit()
    return ok(FamilyMemberResponse.from_member(member))


@router.delete("/family/{member_id}", tags=["Family"])
def delete_family_member(member_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Feedback and XP of the member go with it; their tasks stay, unlinked"""
    member = _owned(db, FamilyMember, member_id, user.id, "Family member")
    db.query(Task).filter(Task.family_member_id == member.id).update({"family_member_id": None})
    db.delete(member)
    db.commit()
    return ok({"deleted": True})


@router.get("/family/{member_id}/feedback", response_model=ApiResponse[list[FamilyFeedbackResponse]],
            tags=["Family"])
def list_family_feedback(member_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    member = _owned(db, FamilyMember, member_id, user.id, "Family member")
    return ok([FamilyFeedbackResponse.model_validate(f) for f in member.feedback_entries])


@router.post("/family/{member_id}/feedback", response_model=ApiResponse[FamilyFeedbackResponse],
             status_code=status.HTTP_201_CREATED, tags=["Family"])
def add_family_feedback(
    member_id: int,
    data: FamilyFeedbackCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Logs an interaction: moves last_interaction_date and grants the member XP"""
    member = _owned(db, FamilyMember, member_id, user.id, "Family member")
    day = data.interaction_date or user.local_today()

    feedback = FamilyFeedback(
        family_member_id=member.id,
        content=data.content,
        interaction_date=day,
        xp_awarded=data.xp_awarded,
    )
    db.add(feedback)
    db.flush()

    if data.xp_awarded > 0:
        grant_family_xp(db, member, data.xp_awarded, GrantSource.family_interaction.value,
                        feedback.id, data.content[:200])
    if member.last_interaction_date is None or member.last_interaction_date < day:
        member.last_interaction_date = day

    db.commit()
    return ok(FamilyFeedbackResponse.model_validate(feedback))


# =============================================================================
# ===================== SECTION 10: TASK GENERATION ===========================
# =============================================================================

@router.post("/generate-tasks", response_model=ApiResponse[GenerateTasksResponse],
             status_code=status.HTTP_201_CREATED, tags=["Generation"])
def generate_daily_tasks(
    data: GenerateTasksRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai),
    weather: WeatherService = Depends(get_weather)
):
    """
    One AI call → a batch of personal + family tasks (source = "ai").
    The body is validated before anything else: an intent over 500
    characters never reaches the AI.
    """
    result = generate_tasks(
        db, user, ai, weather,
        intent=data.intent,
        target_date=data.target_date,
        zip_code=data.zip_code,
    )
    return ok(GenerateTasksResponse(
        tasks=[_task_out(t) for t in result.tasks],
        weather=result.weather,
        family_needing_attention=result.family_needing_attention,
    ))


@router.get("/generate-tasks/{day}", response_model=ApiResponse[list[TaskResponse]], tags=["Generation"])
def list_generated_tasks(day: date, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok([_task_out(t) for t in generated_tasks_for(db, user.id, day)])


# =============================================================================
# ===================== SECTION 11: WEATHER ===================================
# =============================================================================

@router.get("/weather/{zip_code}", tags=["Weather"])
def get_weather_for_zip(
    zip_code: str,
    user: User = Depends(get_current_user),
    weather: WeatherService = Depends(get_weather)
):
    conditions, classification = weather.get_classified(zip_code)
    return ok({
        "conditions": conditions.model_dump(),
        "classification": classification.model_dump(),
    })


# =============================================================================
# ===================== SECTION 12: DASHBOARD =================================
# =============================================================================

@router.get("/dashboard", response_model=ApiResponse[DashboardResponse], tags=["Dashboard"])
def get_dashboard(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    today = user.local_today()

    stats = db.query(CharacterStat).filter(
        CharacterStat.user_id == user.id, CharacterStat.enabled.is_(True)
    ).order_by(CharacterStat.name).all()
    entry = db.query(JournalEntry).filter(
        JournalEntry.user_id == user.id, JournalEntry.entry_date == today
    ).first()
    open_tasks = db.query(Task).filter(
        Task.user_id == user.id, Task.is_completed.is_(False)
    ).order_by(Task.due_date, Task.id).all()
    quests = db.query(Quest).filter(Quest.user_id == user.id).all()
    experiments = db.query(Experiment).filter(Experiment.user_id == user.id).all()

    return ok(DashboardResponse(
        today=today,
        stats=[StatResponse.from_stat(s) for s in stats],
        journal_status=entry.status if entry else None,
        open_tasks=[_task_out(t) for t in open_tasks],
        active_quests=[QuestResponse.from_quest(q, today) for q in quests if quest_is_active(q, today)],
        active_experiments=[
            ExperimentResponse.from_experiment(e, today) for e in experiments if experiment_is_active(e, today)
        ],
        family_needing_attention=[
            FamilyMemberResponse.from_member(m) for m in members_needing_attention(db, user.id, today)
        ],
    ))


# =============================================================================
# ===================== ERROR HANDLERS ========================================
# =============================================================================

_HTTP_ERROR_TYPES = {
    400: "validation",
    401: "unauthorized",
    403: "unauthorized",
    404: "not_found",
    405: "validation",
    409: "conflict",
}


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.warning(f"⚠️ {exc.error_type} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Bad body / query / path → 400 validation, with the first problem as the message"""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message, "type": "validation"},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": str(exc.detail),
            "type": _HTTP_ERROR_TYPES.get(exc.status_code, "internal"),
        },
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Anything unhandled: logged with its traceback, reported as internal"""
    logger.error(
        f"❌ Unhandled error on {request.method} {request.url.path}: {exc}\n{traceback.format_exc()}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error", "type": "internal"},
    )


# =============================================================================
# ===================== APPLICATION FACTORY ===================================
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    ai: Optional[AIService] = None,
    weather: Optional[WeatherService] = None,
    session_factory=None,
) -> FastAPI:
    """
    Builds the API. Anything not passed in is created from settings:
      - database engine + session factory (tables created if missing)
      - OpenAI client
      - weather client
    """
    settings = settings or Settings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    )
    # httpx logs full request URLs at INFO, and the weather API key travels in the query string
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if session_factory is None:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = create_session_factory(engine)
        logger.info("✅ Database ready")

    ai = ai or AIService(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.ai_timeout_seconds,
    )
    weather = weather or WeatherService(
        api_key=settings.weather_api_key,
        ttl_seconds=settings.weather_cache_ttl_seconds,
        timeout=settings.weather_timeout_seconds,
    )
    if not ai.configured:
        logger.warning("⚠️ OPENAI_API_KEY not set: journal reflection and task generation are disabled")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 LifeRPG API starting")
        yield
        weather.close()
        logger.info("👋 LifeRPG API stopped")

    app = FastAPI(
        title="LifeRPG API",
        description="Character stats, journaling, quests and AI-planned days",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.ai = ai
    app.state.weather = weather

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(health_router)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
