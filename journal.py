"""
=============================================================================
JOURNAL.PY — Journal Entries and Their Lifecycle
=============================================================================
A journal entry moves through three states:

    draft ──start_reflection──→ reflecting ──finish──→ complete
      ↑  ↻ save                   ↻ message               │
      │                                                    │
      └─────────────────────────edit───────────────────────┘
      draft ──cancel_edit──→ complete   (only right after "edit")

Rules:
  - Content can only change while the entry is a draft.
  - The conversation is strictly append-only while reflecting.
  - "finish" asks the AI for the summary and the XP the day earned, then
    emits JournalRecompleted. gamification.reconcile_journal_xp() is the
    only code that turns that event into grants.
  - "edit" on a complete entry keeps its grants. They are deleted by the
    next save (or by starting a new reflection), never by the edit itself,
    so "cancel_edit" gives back exactly what was there before.
  - If the AI fails, nothing is written: the entry stays as it was and the
    user can retry.
"""

import enum
import logging
from datetime import date, datetime
from typing import NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import Conflict, InvalidTransition, NotFound, ValidationFailed
from gamification import (
    delete_grants_for_source, reconcile_journal_xp, grants_for_source,
    find_stat_by_name, find_family_member_by_name
)
from models import JournalEntry, JournalStatus, GrantSource, CharacterStat, FamilyMember, XpGrant

logger = logging.getLogger("liferpg.journal")


# =============================================================================
# ===================== STATE MACHINE =========================================
# =============================================================================

class JournalAction(str, enum.Enum):
    save = "save"
    start_reflection = "start_reflection"
    message = "message"
    finish = "finish"
    edit = "edit"
    cancel_edit = "cancel_edit"


TRANSITIONS = {
    (JournalStatus.draft, JournalAction.save): JournalStatus.draft,
    (JournalStatus.draft, JournalAction.start_reflection): JournalStatus.reflecting,
    (JournalStatus.reflecting, JournalAction.message): JournalStatus.reflecting,
    (JournalStatus.reflecting, JournalAction.finish): JournalStatus.complete,
    (JournalStatus.complete, JournalAction.edit): JournalStatus.draft,
    (JournalStatus.draft, JournalAction.cancel_edit): JournalStatus.complete,
}


def next_status(current: JournalStatus, action: JournalAction) -> JournalStatus:
    """Where `action` leads from `current`. Anything not in the table is refused."""
    try:
        return TRANSITIONS[(JournalStatus(current), action)]
    except KeyError:
        raise InvalidTransition(JournalStatus(current).value, action.value) from None


# ─────────────────────────────────────────────────────────────────────────────
# DOMAIN EVENT
# ─────────────────────────────────────────────────────────────────────────────

class Award(NamedTuple):
    target_id: int
    # CharacterStat.id or FamilyMember.id
    amount: int
    reason: Optional[str]


class JournalRecompleted(NamedTuple):
    """An entry reached "complete" (first time or again): its XP must be rebuilt"""
    user_id: int
    entry_id: int
    stat_awards: list[Award]
    family_awards: list[Award]


# =============================================================================
# ===================== HELPERS ===============================================
# =============================================================================

def _now_iso() -> str:
    return datetime.utcnow().isoformat()


def _turn(role: str, content: str) -> dict:
    return {"role": role, "content": content, "timestamp": _now_iso()}


def get_entry(db: Session, user_id: int, entry_id: int) -> JournalEntry:
    entry = db.query(JournalEntry).filter(
        JournalEntry.id == entry_id, JournalEntry.user_id == user_id
    ).first()
    if not entry:
        raise NotFound("Journal entry not found")
    return entry


def get_entry_by_date(db: Session, user_id: int, entry_date: date) -> JournalEntry:
    entry = db.query(JournalEntry).filter(
        JournalEntry.user_id == user_id, JournalEntry.entry_date == entry_date
    ).first()
    if not entry:
        raise NotFound(f"No journal entry for {entry_date.isoformat()}")
    return entry


def list_entries(
    db: Session,
    user_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    tone: Optional[str] = None,
    limit: int = 50,
) -> list[JournalEntry]:
    query = db.query(JournalEntry).filter(JournalEntry.user_id == user_id)
    if start:
        query = query.filter(JournalEntry.entry_date >= start)
    if end:
        query = query.filter(JournalEntry.entry_date <= end)
    entries = query.order_by(JournalEntry.entry_date.desc()).all()

    if tone:
        # tone_tags is a JSON list, filtered here to stay portable across SQLite/PostgreSQL
        entries = [e for e in entries if tone.lower() in (e.tone_tags or [])]
    return entries[:limit]


def _clear_stale_grants(db: Session, entry: JournalEntry):
    """Drops the grants of a previous completion once the user commits to the edit"""
    if entry.pending_recalculation:
        removed = delete_grants_for_source(db, entry.user_id, GrantSource.journal.value, entry.id)
        entry.pending_recalculation = False
        logger.info(f"📓 Entry {entry.id}: edit saved, {removed} stale grants removed")


# =============================================================================
# ===================== OPERATIONS ============================================
# =============================================================================

def create_entry(db: Session, user_id: int, entry_date: date, content: str = "") -> JournalEntry:
    """New draft. One entry per user per date: a second one is a conflict, never an overwrite."""
    existing = db.query(JournalEntry.id).filter(
        JournalEntry.user_id == user_id, JournalEntry.entry_date == entry_date
    ).first()
    if existing:
        raise Conflict(f"A journal entry for {entry_date.isoformat()} already exists")

    entry = JournalEntry(
        user_id=user_id,
        entry_date=entry_date,
        status=JournalStatus.draft.value,
        content=content,
        tone_tags=[],
        content_tags=[],
        conversation_history=[],
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        # another request created the same date in the meantime
        db.rollback()
        raise Conflict(f"A journal entry for {entry_date.isoformat()} already exists")
    db.refresh(entry)
    return entry


def save_entry(db: Session, entry: JournalEntry, content: str) -> JournalEntry:
    """
    Saves draft content. Saving an edit of a previously complete entry
    also removes the grants of that completion, in the same transaction.
    """
    entry.status = next_status(entry.status, JournalAction.save).value
    entry.content = content
    _clear_stale_grants(db, entry)
    db.commit()
    return entry


def _after_opening(history: list[dict]) -> list[dict]:
    # the AI prompt already carries the entry, so the opening user turn is not repeated
    if len(history) > 1 and history[0]["role"] == "user":
        return history[1:]
    return history


def start_reflection(db: Session, entry: JournalEntry, ai) -> JournalEntry:
    """draft → reflecting. The entry is the first turn, the AI answers it."""
    new_status = next_status(entry.status, JournalAction.start_reflection)
    if not (entry.content or "").strip():
        raise ValidationFailed("Write something before starting the reflection")

    # AI first: if it fails, the entry is left exactly as it was
    reply = ai.reflection_reply(entry.content, [])

    _clear_stale_grants(db, entry)
    entry.conversation_history = [_turn("user", entry.content), _turn("assistant", reply)]
    entry.status = new_status.value
    db.commit()

    logger.info(f"💭 Entry {entry.id}: reflection started")
    return entry


def add_message(db: Session, entry: JournalEntry, message: str, ai) -> JournalEntry:
    """Appends the user's message and one AI answer, both or neither"""
    new_status = next_status(entry.status, JournalAction.message)

    user_turn = _turn("user", message)
    history = list(entry.conversation_history or []) + [user_turn]
    reply = ai.reflection_reply(entry.content, _after_opening(history))

    # a new list object, so SQLAlchemy sees the JSON column change
    entry.conversation_history = history + [_turn("assistant", reply)]
    entry.status = new_status.value
    db.commit()
    return entry


def _resolve_awards(db: Session, user_id: int, analysis) -> tuple[list[Award], list[Award]]:
    stat_awards, family_awards = [], []
    seen_stats, seen_members = set(), set()

    for award in analysis.stat_awards:
        stat = find_stat_by_name(db, user_id, award.name)
        if stat is None or stat.id in seen_stats:
            continue
        seen_stats.add(stat.id)
        stat_awards.append(Award(stat.id, award.xp, award.reason))

    for award in analysis.family_awards:
        member = find_family_member_by_name(db, user_id, award.name)
        if member is None or member.id in seen_members:
            continue
        seen_members.add(member.id)
        family_awards.append(Award(member.id, award.xp, award.reason))

    return stat_awards, family_awards


def finish_entry(db: Session, entry: JournalEntry, ai, day_rating: Optional[int] = None) -> JournalEntry:
    """
    reflecting → complete.

    The AI writes title / synopsis / tone tags and says which stats and
    family members the day exercised. Grants are rebuilt through
    JournalRecompleted in the same commit as the status change.
    """
    new_status = next_status(entry.status, JournalAction.finish)

    stat_names = [s.name for s in db.query(CharacterStat).filter(
        CharacterStat.user_id == entry.user_id, CharacterStat.enabled.is_(True)
    ).order_by(CharacterStat.name).all()]
    family_names = [m.name for m in db.query(FamilyMember).filter(
        FamilyMember.user_id == entry.user_id
    ).order_by(FamilyMember.name).all()]

    # raises on failure, nothing has been touched yet
    analysis = ai.analyze_journal(
        entry.content, entry.conversation_history or [], stat_names, family_names
    )

    stat_awards, family_awards = _resolve_awards(db, entry.user_id, analysis)

    entry.title = analysis.title
    entry.synopsis = analysis.synopsis
    entry.summary = analysis.summary
    entry.tone_tags = analysis.tone_tags
    entry.content_tags = analysis.content_tags
    entry.day_rating = day_rating if day_rating is not None else analysis.day_rating
    entry.status = new_status.value
    entry.pending_recalculation = False
    entry.completed_at = datetime.utcnow()

    reconcile_journal_xp(db, JournalRecompleted(
        user_id=entry.user_id,
        entry_id=entry.id,
        stat_awards=stat_awards,
        family_awards=family_awards,
    ))
    db.commit()

    logger.info(f"✅ Entry {entry.id} complete ({len(stat_awards)} stats, {len(family_awards)} family)")
    return entry


def edit_entry(db: Session, entry: JournalEntry) -> JournalEntry:
    """complete → draft. Content, summary and grants stay untouched."""
    entry.status = next_status(entry.status, JournalAction.edit).value
    entry.pending_recalculation = True
    db.commit()
    return entry


def cancel_edit(db: Session, entry: JournalEntry) -> JournalEntry:
    """Back to complete, only possible before the edit was saved"""
    if not entry.pending_recalculation:
        raise InvalidTransition(JournalStatus(entry.status).value, JournalAction.cancel_edit.value)
    entry.status = next_status(entry.status, JournalAction.cancel_edit).value
    entry.pending_recalculation = False
    db.commit()
    return entry


def delete_entry(db: Session, entry: JournalEntry):
    """The entry and the XP it earned go away together"""
    delete_grants_for_source(db, entry.user_id, GrantSource.journal.value, entry.id)
    db.delete(entry)
    db.commit()


def entry_grants(db: Session, entry: JournalEntry) -> list[XpGrant]:
    return grants_for_source(db, entry.user_id, GrantSource.journal.value, entry.id)
