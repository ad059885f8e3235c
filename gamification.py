"""
=============================================================================
GAMIFICATION.PY — Levels and the XP Ledger
=============================================================================
Two halves:

  1. LEVELS: a pure function from cumulative XP to (level, progress).
     Nothing about levels is stored in the database.

  2. XP LEDGER: every XP award is one immutable XpGrant row. The running
     totals on CharacterStat / FamilyMember move ONLY here, in the same
     session (same transaction) as the grant rows they mirror.
     Functions in this file never commit: the caller commits once, so a
     "delete old grants + insert new ones" sequence is all-or-nothing.

Level curve:
  Reaching level N (N >= 2) needs N*(N+1)/2 * 100 XP in total.
    Level 1 →     0 XP
    Level 2 →   300 XP
    Level 3 →   600 XP
    Level 4 → 1,000 XP
    Level 5 → 1,500 XP
  Levels 1 and 2 both span 300 XP; from level 3 on, each level costs
  100 XP more than the previous one (400, 500, 600...).
"""

import logging
from typing import NamedTuple, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import ValidationFailed, NotFound
from models import CharacterStat, FamilyMember, XpGrant, GrantEntity, GrantSource

logger = logging.getLogger("liferpg.xp")


# =============================================================================
# ===================== LEVELS ================================================
# =============================================================================

class LevelInfo(NamedTuple):
    level: int
    xp_into_level: int
    xp_for_next_level: int
    # size of the current level, in XP
    progress_percent: float


def xp_required_for_level(level: int) -> int:
    """Cumulative XP needed to reach a level"""
    if level < 1:
        raise ValueError("level must be >= 1")
    if level == 1:
        return 0
    return level * (level + 1) // 2 * 100


def level_for_xp(total_xp: int) -> LevelInfo:
    """
    Derives the level from a cumulative XP total.

    Non-decreasing in total_xp, level_for_xp(0) is level 1 with 0 XP into it,
    and the same total always gives the same answer.
    """
    if total_xp < 0:
        raise ValueError("total_xp must be >= 0")

    level = 1
    while total_xp >= xp_required_for_level(level + 1):
        level += 1

    start = xp_required_for_level(level)
    size = xp_required_for_level(level + 1) - start
    into = total_xp - start

    return LevelInfo(
        level=level,
        xp_into_level=into,
        xp_for_next_level=size,
        progress_percent=round(into / size * 100, 1),
    )


def level_requirements(max_level: int = 20) -> list[dict]:
    """Table of thresholds, for the UI's "next levels" view"""
    return [
        {
            "level": lvl,
            "total_xp_required": xp_required_for_level(lvl),
            "xp_for_next_level": xp_required_for_level(lvl + 1) - xp_required_for_level(lvl),
        }
        for lvl in range(1, max_level + 1)
    ]


# =============================================================================
# ===================== XP LEDGER =============================================
# =============================================================================

def _check_amount(amount) -> int:
    # bool is an int subclass, True must not count as 1 XP
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationFailed("XP amount must be a positive integer")
    return amount


def grant_xp(
    db: Session,
    stat: CharacterStat,
    amount: int,
    source_type: str,
    source_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> XpGrant:
    """Inserts one grant for a character stat and raises its total"""
    amount = _check_amount(amount)
    if not stat.enabled:
        raise ValidationFailed(f"Stat '{stat.name}' is disabled")

    grant = XpGrant(
        user_id=stat.user_id,
        entity_type=GrantEntity.character_stat.value,
        stat_id=stat.id,
        amount=amount,
        source_type=GrantSource(source_type).value,
        source_id=source_id,
        reason=reason,
    )
    db.add(grant)
    stat.current_xp = (stat.current_xp or 0) + amount

    logger.info(f"+{amount} XP → stat {stat.id} ({source_type}:{source_id})")
    return grant


def grant_family_xp(
    db: Session,
    member: FamilyMember,
    amount: int,
    source_type: str,
    source_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> XpGrant:
    """Same as grant_xp, credited to a family member"""
    amount = _check_amount(amount)

    grant = XpGrant(
        user_id=member.user_id,
        entity_type=GrantEntity.family_member.value,
        family_member_id=member.id,
        amount=amount,
        source_type=GrantSource(source_type).value,
        source_id=source_id,
        reason=reason,
    )
    db.add(grant)
    member.current_xp = (member.current_xp or 0) + amount

    logger.info(f"+{amount} XP → family member {member.id} ({source_type}:{source_id})")
    return grant


def grants_for_source(db: Session, user_id: int, source_type: str, source_id: int) -> list[XpGrant]:
    return db.query(XpGrant).filter(
        XpGrant.user_id == user_id,
        XpGrant.source_type == source_type,
        XpGrant.source_id == source_id,
    ).order_by(XpGrant.id).all()


def delete_grants_for_source(db: Session, user_id: int, source_type: str, source_id: int) -> int:
    """
    Removes every grant produced by one source and takes their XP back
    from the stats / family members they credited.
    Returns how many grants were deleted. Does not commit.
    """
    grants = grants_for_source(db, user_id, source_type, source_id)

    for grant in grants:
        if grant.stat_id is not None:
            stat = db.get(CharacterStat, grant.stat_id)
            if stat is not None:
                stat.current_xp = max(0, (stat.current_xp or 0) - grant.amount)
        if grant.family_member_id is not None:
            member = db.get(FamilyMember, grant.family_member_id)
            if member is not None:
                member.current_xp = max(0, (member.current_xp or 0) - grant.amount)
        db.delete(grant)

    if grants:
        logger.info(f"🧹 {len(grants)} grants removed for {source_type}:{source_id}")
    return len(grants)


def reconcile_journal_xp(db: Session, event) -> list[XpGrant]:
    """
    The one consumer of JournalRecompleted.

    Whatever the journal earned before is deleted, then the awards carried
    by the event are inserted. Both happen in the caller's transaction,
    so no reader ever sees the entry with half of its grants.
    """
    removed = delete_grants_for_source(db, event.user_id, GrantSource.journal.value, event.entry_id)

    created = []
    for award in event.stat_awards:
        stat = db.get(CharacterStat, award.target_id)
        if stat is None or stat.user_id != event.user_id or not stat.enabled:
            continue
        created.append(grant_xp(
            db, stat, award.amount, GrantSource.journal.value, event.entry_id, award.reason
        ))

    for award in event.family_awards:
        member = db.get(FamilyMember, award.target_id)
        if member is None or member.user_id != event.user_id:
            continue
        created.append(grant_family_xp(
            db, member, award.amount, GrantSource.journal.value, event.entry_id, award.reason
        ))

    logger.info(
        f"📓 Journal {event.entry_id} reconciled: {removed} removed, {len(created)} granted"
    )
    return created


def recalculate_totals(db: Session, user_id: int) -> dict:
    """
    Rebuilds every total of a user from the ledger.
    Totals should already match; this is the audit/repair path.
    """
    stat_sums = dict(
        db.query(XpGrant.stat_id, func.sum(XpGrant.amount))
        .filter(XpGrant.user_id == user_id, XpGrant.stat_id.isnot(None))
        .group_by(XpGrant.stat_id)
        .all()
    )
    member_sums = dict(
        db.query(XpGrant.family_member_id, func.sum(XpGrant.amount))
        .filter(XpGrant.user_id == user_id, XpGrant.family_member_id.isnot(None))
        .group_by(XpGrant.family_member_id)
        .all()
    )

    changed = 0
    for stat in db.query(CharacterStat).filter(CharacterStat.user_id == user_id).all():
        total = int(stat_sums.get(stat.id) or 0)
        if stat.current_xp != total:
            stat.current_xp = total
            changed += 1
    for member in db.query(FamilyMember).filter(FamilyMember.user_id == user_id).all():
        total = int(member_sums.get(member.id) or 0)
        if member.current_xp != total:
            member.current_xp = total
            changed += 1

    if changed:
        logger.warning(f"⚠️ Recalculated {changed} XP totals for user {user_id}")
    return {"updated": changed}


def get_owned_stat(db: Session, user_id: int, stat_id: int) -> CharacterStat:
    stat = db.query(CharacterStat).filter(
        CharacterStat.id == stat_id, CharacterStat.user_id == user_id
    ).first()
    if not stat:
        raise NotFound("Stat not found")
    return stat


def find_stat_by_name(db: Session, user_id: int, name: str) -> Optional[CharacterStat]:
    """Case-insensitive lookup among the user's ENABLED stats"""
    if not name:
        return None
    return db.query(CharacterStat).filter(
        CharacterStat.user_id == user_id,
        CharacterStat.enabled.is_(True),
        func.lower(CharacterStat.name) == name.strip().lower(),
    ).first()


def find_family_member_by_name(db: Session, user_id: int, name: str) -> Optional[FamilyMember]:
    if not name:
        return None
    return db.query(FamilyMember).filter(
        FamilyMember.user_id == user_id,
        func.lower(FamilyMember.name) == name.strip().lower(),
    ).first()


# ─────────────────────────────────────────────────────────────────────────────
# DEFAULT STATS (seeded at registration)
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_STATS = [
    ("Strength", "Physical power and endurance: lifting, carrying, pushing through physical challenges."),
    ("Wisdom", "Mental clarity, decision-making and learning."),
    ("Adventure", "Exploring new places and trying new things."),
    ("Self-Control", "Discipline and willpower: resisting temptation and staying on course."),
    ("Creativity", "Imagination and expression: creating, building, thinking outside the box."),
    ("Connection", "Being present and engaged with family and friends."),
]


def seed_default_stats(db: Session, user_id: int):
    """Gives a new user a starting set of stats (does not commit)"""
    for name, description in DEFAULT_STATS:
        db.add(CharacterStat(user_id=user_id, name=name, description=description))
