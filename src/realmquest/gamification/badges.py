"""Badge catalog, pure eligibility evaluation and persistence of awards.

Badges are one-time achievements: once a row is completed it is never
un-completed and its ``earned_at`` never changes, even if the completion that
triggered it is later reversed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.config import get_settings
from realmquest.db.models import Badge, LedgerSource, User
from realmquest.gamification.ledger import grant_xp

logger = structlog.get_logger()


@dataclass(frozen=True)
class BadgeDefinition:
    badge_type: str
    name: str
    description: str
    rarity: str
    target: int
    requirement: str
    icon: str
    # ProgressSnapshot attribute compared against ``target``; None = no automatic trigger
    metric: str | None = None
    bonus_xp: bool = False


BADGE_CATALOG: tuple[BadgeDefinition, ...] = (
    BadgeDefinition(
        badge_type="first_clear",
        name="First Clear",
        description="Complete your first task",
        rarity="common",
        target=1,
        requirement="Complete 1 task",
        icon="\U0001f3af",
        metric="tasks_completed",
        bonus_xp=True,
    ),
    BadgeDefinition(
        badge_type="dungeon_master",
        name="Dungeon Master",
        description="Complete 100 tasks",
        rarity="legendary",
        target=100,
        requirement="Complete 100 tasks",
        icon="\U0001f451",
        metric="tasks_completed",
    ),
    BadgeDefinition(
        badge_type="streak_king",
        name="Streak King",
        description="Maintain a 7-day completion streak",
        rarity="epic",
        target=7,
        requirement="Complete tasks for 7 consecutive days",
        icon="\U0001f525",
        metric="current_streak",
    ),
    BadgeDefinition(
        badge_type="elite_hunter",
        name="Elite Hunter",
        description="Reach level 10",
        rarity="legendary",
        target=10,
        requirement="Reach level 10",
        icon="⭐",
        metric="level",
    ),
    BadgeDefinition(
        badge_type="speed_runner",
        name="Speed Runner",
        description="Complete 10 tasks within 1 hour of creation",
        rarity="rare",
        target=10,
        requirement="Complete 10 tasks within 1 hour",
        icon="⚡",
    ),
    BadgeDefinition(
        badge_type="perfectionist",
        name="Perfectionist",
        description="Maintain 100% completion rate for 30 days",
        rarity="epic",
        target=30,
        requirement="100% task completion for 30 days",
        icon="\U0001f48e",
    ),
    BadgeDefinition(
        badge_type="night_watch",
        name="Night Watch",
        description="Complete 25 tasks after 9 PM",
        rarity="rare",
        target=25,
        requirement="Complete 25 tasks after 9 PM",
        icon="\U0001f319",
    ),
)

BADGES_BY_TYPE: dict[str, BadgeDefinition] = {b.badge_type: b for b in BADGE_CATALOG}


@dataclass(frozen=True)
class ProgressSnapshot:
    """User progress right after a mutation, as seen by the evaluator."""

    tasks_completed: int
    current_streak: int
    total_xp: int
    level: int

    @classmethod
    def of(cls, user: User) -> ProgressSnapshot:
        return cls(
            tasks_completed=user.tasks_completed,
            current_streak=user.streak,
            total_xp=user.xp,
            level=user.level,
        )


def evaluate_badges(
    snapshot: ProgressSnapshot,
    already_earned: Iterable[str],
) -> list[BadgeDefinition]:
    """Badges that qualify now and are not yet earned, in catalog order.

    Pure: the same snapshot and earned set always give the same answer.
    """
    earned = set(already_earned)
    qualifying = []
    for badge in BADGE_CATALOG:
        if badge.metric is None or badge.badge_type in earned:
            continue
        if getattr(snapshot, badge.metric) >= badge.target:
            qualifying.append(badge)
    return qualifying


@dataclass
class BadgeAwards:
    badges: list[Badge] = field(default_factory=list)
    bonus_xp: int = 0


async def get_earned_badge_types(db: AsyncSession, user_id: int) -> set[str]:
    result = await db.execute(
        select(Badge.badge_type).where(Badge.user_id == user_id, Badge.completed.is_(True))
    )
    return set(result.scalars())


async def award_badges(
    db: AsyncSession,
    user: User,
    snapshot: ProgressSnapshot,
    now: datetime | None = None,
) -> BadgeAwards:
    """Persist every newly qualifying badge and apply bonus-XP side effects.

    Safe to call repeatedly: already-completed badges are filtered out before
    any write, and the first-clear bonus is keyed for idempotency.
    """
    now = now or datetime.now(timezone.utc)
    earned = await get_earned_badge_types(db, user.id)
    awards = BadgeAwards()

    for definition in evaluate_badges(snapshot, earned):
        result = await db.execute(
            select(Badge).where(Badge.user_id == user.id, Badge.badge_type == definition.badge_type)
        )
        badge = result.scalar_one_or_none()
        if badge is None:
            badge = Badge(
                user_id=user.id,
                badge_type=definition.badge_type,
                name=definition.name,
                description=definition.description,
                rarity=definition.rarity,
                target=definition.target,
            )
            db.add(badge)
        badge.completed = True
        badge.earned_at = now
        badge.progress = definition.target
        awards.badges.append(badge)

        logger.info("badge_awarded", user_id=user.id, badge_type=definition.badge_type)

        if definition.bonus_xp:
            grant = await grant_xp(
                db,
                user,
                get_settings().first_clear_bonus_xp,
                LedgerSource.FIRST_CLEAR_BONUS,
                f"{definition.name} badge bonus",
                source_id=definition.badge_type,
                idempotency_key=f"first_clear_bonus:{user.id}",
                now=now,
            )
            if grant is not None:
                awards.bonus_xp += grant.entry.xp_gained

    await db.flush()
    return awards


async def list_user_badges(db: AsyncSession, user_id: int) -> list[Badge]:
    """Earned badges, most recent first."""
    result = await db.execute(
        select(Badge)
        .where(Badge.user_id == user_id, Badge.completed.is_(True))
        .order_by(Badge.earned_at.desc(), Badge.id.desc())
    )
    return list(result.scalars())


async def badge_progress(db: AsyncSession, user: User) -> list[dict]:
    """Progress toward every catalog badge."""
    result = await db.execute(select(Badge).where(Badge.user_id == user.id))
    stored = {b.badge_type: b for b in result.scalars()}
    snapshot = ProgressSnapshot.of(user)

    items = []
    for definition in BADGE_CATALOG:
        row = stored.get(definition.badge_type)
        if row is not None and row.completed:
            progress = row.target
        elif definition.metric is not None:
            progress = min(getattr(snapshot, definition.metric), definition.target)
        else:
            progress = row.progress if row is not None else 0
        items.append({
            "badge_type": definition.badge_type,
            "name": definition.name,
            "description": definition.description,
            "rarity": definition.rarity,
            "icon": definition.icon,
            "progress": progress,
            "target": definition.target,
            "completed": bool(row and row.completed),
            "earned_at": row.earned_at if row is not None else None,
        })
    return items
