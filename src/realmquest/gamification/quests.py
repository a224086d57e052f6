"""Daily quests: event-driven progress, manual progress, creation and claiming.

Quest state is an explicit :class:`QuestStatus`. Expiry is checked lazily
whenever a quest is read or advanced; there is no background sweeper.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.config import get_settings
from realmquest.database import run_in_transaction
from realmquest.db.models import Badge, DailyQuest, LedgerSource, QuestStatus, QuestType
from realmquest.gamification.badges import ProgressSnapshot, award_badges
from realmquest.gamification.errors import ConflictError, InvalidInputError, NotFoundError
from realmquest.gamification.ledger import LevelChange, grant_xp
from realmquest.gamification.streaks import next_midnight
from realmquest.users.service import lock_user, user_summary

logger = structlog.get_logger()

MAX_QUEST_TARGET = 1000
MAX_QUEST_REWARD = 1000


class QuestEvent(enum.StrEnum):
    TASK_COMPLETED = "task_completed"
    XP_EARNED = "xp_earned"
    STREAK_MAINTAINED = "streak_maintained"
    REALM_VISITED = "realm_visited"


# Quest types advanced by each event; custom quests only move manually
QUEST_TYPES_BY_EVENT: dict[QuestEvent, tuple[str, ...]] = {
    QuestEvent.TASK_COMPLETED: (QuestType.COMPLETE_TASKS, QuestType.DEFEAT_ENEMIES),
    QuestEvent.XP_EARNED: (QuestType.EARN_XP,),
    QuestEvent.STREAK_MAINTAINED: (QuestType.MAINTAIN_STREAK,),
    QuestEvent.REALM_VISITED: (QuestType.VISIT_REALMS,),
}

# Targets up to ``easy`` are easy, up to ``medium`` medium, above that hard
_DIFFICULTY_THRESHOLDS: dict[str, tuple[int, int]] = {
    QuestType.COMPLETE_TASKS: (3, 5),
    QuestType.VISIT_REALMS: (2, 3),
    QuestType.EARN_XP: (50, 100),
    QuestType.DEFEAT_ENEMIES: (5, 8),
    QuestType.MAINTAIN_STREAK: (1, 3),
    QuestType.CUSTOM: (5, 10),
}

_REWARD_MULTIPLIERS = {"easy": 1.0, "medium": 1.5, "hard": 2.0}


def quest_difficulty(target: int, quest_type: str) -> str:
    easy, medium = _DIFFICULTY_THRESHOLDS.get(quest_type, _DIFFICULTY_THRESHOLDS[QuestType.CUSTOM])
    if target <= easy:
        return "easy"
    if target <= medium:
        return "medium"
    return "hard"


def calculate_quest_xp_reward(target: int, quest_type: str) -> int:
    """Suggested reward: 5 XP per target unit, scaled by difficulty."""
    base = target * 5
    return int(base * _REWARD_MULTIPLIERS[quest_difficulty(target, quest_type)] + 0.5)


def is_expired(quest: DailyQuest, now: datetime) -> bool:
    return now >= quest.expires_at


def refresh_expiry(quest: DailyQuest, now: datetime) -> bool:
    """Freeze an open quest whose deadline passed. Returns True if it is expired."""
    if quest.status in (QuestStatus.CLAIMED, QuestStatus.EXPIRED):
        return quest.status == QuestStatus.EXPIRED
    if is_expired(quest, now):
        quest.status = QuestStatus.EXPIRED
        return True
    return False


def _apply_progress(quest: DailyQuest, amount: int) -> None:
    quest.progress = min(quest.progress + amount, quest.target)
    if quest.progress >= quest.target:
        quest.status = QuestStatus.COMPLETED


async def advance_quests(
    db: AsyncSession,
    user_id: int,
    event: QuestEvent,
    amount: int = 1,
    now: datetime | None = None,
) -> list[DailyQuest]:
    """Advance every open, unexpired quest of the user that matches ``event``.

    Returns the quests whose progress changed. Runs inside the caller's
    transaction.
    """
    if amount <= 0:
        return []
    now = now or datetime.now(timezone.utc)

    result = await db.execute(
        select(DailyQuest)
        .where(
            DailyQuest.user_id == user_id,
            DailyQuest.status == QuestStatus.ACTIVE,
            DailyQuest.quest_type.in_(QUEST_TYPES_BY_EVENT[event]),
        )
        .order_by(DailyQuest.id)
    )

    updated = []
    for quest in result.scalars():
        if refresh_expiry(quest, now):
            continue
        _apply_progress(quest, amount)
        updated.append(quest)
        if quest.status == QuestStatus.COMPLETED:
            logger.info("quest_completed", user_id=user_id, quest_id=quest.id, quest_type=quest.quest_type)

    await db.flush()
    return updated


async def get_owned_quest(db: AsyncSession, user_id: int, quest_id: int) -> DailyQuest:
    result = await db.execute(
        select(DailyQuest)
        .where(DailyQuest.id == quest_id, DailyQuest.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    quest = result.scalar_one_or_none()
    if quest is None:
        msg = "Daily quest not found"
        raise NotFoundError(msg)
    return quest


async def record_progress(
    db: AsyncSession,
    user_id: int,
    quest_id: int,
    increment: int = 1,
    now: datetime | None = None,
) -> DailyQuest:
    """Manually advance one quest (used for custom quests)."""
    now = now or datetime.now(timezone.utc)
    if increment < 1:
        msg = "Progress increment must be at least 1"
        raise InvalidInputError(msg)

    quest = await get_owned_quest(db, user_id, quest_id)
    if quest.status == QuestStatus.CLAIMED:
        msg = "Quest reward already claimed"
        raise ConflictError(msg)
    if quest.status == QuestStatus.COMPLETED:
        msg = "Quest is already completed"
        raise ConflictError(msg)
    if quest.status == QuestStatus.EXPIRED or is_expired(quest, now):
        msg = "Quest has expired"
        raise ConflictError(msg)

    _apply_progress(quest, increment)
    await db.flush()
    return quest


def _validate_quest_fields(title: str, description: str, quest_type: str, target: int, xp_reward: int) -> None:
    if not 1 <= len(title.strip()) <= 100:
        msg = "Title must be between 1 and 100 characters"
        raise InvalidInputError(msg)
    if not 1 <= len(description.strip()) <= 200:
        msg = "Description must be between 1 and 200 characters"
        raise InvalidInputError(msg)
    if quest_type not in set(QuestType):
        msg = f"Unknown quest type: {quest_type}"
        raise InvalidInputError(msg)
    if not 1 <= target <= MAX_QUEST_TARGET:
        msg = f"Quest target must be between 1 and {MAX_QUEST_TARGET}"
        raise InvalidInputError(msg)
    if not 1 <= xp_reward <= MAX_QUEST_REWARD:
        msg = f"Quest XP reward must be between 1 and {MAX_QUEST_REWARD}"
        raise InvalidInputError(msg)


async def create_quest(
    db: AsyncSession,
    user_id: int,
    *,
    title: str,
    description: str,
    quest_type: str = QuestType.CUSTOM,
    target: int,
    xp_reward: int | None = None,
    is_custom: bool = True,
    now: datetime | None = None,
) -> DailyQuest:
    """Create a quest expiring at the next canonical midnight."""
    now = now or datetime.now(timezone.utc)
    if xp_reward is None:
        xp_reward = calculate_quest_xp_reward(target, quest_type) if target > 0 else 0
    _validate_quest_fields(title, description, quest_type, target, xp_reward)

    quest = DailyQuest(
        user_id=user_id,
        title=title.strip(),
        description=description.strip(),
        quest_type=quest_type,
        target=target,
        progress=0,
        xp_reward=xp_reward,
        status=QuestStatus.ACTIVE,
        is_custom=is_custom,
        expires_at=next_midnight(now),
        created_at=now,
    )
    db.add(quest)
    await db.flush()
    return quest


async def list_quests(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
    *,
    include_expired: bool = False,
) -> list[DailyQuest]:
    """Quests visible to the user; claimed quests are never listed."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(DailyQuest)
        .where(DailyQuest.user_id == user_id, DailyQuest.status != QuestStatus.CLAIMED)
        .order_by(DailyQuest.expires_at.desc(), DailyQuest.id)
    )
    quests = []
    for quest in result.scalars():
        expired = refresh_expiry(quest, now)
        if expired and not include_expired:
            continue
        quests.append(quest)
    await db.flush()
    return quests


@dataclass(frozen=True)
class ClaimResult:
    quest: DailyQuest
    xp_gained: int
    level_up: LevelChange | None
    user_stats: dict[str, int]
    new_badges: list[Badge] = field(default_factory=list)


async def claim_quest(
    db: AsyncSession,
    user_id: int,
    quest_id: int,
    now: datetime | None = None,
) -> ClaimResult:
    """Grant a completed quest's reward exactly once and move it to ``claimed``.

    Commits its own transaction. The status flip is a conditional UPDATE, so of
    two concurrent claims only one can succeed.
    """
    now = now or datetime.now(timezone.utc)

    async def _claim() -> ClaimResult:
        user = await lock_user(db, user_id)
        if user is None:
            msg = "User not found"
            raise NotFoundError(msg)

        quest = await get_owned_quest(db, user_id, quest_id)
        previous_level = user.level
        if quest.status == QuestStatus.CLAIMED:
            msg = "Quest reward already claimed"
            raise ConflictError(msg)
        if quest.status == QuestStatus.EXPIRED or is_expired(quest, now):
            msg = "Quest has expired"
            raise ConflictError(msg)
        if quest.status != QuestStatus.COMPLETED:
            msg = "Quest is not completed yet"
            raise ConflictError(msg)

        flipped = await db.execute(
            update(DailyQuest)
            .where(DailyQuest.id == quest.id, DailyQuest.status == QuestStatus.COMPLETED)
            .values(status=QuestStatus.CLAIMED, claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            msg = "Quest reward already claimed"
            raise ConflictError(msg)

        grant = await grant_xp(
            db,
            user,
            quest.xp_reward,
            LedgerSource.DAILY_QUEST,
            f"Completed daily quest: {quest.title}",
            source_id=str(quest.id),
            idempotency_key=f"daily_quest:{quest.id}",
            now=now,
        )
        if grant is None:
            msg = "Quest reward already claimed"
            raise ConflictError(msg)

        # The reward can cross a level badge threshold
        awards = await award_badges(db, user, ProgressSnapshot.of(user), now)

        await db.refresh(quest)
        return ClaimResult(
            quest=quest,
            xp_gained=quest.xp_reward,
            level_up=LevelChange(previous_level, user.level) if user.level > previous_level else None,
            user_stats=user_summary(user),
            new_badges=awards.badges,
        )

    result = await run_in_transaction(
        db, _claim, retries=get_settings().completion_max_retries, operation="claim_quest"
    )
    logger.info("quest_claimed", user_id=user_id, quest_id=quest_id, xp_gained=result.xp_gained)
    return result
