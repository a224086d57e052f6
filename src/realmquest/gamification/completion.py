"""Task completion and reversal: the progression entry points.

Both operations reconcile five records (task, realm counters, user
progression, XP ledger, badges/quests) inside a single transaction:

* every precondition is checked before the first write;
* the task status flip is a conditional UPDATE, so of two concurrent
  completions of the same task exactly one succeeds and the other gets
  ``ConflictError``;
* the user row is locked (``SELECT ... FOR UPDATE`` where supported) and
  version-checked, so concurrent completions of different tasks of the same
  user are serialised; a lost version race is retried from scratch;
* any failure or cancellation rolls back every write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.config import get_settings
from realmquest.database import run_in_transaction
from realmquest.db.models import Badge, DailyQuest, LedgerSource, Task, TaskStatus
from realmquest.gamification import events
from realmquest.gamification.badges import ProgressSnapshot, award_badges
from realmquest.gamification.errors import ConflictError, InconsistentStateError, NotFoundError
from realmquest.gamification.ledger import (
    LevelChange,
    apply_xp_delta,
    find_completion_entry,
    grant_xp,
    revoke_entry,
)
from realmquest.gamification.quests import QuestEvent, advance_quests
from realmquest.gamification.streaks import apply_multiplier, compute_streak, record_streak, restore_streak
from realmquest.realms.service import get_owned_realm, get_owned_task
from realmquest.users.service import lock_user, user_summary

logger = structlog.get_logger()


@dataclass(frozen=True)
class CompletionResult:
    task: Task
    xp_gained: int
    base_xp: int
    streak_multiplier: float
    current_streak: int
    level_up: LevelChange | None
    new_badges: list[Badge] = field(default_factory=list)
    bonus_xp: int = 0
    updated_quests: list[DailyQuest] = field(default_factory=list)
    user_stats: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ReversalResult:
    task: Task
    xp_lost: int
    user_stats: dict[str, int] = field(default_factory=dict)


async def _set_task_status(
    db: AsyncSession,
    task: Task,
    *,
    expected: str,
    status: str,
    completed_at: datetime | None,
    now: datetime,
) -> None:
    """Flip task status only if it still has the expected value."""
    result = await db.execute(
        update(Task)
        .where(Task.id == task.id, Task.status == expected)
        .values(status=status, completed_at=completed_at, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        msg = "Task is already completed" if status == TaskStatus.COMPLETED else "Task is not completed"
        raise ConflictError(msg)
    await db.refresh(task)


async def complete_task(
    db: AsyncSession,
    user_id: int,
    realm_id: int,
    task_id: int,
    *,
    now: datetime | None = None,
    redis: object = None,
    completion_token: str | None = None,
) -> CompletionResult:
    """Mark a pending task completed and apply every reward it earns.

    ``completion_token`` optionally keys the ledger entry, making a client
    retry of the same request a ``ConflictError`` instead of a second grant.
    """
    now = now or datetime.now(timezone.utc)

    async def _complete() -> CompletionResult:
        user = await lock_user(db, user_id)
        if user is None:
            msg = "User not found"
            raise NotFoundError(msg)
        realm = await get_owned_realm(db, user_id, realm_id)
        task = await get_owned_task(db, user_id, realm_id, task_id)
        if task.status == TaskStatus.COMPLETED:
            msg = "Task is already completed"
            raise ConflictError(msg)

        # 1-2. Streak from completion history, then the multiplied reward
        streak = await compute_streak(db, user, now)
        base_xp = task.xp_reward
        multiplier = streak.multiplier
        final_xp = apply_multiplier(base_xp, multiplier)
        previous_level = user.level

        # 3. Task
        await _set_task_status(
            db, task, expected=TaskStatus.PENDING, status=TaskStatus.COMPLETED, completed_at=now, now=now
        )

        # 4 + 6. User aggregates and the ledger entry (grant_xp recomputes level)
        user.tasks_completed += 1
        record_streak(user, streak)
        user.last_active_date = now
        grant = await grant_xp(
            db,
            user,
            final_xp,
            LedgerSource.TASK_COMPLETION,
            f"Completed task: {task.title}",
            task_id=task.id,
            source_id=str(task.id),
            idempotency_key=f"task_completion:{user_id}:{completion_token}" if completion_token else None,
            now=now,
        )
        if grant is None:
            msg = "Completion already recorded for this token"
            raise ConflictError(msg)

        # 5. Realm counters
        realm.completed_tasks += 1
        realm.total_xp_earned += final_xp
        await db.flush()

        # 7. Badges (and the first-clear bonus) from the fresh snapshot
        awards = await award_badges(db, user, ProgressSnapshot.of(user), now)

        quests = await advance_quests(db, user_id, QuestEvent.TASK_COMPLETED, 1, now)
        quests += await advance_quests(db, user_id, QuestEvent.XP_EARNED, final_xp, now)
        if streak.first_completion_today:
            quests += await advance_quests(db, user_id, QuestEvent.STREAK_MAINTAINED, 1, now)

        level_up = LevelChange(previous_level, user.level) if user.level > previous_level else None
        return CompletionResult(
            task=task,
            xp_gained=final_xp,
            base_xp=base_xp,
            streak_multiplier=multiplier,
            current_streak=streak.streak,
            level_up=level_up,
            new_badges=awards.badges,
            bonus_xp=awards.bonus_xp,
            updated_quests=quests,
            user_stats=user_summary(user),
        )

    result = await run_in_transaction(
        db, _complete, retries=get_settings().completion_max_retries, operation="complete_task"
    )

    logger.info(
        "task_completed",
        user_id=user_id,
        task_id=task_id,
        xp_gained=result.xp_gained,
        streak=result.current_streak,
        new_badges=[b.badge_type for b in result.new_badges],
    )
    await _publish_completion(redis, user_id, result)
    return result


async def _publish_completion(redis: object, user_id: int, result: CompletionResult) -> None:
    await events.publish_event(redis, events.CHANNEL_TASK_COMPLETED, {
        "user_id": user_id,
        "task_id": result.task.id,
        "xp_gained": result.xp_gained,
        "streak": result.current_streak,
    })
    if result.level_up is not None:
        await events.publish_event(redis, events.CHANNEL_LEVEL_UP, {
            "user_id": user_id,
            "old_level": result.level_up.from_level,
            "new_level": result.level_up.to_level,
        })
    for badge in result.new_badges:
        await events.publish_event(redis, events.CHANNEL_BADGE_EARNED, {
            "user_id": user_id,
            "badge_type": badge.badge_type,
            "badge_name": badge.name,
            "rarity": badge.rarity,
        })


async def uncomplete_task(
    db: AsyncSession,
    user_id: int,
    realm_id: int,
    task_id: int,
    *,
    now: datetime | None = None,
    redis: object = None,
) -> ReversalResult:
    """Return a completed task to pending and reverse exactly the XP it granted.

    Badges earned along the way are kept.
    """
    now = now or datetime.now(timezone.utc)

    async def _uncomplete() -> ReversalResult:
        user = await lock_user(db, user_id)
        if user is None:
            msg = "User not found"
            raise NotFoundError(msg)
        realm = await get_owned_realm(db, user_id, realm_id)
        task = await get_owned_task(db, user_id, realm_id, task_id)
        if task.status != TaskStatus.COMPLETED:
            msg = "Task is not completed"
            raise ConflictError(msg)

        entry = await find_completion_entry(db, user_id, task.id)
        if entry is None:
            msg = f"No XP ledger entry found for completed task {task.id}"
            raise InconsistentStateError(msg)
        xp_lost = entry.xp_gained
        completed_at = task.completed_at

        await _set_task_status(
            db, task, expected=TaskStatus.COMPLETED, status=TaskStatus.PENDING, completed_at=None, now=now
        )

        apply_xp_delta(user, -xp_lost)
        user.tasks_completed = max(0, user.tasks_completed - 1)
        await restore_streak(db, user, completed_at)

        realm.completed_tasks = max(0, realm.completed_tasks - 1)
        realm.total_xp_earned = max(0, realm.total_xp_earned - xp_lost)

        await revoke_entry(db, entry)
        return ReversalResult(task=task, xp_lost=xp_lost, user_stats=user_summary(user))

    result = await run_in_transaction(
        db, _uncomplete, retries=get_settings().completion_max_retries, operation="uncomplete_task"
    )

    logger.info("task_uncompleted", user_id=user_id, task_id=task_id, xp_lost=result.xp_lost)
    await events.publish_event(redis, events.CHANNEL_TASK_UNCOMPLETED, {
        "user_id": user_id,
        "task_id": task_id,
        "xp_lost": result.xp_lost,
    })
    return result
