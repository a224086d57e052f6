"""Realm and task records the progression engine works on.

Only what the engine and its API need: creation (so ``xp_reward`` is fixed
from difficulty and realm counters start consistent), deletion, lookups by
owner, and the realm statistics view.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import case, func, select

from realmquest.db.models import Difficulty, Realm, RealmTheme, Task, TaskStatus, User
from realmquest.gamification.errors import ConflictError, InvalidInputError, NotFoundError
from realmquest.gamification.levels import xp_reward_for_difficulty
from realmquest.gamification.quests import QuestEvent, advance_quests

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_owned_realm(db: AsyncSession, user_id: int, realm_id: int) -> Realm:
    result = await db.execute(
        select(Realm)
        .where(Realm.id == realm_id, Realm.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    realm = result.scalar_one_or_none()
    if realm is None:
        msg = "Realm not found"
        raise NotFoundError(msg)
    return realm


async def get_owned_task(db: AsyncSession, user_id: int, realm_id: int, task_id: int) -> Task:
    result = await db.execute(
        select(Task)
        .where(Task.id == task_id, Task.realm_id == realm_id, Task.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        msg = "Task not found"
        raise NotFoundError(msg)
    return task


async def create_realm(
    db: AsyncSession,
    user: User,
    name: str,
    description: str = "",
    theme: str = RealmTheme.NATURE,
    difficulty: str = "medium",
) -> Realm:
    if not 3 <= len(name.strip()) <= 50:
        msg = "Realm name must be between 3 and 50 characters"
        raise InvalidInputError(msg)
    if theme not in set(RealmTheme):
        msg = f"Unknown realm theme: {theme}"
        raise InvalidInputError(msg)

    realm = Realm(
        user_id=user.id,
        name=name.strip(),
        description=description.strip(),
        theme=theme,
        difficulty=difficulty,
    )
    db.add(realm)
    user.active_realms += 1
    await db.flush()
    return realm


async def create_task(
    db: AsyncSession,
    realm: Realm,
    title: str,
    difficulty: str,
    description: str = "",
    due_date: datetime | None = None,
) -> Task:
    """Add a pending task; its XP reward is fixed here from the difficulty."""
    if difficulty not in set(Difficulty):
        msg = f"Unknown task difficulty: {difficulty}"
        raise InvalidInputError(msg)
    if not 3 <= len(title.strip()) <= 100:
        msg = "Task title must be between 3 and 100 characters"
        raise InvalidInputError(msg)

    task = Task(
        realm_id=realm.id,
        user_id=realm.user_id,
        title=title.strip(),
        description=description.strip(),
        difficulty=difficulty,
        status=TaskStatus.PENDING,
        xp_reward=xp_reward_for_difficulty(difficulty),
        due_date=due_date,
    )
    db.add(task)
    realm.total_tasks += 1
    await db.flush()
    return task


async def delete_task(db: AsyncSession, user_id: int, realm_id: int, task_id: int) -> None:
    """Delete a pending task. Completed tasks must be uncompleted first so the
    realm XP total keeps matching the ledger."""
    realm = await get_owned_realm(db, user_id, realm_id)
    task = await get_owned_task(db, user_id, realm_id, task_id)
    if task.status == TaskStatus.COMPLETED:
        msg = "Uncomplete the task before deleting it"
        raise ConflictError(msg)

    await db.delete(task)
    realm.total_tasks = max(0, realm.total_tasks - 1)
    await db.flush()


async def visit_realm(db: AsyncSession, user_id: int, realm_id: int, now: datetime | None = None) -> list:
    """Record a realm visit for ``visit_realms`` quests."""
    await get_owned_realm(db, user_id, realm_id)
    return await advance_quests(db, user_id, QuestEvent.REALM_VISITED, 1, now)


async def get_realm_stats(
    db: AsyncSession,
    user_id: int,
    realm_id: int,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Counters, per-difficulty breakdown, recent tasks and weekly completions."""
    now = now or datetime.now(timezone.utc)
    realm = await get_owned_realm(db, user_id, realm_id)

    completed_expr = case((Task.status == TaskStatus.COMPLETED, 1), else_=0)
    by_difficulty = await db.execute(
        select(
            Task.difficulty,
            func.count(Task.id),
            func.sum(completed_expr),
        )
        .where(Task.realm_id == realm.id)
        .group_by(Task.difficulty)
    )
    difficulty_stats = {}
    for difficulty, total, completed in by_difficulty:
        completed = int(completed or 0)
        difficulty_stats[difficulty] = {
            "total": int(total),
            "completed": completed,
            "completion_rate": (completed / total * 100) if total else 0.0,
        }

    recent = await db.execute(
        select(Task)
        .where(Task.realm_id == realm.id)
        .order_by(Task.updated_at.desc(), Task.id.desc())
        .limit(5)
    )
    week_ago = now - timedelta(days=7)
    weekly = await db.execute(
        select(func.count())
        .select_from(Task)
        .where(
            Task.realm_id == realm.id,
            Task.status == TaskStatus.COMPLETED,
            Task.completed_at >= week_ago,
        )
    )

    return {
        "realm_id": realm.id,
        "name": realm.name,
        "total_tasks": realm.total_tasks,
        "completed_tasks": realm.completed_tasks,
        "total_xp_earned": realm.total_xp_earned,
        "completion_rate": (realm.completed_tasks / realm.total_tasks * 100) if realm.total_tasks else 0.0,
        "by_difficulty": difficulty_stats,
        "completed_last_7_days": int(weekly.scalar_one()),
        "recent_tasks": [
            {
                "id": t.id,
                "title": t.title,
                "status": t.status,
                "difficulty": t.difficulty,
                "xp_reward": t.xp_reward,
                "completed_at": t.completed_at,
            }
            for t in recent.scalars()
        ],
    }
