"""User lookup, locking and stat views."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from realmquest.db.models import Badge, Realm, User
from realmquest.gamification.levels import compute_level

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def lock_user(db: AsyncSession, user_id: int) -> User | None:
    """Load the user row for a read-modify-write of its progression fields.

    Takes a row lock where the backend supports it and always refreshes the
    identity map, so a retried transaction never works from stale values.
    """
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, username: str) -> User:
    """Insert a bare profile (accounts themselves are owned by the auth service)."""
    user = User(username=username)
    db.add(user)
    await db.flush()
    return user


def user_summary(user: User) -> dict[str, int]:
    """The ``userStats`` block returned with completion results."""
    return {
        "level": user.level,
        "xp": user.xp,
        "tasksCompleted": user.tasks_completed,
        "streak": user.streak,
    }


async def get_user_stats(db: AsyncSession, user: User) -> dict[str, Any]:
    """Profile stats with level progress and badge/realm counts."""
    badges = await db.execute(
        select(func.count()).select_from(Badge).where(Badge.user_id == user.id, Badge.completed.is_(True))
    )
    realms = await db.execute(
        select(
            func.count(Realm.id),
            func.coalesce(func.sum(Realm.total_tasks), 0),
            func.coalesce(func.sum(Realm.completed_tasks), 0),
        ).where(Realm.user_id == user.id)
    )
    realm_count, total_tasks, completed_tasks = realms.one()

    return {
        "user_id": user.id,
        "username": user.username,
        "level_info": compute_level(user.xp),
        "stats": user.stats,
        "badges_earned": int(badges.scalar_one()),
        "realms": int(realm_count),
        "total_tasks": int(total_tasks),
        "completed_tasks": int(completed_tasks),
    }
