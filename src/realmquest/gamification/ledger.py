"""XP ledger: append-only grants, reversal by deletion, history queries."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.db.models import LedgerSource, Task, User, XPLedger
from realmquest.gamification.errors import InvalidInputError
from realmquest.gamification.levels import level_of
from realmquest.gamification.streaks import get_timezone, local_date

logger = structlog.get_logger()


@dataclass(frozen=True)
class LevelChange:
    """Level transition caused by an XP change."""

    from_level: int
    to_level: int

    def as_dict(self) -> dict[str, int]:
        return {"from": self.from_level, "to": self.to_level}


@dataclass(frozen=True)
class XPGrant:
    entry: XPLedger
    level_change: LevelChange | None


def apply_xp_delta(user: User, delta: int) -> LevelChange | None:
    """Add ``delta`` (possibly negative) to the user's XP, clamped at 0, and recompute level.

    Returns the level change if the level moved up.
    """
    previous_level = user.level
    user.xp = max(0, user.xp + delta)
    user.level = level_of(user.xp)
    if user.level > previous_level:
        return LevelChange(previous_level, user.level)
    return None


async def append_entry(
    db: AsyncSession,
    user_id: int,
    amount: int,
    source: str,
    description: str,
    *,
    task_id: int | None = None,
    source_id: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> XPLedger:
    """Insert one immutable ledger row."""
    if amount < 0:
        msg = "Ledger entries record grants only; reverse by deleting the entry"
        raise InvalidInputError(msg)

    entry = XPLedger(
        user_id=user_id,
        task_id=task_id,
        xp_gained=amount,
        source=source,
        source_id=source_id,
        description=description[:256],
        idempotency_key=idempotency_key,
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    return entry


async def grant_xp(
    db: AsyncSession,
    user: User,
    amount: int,
    source: str,
    description: str,
    *,
    task_id: int | None = None,
    source_id: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> XPGrant | None:
    """Grant XP to a user. Returns None if the idempotency key was already used.

    1. Insert into xp_ledger
    2. Add to user.xp
    3. Recompute level from xp
    """
    if idempotency_key is not None:
        existing = await db.execute(
            select(XPLedger.id).where(XPLedger.idempotency_key == idempotency_key)
        )
        if existing.scalar_one_or_none() is not None:
            logger.info("xp_grant_duplicate", user_id=user.id, idempotency_key=idempotency_key)
            return None

    entry = await append_entry(
        db,
        user.id,
        amount,
        source,
        description,
        task_id=task_id,
        source_id=source_id,
        idempotency_key=idempotency_key,
        now=now,
    )
    level_change = apply_xp_delta(user, amount)
    await db.flush()

    logger.info(
        "xp_granted",
        user_id=user.id,
        amount=amount,
        source=source,
        xp=user.xp,
        level=user.level,
    )
    return XPGrant(entry=entry, level_change=level_change)


async def find_completion_entry(db: AsyncSession, user_id: int, task_id: int) -> XPLedger | None:
    """Latest ``task_completion`` entry for a task (by created_at, then id)."""
    result = await db.execute(
        select(XPLedger)
        .where(
            XPLedger.user_id == user_id,
            XPLedger.task_id == task_id,
            XPLedger.source == LedgerSource.TASK_COMPLETION,
        )
        .order_by(XPLedger.created_at.desc(), XPLedger.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def revoke_entry(db: AsyncSession, entry: XPLedger) -> None:
    """Reverse a grant by deleting its ledger row."""
    await db.delete(entry)
    await db.flush()


async def realm_ledger_total(db: AsyncSession, realm_id: int) -> int:
    """Sum of completion entries for tasks in a realm; equals ``realm.total_xp_earned``."""
    result = await db.execute(
        select(func.coalesce(func.sum(XPLedger.xp_gained), 0))
        .join(Task, XPLedger.task_id == Task.id)
        .where(
            Task.realm_id == realm_id,
            XPLedger.source == LedgerSource.TASK_COMPLETION,
        )
    )
    return int(result.scalar_one())


async def list_history(
    db: AsyncSession,
    user_id: int,
    *,
    days: int = 30,
    page: int = 1,
    per_page: int = 20,
    now: datetime | None = None,
) -> dict:
    """Paginated ledger entries (newest first) plus per-day XP totals for the window."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=days)
    window = (XPLedger.user_id == user_id, XPLedger.created_at >= since)

    total_result = await db.execute(select(func.count()).select_from(XPLedger).where(*window))
    total = int(total_result.scalar_one())

    offset = (page - 1) * per_page
    result = await db.execute(
        select(XPLedger, Task.title, Task.difficulty)
        .outerjoin(Task, XPLedger.task_id == Task.id)
        .where(*window)
        .order_by(XPLedger.created_at.desc(), XPLedger.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    entries = [
        {
            "id": row.XPLedger.id,
            "xp_gained": row.XPLedger.xp_gained,
            "source": row.XPLedger.source,
            "description": row.XPLedger.description,
            "task_title": row.title,
            "task_difficulty": row.difficulty,
            "created_at": row.XPLedger.created_at,
        }
        for row in result
    ]

    # Per-day aggregation in the canonical timezone, oldest day first
    tz = get_timezone()
    daily_rows = await db.execute(
        select(XPLedger.xp_gained, XPLedger.created_at)
        .where(*window)
        .order_by(XPLedger.created_at.asc())
    )
    daily: OrderedDict[str, dict] = OrderedDict()
    for xp_gained, created_at in daily_rows:
        key = local_date(created_at, tz).isoformat()
        bucket = daily.setdefault(key, {"date": key, "xp": 0, "activities": 0})
        bucket["xp"] += xp_gained
        bucket["activities"] += 1

    return {
        "entries": entries,
        "daily": list(daily.values()),
        "total": total,
        "page": page,
        "per_page": per_page,
    }
