"""Daily completion streaks.

One canonical timezone (``Settings.timezone``) defines "today" and
"yesterday" for both the streak math and daily-quest expiry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.config import get_settings
from realmquest.db.models import Task, TaskStatus, User

_ONE_MICROSECOND = timedelta(microseconds=1)


def get_timezone() -> ZoneInfo:
    """The canonical day-boundary timezone."""
    return ZoneInfo(get_settings().timezone)


def local_date(moment: datetime, tz: ZoneInfo | None = None) -> date:
    """Calendar date of ``moment`` in the canonical timezone."""
    tz = tz or get_timezone()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def start_of_day(day: date, tz: ZoneInfo | None = None) -> datetime:
    tz = tz or get_timezone()
    return datetime.combine(day, time.min, tzinfo=tz)


def day_bounds(moment: datetime, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
    """(00:00:00, 23:59:59.999999) of the calendar day containing ``moment``."""
    tz = tz or get_timezone()
    day = local_date(moment, tz)
    start = start_of_day(day, tz)
    end = start_of_day(day + timedelta(days=1), tz) - _ONE_MICROSECOND
    return start, end


def yesterday_bounds(moment: datetime, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
    tz = tz or get_timezone()
    day = local_date(moment, tz) - timedelta(days=1)
    start = start_of_day(day, tz)
    end = start_of_day(day + timedelta(days=1), tz) - _ONE_MICROSECOND
    return start, end


def next_midnight(moment: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Start of the day after ``moment``; daily quests expire here."""
    tz = tz or get_timezone()
    return start_of_day(local_date(moment, tz) + timedelta(days=1), tz)


def next_streak(stored_streak: int, completed_today: int, completed_yesterday: int) -> int:
    """Streak to apply for a completion happening now.

    Only the first completion of the day can move the streak.
    """
    if completed_today > 0:
        return stored_streak
    if completed_yesterday > 0:
        return stored_streak + 1
    return 1


def streak_multiplier(streak: int) -> float:
    if streak >= 7:
        return 2.0
    if streak >= 3:
        return 1.5
    return 1.0


def apply_multiplier(base_xp: int, multiplier: float) -> int:
    """``base_xp * multiplier`` rounded half up (22.5 -> 23)."""
    scaled = Decimal(base_xp) * Decimal(str(multiplier))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class StreakUpdate:
    streak: int
    completed_today: int
    completed_yesterday: int
    day: date | None = None
    set_today: bool = False

    @property
    def first_completion_today(self) -> bool:
        return self.completed_today == 0 and not self.set_today

    @property
    def multiplier(self) -> float:
        return streak_multiplier(self.streak)


async def count_completions_between(
    db: AsyncSession,
    user_id: int,
    start: datetime,
    end: datetime,
) -> int:
    """Number of the user's completed tasks with ``start <= completed_at <= end``."""
    result = await db.execute(
        select(func.count())
        .select_from(Task)
        .where(
            Task.user_id == user_id,
            Task.status == TaskStatus.COMPLETED,
            Task.completed_at >= start,
            Task.completed_at <= end,
        )
    )
    return int(result.scalar_one())


async def compute_streak(db: AsyncSession, user: User, now: datetime) -> StreakUpdate:
    """Derive the streak for a completion at ``now`` from the completion history.

    ``user.streak_day`` marks the day the stored streak was last moved; once
    set for today, later completions (including re-completions of a reversed
    task) keep the stored value.
    """
    tz = get_timezone()
    today = local_date(now, tz)
    today_start, today_end = day_bounds(now, tz)
    yesterday_start, yesterday_end = yesterday_bounds(now, tz)

    completed_today = await count_completions_between(db, user.id, today_start, today_end)
    completed_yesterday = await count_completions_between(db, user.id, yesterday_start, yesterday_end)
    set_today = user.streak_day == today

    if set_today:
        streak = user.streak
    else:
        streak = next_streak(user.streak, completed_today, completed_yesterday)
    return StreakUpdate(
        streak=streak,
        completed_today=completed_today,
        completed_yesterday=completed_yesterday,
        day=today,
        set_today=set_today,
    )


def record_streak(user: User, update: StreakUpdate) -> None:
    """Store the streak for a completion; the first one of the day remembers the prior value."""
    if update.first_completion_today:
        user.previous_streak = user.streak
        user.streak_day = update.day
    user.streak = update.streak


async def restore_streak(db: AsyncSession, user: User, completed_at: datetime | None) -> bool:
    """Undo the day's streak move once no completion remains on that day.

    Only applies when the reversed completion falls on ``user.streak_day``;
    older days no longer determine the stored streak.
    """
    if completed_at is None or user.streak_day is None:
        return False
    tz = get_timezone()
    if local_date(completed_at, tz) != user.streak_day:
        return False
    start, end = day_bounds(completed_at, tz)
    if await count_completions_between(db, user.id, start, end) > 0:
        return False
    user.streak = user.previous_streak
    user.streak_day = None
    return True
