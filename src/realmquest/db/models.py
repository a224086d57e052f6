"""ORM models for realms, tasks and the progression records.

User and Realm rows carry a ``version`` column used as SQLAlchemy's
``version_id_col``: every UPDATE is guarded by the version that was read, so a
concurrent read-modify-write raises ``StaleDataError`` instead of silently
losing an increment.
"""

from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from realmquest.db.base import Base, BigIntPK, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class Difficulty(enum.StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class RealmTheme(enum.StrEnum):
    FIRE = "fire"
    ICE = "ice"
    NATURE = "nature"
    ELECTRIC = "electric"
    SHADOW = "shadow"


class QuestStatus(enum.StrEnum):
    """Lifecycle of a daily quest. ``claimed`` and ``expired`` are terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class QuestType(enum.StrEnum):
    COMPLETE_TASKS = "complete_tasks"
    VISIT_REALMS = "visit_realms"
    EARN_XP = "earn_xp"
    DEFEAT_ENEMIES = "defeat_enemies"
    MAINTAIN_STREAK = "maintain_streak"
    CUSTOM = "custom"


class LedgerSource(enum.StrEnum):
    TASK_COMPLETION = "task_completion"
    FIRST_CLEAR_BONUS = "first_clear_bonus"
    DAILY_QUEST = "daily_quest"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Player profile with the cached progression aggregates."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="users_xp_non_negative"),
        CheckConstraint("tasks_completed >= 0", name="users_tasks_completed_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    avatar: Mapped[str] = mapped_column(String(64), nullable=False, default="starter-warrior")

    # XP is the single source of truth; ``total_xp`` below is a derived view.
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    realms_cleared: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Day the streak last moved and the value before that move.
    streak_day: Mapped[date | None] = mapped_column(Date, nullable=True)
    previous_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_realms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012

    @property
    def total_xp(self) -> int:
        """Legacy name for ``xp``; read-only."""
        return self.xp

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "tasksCompleted": self.tasks_completed,
            "realmsCleared": self.realms_cleared,
            "streak": self.streak,
            "totalXP": self.total_xp,
            "activeRealms": self.active_realms,
            "lastActiveDate": self.last_active_date,
        }


# ---------------------------------------------------------------------------
# Realms & tasks
# ---------------------------------------------------------------------------


class Realm(Base):
    """Task collection owning the completion aggregates."""

    __tablename__ = "realms"
    __table_args__ = (
        CheckConstraint(
            "completed_tasks >= 0 AND completed_tasks <= total_tasks",
            name="realms_completed_within_total",
        ),
        CheckConstraint("total_xp_earned >= 0", name="realms_total_xp_non_negative"),
        Index("idx_realms_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    theme: Mapped[str] = mapped_column(String(16), nullable=False, default=RealmTheme.NATURE)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")

    total_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class Task(Base):
    """A unit of work; ``xp_reward`` is fixed at creation from the difficulty."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("xp_reward >= 1", name="tasks_xp_reward_positive"),
        Index("idx_tasks_realm_status", "realm_id", "status"),
        Index("idx_tasks_user_completed_at", "user_id", "completed_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    realm_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("realms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskStatus.PENDING)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Progression records
# ---------------------------------------------------------------------------


class XPLedger(Base):
    """Append-only XP log. Rows are inserted or deleted (reversal), never updated."""

    __tablename__ = "xp_ledger"
    __table_args__ = (
        Index("idx_xp_ledger_user_created", "user_id", "created_at"),
        Index("idx_xp_ledger_task_source", "task_id", "source"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    xp_gained: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class Badge(Base):
    """Per-user badge progress; UNIQUE(user_id, badge_type) keeps one row per badge."""

    __tablename__ = "badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_type", name="badges_user_id_badge_type_key"),
        Index("idx_badges_user_completed", "user_id", "completed"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_type: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    earned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class DailyQuest(Base):
    """Time-boxed objective with a claimable XP reward."""

    __tablename__ = "daily_quests"
    __table_args__ = (
        CheckConstraint("target >= 1", name="daily_quests_target_positive"),
        CheckConstraint("progress >= 0 AND progress <= target", name="daily_quests_progress_within_target"),
        CheckConstraint("xp_reward >= 1", name="daily_quests_xp_reward_positive"),
        Index("idx_daily_quests_user_expires", "user_id", "expires_at"),
        Index("idx_daily_quests_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    quest_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target: Mapped[int] = mapped_column(Integer, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=QuestStatus.ACTIVE)
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
