"""Request and response models for realm and task endpoints."""

from __future__ import annotations

from datetime import datetime

from realmquest.gamification.schemas import CamelModel, QuestResponse


class RealmCreateRequest(CamelModel):
    name: str
    description: str = ""
    theme: str = "nature"
    difficulty: str = "medium"


class RealmResponse(CamelModel):
    id: int
    name: str
    description: str
    theme: str
    difficulty: str
    total_tasks: int
    completed_tasks: int
    total_xp_earned: int
    created_at: datetime


class TaskCreateRequest(CamelModel):
    title: str
    difficulty: str
    description: str = ""
    due_date: datetime | None = None


class CompletionRequest(CamelModel):
    completion_token: str | None = None


class DifficultyStats(CamelModel):
    total: int
    completed: int
    completion_rate: float


class RecentTask(CamelModel):
    id: int
    title: str
    status: str
    difficulty: str
    xp_reward: int
    completed_at: datetime | None = None


class RealmStatsResponse(CamelModel):
    realm_id: int
    name: str
    total_tasks: int
    completed_tasks: int
    total_xp_earned: int
    completion_rate: float
    by_difficulty: dict[str, DifficultyStats]
    completed_last_7_days: int
    recent_tasks: list[RecentTask]


class RealmVisitResponse(CamelModel):
    updated_quests: list[QuestResponse]
