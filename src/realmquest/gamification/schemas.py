"""Pydantic models for the progression endpoints.

Bodies use camelCase on the wire; both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Shared blocks ---


class TaskResponse(CamelModel):
    id: int
    realm_id: int
    title: str
    description: str
    difficulty: str
    status: str
    xp_reward: int
    due_date: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class LevelUpResponse(CamelModel):
    from_level: int = Field(alias="from")
    to_level: int = Field(alias="to")


class UserStatsBlock(CamelModel):
    level: int
    xp: int
    tasks_completed: int
    streak: int


class BadgeResponse(CamelModel):
    badge_type: str
    name: str
    description: str
    rarity: str
    progress: int
    target: int
    completed: bool
    earned_at: datetime | None = None


class QuestResponse(CamelModel):
    id: int
    title: str
    description: str
    quest_type: str
    target: int
    progress: int
    xp_reward: int
    status: str
    is_custom: bool
    expires_at: datetime
    claimed_at: datetime | None = None


# --- Completion / reversal ---


class CompletionResponse(CamelModel):
    task: TaskResponse
    xp_gained: int
    base_xp: int = Field(alias="baseXP")
    streak_multiplier: float
    current_streak: int
    level_up: LevelUpResponse | None = None
    new_badges: list[BadgeResponse] = []
    bonus_xp: int = Field(default=0, alias="bonusXP")
    updated_quests: list[QuestResponse] = []
    user_stats: UserStatsBlock


class ReversalResponse(CamelModel):
    task: TaskResponse
    xp_lost: int
    user_stats: UserStatsBlock


# --- XP & levels ---


class XPResponse(CamelModel):
    xp: int
    level: int
    xp_into_level: int
    xp_for_level: int
    xp_to_next_level: int
    next_level: int


class XPHistoryEntry(CamelModel):
    id: int
    xp_gained: int
    source: str
    description: str
    task_title: str | None = None
    task_difficulty: str | None = None
    created_at: datetime


class XPDailyTotal(CamelModel):
    date: str
    xp: int
    activities: int


class XPHistoryResponse(CamelModel):
    entries: list[XPHistoryEntry]
    daily: list[XPDailyTotal]
    total: int
    page: int
    per_page: int


class LevelEntry(CamelModel):
    level: int
    xp_required: int
    cumulative: int


class AllLevelsResponse(CamelModel):
    levels: list[LevelEntry]


# --- User stats ---


class LevelInfo(CamelModel):
    level: int
    xp_into_level: int
    xp_for_level: int
    xp_to_next_level: int
    next_level: int


class UserStatsResponse(CamelModel):
    user_id: int
    username: str
    level_info: LevelInfo
    stats: dict
    badges_earned: int
    realms: int
    total_tasks: int
    completed_tasks: int


# --- Badges ---


class BadgeDefinitionResponse(CamelModel):
    badge_type: str
    name: str
    description: str
    rarity: str
    target: int
    requirement: str
    icon: str


class AllBadgesResponse(CamelModel):
    badges: list[BadgeDefinitionResponse]


class UserBadgesResponse(CamelModel):
    earned: list[BadgeResponse]
    total_available: int
    total_earned: int


class BadgeProgressItem(CamelModel):
    badge_type: str
    name: str
    description: str
    rarity: str
    icon: str
    progress: int
    target: int
    completed: bool
    earned_at: datetime | None = None


class BadgeProgressResponse(CamelModel):
    badges: list[BadgeProgressItem]


# --- Daily quests ---


class QuestCreateRequest(CamelModel):
    title: str
    description: str
    quest_type: str = "custom"
    target: int
    xp_reward: int | None = None


class QuestProgressRequest(CamelModel):
    increment: int = 1


class QuestListResponse(CamelModel):
    quests: list[QuestResponse]


class QuestClaimResponse(CamelModel):
    quest: QuestResponse
    xp_gained: int
    level_up: LevelUpResponse | None = None
    user_stats: UserStatsBlock
    new_badges: list[BadgeResponse] = []
