"""Progression API: XP, levels, badges and daily quests."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.auth.dependencies import get_current_user
from realmquest.config import get_settings
from realmquest.database import atomic, get_session
from realmquest.db.models import User
from realmquest.dependencies import get_redis_dep
from realmquest.gamification import events
from realmquest.gamification.badges import BADGE_CATALOG, badge_progress, list_user_badges
from realmquest.gamification.ledger import list_history
from realmquest.gamification.levels import compute_level, level_thresholds
from realmquest.gamification.quests import claim_quest, create_quest, list_quests, record_progress
from realmquest.gamification.schemas import (
    AllBadgesResponse,
    AllLevelsResponse,
    BadgeDefinitionResponse,
    BadgeProgressItem,
    BadgeProgressResponse,
    BadgeResponse,
    LevelEntry,
    LevelUpResponse,
    QuestClaimResponse,
    QuestCreateRequest,
    QuestListResponse,
    QuestProgressRequest,
    QuestResponse,
    UserBadgesResponse,
    UserStatsBlock,
    UserStatsResponse,
    XPHistoryEntry,
    XPHistoryResponse,
    XPResponse,
)
from realmquest.users.service import get_user_stats

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── Catalog ──


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels():
    """Thresholds for the first 50 levels."""
    return AllLevelsResponse(levels=[LevelEntry(**t) for t in level_thresholds(50)])


@router.get("/badges/available", response_model=AllBadgesResponse)
async def list_available_badges():
    return AllBadgesResponse(
        badges=[
            BadgeDefinitionResponse(
                badge_type=b.badge_type,
                name=b.name,
                description=b.description,
                rarity=b.rarity,
                target=b.target,
                requirement=b.requirement,
                icon=b.icon,
            )
            for b in BADGE_CATALOG
        ]
    )


# ── Current user ──


@router.get("/users/me/stats", response_model=UserStatsResponse)
async def my_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return UserStatsResponse(**await get_user_stats(db, user))


@router.get("/users/me/xp", response_model=XPResponse)
async def my_xp(user: User = Depends(get_current_user)):
    info = compute_level(user.xp)
    return XPResponse(xp=user.xp, **info)


@router.get("/users/me/xp/history", response_model=XPHistoryResponse)
async def my_xp_history(
    days: int = Query(30, ge=1),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Ledger entries, newest first, plus daily totals for the window."""
    days = min(days, get_settings().xp_history_max_days)
    history = await list_history(db, user.id, days=days, page=page, per_page=per_page)
    return XPHistoryResponse(
        entries=[XPHistoryEntry(**e) for e in history["entries"]],
        daily=history["daily"],
        total=history["total"],
        page=history["page"],
        per_page=history["per_page"],
    )


@router.get("/users/me/badges", response_model=UserBadgesResponse)
async def my_badges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    earned = await list_user_badges(db, user.id)
    return UserBadgesResponse(
        earned=[BadgeResponse.model_validate(b) for b in earned],
        total_available=len(BADGE_CATALOG),
        total_earned=len(earned),
    )


@router.get("/users/me/badges/progress", response_model=BadgeProgressResponse)
async def my_badge_progress(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    items = await badge_progress(db, user)
    return BadgeProgressResponse(badges=[BadgeProgressItem(**i) for i in items])


# ── Daily quests ──


@router.get("/daily-quests", response_model=QuestListResponse)
async def get_daily_quests(
    include_expired: bool = Query(False),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Open quests; expired ones are frozen on read."""
    async with atomic(db):
        quests = await list_quests(db, user.id, include_expired=include_expired)
    return QuestListResponse(quests=[QuestResponse.model_validate(q) for q in quests])


@router.post("/daily-quests", response_model=QuestResponse, status_code=201)
async def create_daily_quest(
    body: QuestCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    async with atomic(db):
        quest = await create_quest(
            db,
            user.id,
            title=body.title,
            description=body.description,
            quest_type=body.quest_type,
            target=body.target,
            xp_reward=body.xp_reward,
        )
    return QuestResponse.model_validate(quest)


@router.patch("/daily-quests/{quest_id}/progress", response_model=QuestResponse)
async def update_quest_progress(
    quest_id: int,
    body: QuestProgressRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    async with atomic(db):
        quest = await record_progress(db, user.id, quest_id, body.increment)
    return QuestResponse.model_validate(quest)


@router.post("/daily-quests/{quest_id}/claim", response_model=QuestClaimResponse)
async def claim_daily_quest(
    quest_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Grant a completed quest's reward once."""
    result = await claim_quest(db, user.id, quest_id, datetime.now(timezone.utc))
    await events.publish_event(redis, events.CHANNEL_QUEST_CLAIMED, {
        "user_id": user.id,
        "quest_id": quest_id,
        "xp_gained": result.xp_gained,
    })
    for badge in result.new_badges:
        await events.publish_event(redis, events.CHANNEL_BADGE_EARNED, {
            "user_id": user.id,
            "badge_type": badge.badge_type,
            "badge_name": badge.name,
            "rarity": badge.rarity,
        })
    return QuestClaimResponse(
        quest=QuestResponse.model_validate(result.quest),
        xp_gained=result.xp_gained,
        level_up=LevelUpResponse(from_level=result.level_up.from_level, to_level=result.level_up.to_level)
        if result.level_up
        else None,
        user_stats=UserStatsBlock(**result.user_stats),
        new_badges=[BadgeResponse.model_validate(b) for b in result.new_badges],
    )
