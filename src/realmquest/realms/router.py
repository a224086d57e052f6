"""Realm and task endpoints, including task completion and reversal."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.auth.dependencies import get_current_user
from realmquest.database import atomic, get_session
from realmquest.db.models import User
from realmquest.dependencies import get_redis_dep
from realmquest.gamification.completion import complete_task, uncomplete_task
from realmquest.gamification.schemas import (
    BadgeResponse,
    CompletionResponse,
    LevelUpResponse,
    QuestResponse,
    ReversalResponse,
    TaskResponse,
    UserStatsBlock,
)
from realmquest.realms import service
from realmquest.realms.schemas import (
    CompletionRequest,
    RealmCreateRequest,
    RealmResponse,
    RealmStatsResponse,
    RealmVisitResponse,
    TaskCreateRequest,
)
from realmquest.users.service import lock_user

router = APIRouter(prefix="/api/v1/realms", tags=["Realms"])


@router.post("", response_model=RealmResponse, status_code=201)
async def create_realm(
    body: RealmCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    async with atomic(db):
        owner = await lock_user(db, user.id)
        realm = await service.create_realm(
            db, owner, body.name, description=body.description, theme=body.theme, difficulty=body.difficulty
        )
    return RealmResponse.model_validate(realm)


@router.post("/{realm_id}/tasks", response_model=TaskResponse, status_code=201)
async def create_task(
    realm_id: int,
    body: TaskCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    async with atomic(db):
        realm = await service.get_owned_realm(db, user.id, realm_id)
        task = await service.create_task(
            db, realm, body.title, body.difficulty, description=body.description, due_date=body.due_date
        )
    return TaskResponse.model_validate(task)


@router.delete("/{realm_id}/tasks/{task_id}", status_code=204)
async def delete_task(
    realm_id: int,
    task_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    async with atomic(db):
        await service.delete_task(db, user.id, realm_id, task_id)


@router.get("/{realm_id}/stats", response_model=RealmStatsResponse)
async def realm_stats(
    realm_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return RealmStatsResponse(**await service.get_realm_stats(db, user.id, realm_id))


@router.post("/{realm_id}/visit", response_model=RealmVisitResponse)
async def visit_realm(
    realm_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    async with atomic(db):
        quests = await service.visit_realm(db, user.id, realm_id)
    return RealmVisitResponse(updated_quests=[QuestResponse.model_validate(q) for q in quests])


@router.post("/{realm_id}/tasks/{task_id}/complete", response_model=CompletionResponse)
async def complete(
    realm_id: int,
    task_id: int,
    body: CompletionRequest | None = Body(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Complete a task and apply XP, streak, badges and quest progress."""
    result = await complete_task(
        db,
        user.id,
        realm_id,
        task_id,
        redis=redis,
        completion_token=body.completion_token if body else None,
    )
    return CompletionResponse(
        task=TaskResponse.model_validate(result.task),
        xp_gained=result.xp_gained,
        base_xp=result.base_xp,
        streak_multiplier=result.streak_multiplier,
        current_streak=result.current_streak,
        level_up=LevelUpResponse(from_level=result.level_up.from_level, to_level=result.level_up.to_level)
        if result.level_up
        else None,
        new_badges=[BadgeResponse.model_validate(b) for b in result.new_badges],
        bonus_xp=result.bonus_xp,
        updated_quests=[QuestResponse.model_validate(q) for q in result.updated_quests],
        user_stats=UserStatsBlock(**result.user_stats),
    )


@router.post("/{realm_id}/tasks/{task_id}/uncomplete", response_model=ReversalResponse)
async def uncomplete(
    realm_id: int,
    task_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Return a completed task to pending and remove the XP it granted."""
    result = await uncomplete_task(db, user.id, realm_id, task_id, redis=redis)
    return ReversalResponse(
        task=TaskResponse.model_validate(result.task),
        xp_lost=result.xp_lost,
        user_stats=UserStatsBlock(**result.user_stats),
    )
