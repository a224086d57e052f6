"""Concurrent completions and claims, each in its own session."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from realmquest.database import get_session_factory
from realmquest.db.models import LedgerSource, Realm, User, XPLedger
from realmquest.gamification.completion import CompletionResult, complete_task
from realmquest.gamification.errors import ConflictError
from realmquest.gamification.quests import ClaimResult, QuestEvent, advance_quests, claim_quest, create_quest


async def _complete_in_own_session(user_id, realm_id, task_id, now):
    async with get_session_factory()() as session:
        return await complete_task(session, user_id, realm_id, task_id, now=now)


async def _claim_in_own_session(user_id, quest_id, now):
    async with get_session_factory()() as session:
        return await claim_quest(session, user_id, quest_id, now)


class TestConcurrentCompletion:
    @pytest.mark.asyncio
    async def test_double_completion_has_one_winner(self, db_session, user, realm, make_task, reload, now):
        task = await make_task(realm, "medium")

        results = await asyncio.gather(
            _complete_in_own_session(user.id, realm.id, task.id, now),
            _complete_in_own_session(user.id, realm.id, task.id, now),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, CompletionResult)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 1

        count = await db_session.execute(
            select(func.count())
            .select_from(XPLedger)
            .where(XPLedger.task_id == task.id, XPLedger.source == LedgerSource.TASK_COMPLETION)
        )
        assert count.scalar_one() == 1
        stored_user = await reload(User, user.id)
        assert stored_user.tasks_completed == 1
        stored_realm = await reload(Realm, realm.id)
        assert stored_realm.completed_tasks == 1
        assert stored_realm.total_xp_earned == 25

    @pytest.mark.asyncio
    async def test_different_tasks_same_user_are_serialised(
        self, db_session, user, realm, make_task, earned_badge, reload, now
    ):
        """No lost XP increment and the streak moves only once for the day."""
        await earned_badge(user.id, "first_clear")
        first = await make_task(realm, "easy", "Gather herbs")
        second = await make_task(realm, "hard", "Defeat the lich")

        results = await asyncio.gather(
            _complete_in_own_session(user.id, realm.id, first.id, now),
            _complete_in_own_session(user.id, realm.id, second.id, now),
        )

        assert sorted(r.xp_gained for r in results) == [10, 50]
        stored_user = await reload(User, user.id)
        assert stored_user.xp == 60
        assert stored_user.tasks_completed == 2
        assert stored_user.streak == 1
        stored_realm = await reload(Realm, realm.id)
        assert stored_realm.completed_tasks == 2
        assert stored_realm.total_xp_earned == 60


class TestConcurrentClaims:
    @pytest.mark.asyncio
    async def test_only_one_claim_grants_xp(self, db_session, user, reload, now):
        quest = await create_quest(
            db_session, user.id, title="Warm up", description="Complete a task",
            quest_type="complete_tasks", target=1, xp_reward=40, now=now,
        )
        await advance_quests(db_session, user.id, QuestEvent.TASK_COMPLETED, 1, now)
        await db_session.commit()

        results = await asyncio.gather(
            _claim_in_own_session(user.id, quest.id, now),
            _claim_in_own_session(user.id, quest.id, now),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, ClaimResult)]) == 1
        assert len([r for r in results if isinstance(r, ConflictError)]) == 1
        assert (await reload(User, user.id)).xp == 40
