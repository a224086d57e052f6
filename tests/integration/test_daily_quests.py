"""Daily quest creation, manual progress, listing and claiming."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from realmquest.db.models import Badge, DailyQuest, LedgerSource, QuestStatus, User, XPLedger
from realmquest.gamification.errors import ConflictError, InvalidInputError, NotFoundError
from realmquest.gamification.quests import claim_quest, create_quest, list_quests, record_progress
from realmquest.users.service import create_user


async def _custom_quest(db, user_id, now, target=2, xp_reward=30):
    quest = await create_quest(
        db, user_id, title="Read a chapter", description="Custom reading goal",
        target=target, xp_reward=xp_reward, now=now,
    )
    await db.commit()
    return quest


class TestCreateQuest:
    @pytest.mark.asyncio
    async def test_expires_at_next_midnight(self, db_session, user, now):
        quest = await _custom_quest(db_session, user.id, now)
        assert quest.expires_at == datetime(2026, 3, 11, tzinfo=timezone.utc)
        assert quest.status == QuestStatus.ACTIVE
        assert quest.is_custom is True
        assert quest.progress == 0

    @pytest.mark.asyncio
    async def test_default_reward_from_target(self, db_session, user, now):
        quest = await create_quest(
            db_session, user.id, title="Three down", description="Complete 3 tasks",
            quest_type="complete_tasks", target=3, now=now,
        )
        assert quest.xp_reward == 15

    @pytest.mark.parametrize(
        ("target", "xp_reward"),
        [(0, 10), (1001, 10), (5, 0), (5, 1001), (-1, 10)],
    )
    @pytest.mark.asyncio
    async def test_out_of_range_values_rejected(self, db_session, user, now, target, xp_reward):
        with pytest.raises(InvalidInputError):
            await create_quest(
                db_session, user.id, title="Bad", description="Out of range",
                target=target, xp_reward=xp_reward, now=now,
            )

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, db_session, user, now):
        with pytest.raises(InvalidInputError):
            await create_quest(
                db_session, user.id, title="Odd", description="Unknown type",
                quest_type="slay_everything", target=1, xp_reward=5, now=now,
            )


class TestRecordProgress:
    @pytest.mark.asyncio
    async def test_progress_caps_at_target(self, db_session, user, now):
        quest = await _custom_quest(db_session, user.id, now, target=2)

        updated = await record_progress(db_session, user.id, quest.id, 5, now)

        assert updated.progress == 2
        assert updated.status == QuestStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completed_quest_rejects_progress(self, db_session, user, now):
        quest = await _custom_quest(db_session, user.id, now, target=1)
        await record_progress(db_session, user.id, quest.id, 1, now)

        with pytest.raises(ConflictError):
            await record_progress(db_session, user.id, quest.id, 1, now)

    @pytest.mark.asyncio
    async def test_expired_quest_rejects_progress(self, db_session, user, now):
        quest = await _custom_quest(db_session, user.id, now)
        with pytest.raises(ConflictError):
            await record_progress(db_session, user.id, quest.id, 1, now + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_increment_must_be_positive(self, db_session, user, now):
        quest = await _custom_quest(db_session, user.id, now)
        with pytest.raises(InvalidInputError):
            await record_progress(db_session, user.id, quest.id, 0, now)

    @pytest.mark.asyncio
    async def test_other_users_quest_not_found(self, db_session, user, now):
        quest = await _custom_quest(db_session, user.id, now)
        other = await create_user(db_session, "bryn")
        with pytest.raises(NotFoundError):
            await record_progress(db_session, other.id, quest.id, 1, now)


class TestListQuests:
    @pytest.mark.asyncio
    async def test_hides_expired_and_claimed(self, db_session, user, now):
        live = await _custom_quest(db_session, user.id, now)
        stale = await _custom_quest(db_session, user.id, now - timedelta(days=1))
        done = await _custom_quest(db_session, user.id, now, target=1)
        await record_progress(db_session, user.id, done.id, 1, now)
        await db_session.commit()
        await claim_quest(db_session, user.id, done.id, now)

        visible = await list_quests(db_session, user.id, now)
        assert [q.id for q in visible] == [live.id]

        with_expired = await list_quests(db_session, user.id, now, include_expired=True)
        assert {q.id for q in with_expired} == {live.id, stale.id}
        assert next(q for q in with_expired if q.id == stale.id).status == QuestStatus.EXPIRED


class TestClaimQuest:
    @pytest.mark.asyncio
    async def test_claim_grants_reward_once(self, db_session, user, reload, now):
        quest = await _custom_quest(db_session, user.id, now, target=1, xp_reward=120)
        quest_id, user_id = quest.id, user.id
        await record_progress(db_session, user_id, quest_id, 1, now)
        await db_session.commit()

        result = await claim_quest(db_session, user_id, quest_id, now)

        assert result.xp_gained == 120
        assert result.quest.status == QuestStatus.CLAIMED
        assert result.quest.claimed_at == now
        assert result.level_up is not None
        assert result.level_up.as_dict() == {"from": 1, "to": 2}
        assert result.user_stats["xp"] == 120

        with pytest.raises(ConflictError):
            await claim_quest(db_session, user_id, quest_id, now)

        entries = await db_session.execute(
            select(XPLedger).where(XPLedger.user_id == user_id, XPLedger.source == LedgerSource.DAILY_QUEST)
        )
        rows = entries.scalars().all()
        assert len(rows) == 1
        assert rows[0].idempotency_key == f"daily_quest:{quest_id}"
        assert (await reload(User, user_id)).xp == 120

    @pytest.mark.asyncio
    async def test_claim_reaching_level_ten_awards_elite_hunter(self, db_session, user, reload, now):
        stored = await db_session.get(User, user.id)
        stored.xp = 4450
        stored.level = 9
        await db_session.commit()
        quest = await _custom_quest(db_session, user.id, now, target=1, xp_reward=120)
        quest_id, user_id = quest.id, user.id
        await record_progress(db_session, user_id, quest_id, 1, now)
        await db_session.commit()

        result = await claim_quest(db_session, user_id, quest_id, now)

        assert result.level_up.as_dict() == {"from": 9, "to": 10}
        assert [(b.badge_type, b.progress, b.target) for b in result.new_badges] == [("elite_hunter", 10, 10)]
        badges = await db_session.execute(select(Badge).where(Badge.user_id == user_id, Badge.completed.is_(True)))
        assert [b.badge_type for b in badges.scalars()] == ["elite_hunter"]

    @pytest.mark.asyncio
    async def test_incomplete_quest_cannot_be_claimed(self, db_session, user, reload, now):
        quest = await _custom_quest(db_session, user.id, now)
        quest_id = quest.id
        with pytest.raises(ConflictError):
            await claim_quest(db_session, user.id, quest_id, now)
        assert (await reload(DailyQuest, quest_id)).status == QuestStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_expired_completed_quest_cannot_be_claimed(self, db_session, user, now):
        quest = await _custom_quest(db_session, user.id, now, target=1)
        await record_progress(db_session, user.id, quest.id, 1, now)
        await db_session.commit()

        with pytest.raises(ConflictError):
            await claim_quest(db_session, user.id, quest.id, now + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_unknown_quest(self, db_session, user, now):
        with pytest.raises(NotFoundError):
            await claim_quest(db_session, user.id, 777, now)
