"""HTTP surface: routing, auth, camelCase payloads and error kinds."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from realmquest.auth.jwt import create_access_token


async def _realm_with_task(client: AsyncClient, difficulty: str = "medium") -> tuple[int, int]:
    realm = await client.post("/api/v1/realms", json={"name": "Storm Citadel", "theme": "electric"})
    assert realm.status_code == 201
    realm_id = realm.json()["id"]
    task = await client.post(f"/api/v1/realms/{realm_id}/tasks", json={"title": "Calm the storm", "difficulty": difficulty})
    assert task.status_code == 201
    return realm_id, task.json()["id"]


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me/xp")
        assert response.status_code == 401
        assert response.json()["kind"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me/xp", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient):
        token = create_access_token(424242)
        response = await client.get("/api/v1/users/me/xp", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token(self, client: AsyncClient, user):
        token = create_access_token(user.id, expires_minutes=-1)
        response = await client.get("/api/v1/users/me/xp", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestCompletionEndpoints:
    @pytest.mark.asyncio
    async def test_complete_returns_result_object(self, authed_client: AsyncClient):
        realm_id, task_id = await _realm_with_task(authed_client, "medium")

        response = await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/complete")

        assert response.status_code == 200
        data = response.json()
        assert data["task"]["status"] == "completed"
        assert data["xpGained"] == 25
        assert data["baseXP"] == 25
        assert data["streakMultiplier"] == 1.0
        assert data["currentStreak"] == 1
        assert data["levelUp"] is None
        assert [b["badgeType"] for b in data["newBadges"]] == ["first_clear"]
        assert data["bonusXP"] == 20
        assert data["userStats"] == {"level": 1, "xp": 45, "tasksCompleted": 1, "streak": 1}

    @pytest.mark.asyncio
    async def test_double_complete_is_conflict(self, authed_client: AsyncClient):
        realm_id, task_id = await _realm_with_task(authed_client)
        await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/complete")

        response = await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/complete")

        assert response.status_code == 409
        assert response.json() == {"detail": "Task is already completed", "kind": "conflict"}

    @pytest.mark.asyncio
    async def test_uncomplete(self, authed_client: AsyncClient):
        realm_id, task_id = await _realm_with_task(authed_client, "hard")
        await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/complete")

        response = await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/uncomplete")

        assert response.status_code == 200
        data = response.json()
        assert data["xpLost"] == 50
        assert data["task"]["status"] == "pending"
        assert data["userStats"]["tasksCompleted"] == 0

    @pytest.mark.asyncio
    async def test_uncomplete_pending_is_conflict(self, authed_client: AsyncClient):
        realm_id, task_id = await _realm_with_task(authed_client)
        response = await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/uncomplete")
        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    @pytest.mark.asyncio
    async def test_unknown_task_is_not_found(self, authed_client: AsyncClient):
        realm_id, _ = await _realm_with_task(authed_client)
        response = await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/999/complete")
        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_delete_completed_task_is_conflict(self, authed_client: AsyncClient):
        realm_id, task_id = await _realm_with_task(authed_client)
        await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/complete")
        response = await authed_client.delete(f"/api/v1/realms/{realm_id}/tasks/{task_id}")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_task_difficulty(self, authed_client: AsyncClient):
        realm = await authed_client.post("/api/v1/realms", json={"name": "Storm Citadel"})
        response = await authed_client.post(
            f"/api/v1/realms/{realm.json()['id']}/tasks", json={"title": "Calm the storm", "difficulty": "epic"}
        )
        assert response.status_code == 422
        assert response.json()["kind"] == "invalid_input"


class TestProgressionEndpoints:
    @pytest.mark.asyncio
    async def test_xp_and_history(self, authed_client: AsyncClient):
        realm_id, task_id = await _realm_with_task(authed_client, "hard")
        await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/complete")

        xp = (await authed_client.get("/api/v1/users/me/xp")).json()
        assert xp == {
            "xp": 70,
            "level": 1,
            "xpIntoLevel": 70,
            "xpForLevel": 100,
            "xpToNextLevel": 30,
            "nextLevel": 2,
        }

        history = (await authed_client.get("/api/v1/users/me/xp/history")).json()
        assert history["total"] == 2
        assert {e["source"] for e in history["entries"]} == {"task_completion", "first_clear_bonus"}
        assert history["daily"][0]["xp"] == 70

    @pytest.mark.asyncio
    async def test_stats_and_badges(self, authed_client: AsyncClient):
        realm_id, task_id = await _realm_with_task(authed_client)
        await authed_client.post(f"/api/v1/realms/{realm_id}/tasks/{task_id}/complete")

        stats = (await authed_client.get("/api/v1/users/me/stats")).json()
        assert stats["username"] == "aria"
        assert stats["badgesEarned"] == 1
        assert stats["stats"]["tasksCompleted"] == 1
        assert stats["stats"]["totalXP"] == 45

        badges = (await authed_client.get("/api/v1/users/me/badges")).json()
        assert badges["totalEarned"] == 1
        assert badges["totalAvailable"] == 7

        progress = (await authed_client.get("/api/v1/users/me/badges/progress")).json()
        assert len(progress["badges"]) == 7

        realm_stats = (await authed_client.get(f"/api/v1/realms/{realm_id}/stats")).json()
        assert realm_stats["completedTasks"] == 1
        assert realm_stats["totalXpEarned"] == 25

    @pytest.mark.asyncio
    async def test_catalog_endpoints(self, client: AsyncClient):
        levels = (await client.get("/api/v1/levels")).json()["levels"]
        assert len(levels) == 50
        assert levels[1] == {"level": 2, "xpRequired": 100, "cumulative": 100}

        badges = (await client.get("/api/v1/badges/available")).json()["badges"]
        assert badges[0]["badgeType"] == "first_clear"

    @pytest.mark.asyncio
    async def test_daily_quest_flow(self, authed_client: AsyncClient):
        created = await authed_client.post(
            "/api/v1/daily-quests",
            json={"title": "Stretch", "description": "Morning stretch", "questType": "custom", "target": 1, "xpReward": 15},
        )
        assert created.status_code == 201
        quest_id = created.json()["id"]
        assert created.json()["status"] == "active"

        listed = (await authed_client.get("/api/v1/daily-quests")).json()["quests"]
        assert [q["id"] for q in listed] == [quest_id]

        early = await authed_client.post(f"/api/v1/daily-quests/{quest_id}/claim")
        assert early.status_code == 409

        progressed = await authed_client.patch(f"/api/v1/daily-quests/{quest_id}/progress", json={"increment": 1})
        assert progressed.json()["status"] == "completed"

        claimed = await authed_client.post(f"/api/v1/daily-quests/{quest_id}/claim")
        assert claimed.status_code == 200
        assert claimed.json()["xpGained"] == 15
        assert claimed.json()["quest"]["status"] == "claimed"
        assert claimed.json()["newBadges"] == []

        again = await authed_client.post(f"/api/v1/daily-quests/{quest_id}/claim")
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_quest_out_of_range_is_invalid_input(self, authed_client: AsyncClient):
        response = await authed_client.post(
            "/api/v1/daily-quests",
            json={"title": "Huge", "description": "Too big", "target": 5000, "xpReward": 10},
        )
        assert response.status_code == 422
        assert response.json()["kind"] == "invalid_input"


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert "x-request-id" in response.headers

    @pytest.mark.asyncio
    async def test_ready_without_redis(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.json() == {"status": "ready", "checks": {"database": "ok", "redis": "disabled"}}

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient):
        response = await client.get("/version", headers={"X-Request-Id": "abc-123"})
        assert response.headers["x-request-id"] == "abc-123"
        assert response.json()["version"] == "0.1.0"
