"""HTTP surface of the treasure hunt engine."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from thunt.db.models import RewardLedger
from thunt.hunts import participation_service
from thunt.hunts.errors import ConcurrencyConflict

pytestmark = pytest.mark.asyncio

TWO_CLUES = [
    {"kind": "riddle", "answer": "The Lighthouse", "hints": ["by the sea", "it glows"]},
    {"kind": "product", "target_ref": "SKU-42"},
]


class TestHuntEndpoints:

    async def test_list_hunts(self, client: AsyncClient, hunt_factory):
        await hunt_factory(name="Active one")
        await hunt_factory(name="Draft one", status="draft")

        response = await client.get("/api/v1/hunts")
        assert response.status_code == 200
        assert {h["name"] for h in response.json()["hunts"]} == {"Active one", "Draft one"}

        response = await client.get("/api/v1/hunts", params={"status": "draft"})
        assert [h["name"] for h in response.json()["hunts"]] == ["Draft one"]

    async def test_hunt_detail(self, client: AsyncClient, hunt_factory):
        hunt = await hunt_factory(difficulty="medium", prize_pool=1000)

        response = await client.get(f"/api/v1/hunts/{hunt.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["total_clues"] == 3
        assert data["max_hints"] == 2
        assert data["prizes"] == {"1": 500, "2": 300, "3": 200}
        assert data["participant_count"] == 0
        assert "answer" not in str(data)

    async def test_unknown_hunt(self, client: AsyncClient):
        response = await client.get("/api/v1/hunts/999")
        assert response.status_code == 404
        assert response.json() == {"detail": "Hunt 999 not found"}


class TestAuth:

    async def test_join_requires_token(self, client: AsyncClient, hunt_factory):
        hunt = await hunt_factory()
        response = await client.post(f"/api/v1/hunts/{hunt.id}/join")
        assert response.status_code in (401, 403)

    async def test_invalid_token(self, client: AsyncClient, hunt_factory):
        hunt = await hunt_factory()
        response = await client.post(
            f"/api/v1/hunts/{hunt.id}/join",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    async def test_suspended_user_rejected(self, client: AsyncClient, hunt_factory, auth_headers, monkeypatch):
        hunt = await hunt_factory()
        redis = AsyncMock()
        redis.sismember.return_value = True
        monkeypatch.setattr("thunt.auth.dependencies.get_redis_or_none", lambda: redis)

        response = await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=auth_headers(5))

        assert response.status_code == 403
        assert response.json()["detail"] == "Account is suspended"
        redis.sismember.assert_awaited_once_with("users:suspended", "5")

    async def test_suspension_lookup_failure_allows_request(
        self, client: AsyncClient, hunt_factory, auth_headers, monkeypatch,
    ):
        hunt = await hunt_factory()
        redis = AsyncMock()
        redis.sismember.side_effect = ConnectionError("redis down")
        monkeypatch.setattr("thunt.auth.dependencies.get_redis_or_none", lambda: redis)

        response = await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=auth_headers(5))

        assert response.status_code == 201


class TestParticipationFlow:

    async def test_join_then_duplicate(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory()

        first = await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=auth_headers(1))
        assert first.status_code == 201
        assert first.json()["current_clue_index"] == 0
        assert first.json()["status"] == "in_progress"

        second = await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=auth_headers(1))
        assert second.status_code == 400
        assert second.json()["detail"] == "Already joined this hunt"

    async def test_my_participation(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory()

        missing = await client.get(f"/api/v1/hunts/{hunt.id}/me", headers=auth_headers(1))
        assert missing.status_code == 404

        joined = await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=auth_headers(1))
        mine = await client.get(f"/api/v1/hunts/{hunt.id}/me", headers=auth_headers(1))
        assert mine.status_code == 200
        assert mine.json()["id"] == joined.json()["id"]

    async def test_full_hunt(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory(clues=TWO_CLUES, difficulty="easy", prize_pool=1000)
        headers = auth_headers(9)
        pid = (await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=headers)).json()["id"]
        base = f"/api/v1/participations/{pid}"

        progress = (await client.get(base, headers=headers)).json()
        assert progress["total_clues"] == 2
        assert progress["hints_remaining"] == 3
        assert progress["current_clue"]["kind"] == "riddle"
        assert progress["current_clue"]["hint_levels"] == 2

        hint = await client.post(f"{base}/hints", json={"level": 1}, headers=headers)
        assert hint.status_code == 200
        assert hint.json()["text"] == "by the sea"
        assert hint.json()["newly_revealed"] is True

        wrong = (await client.post(f"{base}/answers", json={"answer": "the pier"}, headers=headers)).json()
        assert wrong["outcome"] == "incorrect"
        assert wrong["correct"] is False

        advanced = (await client.post(f"{base}/answers", json={"answer": "  the LIGHTHOUSE "}, headers=headers)).json()
        assert advanced["outcome"] == "advanced"
        assert advanced["current_clue_index"] == 1

        done = (await client.post(f"{base}/answers", json={"answer": "sku-42"}, headers=headers)).json()
        assert done["outcome"] == "completed"
        assert done["completed"] is True
        assert done["rank"] == 1
        assert done["reward"] > 0

        again = (await client.post(f"{base}/answers", json={"answer": "sku-42"}, headers=headers)).json()
        assert again["outcome"] == "already_completed"
        assert again["rank"] == 1

        progress = (await client.get(base, headers=headers)).json()
        assert progress["status"] == "completed"
        assert progress["progress_percentage"] == 100.0
        assert progress["current_clue"] is None

        attempts = (await client.get(f"{base}/attempts", headers=headers)).json()
        assert len(attempts["attempts"]) == 3
        assert attempts["consistent"] is True
        assert attempts["replayed"] == {"clues_found": 2, "incorrect_attempts": 1}

        board = (await client.get(f"/api/v1/hunts/{hunt.id}/leaderboard")).json()
        assert [e["user_id"] for e in board["entries"]] == [9]
        assert board["entries"][0]["prize"] == 500

        stats = (await client.get(f"/api/v1/hunts/{hunt.id}/statistics")).json()
        assert stats["total_participants"] == 1
        assert stats["completed_participants"] == 1
        assert stats["completion_rate"] == 100.0

    async def test_hint_beyond_levels(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory(clues=TWO_CLUES)
        headers = auth_headers(3)
        pid = (await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=headers)).json()["id"]

        response = await client.post(f"/api/v1/participations/{pid}/hints", json={"level": 3}, headers=headers)
        assert response.status_code == 400

    async def test_invalid_hint_level_body(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory()
        headers = auth_headers(3)
        pid = (await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=headers)).json()["id"]

        response = await client.post(f"/api/v1/participations/{pid}/hints", json={"level": 0}, headers=headers)
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    async def test_other_users_participation(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory()
        pid = (await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=auth_headers(1))).json()["id"]
        intruder = auth_headers(2)

        for response in (
            await client.get(f"/api/v1/participations/{pid}", headers=intruder),
            await client.post(f"/api/v1/participations/{pid}/answers", json={"answer": "x"}, headers=intruder),
            await client.post(f"/api/v1/participations/{pid}/hints", json={"level": 1}, headers=intruder),
            await client.get(f"/api/v1/participations/{pid}/attempts", headers=intruder),
        ):
            assert response.status_code == 403
            assert response.json()["detail"] == "Not your participation"

    async def test_unknown_participation(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/participations/12345", headers=auth_headers(1))
        assert response.status_code == 404

    async def test_join_closed_hunt(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory(status="draft")
        response = await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=auth_headers(1))
        assert response.status_code == 400


class TestLeaderboardEndpoint:

    async def test_limit_validation(self, client: AsyncClient, hunt_factory):
        hunt = await hunt_factory()

        assert (await client.get(f"/api/v1/hunts/{hunt.id}/leaderboard", params={"limit": 0})).status_code == 422

        response = await client.get(f"/api/v1/hunts/{hunt.id}/leaderboard", params={"limit": 5000})
        assert response.status_code == 200
        assert response.json()["limit"] == 100

    async def test_empty_statistics(self, client: AsyncClient, hunt_factory):
        hunt = await hunt_factory()
        stats = (await client.get(f"/api/v1/hunts/{hunt.id}/statistics")).json()
        assert stats["total_participants"] == 0
        assert stats["completion_rate"] == 0.0
        assert stats["average_completion_time"] is None


class TestTransitionEndpoint:

    async def test_requires_operator_role(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory(status="draft")
        response = await client.post(
            f"/api/v1/hunts/{hunt.id}/transition", json={"status": "active"}, headers=auth_headers(1),
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Operator role required"

    async def test_operator_activates_hunt(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory(status="draft")
        response = await client.post(
            f"/api/v1/hunts/{hunt.id}/transition",
            json={"status": "active"},
            headers=auth_headers(100, role="operator"),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert response.json()["started_at"] is not None

    async def test_invalid_transition(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory(status="draft")
        response = await client.post(
            f"/api/v1/hunts/{hunt.id}/transition",
            json={"status": "completed"},
            headers=auth_headers(100, role="operator"),
        )
        assert response.status_code == 400

    async def test_completion_pays_prizes(self, client: AsyncClient, hunt_factory, auth_headers, db_session):
        hunt = await hunt_factory(clues=[{"kind": "riddle", "answer": "x"}], prize_pool=1000)
        for user_id in (1, 2):
            headers = auth_headers(user_id)
            pid = (await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=headers)).json()["id"]
            await client.post(f"/api/v1/participations/{pid}/answers", json={"answer": "x"}, headers=headers)

        response = await client.post(
            f"/api/v1/hunts/{hunt.id}/transition",
            json={"status": "completed"},
            headers=auth_headers(100, role="operator"),
        )
        assert response.status_code == 200

        prizes = (await db_session.execute(
            select(RewardLedger.rank, RewardLedger.amount)
            .where(RewardLedger.hunt_id == hunt.id, RewardLedger.kind == "prize")
            .order_by(RewardLedger.rank)
        )).all()
        assert [tuple(p) for p in prizes] == [(1, 500), (2, 300)]


class TestErrorResponses:

    async def test_conflict_is_retryable(self, client: AsyncClient, hunt_factory, auth_headers, monkeypatch):
        hunt = await hunt_factory()
        headers = auth_headers(1)
        pid = (await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=headers)).json()["id"]
        monkeypatch.setattr(
            participation_service, "submit_answer",
            AsyncMock(side_effect=ConcurrencyConflict("submit: gave up after 5 conflicting attempts, retry later")),
        )

        response = await client.post(f"/api/v1/participations/{pid}/answers", json={"answer": "x"}, headers=headers)

        assert response.status_code == 409
        assert response.headers["retry-after"] == "1"
        assert "retry later" in response.json()["detail"]

    async def test_overlong_answer_not_echoed(self, client: AsyncClient, hunt_factory, auth_headers):
        hunt = await hunt_factory()
        headers = auth_headers(1)
        pid = (await client.post(f"/api/v1/hunts/{hunt.id}/join", headers=headers)).json()["id"]
        answer = "secret-guess-" * 100

        response = await client.post(f"/api/v1/participations/{pid}/answers", json={"answer": answer}, headers=headers)

        assert response.status_code == 422
        assert response.json()["errors"][0]["loc"] == ["body", "answer"]
        assert "secret-guess" not in response.text
