"""Integration tests for the stage API: a whole show through HTTP."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

API = "/api/v1"


async def _create_session(client: AsyncClient, stages: list[int] | None = None) -> str:
    response = await client.post(f"{API}/sessions", json={"enabled_stages": stages} if stages else {})
    assert response.status_code == 201
    return response.json()["id"]


async def _join(client: AsyncClient, session_id: str, count: int) -> list[str]:
    ids = []
    for i in range(count):
        response = await client.post(f"{API}/sessions/{session_id}/players", json={"name": f"P{i + 1}"})
        assert response.status_code == 201
        ids.append(response.json()["id"])
    return ids


async def _finish(client: AsyncClient, session_id: str, player_id: str, stage: int, score: float) -> None:
    response = await client.put(f"{API}/sessions/{session_id}/scores", json={
        "player_id": player_id, "stage": stage, "score": score, "time_taken": score,
    })
    assert response.status_code == 200
    response = await client.put(f"{API}/sessions/{session_id}/progress", json={
        "player_id": player_id, "stage": stage, "progress": 100,
        "elapsed_time": score, "status": "finished", "current_score": score,
    })
    assert response.status_code == 200


class TestSessionsAndRoster:
    @pytest.mark.asyncio
    async def test_create_and_get_session(self, client: AsyncClient) -> None:
        session_id = await _create_session(client, [3, 1])
        await _join(client, session_id, 2)

        response = await client.get(f"{API}/sessions/{session_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["session"]["enabled_stages"] == [1, 3]
        assert data["phase"] == "lobby"
        assert data["countdown"] == 0
        assert [p["name"] for p in data["players"]] == ["P1", "P2"]

    @pytest.mark.asyncio
    async def test_bad_stage_selection(self, client: AsyncClient) -> None:
        response = await client.post(f"{API}/sessions", json={"enabled_stages": [4]})
        assert response.status_code == 400
        assert "Unknown stages" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_missing_session_404(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/sessions/nope")
        assert response.status_code == 404
        response = await client.post(f"{API}/sessions/nope/players", json={"name": "Ada"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_blank_name_400(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        response = await client.post(f"{API}/sessions/{session_id}/players", json={"name": "  "})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_name_422(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        response = await client.post(f"{API}/sessions/{session_id}/players", json={"name": ""})
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    @pytest.mark.asyncio
    async def test_roster_full_400(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        await _join(client, session_id, 10)
        response = await client.post(f"{API}/sessions/{session_id}/players", json={"name": "P11"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_kick_hides_player(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        ids = await _join(client, session_id, 2)

        response = await client.post(f"{API}/players/{ids[0]}/kick")
        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert response.json()["standings"] is None

        players = (await client.get(f"{API}/sessions/{session_id}")).json()["players"]
        assert [p["id"] for p in players] == [ids[1]]

    @pytest.mark.asyncio
    async def test_kick_unknown_404(self, client: AsyncClient) -> None:
        response = await client.post(f"{API}/players/ghost/kick")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_ready(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        response = await client.post(f"{API}/sessions/{session_id}/ready")
        assert response.status_code == 200
        assert response.json()["session"]["is_ready"] is True


class TestHostActions:
    @pytest.mark.asyncio
    async def test_begin_sets_countdown(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        await _join(client, session_id, 3)

        response = await client.post(f"{API}/sessions/{session_id}/begin")
        assert response.status_code == 200
        data = response.json()
        assert data["phase"] == "trial_active"
        assert data["stage"] == 1
        assert data["session"]["status"] == "stage1"
        assert data["session"]["starts_at"] is not None

    @pytest.mark.asyncio
    async def test_begin_disabled_stage_400(self, client: AsyncClient) -> None:
        session_id = await _create_session(client, [1, 3])
        response = await client.post(f"{API}/sessions/{session_id}/begin", json={"stage": 2})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_conclude_before_begin_409(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        response = await client.post(f"{API}/sessions/{session_id}/conclude")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_advance_waits_for_stragglers(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        ids = await _join(client, session_id, 3)
        await client.post(f"{API}/sessions/{session_id}/begin")
        await _finish(client, session_id, ids[0], 1, 8.1)

        response = await client.post(f"{API}/sessions/{session_id}/advance")
        assert response.json()["phase"] == "awaiting_all_finished"
        assert response.json()["standings"] is None

        completion = (await client.get(f"{API}/sessions/{session_id}/completion")).json()
        assert completion["total"] == 3
        assert completion["finished"] == [ids[0]]
        assert completion["all_finished"] is False

        await _finish(client, session_id, ids[1], 1, 7.4)
        await _finish(client, session_id, ids[2], 1, 9.9)

        session = (await client.get(f"{API}/sessions/{session_id}")).json()
        assert session["phase"] == "ranked"

    @pytest.mark.asyncio
    async def test_forced_advance(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        ids = await _join(client, session_id, 5)
        await client.post(f"{API}/sessions/{session_id}/begin")
        await _finish(client, session_id, ids[0], 1, 8.0)

        response = await client.post(f"{API}/sessions/{session_id}/advance", json={"force": True})

        standings = response.json()["standings"]
        assert response.json()["phase"] == "ranked"
        assert standings["forced"] is True
        assert standings["advancing"] == [ids[0]]
        assert len(standings["eliminated"]) == 4

    @pytest.mark.asyncio
    async def test_skip(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        await _join(client, session_id, 4)
        await client.post(f"{API}/sessions/{session_id}/begin")

        response = await client.post(f"{API}/sessions/{session_id}/skip")

        assert response.json()["stage"] == 2
        assert response.json()["session"]["status"] == "stage2"

    @pytest.mark.asyncio
    async def test_reset(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        ids = await _join(client, session_id, 5)
        await client.post(f"{API}/sessions/{session_id}/begin")
        for pid, t in zip(ids, (5.0, 6.0, 7.0, 8.0, 9.0)):
            await _finish(client, session_id, pid, 1, t)
        await client.post(f"{API}/sessions/{session_id}/next")

        response = await client.post(f"{API}/sessions/{session_id}/reset")

        data = response.json()
        assert data["ok"] is True
        assert data["phase"] == "lobby"
        assert data["session"]["current_stage"] == 0
        players = (await client.get(f"{API}/sessions/{session_id}")).json()["players"]
        assert not any(p["is_eliminated"] for p in players)


class TestMiniGameWrites:
    @pytest.mark.asyncio
    async def test_score_for_unknown_player_404(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        response = await client.put(f"{API}/sessions/{session_id}/scores", json={
            "player_id": "ghost", "stage": 1, "score": 1.0,
        })
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_score_bad_stage_422(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        [pid] = await _join(client, session_id, 1)
        response = await client.put(f"{API}/sessions/{session_id}/scores", json={
            "player_id": pid, "stage": 4, "score": 1.0,
        })
        assert response.status_code == 422

    @pytest.mark.asyncio
    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    async def test_non_finite_score_422(self, client: AsyncClient, literal: str) -> None:
        session_id = await _create_session(client)
        [pid] = await _join(client, session_id, 1)
        response = await client.put(
            f"{API}/sessions/{session_id}/scores",
            content=f'{{"player_id": "{pid}", "stage": 1, "score": {literal}}}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["loc"] == ["body", "score"]

    @pytest.mark.asyncio
    async def test_non_finite_progress_422(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        [pid] = await _join(client, session_id, 1)
        response = await client.put(
            f"{API}/sessions/{session_id}/progress",
            content=f'{{"player_id": "{pid}", "stage": 2, "status": "playing", "current_score": NaN}}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_progress_extra_data_validated(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        [pid] = await _join(client, session_id, 1)

        response = await client.put(f"{API}/sessions/{session_id}/progress", json={
            "player_id": pid, "stage": 2, "status": "playing",
            "extra_data": {"round_results": "WDL"},
        })
        assert response.status_code == 200
        assert response.json()["extra_data"] == {"stage": 2, "round_results": ["win", "draw", "lose"]}

        response = await client.put(f"{API}/sessions/{session_id}/progress", json={
            "player_id": pid, "stage": 2, "extra_data": {"round_results": "WXL"},
        })
        assert response.status_code == 422


class TestFullShow:
    @pytest.mark.asyncio
    async def test_ten_players_three_stages(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        ids = await _join(client, session_id, 10)

        # Stage 1: lower time wins, four eliminated.
        await client.post(f"{API}/sessions/{session_id}/begin")
        times = [7.2, 8.9, 6.5, 10.1, 7.8, 9.4, 6.9, 11.0, 8.2, 9.9]
        for pid, t in zip(ids, times):
            await _finish(client, session_id, pid, 1, t)

        response = await client.post(f"{API}/sessions/{session_id}/next")
        data = response.json()
        standings = data["standings"]
        by_time = [pid for _, pid in sorted(zip(times, ids))]
        assert standings["advancing"] == by_time[:6]
        assert standings["eliminated"] == by_time[6:]
        assert standings["revealed_places"] == [10, 9, 8, 7]
        assert standings["end_message"]["title"] == "ROUND 01 COMPLETE"
        last = standings["entries"][-1]
        assert last["rank"] == 10
        assert last["prize"]["place"] == 10
        assert data["stage"] == 2
        assert data["phase"] == "trial_active"

        # Stage 2: higher points win, three eliminated.
        survivors = by_time[:6]
        points = [3, 12, 6, 9, 0, 15]
        for pid, p in zip(survivors, points):
            await _finish(client, session_id, pid, 2, p)
        data = (await client.post(f"{API}/sessions/{session_id}/next")).json()
        by_points = [pid for _, pid in sorted(zip(points, survivors), reverse=True)]
        assert data["standings"]["eliminated"] == by_points[3:]
        assert data["stage"] == 3

        # Stage 3: closest to 7.7 s wins, nobody removed.
        finalists = by_points[:3]
        deviations = [0.31, 0.02, 0.12]
        for pid, d in zip(finalists, deviations):
            await _finish(client, session_id, pid, 3, d)
        data = (await client.post(f"{API}/sessions/{session_id}/next")).json()
        assert data["phase"] == "completed"
        assert data["session"]["status"] == "completed"
        assert data["standings"]["eliminated"] == []
        assert data["standings"]["end_message"]["title"] == "PROTOCOL COMPLETE"

        podium = (await client.get(f"{API}/sessions/{session_id}/podium")).json()
        assert podium["stage"] == 3
        assert [e["player_id"] for e in podium["entries"]] == [finalists[1], finalists[2], finalists[0]]
        assert podium["entries"][0]["prize"]["title"] == "1ST PLACE"

        stage_one = (await client.get(f"{API}/sessions/{session_id}/standings", params={"stage": 1})).json()
        assert stage_one["eliminated"] == by_time[6:]


class TestCatalogue:
    @pytest.mark.asyncio
    async def test_stage_catalogue(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/stages")
        assert response.status_code == 200
        data = response.json()
        assert [s["elimination_count"] for s in data["stages"]] == [4, 3, 0]
        assert data["stages"][2]["codename"] == "PRECISION PROTOCOL"
        assert data["countdown_seconds"] == 5
        assert data["max_players"] == 10

    @pytest.mark.asyncio
    async def test_standings_in_lobby_400(self, client: AsyncClient) -> None:
        session_id = await _create_session(client)
        response = await client.get(f"{API}/sessions/{session_id}/standings")
        assert response.status_code == 400
