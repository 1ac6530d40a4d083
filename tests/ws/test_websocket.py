"""WebSocket integration tests: connection lifecycle and live session updates."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from genesis.main import create_app
from genesis.state.memory import InMemoryStateStore


@pytest.fixture
def test_client() -> Iterator[TestClient]:
    """Sync TestClient (runs the lifespan) over an in-memory store."""
    app = create_app(store=InMemoryStateStore())
    with TestClient(app) as tc:
        yield tc


def _create_session(tc: TestClient) -> str:
    response = tc.post("/api/v1/sessions", json={"enabled_stages": [1, 2, 3]})
    assert response.status_code == 201
    return response.json()["id"]


class TestWebSocketConnect:
    def test_snapshot_sent_first(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        test_client.post(f"/api/v1/sessions/{session_id}/players", json={"name": "Ada"})

        with test_client.websocket_connect(f"/ws/sessions/{session_id}?role=stage") as ws:
            msg = ws.receive_json()
            assert msg["type"] == "snapshot"
            assert msg["phase"] == "lobby"
            assert msg["session"]["id"] == session_id
            assert [p["name"] for p in msg["players"]] == ["Ada"]

    def test_invalid_role_rejected(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect(f"/ws/sessions/{session_id}?role=admin") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4000

    def test_unknown_session_rejected(self, test_client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/ws/sessions/missing") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4004


class TestWebSocketProtocol:
    def test_ping_pong(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        with test_client.websocket_connect(f"/ws/sessions/{session_id}") as ws:
            ws.receive_json()
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_snapshot_on_request(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        with test_client.websocket_connect(f"/ws/sessions/{session_id}") as ws:
            ws.receive_json()
            ws.send_json({"action": "snapshot"})
            assert ws.receive_json()["type"] == "snapshot"

    def test_invalid_json(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        with test_client.websocket_connect(f"/ws/sessions/{session_id}") as ws:
            ws.receive_json()
            ws.send_text("not json {{{")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}

    def test_unknown_action(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        with test_client.websocket_connect(f"/ws/sessions/{session_id}") as ws:
            ws.receive_json()
            ws.send_json({"action": "dance"})
            msg = ws.receive_json()
            assert msg["type"] == "error"
            assert "dance" in msg["message"]


class TestLiveUpdates:
    def test_join_broadcast_to_session(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        with test_client.websocket_connect(f"/ws/sessions/{session_id}?role=host") as ws:
            ws.receive_json()
            test_client.post(f"/api/v1/sessions/{session_id}/players", json={"name": "Grace"})

            msg = ws.receive_json()
            assert msg["channel"] == f"session:{session_id}"
            assert msg["data"]["type"] == "player_update"
            assert msg["data"]["event"] == "INSERT"
            assert msg["data"]["record"]["name"] == "Grace"

    def test_begin_announces_phase(self, test_client: TestClient) -> None:
        session_id = _create_session(test_client)
        test_client.post(f"/api/v1/sessions/{session_id}/players", json={"name": "Ada"})
        with test_client.websocket_connect(f"/ws/sessions/{session_id}?role=stage") as ws:
            ws.receive_json()
            test_client.post(f"/api/v1/sessions/{session_id}/begin", json={})

            types = [ws.receive_json()["data"]["type"] for _ in range(2)]
            assert types == ["session_update", "phase_changed"]
