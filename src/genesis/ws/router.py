"""WebSocket endpoint: one connection per screen, scoped to a session."""

import json
import uuid

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from genesis.stage.controller import StageController
from genesis.stage.errors import SessionNotFoundError
from genesis.ws.manager import VALID_ROLES, manager, session_channel

logger = structlog.get_logger()

router = APIRouter()


def _snapshot_message(controller: StageController) -> dict:
    snapshot = controller.cache.snapshot()
    return jsonable_encoder({
        "type": "snapshot",
        "phase": controller.phase.value,
        "stage": controller.stage,
        "countdown": controller.countdown_remaining,
        "session": snapshot.session,
        "players": [p for p in snapshot.players if not p.is_kicked],
        "scores": list(snapshot.scores.values()),
        "progress": list(snapshot.progress.values()),
    })


@router.websocket("/ws/sessions/{session_id}")
async def session_websocket(
    websocket: WebSocket,
    session_id: str,
    role: str = Query("spectator"),
    player_id: str | None = Query(None),
) -> None:
    """Live feed of one game session.

    Protocol:
        Client -> Server:
            {"action": "ping"}
            {"action": "snapshot"}

        Server -> Client:
            {"channel": "session:<id>", "data": {"type": "session_update" | "player_update"
                | "score_update" | "progress_update" | "phase_changed" | "countdown", ...}}
            {"type": "snapshot", ...}
            {"type": "pong"}
            {"type": "error", "message": "..."}
    """
    if role not in VALID_ROLES:
        await websocket.close(code=4000, reason=f"Invalid role: {role}")
        return

    service = websocket.app.state.stage_service
    try:
        controller = await service.get_controller(session_id)
    except SessionNotFoundError as e:
        await websocket.close(code=4004, reason=str(e))
        return

    conn_id = str(uuid.uuid4())
    connections = getattr(websocket.app.state, "connections", manager)
    await connections.connect(websocket, conn_id, role, player_id)
    await connections.subscribe(conn_id, session_channel(session_id))

    try:
        await websocket.send_json(_snapshot_message(controller))
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = msg.get("action") if isinstance(msg, dict) else None

            if action == "ping":
                await websocket.send_json({"type": "pong"})

            elif action == "snapshot":
                await websocket.send_json(_snapshot_message(controller))

            else:
                await websocket.send_json({
                    "type": "error",
                    "message": f"Unknown action: {action}",
                })

    except WebSocketDisconnect:
        await connections.disconnect(conn_id)
    except Exception:
        logger.exception("ws_error", conn_id=conn_id, session_id=session_id)
        await connections.disconnect(conn_id)
