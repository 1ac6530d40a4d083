"""Bridges shared-state changes and controller events to WebSocket clients.

Row changes arrive through the store's change feed (local dispatch or
Redis, see :mod:`genesis.state.feed`). Phase changes and countdown ticks
come straight from the stage controllers via the hooks below.
"""

from typing import Any

import structlog
from fastapi.encoders import jsonable_encoder

from genesis.stage.controller import StagePhase
from genesis.state.store import ChangeEvent, ChangeType, StateStore, Subscription, Table
from genesis.ws.manager import ConnectionManager, session_channel

logger = structlog.get_logger()

# Map shared-state tables to WebSocket message types
MESSAGE_TYPES: dict[Table, str] = {
    Table.GAME_SESSIONS: "session_update",
    Table.PLAYERS: "player_update",
    Table.STAGE_SCORES: "score_update",
    Table.PLAYER_PROGRESS: "progress_update",
}


def _session_id_of(event: ChangeEvent) -> str | None:
    if event.table == Table.GAME_SESSIONS:
        return event.record.get("id")
    return event.record.get("game_session_id")


class SessionBroadcaster:
    """Pushes every change of a session to the screens watching it."""

    def __init__(self, store: StateStore, connections: ConnectionManager) -> None:
        self.store = store
        self.connections = connections
        self._subscriptions: list[Subscription] = []

    def start(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            self.store.subscribe(table, {}, self.on_change) for table in MESSAGE_TYPES
        ]
        logger.info("session_broadcaster_started", tables=[table.value for table in MESSAGE_TYPES])

    def stop(self) -> None:
        for subscription in self._subscriptions:
            self.store.unsubscribe(subscription)
        self._subscriptions = []
        logger.info("session_broadcaster_stopped")

    async def on_change(self, event: ChangeEvent) -> None:
        session_id = _session_id_of(event)
        if not session_id:
            return
        channel = session_channel(session_id)
        sent = await self.connections.broadcast_to_channel(channel, {
            "type": MESSAGE_TYPES[event.table],
            "event": event.event.value,
            "record": jsonable_encoder(event.record),
        })
        if sent > 0:
            logger.debug("ws_change_broadcast", channel=channel, table=event.table.value, recipients=sent)

        if event.table == Table.PLAYERS and event.event == ChangeType.UPDATE and event.record.get("is_kicked"):
            await self.connections.send_to_player(event.record["id"], channel, {
                "type": "kicked",
                "player_id": event.record["id"],
            })

    async def on_phase_change(self, session_id: str, phase: StagePhase, stage: int) -> None:
        await self.connections.broadcast_to_channel(session_channel(session_id), {
            "type": "phase_changed",
            "phase": phase.value,
            "stage": stage,
        })

    async def on_countdown_tick(self, session_id: str, stage: int, seconds: int) -> None:
        await self.connections.broadcast_to_channel(session_channel(session_id), {
            "type": "countdown",
            "stage": stage,
            "seconds": seconds,
        })

    def hooks(self) -> dict[str, Any]:
        """Controller callbacks, as accepted by :class:`genesis.stage.service.StageService`."""
        return {
            "on_phase_change": self.on_phase_change,
            "on_countdown_tick": self.on_countdown_tick,
        }
