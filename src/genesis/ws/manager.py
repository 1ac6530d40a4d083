"""WebSocket connection manager.

Tracks the screens connected to each game session (host dashboard, main
stage, spectator view, player phones) and fans messages out per session.
"""

import json
import time
from collections import defaultdict
from dataclasses import dataclass, field

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()

VALID_ROLES = {"host", "stage", "spectator", "player"}
CHANNEL_PREFIX = "session:"


def session_channel(session_id: str) -> str:
    return f"{CHANNEL_PREFIX}{session_id}"


@dataclass
class ClientConnection:
    """A single connected screen."""

    websocket: WebSocket
    role: str
    player_id: str | None = None
    subscriptions: set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0


class ConnectionManager:
    """Manages all active WebSocket connections.

    Safe for asyncio via the single-threaded event loop.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}  # conn_id -> client
        self._channels: dict[str, set[str]] = defaultdict(set)  # channel -> {conn_ids}
        self._player_connections: dict[str, set[str]] = defaultdict(set)  # player_id -> {conn_ids}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(
        self,
        websocket: WebSocket,
        conn_id: str,
        role: str,
        player_id: str | None = None,
    ) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self._connections[conn_id] = ClientConnection(
            websocket=websocket,
            role=role,
            player_id=player_id,
        )
        if player_id:
            self._player_connections[player_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, role=role, player_id=player_id)

    async def disconnect(self, conn_id: str) -> None:
        """Remove a WebSocket connection and its subscriptions."""
        client = self._connections.pop(conn_id, None)
        if client is None:
            return

        for channel in client.subscriptions:
            self._channels[channel].discard(conn_id)
            if not self._channels[channel]:
                del self._channels[channel]

        if client.player_id:
            self._player_connections[client.player_id].discard(conn_id)
            if not self._player_connections[client.player_id]:
                del self._player_connections[client.player_id]

        logger.info("ws_disconnected", conn_id=conn_id, role=client.role)

    async def subscribe(self, conn_id: str, channel: str) -> bool:
        """Subscribe a connection to a session channel. Returns False if invalid."""
        client = self._connections.get(conn_id)
        if client is None:
            return False

        if not channel.startswith(CHANNEL_PREFIX) or channel == CHANNEL_PREFIX:
            return False

        client.subscriptions.add(channel)
        self._channels[channel].add(conn_id)
        logger.debug("ws_subscribed", conn_id=conn_id, channel=channel)
        return True

    async def unsubscribe(self, conn_id: str, channel: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False

        client.subscriptions.discard(channel)
        self._channels[channel].discard(conn_id)
        return True

    async def _send(self, conn_ids: list[str], payload: str) -> int:
        sent = 0
        failed: list[str] = []
        for conn_id in conn_ids:
            client = self._connections.get(conn_id)
            if client is None:
                failed.append(conn_id)
                continue
            try:
                await client.websocket.send_text(payload)
                client.messages_sent += 1
                sent += 1
            except Exception:
                failed.append(conn_id)

        for conn_id in failed:
            await self.disconnect(conn_id)
        return sent

    async def broadcast_to_channel(self, channel: str, message: dict) -> int:
        """Send a message to every client on a channel.

        Returns the number of clients that received the message.
        """
        conn_ids = list(self._channels.get(channel, set()))
        if not conn_ids:
            return 0
        return await self._send(conn_ids, json.dumps({"channel": channel, "data": message}))

    async def send_to_player(self, player_id: str, channel: str, message: dict) -> int:
        """Send a message to one player's phone(s) on a channel."""
        conn_ids = [
            conn_id
            for conn_id in self._player_connections.get(player_id, set())
            if channel in self._connections[conn_id].subscriptions
        ]
        if not conn_ids:
            return 0
        return await self._send(conn_ids, json.dumps({"channel": channel, "data": message}))

    def get_stats(self) -> dict:
        return {
            "total_connections": len(self._connections),
            "players": len(self._player_connections),
            "channels": {
                ch: len(conns) for ch, conns in self._channels.items() if conns
            },
        }


# Global singleton
manager = ConnectionManager()
