"""Per-session read-through cache fed by the change feed.

Events are applied last-write-wins per record: the incoming row replaces
whatever was cached under the same key, and DELETE drops it. Duplicates
and out-of-order delivery therefore settle on the newest row received.
The ranking and elimination code never read the cache directly; they get a
:class:`SessionSnapshot`.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from pydantic import ValidationError

from genesis.stage.errors import SessionNotFoundError
from genesis.stage.records import GameSession, Player, PlayerProgress, StageScore
from genesis.state.store import ChangeEvent, ChangeType, StateStore, Table

logger = structlog.get_logger()

StageKey = tuple[str, int]


@dataclass(frozen=True)
class SessionSnapshot:
    session: GameSession
    players: tuple[Player, ...]
    scores: dict[StageKey, StageScore] = field(default_factory=dict)
    progress: dict[StageKey, PlayerProgress] = field(default_factory=dict)

    def active_players(self) -> list[Player]:
        return [player for player in self.players if player.is_active]

    def stage_scores(self, stage: int) -> dict[str, StageScore]:
        return {pid: score for (pid, s), score in self.scores.items() if s == stage}

    def stage_progress(self, stage: int) -> dict[str, PlayerProgress]:
        return {pid: record for (pid, s), record in self.progress.items() if s == stage}


class SessionCache:
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.session: GameSession | None = None
        self.players: dict[str, Player] = {}
        self.scores: dict[StageKey, StageScore] = {}
        self.progress: dict[StageKey, PlayerProgress] = {}

    async def load(self, store: StateStore) -> None:
        """Replace the cache contents with a fresh read of the session."""
        row = await store.get(Table.GAME_SESSIONS, self.session_id)
        if row is None:
            raise SessionNotFoundError(self.session_id)

        scoped = {"game_session_id": self.session_id}
        players = await store.query(Table.PLAYERS, scoped, order_by="joined_at")
        scores = await store.query(Table.STAGE_SCORES, scoped)
        progress = await store.query(Table.PLAYER_PROGRESS, scoped)

        self.session = GameSession.model_validate(row)
        self.players = {row["id"]: Player.model_validate(row) for row in players}
        self.scores = {}
        for row in scores:
            score = StageScore.model_validate(row)
            self.scores[(score.player_id, score.stage)] = score
        self.progress = {}
        for row in progress:
            record = PlayerProgress.model_validate(row)
            self.progress[(record.player_id, record.stage)] = record

        logger.debug(
            "session_cache_loaded",
            session_id=self.session_id,
            players=len(self.players),
            scores=len(self.scores),
            progress=len(self.progress),
        )

    def owns(self, event: ChangeEvent) -> bool:
        if event.table == Table.GAME_SESSIONS:
            return event.record.get("id") == self.session_id
        return event.record.get("game_session_id") == self.session_id

    def apply(self, event: ChangeEvent) -> bool:
        """Fold one change event into the cache. Returns False when it was ignored."""
        if not self.owns(event):
            return False
        deleted = event.event == ChangeType.DELETE
        try:
            if event.table == Table.GAME_SESSIONS:
                # Game Sessions are never deleted; a DELETE is ignored.
                if deleted:
                    return False
                self.session = GameSession.model_validate(event.record)
            elif event.table == Table.PLAYERS:
                player_id = event.record.get("id")
                if deleted:
                    self.players.pop(player_id, None)
                else:
                    self.players[player_id] = Player.model_validate(event.record)
            elif event.table == Table.STAGE_SCORES:
                key = (event.record.get("player_id"), event.record.get("stage"))
                if deleted:
                    self.scores.pop(key, None)
                else:
                    self.scores[key] = StageScore.model_validate(event.record)
            elif event.table == Table.PLAYER_PROGRESS:
                key = (event.record.get("player_id"), event.record.get("stage"))
                if deleted:
                    self.progress.pop(key, None)
                else:
                    self.progress[key] = PlayerProgress.model_validate(event.record)
        except ValidationError as exc:
            logger.warning(
                "change_event_invalid",
                session_id=self.session_id,
                table=event.table.value,
                errors=exc.error_count(),
            )
            return False
        return True

    def apply_rows(self, table: Table, change: ChangeType, rows: Iterable[dict]) -> None:
        for row in rows:
            self.apply(ChangeEvent(table=table, event=change, record=dict(row)))

    def clear_table(self, table: Table) -> None:
        """Forget every cached score or progress row, e.g. after they were deleted."""
        if table is Table.STAGE_SCORES:
            self.scores.clear()
        elif table is Table.PLAYER_PROGRESS:
            self.progress.clear()
        else:
            raise ValueError(f"Cannot clear {table.value}")

    def snapshot(self) -> SessionSnapshot:
        if self.session is None:
            raise SessionNotFoundError(self.session_id)
        return SessionSnapshot(
            session=self.session.model_copy(),
            players=tuple(player.model_copy() for player in self.players.values()),
            scores=dict(self.scores),
            progress=dict(self.progress),
        )
