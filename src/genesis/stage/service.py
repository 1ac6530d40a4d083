"""Session registry and the roster / mini-game write paths.

One :class:`StageController` is kept per session for the life of the
process; it is loaded and subscribed lazily on first use.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

import structlog

from genesis.config import Settings
from genesis.stage.constants import ALL_STAGES, MAX_PLAYERS, PLAYER_COLORS
from genesis.stage.controller import ActionOutcome, PhaseCallback, StageController, TickCallback
from genesis.stage.errors import PlayerNotFoundError, RosterFullError, SessionNotFoundError
from genesis.stage.records import GameSession, Player, PlayerProgress, StageScore, utcnow
from genesis.state.store import STAGE_CONFLICT_KEY, StateStore, Table

logger = structlog.get_logger()


def validate_enabled_stages(stages: Sequence[int]) -> list[int]:
    """Deduplicate and order a stage selection. Raises ValueError if unusable."""
    if not stages:
        raise ValueError("At least one stage must be enabled")
    unknown = sorted(set(stages) - set(ALL_STAGES))
    if unknown:
        raise ValueError(f"Unknown stages {unknown}. Valid stages: {list(ALL_STAGES)}")
    return sorted(set(stages))


class StageService:
    def __init__(
        self,
        store: StateStore,
        *,
        countdown_seconds: int = 5,
        auto_advance: bool = False,
        max_players: int = MAX_PLAYERS,
        default_enabled_stages: Sequence[int] = ALL_STAGES,
        clock: Callable[[], datetime] = utcnow,
        on_phase_change: PhaseCallback | None = None,
        on_countdown_tick: TickCallback | None = None,
    ) -> None:
        self.store = store
        self.countdown_seconds = countdown_seconds
        self.auto_advance = auto_advance
        self.max_players = max_players
        self.default_enabled_stages = list(default_enabled_stages)
        self.clock = clock
        self.on_phase_change = on_phase_change
        self.on_countdown_tick = on_countdown_tick
        self._controllers: dict[str, StageController] = {}

    @classmethod
    def from_settings(cls, store: StateStore, settings: Settings, **hooks: Any) -> StageService:
        return cls(
            store,
            countdown_seconds=settings.countdown_seconds,
            auto_advance=settings.auto_advance,
            max_players=settings.max_players,
            default_enabled_stages=settings.default_enabled_stages,
            **hooks,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, enabled_stages: Sequence[int] | None = None) -> GameSession:
        stages = validate_enabled_stages(
            enabled_stages if enabled_stages is not None else self.default_enabled_stages,
        )
        now = self.clock()
        row = await self.store.insert(Table.GAME_SESSIONS, {
            "status": "lobby",
            "current_stage": 0,
            "enabled_stages": stages,
            "is_ready": False,
            "starts_at": None,
            "created_at": now,
            "updated_at": now,
        })
        session = GameSession.model_validate(row)
        logger.info("session_created", session_id=session.id, enabled_stages=stages)
        return session

    async def get_session(self, session_id: str) -> GameSession:
        row = await self.store.get(Table.GAME_SESSIONS, session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        return GameSession.model_validate(row)

    async def get_controller(self, session_id: str) -> StageController:
        controller = self._controllers.get(session_id)
        if controller is not None:
            return controller

        controller = StageController(
            self.store,
            session_id,
            countdown_seconds=self.countdown_seconds,
            auto_advance=self.auto_advance,
            clock=self.clock,
            on_phase_change=self.on_phase_change,
            on_countdown_tick=self.on_countdown_tick,
        )
        await controller.load()
        # Another request may have loaded the same session while we awaited.
        existing = self._controllers.get(session_id)
        if existing is not None:
            return existing
        controller.attach()
        self._controllers[session_id] = controller
        return controller

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    async def list_players(self, session_id: str) -> list[Player]:
        rows = await self.store.query(Table.PLAYERS, {"game_session_id": session_id}, order_by="joined_at")
        return [Player.model_validate(row) for row in rows]

    async def join(
        self,
        session_id: str,
        name: str,
        photo_url: str | None = None,
        is_spectator: bool = False,
    ) -> Player:
        name = (name or "").strip()
        if not name:
            raise ValueError("Player name must not be blank")
        await self.get_session(session_id)

        roster = await self.list_players(session_id)
        if not is_spectator:
            competing = [p for p in roster if not p.is_spectator and not p.is_kicked]
            if len(competing) >= self.max_players:
                raise RosterFullError(f"Session {session_id} already has {self.max_players} players")

        row = await self.store.insert(Table.PLAYERS, {
            "game_session_id": session_id,
            "name": name,
            "photo_url": photo_url,
            "avatar_color": PLAYER_COLORS[len(roster) % len(PLAYER_COLORS)],
            "is_spectator": is_spectator,
            "is_eliminated": False,
            "is_kicked": False,
            "eliminated_at_stage": None,
            "joined_at": self.clock(),
        })
        player = Player.model_validate(row)
        logger.info(
            "player_joined",
            session_id=session_id,
            player_id=player.id,
            spectator=is_spectator,
        )
        return player

    async def get_player(self, player_id: str) -> Player:
        row = await self.store.get(Table.PLAYERS, player_id)
        if row is None:
            raise PlayerNotFoundError(player_id)
        return Player.model_validate(row)

    async def kick_player(self, player_id: str) -> ActionOutcome:
        player = await self.get_player(player_id)
        controller = await self.get_controller(player.game_session_id)
        return await controller.kick_player(player_id)

    # ------------------------------------------------------------------
    # Mini-game contract
    # ------------------------------------------------------------------

    async def _check_player(self, session_id: str, player_id: str) -> Player:
        player = await self.get_player(player_id)
        if player.game_session_id != session_id:
            raise PlayerNotFoundError(player_id)
        return player

    async def submit_score(
        self,
        session_id: str,
        player_id: str,
        stage: int,
        score: float,
        time_taken: float | None = None,
    ) -> StageScore:
        """Record a player's result for a stage (one row per player and stage)."""
        if stage not in ALL_STAGES:
            raise ValueError(f"Unknown stage {stage}")
        if not math.isfinite(score) or (time_taken is not None and not math.isfinite(time_taken)):
            raise ValueError("Score and time taken must be finite numbers")
        await self._check_player(session_id, player_id)
        row = await self.store.upsert(Table.STAGE_SCORES, {
            "player_id": player_id,
            "game_session_id": session_id,
            "stage": stage,
            "score": score,
            "time_taken": time_taken,
            "created_at": self.clock(),
        }, STAGE_CONFLICT_KEY)
        logger.info("score_submitted", session_id=session_id, player_id=player_id, stage=stage, score=score)
        return StageScore.model_validate(row)

    async def submit_progress(self, progress: PlayerProgress) -> PlayerProgress:
        """Upsert a player's live progress for a stage."""
        if progress.stage not in ALL_STAGES:
            raise ValueError(f"Unknown stage {progress.stage}")
        await self._check_player(progress.game_session_id, progress.player_id)
        record = progress.model_dump(exclude={"id"}, mode="json")
        record["updated_at"] = self.clock()
        row = await self.store.upsert(Table.PLAYER_PROGRESS, record, STAGE_CONFLICT_KEY)
        logger.debug(
            "progress_submitted",
            session_id=progress.game_session_id,
            player_id=progress.player_id,
            stage=progress.stage,
            status=progress.status,
        )
        return PlayerProgress.model_validate(row)

    async def close(self) -> None:
        for controller in list(self._controllers.values()):
            await controller.close()
        self._controllers.clear()
