"""Stage progression state machine for one game session.

Phase progression:
    lobby -> trial_active -> awaiting_all_finished -> ranked
          -> eliminating -> next_stage_or_complete -> trial_active | completed

``skip`` jumps from trial_active/awaiting_all_finished straight to
next_stage_or_complete; ``reset`` returns to lobby from anywhere.
Transitions are validated against VALID_TRANSITIONS.

The controller never holds locks. Every write goes to the shared store
and is folded into the local cache; change events from other clients go
through :meth:`StageController.handle_change`, which keeps the phase in
line with the Game Session's ``status`` and re-runs the completion check.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from genesis.stage.cache import SessionCache, SessionSnapshot
from genesis.stage.constants import COUNTDOWN_SECONDS, next_enabled_stage, stage_status
from genesis.stage.countdown import Countdown
from genesis.stage.elimination import EliminationSplit, apply_eliminations, plan_eliminations
from genesis.stage.errors import InvalidTransitionError, PlayerNotFoundError, StageNotEnabledError
from genesis.stage.ranking import RankedEntry, rank_players, stage_contenders
from genesis.stage.records import GameSession, utcnow
from genesis.state.store import (
    ChangeEvent,
    ChangeType,
    Filters,
    Record,
    StateStore,
    StateStoreError,
    Subscription,
    Table,
)

logger = structlog.get_logger()


class StagePhase(str, Enum):
    LOBBY = "lobby"
    TRIAL_ACTIVE = "trial_active"
    AWAITING_ALL_FINISHED = "awaiting_all_finished"
    RANKED = "ranked"
    ELIMINATING = "eliminating"
    NEXT_STAGE_OR_COMPLETE = "next_stage_or_complete"
    COMPLETED = "completed"


VALID_TRANSITIONS: dict[StagePhase, list[StagePhase]] = {
    StagePhase.LOBBY: [StagePhase.TRIAL_ACTIVE],
    StagePhase.TRIAL_ACTIVE: [
        StagePhase.AWAITING_ALL_FINISHED,
        StagePhase.RANKED,
        StagePhase.NEXT_STAGE_OR_COMPLETE,
    ],
    StagePhase.AWAITING_ALL_FINISHED: [StagePhase.RANKED, StagePhase.NEXT_STAGE_OR_COMPLETE],
    StagePhase.RANKED: [StagePhase.ELIMINATING, StagePhase.NEXT_STAGE_OR_COMPLETE],
    StagePhase.ELIMINATING: [StagePhase.NEXT_STAGE_OR_COMPLETE],
    StagePhase.NEXT_STAGE_OR_COMPLETE: [StagePhase.TRIAL_ACTIVE, StagePhase.COMPLETED],
    StagePhase.COMPLETED: [],
}

PhaseCallback = Callable[[str, StagePhase, int], Awaitable[None] | None]
TickCallback = Callable[[str, int, int], Awaitable[None] | None]


def validate_transition(current: StagePhase, target: StagePhase) -> None:
    """Validate a phase transition. Raises InvalidTransitionError if invalid."""
    valid = VALID_TRANSITIONS.get(current, [])
    if target not in valid:
        raise InvalidTransitionError(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Valid transitions: {[phase.value for phase in valid]}"
        )


def phase_for_session(session: GameSession) -> StagePhase:
    """Best phase to resume in when all we know is the Game Session row."""
    if session.status == "lobby":
        return StagePhase.LOBBY
    if session.status == "completed":
        return StagePhase.COMPLETED
    return StagePhase.TRIAL_ACTIVE


@dataclass(frozen=True)
class CompletionStatus:
    stage: int
    finished: tuple[str, ...]
    pending: tuple[str, ...]

    @property
    def total(self) -> int:
        return len(self.finished) + len(self.pending)

    @property
    def all_finished(self) -> bool:
        return self.total > 0 and not self.pending


@dataclass(frozen=True)
class StageResult:
    stage: int
    ranking: tuple[RankedEntry, ...]
    split: EliminationSplit
    forced: bool = False

    @property
    def order(self) -> list[str]:
        return [entry.player_id for entry in self.ranking]


@dataclass(frozen=True)
class ActionOutcome:
    """What a host action did. ``ok`` is False when a store write failed."""

    ok: bool
    phase: StagePhase
    stage: int
    session: GameSession | None = None
    detail: str | None = None
    result: StageResult | None = None


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class StageController:
    def __init__(
        self,
        store: StateStore,
        session_id: str,
        *,
        countdown_seconds: int = COUNTDOWN_SECONDS,
        auto_advance: bool = False,
        clock: Callable[[], datetime] = utcnow,
        on_phase_change: PhaseCallback | None = None,
        on_countdown_tick: TickCallback | None = None,
    ) -> None:
        self.store = store
        self.cache = SessionCache(session_id)
        self.countdown_seconds = countdown_seconds
        self.auto_advance = auto_advance
        self.clock = clock
        self.on_phase_change = on_phase_change
        self.on_countdown_tick = on_countdown_tick

        self.phase = StagePhase.LOBBY
        self.stage = 0
        self.history: dict[int, StageResult] = {}
        self._subscriptions: list[Subscription] = []
        self._countdown: Countdown | None = None

    @property
    def session_id(self) -> str:
        return self.cache.session_id

    @property
    def session(self) -> GameSession | None:
        return self.cache.session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> SessionSnapshot:
        """Read the session from the store and resume in the matching phase."""
        await self.cache.load(self.store)
        session = self.cache.session
        self.phase = phase_for_session(session)
        self.stage = session.current_stage if self.phase != StagePhase.LOBBY else 0
        logger.info(
            "controller_loaded",
            session_id=self.session_id,
            phase=self.phase.value,
            stage=self.stage,
        )
        return self.cache.snapshot()

    def attach(self) -> None:
        """Subscribe to every change that belongs to this session."""
        if self._subscriptions:
            return
        scoped = {"game_session_id": self.session_id}
        self._subscriptions = [
            self.store.subscribe(Table.GAME_SESSIONS, {"id": self.session_id}, self.handle_change),
            self.store.subscribe(Table.PLAYERS, scoped, self.handle_change),
            self.store.subscribe(Table.STAGE_SCORES, scoped, self.handle_change),
            self.store.subscribe(Table.PLAYER_PROGRESS, scoped, self.handle_change),
        ]

    async def close(self) -> None:
        for subscription in self._subscriptions:
            self.store.unsubscribe(subscription)
        self._subscriptions = []
        await self._stop_countdown()

    # ------------------------------------------------------------------
    # Phase bookkeeping
    # ------------------------------------------------------------------

    async def _enter(self, target: StagePhase, *, stage: int | None = None, validate: bool = True) -> None:
        # The phase is assigned before the first await so concurrent
        # handlers observe it immediately.
        previous = self.phase
        stage_changed = stage is not None and stage != self.stage
        if target == previous and not stage_changed:
            return
        if validate and target != previous:
            validate_transition(previous, target)
        self.phase = target
        if stage is not None:
            self.stage = stage

        logger.info(
            "phase_changed",
            session_id=self.session_id,
            previous=previous.value,
            phase=target.value,
            stage=self.stage,
        )
        if self.on_phase_change is not None:
            try:
                await _maybe_await(self.on_phase_change(self.session_id, target, self.stage))
            except Exception:
                logger.exception("phase_hook_failed", session_id=self.session_id, phase=target.value)

    async def _sync_phase(self) -> None:
        """Follow Game Session changes made by other clients."""
        session = self.cache.session
        if session is None:
            return
        if session.status == "lobby":
            if self.phase != StagePhase.LOBBY:
                self.history.clear()
                await self._stop_countdown()
                await self._enter(StagePhase.LOBBY, stage=0, validate=False)
        elif session.status == "completed":
            if self.phase != StagePhase.COMPLETED:
                await self._enter(StagePhase.COMPLETED, validate=False)
        elif session.current_stage != self.stage:
            await self._enter(StagePhase.TRIAL_ACTIVE, stage=session.current_stage, validate=False)

    def _outcome(self, ok: bool, detail: str | None = None, result: StageResult | None = None) -> ActionOutcome:
        return ActionOutcome(
            ok=ok,
            phase=self.phase,
            stage=self.stage,
            session=self.cache.session,
            detail=detail,
            result=result,
        )

    # ------------------------------------------------------------------
    # Store writes
    # ------------------------------------------------------------------

    async def _write(self, action: str, table: Table, filters: Filters, values: Record) -> list[Record] | None:
        """Update rows, fold the result into the cache. None when the write failed."""
        try:
            rows = await self.store.update(table, filters, values)
        except StateStoreError as exc:
            logger.warning(
                "state_write_failed",
                action=action,
                session_id=self.session_id,
                table=table.value,
                error=str(exc),
            )
            return None
        self.cache.apply_rows(table, ChangeType.UPDATE, rows)
        await self._after_change()
        return rows

    async def _write_session(self, action: str, values: Record) -> bool:
        values = {**values, "updated_at": self.clock()}
        rows = await self._write(action, Table.GAME_SESSIONS, {"id": self.session_id}, values)
        return bool(rows)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def completion(self) -> CompletionStatus:
        """Has every active player finished the current stage?"""
        snapshot = self.cache.snapshot()
        stage = snapshot.session.current_stage
        progress = snapshot.stage_progress(stage)
        finished, pending = [], []
        for player in snapshot.active_players():
            record = progress.get(player.id)
            if record is not None and record.is_finished:
                finished.append(player.id)
            else:
                pending.append(player.id)
        return CompletionStatus(stage=stage, finished=tuple(finished), pending=tuple(pending))

    def _compute(self, stage: int, snapshot: SessionSnapshot, forced: bool = False) -> StageResult:
        contenders = stage_contenders(snapshot.players, stage)
        ranking = rank_players(
            stage,
            contenders,
            snapshot.stage_scores(stage),
            snapshot.stage_progress(stage),
        )
        split = plan_eliminations(stage, [entry.player_id for entry in ranking])
        return StageResult(stage=stage, ranking=tuple(ranking), split=split, forced=forced)

    def standings(self, stage: int | None = None) -> StageResult:
        """Ranking for ``stage`` (default: the stage in play).

        Returns the recorded result once the stage has been ranked, and a
        live ranking before that. Raises ValueError outside any stage.
        """
        snapshot = self.cache.snapshot()
        stage = stage if stage is not None else (self.stage or snapshot.session.current_stage)
        if not stage:
            raise ValueError("No stage has started in this session")
        if stage in self.history:
            return self.history[stage]
        return self._compute(stage, snapshot)

    def podium(self) -> list[RankedEntry]:
        """Top three of the final enabled stage; empty until it has records."""
        snapshot = self.cache.snapshot()
        final_stage = max(snapshot.session.enabled_stages)
        if final_stage not in self.history and snapshot.session.current_stage != final_stage:
            return []
        return list(self.standings(final_stage).ranking[:3])

    # ------------------------------------------------------------------
    # Host actions
    # ------------------------------------------------------------------

    async def set_ready(self) -> ActionOutcome:
        ok = await self._write_session("set_ready", {"is_ready": True})
        if ok:
            logger.info("session_ready", session_id=self.session_id)
        return self._outcome(ok)

    async def kick_player(self, player_id: str) -> ActionOutcome:
        if player_id not in self.cache.players:
            raise PlayerNotFoundError(player_id)
        rows = await self._write("kick_player", Table.PLAYERS, {"id": player_id}, {"is_kicked": True})
        if rows is None:
            return self._outcome(False)
        logger.info("player_kicked", session_id=self.session_id, player_id=player_id)
        return self._outcome(True)

    async def begin_stage(self, stage: int | None = None) -> ActionOutcome:
        session = self.cache.snapshot().session
        enabled = sorted(session.enabled_stages)
        target = stage if stage is not None else enabled[0]
        if target not in enabled:
            raise StageNotEnabledError(f"Stage {target} is not enabled. Enabled stages: {enabled}")
        validate_transition(self.phase, StagePhase.TRIAL_ACTIVE)
        return await self._start_stage("begin_stage", target)

    async def _start_stage(self, action: str, stage: int) -> ActionOutcome:
        starts_at = self.clock() + timedelta(seconds=self.countdown_seconds)
        ok = await self._write_session(action, {
            "status": stage_status(stage),
            "current_stage": stage,
            "is_ready": False,
            "starts_at": starts_at,
        })
        if not ok:
            return self._outcome(False)

        self.history.pop(stage, None)
        await self._enter(StagePhase.TRIAL_ACTIVE, stage=stage)
        await self._start_countdown(stage, starts_at)
        logger.info("stage_begun", session_id=self.session_id, stage=stage, starts_at=starts_at.isoformat())
        return self._outcome(True)

    async def advance(self, force: bool = False) -> ActionOutcome:
        """Rank the stage once everyone has finished, or right away when forced."""
        if self.phase == StagePhase.RANKED and self.stage in self.history:
            return self._outcome(True, result=self.history[self.stage])
        validate_transition(self.phase, StagePhase.RANKED)

        status = self.completion()
        if status.all_finished or force:
            result = await self._rank(forced=not status.all_finished)
            return self._outcome(True, result=result)

        await self._enter(StagePhase.AWAITING_ALL_FINISHED)
        logger.info(
            "awaiting_players",
            session_id=self.session_id,
            stage=self.stage,
            pending=len(status.pending),
        )
        return self._outcome(True, detail=f"Waiting for {len(status.pending)} of {status.total} players")

    async def _rank(self, forced: bool) -> StageResult:
        stage = self.stage
        snapshot = self.cache.snapshot()
        result = self._compute(stage, snapshot, forced=forced)
        self.history[stage] = result
        await self._enter(StagePhase.RANKED)

        logger.info(
            "stage_ranked",
            session_id=self.session_id,
            stage=stage,
            players=len(result.ranking),
            eliminated=len(result.split.eliminated),
            forced=forced,
        )
        await self._publish_ranks(result, snapshot)
        return result

    async def _publish_ranks(self, result: StageResult, snapshot: SessionSnapshot) -> None:
        scores = snapshot.stage_scores(result.stage)
        for entry in result.ranking:
            score = scores.get(entry.player_id)
            if score is None or score.id is None or score.rank == entry.rank:
                continue
            try:
                rows = await self.store.update(Table.STAGE_SCORES, {"id": score.id}, {"rank": entry.rank})
            except StateStoreError as exc:
                logger.warning(
                    "rank_publish_failed",
                    session_id=self.session_id,
                    player_id=entry.player_id,
                    error=str(exc),
                )
                continue
            self.cache.apply_rows(Table.STAGE_SCORES, ChangeType.UPDATE, rows)

    async def conclude(self) -> ActionOutcome:
        """Apply the ranked stage's eliminations and move on.

        Safe to re-issue after a partial failure: players already
        eliminated are not rewritten.
        """
        if self.phase not in (
            StagePhase.RANKED,
            StagePhase.ELIMINATING,
            StagePhase.NEXT_STAGE_OR_COMPLETE,
        ):
            raise InvalidTransitionError(f"Cannot conclude a stage from phase {self.phase.value}")
        result = self.history.get(self.stage)
        if result is None:
            if self.phase != StagePhase.NEXT_STAGE_OR_COMPLETE:
                raise InvalidTransitionError(f"Stage {self.stage} has not been ranked")
            # A skip whose session write failed; retry the move on.
            return await self._finish_stage("conclude", self.stage)

        if self.phase != StagePhase.NEXT_STAGE_OR_COMPLETE and result.split.has_eliminations:
            await self._enter(StagePhase.ELIMINATING)
            report = await apply_eliminations(self.store, result.split, self.cache.snapshot().players)
            self.cache.apply_rows(Table.PLAYERS, ChangeType.UPDATE, report.rows)
            if not report.complete:
                return self._outcome(
                    False,
                    detail=f"{len(report.failed)} elimination writes failed; conclude again to retry",
                    result=result,
                )

        outcome = await self._finish_stage("conclude", result.stage)
        return replace(outcome, result=result)

    async def next_stage(self, force: bool = False) -> ActionOutcome:
        """Rank, eliminate and move on in one host action."""
        if self.phase in (StagePhase.TRIAL_ACTIVE, StagePhase.AWAITING_ALL_FINISHED):
            outcome = await self.advance(force=force)
            if outcome.result is None or not outcome.ok:
                return outcome
        return await self.conclude()

    async def skip(self) -> ActionOutcome:
        """Leave the stage without ranking or eliminating anyone."""
        if self.phase not in (StagePhase.TRIAL_ACTIVE, StagePhase.AWAITING_ALL_FINISHED):
            raise InvalidTransitionError(f"Cannot skip a stage from phase {self.phase.value}")
        stage = self.stage
        logger.info("stage_skipped", session_id=self.session_id, stage=stage)
        return await self._finish_stage("skip", stage)

    async def _finish_stage(self, action: str, stage: int) -> ActionOutcome:
        enabled = self.cache.snapshot().session.enabled_stages
        following = next_enabled_stage(stage, enabled)
        await self._enter(StagePhase.NEXT_STAGE_OR_COMPLETE)
        await self._stop_countdown()

        if following is not None:
            return await self._start_stage(action, following)

        ok = await self._write_session(action, {
            "status": "completed",
            "is_ready": False,
            "starts_at": None,
        })
        if not ok:
            return self._outcome(False)
        await self._enter(StagePhase.COMPLETED)
        logger.info("session_completed", session_id=self.session_id, final_stage=stage)
        return self._outcome(True)

    async def reset(self) -> ActionOutcome:
        """Back to the lobby with no scores, progress or eliminations."""
        await self._stop_countdown()
        scoped = {"game_session_id": self.session_id}
        failed = []

        for table in (Table.STAGE_SCORES, Table.PLAYER_PROGRESS):
            try:
                await self.store.delete(table, scoped)
            except StateStoreError as exc:
                logger.warning("state_write_failed", action="reset", table=table.value, error=str(exc))
                failed.append(table.value)
                continue
            self.cache.clear_table(table)

        rows = await self._write(
            "reset",
            Table.PLAYERS,
            {**scoped, "is_eliminated": True},
            {"is_eliminated": False, "eliminated_at_stage": None},
        )
        if rows is None:
            failed.append(Table.PLAYERS.value)

        ok = await self._write_session("reset", {
            "status": "lobby",
            "current_stage": 0,
            "is_ready": False,
            "starts_at": None,
        })
        if not ok:
            failed.append(Table.GAME_SESSIONS.value)

        self.history.clear()
        await self._enter(StagePhase.LOBBY, stage=0, validate=False)
        logger.info("session_reset", session_id=self.session_id, failed=failed)
        detail = f"Failed to reset {', '.join(failed)}" if failed else None
        return self._outcome(not failed, detail=detail)

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    async def handle_change(self, event: ChangeEvent) -> None:
        if not self.cache.apply(event):
            return
        await self._after_change()

    async def _after_change(self) -> None:
        await self._sync_phase()
        waiting = self.phase == StagePhase.AWAITING_ALL_FINISHED
        auto = self.auto_advance and self.phase == StagePhase.TRIAL_ACTIVE
        if (waiting or auto) and self.completion().all_finished:
            await self._rank(forced=False)

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------

    async def _start_countdown(self, stage: int, starts_at: datetime) -> None:
        await self._stop_countdown()

        async def tick(seconds: int) -> None:
            await self._emit_tick(stage, seconds)

        async def done() -> None:
            await self._emit_tick(stage, 0)

        self._countdown = Countdown(starts_at, tick, done, clock=self.clock)
        self._countdown.start()

    async def _emit_tick(self, stage: int, seconds: int) -> None:
        if self.on_countdown_tick is None:
            return
        try:
            await _maybe_await(self.on_countdown_tick(self.session_id, stage, seconds))
        except Exception:
            logger.exception("countdown_hook_failed", session_id=self.session_id, stage=stage)

    async def _stop_countdown(self) -> None:
        if self._countdown is not None:
            countdown, self._countdown = self._countdown, None
            await countdown.stop()

    @property
    def countdown_remaining(self) -> int:
        return self._countdown.remaining() if self._countdown is not None else 0
