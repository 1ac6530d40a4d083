"""Builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from genesis.stage.records import Player, PlayerProgress, StageScore
from genesis.stage.service import StageService

SESSION_ID = "session-1"


class FakeClock:
    """Deterministic clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 14, 19, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


def make_player(player_id: str, **fields) -> Player:
    return Player(id=player_id, game_session_id=SESSION_ID, name=player_id.upper(), **fields)


def make_score(player_id: str, stage: int, score: float, time_taken: float | None = None) -> StageScore:
    return StageScore(
        id=f"score-{player_id}-{stage}",
        player_id=player_id,
        game_session_id=SESSION_ID,
        stage=stage,
        score=score,
        time_taken=time_taken,
    )


def make_progress(
    player_id: str,
    stage: int,
    status: str = "finished",
    progress: float = 100,
    elapsed_time: float = 0,
    current_score: float = 0,
) -> PlayerProgress:
    return PlayerProgress(
        player_id=player_id,
        game_session_id=SESSION_ID,
        stage=stage,
        status=status,
        progress=progress,
        elapsed_time=elapsed_time,
        current_score=current_score,
    )


async def seed_players(service: StageService, session_id: str, count: int) -> list[str]:
    """Join ``count`` players named P1..Pn; returns their ids in join order."""
    ids = []
    for i in range(count):
        player = await service.join(session_id, f"P{i + 1}")
        ids.append(player.id)
    return ids


async def finish(
    service: StageService,
    session_id: str,
    player_id: str,
    stage: int,
    score: float,
    elapsed: float | None = None,
) -> None:
    """Record a finished run: the score row plus finished progress."""
    await service.submit_score(session_id, player_id, stage, score, time_taken=elapsed)
    await service.submit_progress(PlayerProgress(
        player_id=player_id,
        game_session_id=session_id,
        stage=stage,
        progress=100,
        elapsed_time=elapsed if elapsed is not None else score,
        status="finished",
        current_score=score,
    ))
