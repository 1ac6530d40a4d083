"""Request / response models for the stage endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from genesis.stage.records import GameSession, Player, PlayerProgress, ProgressStatus, StageScore


# ── Requests ──


class CreateSessionRequest(BaseModel):
    enabled_stages: list[int] | None = None


class JoinRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    photo_url: str | None = None
    is_spectator: bool = False


class BeginStageRequest(BaseModel):
    stage: int | None = None


class ForceRequest(BaseModel):
    force: bool = False


class ScoreRequest(BaseModel):
    player_id: str
    stage: int = Field(..., ge=1, le=3)
    score: float = Field(..., allow_inf_nan=False)
    time_taken: float | None = Field(None, allow_inf_nan=False)


class ProgressRequest(BaseModel):
    player_id: str
    stage: int = Field(..., ge=1, le=3)
    progress: float = Field(0, ge=0, le=100)
    elapsed_time: float = Field(0, ge=0, allow_inf_nan=False)
    status: ProgressStatus = "waiting"
    current_score: float = Field(0, allow_inf_nan=False)
    # Validated against the stage's extra_data variant on write.
    extra_data: dict[str, Any] | None = None


# ── Responses ──


class SessionResponse(GameSession):
    pass


class PlayerResponse(Player):
    pass


class ScoreResponse(StageScore):
    pass


class ProgressResponse(PlayerProgress):
    pass


class SessionDetailResponse(BaseModel):
    session: GameSession
    players: list[Player]
    phase: str
    countdown: int


class ActionResponse(BaseModel):
    ok: bool
    phase: str
    stage: int
    session: GameSession | None = None
    detail: str | None = None
    standings: StandingsResponse | None = None


class PrizeResponse(BaseModel):
    place: int
    title: str
    prize: str
    description: str


class StandingEntryResponse(BaseModel):
    player_id: str
    name: str
    avatar_color: str
    photo_url: str | None = None
    rank: int
    score: float | None = None
    elapsed_time: float | None = None
    progress: float
    finished: bool
    eliminated: bool
    prize: PrizeResponse | None = None


class StandingsResponse(BaseModel):
    stage: int
    stage_name: str
    codename: str
    elimination_count: int
    forced: bool
    entries: list[StandingEntryResponse]
    advancing: list[str]
    eliminated: list[str]
    revealed_places: list[int]
    end_message: dict[str, str] | None = None


class CompletionResponse(BaseModel):
    stage: int
    total: int
    finished: list[str]
    pending: list[str]
    all_finished: bool


class PodiumResponse(BaseModel):
    stage: int
    entries: list[StandingEntryResponse]


class StageInfoResponse(BaseModel):
    stage: int
    name: str
    codename: str
    elimination_count: int


class StageCatalogueResponse(BaseModel):
    stages: list[StageInfoResponse]
    countdown_seconds: int
    max_players: int


ActionResponse.model_rebuild()
