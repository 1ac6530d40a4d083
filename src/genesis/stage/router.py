"""Stage API endpoints.

Sessions (2), roster (2), host actions (7), standings (3), mini-game
writes (2), catalogue (1).
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from genesis.config import Settings, get_settings
from genesis.dependencies import get_stage_service
from genesis.stage.constants import ALL_STAGES, STAGE_CODENAMES, STAGE_NAMES
from genesis.stage.controller import ActionOutcome, StageController, StageResult
from genesis.stage.elimination import elimination_count
from genesis.stage.errors import InvalidTransitionError
from genesis.stage.prizes import eliminated_places, prize_for, session_end_message
from genesis.stage.ranking import RankedEntry
from genesis.stage.records import PlayerProgress
from genesis.stage.schemas import (
    ActionResponse,
    BeginStageRequest,
    CompletionResponse,
    CreateSessionRequest,
    ForceRequest,
    JoinRequest,
    PlayerResponse,
    PodiumResponse,
    PrizeResponse,
    ProgressRequest,
    ProgressResponse,
    ScoreRequest,
    ScoreResponse,
    SessionDetailResponse,
    SessionResponse,
    StageCatalogueResponse,
    StageInfoResponse,
    StandingEntryResponse,
    StandingsResponse,
)
from genesis.stage.service import StageService

router = APIRouter(prefix="/api/v1", tags=["Stage"])

# Champion prizes are always the final-round table.
_CHAMPION_ROUND = 3


# ── Helpers ──


def _entry_response(
    controller: StageController,
    entry: RankedEntry,
    *,
    eliminated: bool,
    prize_round: int | None,
) -> StandingEntryResponse:
    player = controller.cache.players.get(entry.player_id)
    prize = prize_for(prize_round, entry.rank) if prize_round is not None else None
    return StandingEntryResponse(
        player_id=entry.player_id,
        name=player.name if player else "",
        avatar_color=player.avatar_color if player else "",
        photo_url=player.photo_url if player else None,
        rank=entry.rank,
        score=entry.score,
        elapsed_time=entry.elapsed_time,
        progress=entry.progress,
        finished=entry.finished,
        eliminated=eliminated,
        prize=PrizeResponse(**asdict(prize)) if prize else None,
    )


def _standings_response(controller: StageController, result: StageResult) -> StandingsResponse:
    final_stage = max(controller.session.enabled_stages)
    eliminated = set(result.split.eliminated)
    entries = []
    for entry in result.ranking:
        out = entry.player_id in eliminated
        show_prize = out or (result.stage == final_stage and entry.rank <= 3)
        entries.append(_entry_response(
            controller,
            entry,
            eliminated=out,
            prize_round=result.stage if show_prize else None,
        ))
    return StandingsResponse(
        stage=result.stage,
        stage_name=STAGE_NAMES[result.stage],
        codename=STAGE_CODENAMES[result.stage],
        elimination_count=elimination_count(result.stage),
        forced=result.forced,
        entries=entries,
        advancing=list(result.split.advancing),
        eliminated=list(result.split.eliminated),
        revealed_places=eliminated_places(result.stage),
        end_message=session_end_message(result.stage),
    )


def _action_response(controller: StageController | None, outcome: ActionOutcome) -> ActionResponse:
    return ActionResponse(
        ok=outcome.ok,
        phase=outcome.phase.value,
        stage=outcome.stage,
        session=outcome.session,
        detail=outcome.detail,
        standings=_standings_response(controller, outcome.result) if controller is not None and outcome.result else None,
    )


# ── Sessions (2) ──


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    body: CreateSessionRequest,
    service: StageService = Depends(get_stage_service),
):
    """Create a lobby session with the chosen stages."""
    try:
        session = await service.create_session(body.enabled_stages)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return session


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session_detail(
    session_id: str,
    service: StageService = Depends(get_stage_service),
):
    controller = await service.get_controller(session_id)
    snapshot = controller.cache.snapshot()
    return SessionDetailResponse(
        session=snapshot.session,
        players=[p for p in snapshot.players if not p.is_kicked],
        phase=controller.phase.value,
        countdown=controller.countdown_remaining,
    )


# ── Roster (2) ──


@router.post("/sessions/{session_id}/players", response_model=PlayerResponse, status_code=201)
async def join_session(
    session_id: str,
    body: JoinRequest,
    service: StageService = Depends(get_stage_service),
):
    """Join as a player or spectator."""
    try:
        player = await service.join(session_id, body.name, body.photo_url, body.is_spectator)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return player


@router.post("/players/{player_id}/kick", response_model=ActionResponse)
async def kick_player(
    player_id: str,
    service: StageService = Depends(get_stage_service),
):
    """Remove a player from the show. Kicks carry no standings."""
    return _action_response(None, await service.kick_player(player_id))


# ── Host actions (7) ──


@router.post("/sessions/{session_id}/ready", response_model=ActionResponse)
async def set_ready(
    session_id: str,
    service: StageService = Depends(get_stage_service),
):
    controller = await service.get_controller(session_id)
    return _action_response(controller, await controller.set_ready())


@router.post("/sessions/{session_id}/begin", response_model=ActionResponse)
async def begin_stage(
    session_id: str,
    body: BeginStageRequest | None = None,
    service: StageService = Depends(get_stage_service),
):
    """Start the first (or a chosen) stage with a countdown."""
    controller = await service.get_controller(session_id)
    try:
        outcome = await controller.begin_stage(body.stage if body else None)
    except InvalidTransitionError:
        raise
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _action_response(controller, outcome)


@router.post("/sessions/{session_id}/advance", response_model=ActionResponse)
async def advance_stage(
    session_id: str,
    body: ForceRequest | None = None,
    service: StageService = Depends(get_stage_service),
):
    """Rank now if everyone finished (or ``force``), otherwise wait for them."""
    controller = await service.get_controller(session_id)
    outcome = await controller.advance(force=body.force if body else False)
    return _action_response(controller, outcome)


@router.post("/sessions/{session_id}/conclude", response_model=ActionResponse)
async def conclude_stage(
    session_id: str,
    service: StageService = Depends(get_stage_service),
):
    """Eliminate the tail of the ranking and move to the next stage."""
    controller = await service.get_controller(session_id)
    return _action_response(controller, await controller.conclude())


@router.post("/sessions/{session_id}/next", response_model=ActionResponse)
async def next_stage(
    session_id: str,
    body: ForceRequest | None = None,
    service: StageService = Depends(get_stage_service),
):
    controller = await service.get_controller(session_id)
    outcome = await controller.next_stage(force=body.force if body else False)
    return _action_response(controller, outcome)


@router.post("/sessions/{session_id}/skip", response_model=ActionResponse)
async def skip_stage(
    session_id: str,
    service: StageService = Depends(get_stage_service),
):
    controller = await service.get_controller(session_id)
    return _action_response(controller, await controller.skip())


@router.post("/sessions/{session_id}/reset", response_model=ActionResponse)
async def reset_session(
    session_id: str,
    service: StageService = Depends(get_stage_service),
):
    controller = await service.get_controller(session_id)
    return _action_response(controller, await controller.reset())


# ── Standings (3) ──


@router.get("/sessions/{session_id}/standings", response_model=StandingsResponse)
async def get_standings(
    session_id: str,
    stage: int | None = None,
    service: StageService = Depends(get_stage_service),
):
    """Current ranking with the advancing / eliminated split."""
    controller = await service.get_controller(session_id)
    try:
        result = controller.standings(stage)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _standings_response(controller, result)


@router.get("/sessions/{session_id}/completion", response_model=CompletionResponse)
async def get_completion(
    session_id: str,
    service: StageService = Depends(get_stage_service),
):
    controller = await service.get_controller(session_id)
    status = controller.completion()
    return CompletionResponse(
        stage=status.stage,
        total=status.total,
        finished=list(status.finished),
        pending=list(status.pending),
        all_finished=status.all_finished,
    )


@router.get("/sessions/{session_id}/podium", response_model=PodiumResponse)
async def get_podium(
    session_id: str,
    service: StageService = Depends(get_stage_service),
):
    """Champion screen: top three of the final stage."""
    controller = await service.get_controller(session_id)
    final_stage = max(controller.session.enabled_stages)
    entries = [
        _entry_response(controller, entry, eliminated=False, prize_round=_CHAMPION_ROUND)
        for entry in controller.podium()
    ]
    return PodiumResponse(stage=final_stage, entries=entries)


# ── Mini-game writes (2) ──


@router.put("/sessions/{session_id}/scores", response_model=ScoreResponse)
async def submit_score(
    session_id: str,
    body: ScoreRequest,
    service: StageService = Depends(get_stage_service),
):
    return await service.submit_score(session_id, body.player_id, body.stage, body.score, body.time_taken)


@router.put("/sessions/{session_id}/progress", response_model=ProgressResponse)
async def submit_progress(
    session_id: str,
    body: ProgressRequest,
    service: StageService = Depends(get_stage_service),
):
    try:
        progress = PlayerProgress(game_session_id=session_id, **body.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return await service.submit_progress(progress)


# ── Catalogue (1) ──


@router.get("/stages", response_model=StageCatalogueResponse)
async def get_stage_catalogue(settings: Settings = Depends(get_settings)):
    return StageCatalogueResponse(
        stages=[
            StageInfoResponse(
                stage=stage,
                name=STAGE_NAMES[stage],
                codename=STAGE_CODENAMES[stage],
                elimination_count=elimination_count(stage),
            )
            for stage in ALL_STAGES
        ],
        countdown_seconds=settings.countdown_seconds,
        max_players=settings.max_players,
    )
