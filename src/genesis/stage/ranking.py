"""Deterministic stage ranking.

Stages 1 and 3 rank by score ASC (seconds taken / deviation from 7.7 s).
Stage 2 ranks by score DESC, then by elapsed time ASC.

In every stage players whose progress is ``finished`` rank above everyone
still playing. Ties keep input order (``sorted`` is stable), so the roster
should be passed in join order.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from genesis.stage.constants import ALL_STAGES, ASCENDING_STAGES
from genesis.stage.records import Player, PlayerProgress, StageScore

_INF = math.inf


@dataclass(frozen=True)
class RankedEntry:
    player_id: str
    rank: int
    score: float | None
    elapsed_time: float | None
    progress: float
    finished: bool


def stage_contenders(players: Iterable[Player], stage: int) -> list[Player]:
    """Players who competed in ``stage``.

    Active players plus anyone eliminated at ``stage`` or later, so that
    re-ranking a stage after its eliminations were written still yields
    the same order.
    """
    contenders = []
    for player in players:
        if player.is_spectator or player.is_kicked:
            continue
        if player.is_eliminated and (player.eliminated_at_stage or 0) < stage:
            continue
        contenders.append(player)
    return contenders


def _elapsed(score: StageScore | None, progress: PlayerProgress | None) -> float | None:
    if progress is not None and progress.elapsed_time:
        return progress.elapsed_time
    if score is not None and score.time_taken is not None:
        return score.time_taken
    return None


def _ascending_key(score: StageScore | None, progress: PlayerProgress | None) -> tuple:
    finished = progress is not None and progress.is_finished
    if finished:
        return (0, 0, score.score if score is not None else _INF)
    if score is not None:
        return (1, 0, score.score)
    # Unscored players fall back to how far they got, never above a score.
    return (1, 1, -(progress.progress if progress is not None else 0))


def _descending_key(score: StageScore | None, progress: PlayerProgress | None) -> tuple:
    finished = progress is not None and progress.is_finished
    elapsed = _elapsed(score, progress)
    if finished:
        if score is None:
            return (0, 1, 0, _INF)
        return (0, 0, -score.score, elapsed if elapsed is not None else _INF)

    if score is not None:
        return (1, 0, -score.score, elapsed if elapsed is not None else _INF)
    # Unscored players rank on their live score, below every submitted one.
    if progress is not None:
        return (1, 1, -progress.current_score, elapsed if elapsed is not None else _INF)
    return (1, 2, 0, _INF)


def rank_players(
    stage: int,
    players: Iterable[Player],
    scores: Mapping[str, StageScore],
    progress: Mapping[str, PlayerProgress],
) -> list[RankedEntry]:
    """Rank ``players`` for ``stage``, best first.

    ``scores`` and ``progress`` are keyed by player id and hold that
    player's records for ``stage`` only. Raises ValueError for an unknown stage.
    """
    if stage not in ALL_STAGES:
        raise ValueError(f"Unknown stage {stage}. Valid stages: {list(ALL_STAGES)}")

    key_fn = _ascending_key if stage in ASCENDING_STAGES else _descending_key
    roster = list(players)
    ordered = sorted(roster, key=lambda p: key_fn(scores.get(p.id), progress.get(p.id)))

    ranked = []
    for idx, player in enumerate(ordered):
        score = scores.get(player.id)
        record = progress.get(player.id)
        ranked.append(RankedEntry(
            player_id=player.id,
            rank=idx + 1,
            score=score.score if score is not None else None,
            elapsed_time=_elapsed(score, record),
            progress=record.progress if record is not None else 0,
            finished=record is not None and record.is_finished,
        ))
    return ranked


def rank_order(
    stage: int,
    players: Iterable[Player],
    scores: Mapping[str, StageScore],
    progress: Mapping[str, PlayerProgress],
) -> list[str]:
    """Player ids best to worst."""
    return [entry.player_id for entry in rank_players(stage, players, scores, progress)]
