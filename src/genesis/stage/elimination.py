"""Elimination policy: how many players leave after a stage, and who."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import structlog

from genesis.stage.constants import ELIMINATIONS
from genesis.stage.records import Player
from genesis.state.store import Record, StateStore, StateStoreError, Table

logger = structlog.get_logger()


def elimination_count(stage: int) -> int:
    """Players eliminated at the end of ``stage``; 0 for unknown stages."""
    return ELIMINATIONS.get(stage, 0)


@dataclass(frozen=True)
class EliminationSplit:
    stage: int
    advancing: tuple[str, ...]
    eliminated: tuple[str, ...]

    @property
    def has_eliminations(self) -> bool:
        return bool(self.eliminated)


def split_ranking(ranked: Sequence[str], count: int) -> tuple[list[str], list[str]]:
    """Split a best-first order into (advancing, eliminated).

    ``count`` is clamped to ``[0, len(ranked)]``; zero eliminates nobody.
    """
    count = max(0, min(count, len(ranked)))
    cut = len(ranked) - count
    return list(ranked[:cut]), list(ranked[cut:])


def plan_eliminations(stage: int, ranked: Sequence[str]) -> EliminationSplit:
    advancing, eliminated = split_ranking(ranked, elimination_count(stage))
    return EliminationSplit(stage=stage, advancing=tuple(advancing), eliminated=tuple(eliminated))


@dataclass
class EliminationReport:
    stage: int
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    rows: list[Record] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


async def apply_eliminations(
    store: StateStore,
    split: EliminationSplit,
    players: Iterable[Player],
) -> EliminationReport:
    """Persist the elimination flags for ``split.eliminated``.

    Players already eliminated are left untouched so ``eliminated_at_stage``
    keeps its first value. Write failures are collected, not raised;
    callers re-run the apply step, which only touches what is missing.
    """
    by_id = {player.id: player for player in players}
    report = EliminationReport(stage=split.stage)

    for player_id in split.eliminated:
        player = by_id.get(player_id)
        if player is not None and player.is_eliminated:
            report.skipped.append(player_id)
            continue
        try:
            # Guarded on is_eliminated so a concurrent apply cannot restamp the stage.
            rows = await store.update(
                Table.PLAYERS,
                {"id": player_id, "is_eliminated": False},
                {"is_eliminated": True, "eliminated_at_stage": split.stage},
            )
        except StateStoreError as exc:
            logger.warning(
                "elimination_write_failed",
                player_id=player_id,
                stage=split.stage,
                error=str(exc),
            )
            report.failed.append(player_id)
            continue
        if not rows:
            # Eliminated by someone else since our snapshot, or no longer exists.
            report.skipped.append(player_id)
            continue
        report.written.append(player_id)
        report.rows.extend(rows)

    logger.info(
        "players_eliminated",
        stage=split.stage,
        written=len(report.written),
        skipped=len(report.skipped),
        failed=len(report.failed),
    )
    return report
