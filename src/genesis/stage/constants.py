"""Show constants: stage catalogue, elimination table, palette, countdown."""

from __future__ import annotations

ALL_STAGES: tuple[int, ...] = (1, 2, 3)

STAGE_NAMES: dict[int, str] = {
    1: "Tap to Run",
    2: "Rock Paper Scissors",
    3: "Stop at 7.7s",
}

STAGE_CODENAMES: dict[int, str] = {
    1: "SPEED PROTOCOL",
    2: "PREDICTION MATRIX",
    3: "PRECISION PROTOCOL",
}

# Stage 1 scores elapsed seconds, stage 3 deviation from 7.7 s: lower wins.
# Stage 2 scores rock-paper-scissors points: higher wins.
ASCENDING_STAGES: frozenset[int] = frozenset({1, 3})

# Players removed at the end of each stage. Stage 3 is the final and is
# settled by the champion ranking, not by roster removal.
ELIMINATIONS: dict[int, int] = {
    1: 4,
    2: 3,
    3: 0,
}

COUNTDOWN_SECONDS = 5
MAX_PLAYERS = 10

PLAYER_COLORS: tuple[str, ...] = (
    "#ef4444",  # red
    "#f97316",  # orange
    "#eab308",  # yellow
    "#22c55e",  # green
    "#14b8a6",  # teal
    "#3b82f6",  # blue
    "#8b5cf6",  # violet
    "#ec4899",  # pink
    "#f43f5e",  # rose
    "#06b6d4",  # cyan
)


def stage_status(stage: int) -> str:
    """Game Session ``status`` value while ``stage`` is being played."""
    return f"stage{stage}"


def next_enabled_stage(current_stage: int, enabled_stages: list[int]) -> int | None:
    """Stage that follows ``current_stage`` in the session, or None after the last one."""
    ordered = sorted(set(enabled_stages))
    if current_stage not in ordered:
        return None
    index = ordered.index(current_stage)
    if index == len(ordered) - 1:
        return None
    return ordered[index + 1]
