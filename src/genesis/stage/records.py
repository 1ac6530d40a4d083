"""Typed views of the four shared-state records.

The store moves plain dicts; the stage flow validates them into these
models at the boundary and dumps them back when writing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

SessionStatus = Literal["lobby", "stage1", "stage2", "stage3", "completed"]
ProgressStatus = Literal["waiting", "playing", "finished"]
RoundResult = Literal["win", "draw", "lose"]

_ROUND_LETTERS: dict[str, RoundResult] = {"W": "win", "D": "draw", "L": "lose"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore", allow_inf_nan=False)


class GameSession(_Record):
    id: str
    status: SessionStatus = "lobby"
    current_stage: int = 0
    enabled_stages: list[int] = Field(default_factory=lambda: [1, 2, 3])
    is_ready: bool = False
    starts_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("enabled_stages", mode="before")
    @classmethod
    def _default_stages(cls, value: Any) -> Any:
        # Rows written by older clients may carry NULL or an empty list.
        if not value:
            return [1, 2, 3]
        return value


class Player(_Record):
    id: str
    game_session_id: str
    name: str
    photo_url: str | None = None
    avatar_color: str = "#3b82f6"
    is_spectator: bool = False
    is_eliminated: bool = False
    is_kicked: bool = False
    eliminated_at_stage: int | None = None
    joined_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Still competing: not watching, not removed by the host, not knocked out."""
        return not (self.is_spectator or self.is_kicked or self.is_eliminated)


class StageScore(_Record):
    id: str | None = None
    player_id: str
    game_session_id: str
    stage: int
    score: float
    time_taken: float | None = None
    rank: int | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# extra_data: per-stage payload of Player Progress
# ---------------------------------------------------------------------------


class Stage1Extra(BaseModel):
    stage: Literal[1] = 1


class Stage2Extra(BaseModel):
    stage: Literal[2] = 2
    round_results: list[RoundResult] = Field(default_factory=list)

    @field_validator("round_results", mode="before")
    @classmethod
    def _parse_letters(cls, value: Any) -> Any:
        # Phones report rounds compactly as a string such as "WDLWW".
        if isinstance(value, str):
            try:
                return [_ROUND_LETTERS[letter] for letter in value.upper()]
            except KeyError as exc:
                raise ValueError(f"Unknown round result {exc.args[0]!r}") from exc
        return value


class Stage3Extra(BaseModel):
    stage: Literal[3] = 3
    game_phase: Literal["trial", "actual"] = "trial"
    trial_time: float | None = None


StageExtra = Annotated[Union[Stage1Extra, Stage2Extra, Stage3Extra], Field(discriminator="stage")]


class PlayerProgress(_Record):
    id: str | None = None
    player_id: str
    game_session_id: str
    stage: int
    progress: float = 0
    elapsed_time: float = 0
    status: ProgressStatus = "waiting"
    current_score: float = 0
    extra_data: StageExtra | None = None
    updated_at: datetime | None = None

    @field_validator("extra_data", mode="before")
    @classmethod
    def _tag_extra(cls, value: Any, info: ValidationInfo) -> Any:
        # Untagged payloads take their variant from the row's stage.
        if isinstance(value, dict) and "stage" not in value and "stage" in info.data:
            return {**value, "stage": info.data["stage"]}
        return value

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"
