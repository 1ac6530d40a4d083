"""ORM models for the four shared-state tables.

Table names keep the ``cg_`` prefix used by the live deployment so the host
dashboard, main stage and phones all read the same rows.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from genesis.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Game sessions
# ---------------------------------------------------------------------------


class GameSession(Base):
    """One live event instance; the single shared point of coordination."""

    __tablename__ = "cg_game_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="lobby")
    current_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled_stages: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=lambda: [1, 2, 3])
    is_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------


class Player(Base):
    """A participant (or spectator) of one game session."""

    __tablename__ = "cg_players"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    game_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cg_game_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    avatar_color: Mapped[str] = mapped_column(String(16), nullable=False, default="#3b82f6")
    is_spectator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_eliminated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_kicked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    eliminated_at_stage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# Stage scores and live progress
# ---------------------------------------------------------------------------


class StageScore(Base):
    """Final outcome of one player in one stage."""

    __tablename__ = "cg_stage_scores"
    __table_args__ = (
        UniqueConstraint("player_id", "game_session_id", "stage", name="uq_cg_stage_scores_player_stage"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    player_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cg_players.id", ondelete="CASCADE"), nullable=False,
    )
    game_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cg_game_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    time_taken: Mapped[float | None] = mapped_column(Float, nullable=True)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PlayerProgress(Base):
    """Live status of one player in one stage, rewritten continuously during play."""

    __tablename__ = "cg_player_progress"
    __table_args__ = (
        UniqueConstraint("player_id", "game_session_id", "stage", name="uq_cg_player_progress_player_stage"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    player_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cg_players.id", ondelete="CASCADE"), nullable=False,
    )
    game_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cg_game_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    elapsed_time: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="waiting")
    current_score: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    extra_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
