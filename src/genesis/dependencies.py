"""Shared FastAPI dependencies."""

from fastapi import Request

from genesis.stage.service import StageService
from genesis.state.store import StateStore


def get_stage_service(request: Request) -> StageService:
    """The process-wide stage service built at startup."""
    return request.app.state.stage_service


def get_store(request: Request) -> StateStore:
    return request.app.state.stage_service.store
