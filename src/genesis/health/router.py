"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends

from genesis.config import get_settings
from genesis.dependencies import get_store
from genesis.state.store import StateStore, StateStoreError

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    store: StateStore = Depends(get_store),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: checks the shared state store (database and Redis)."""
    checks: dict[str, object] = {}

    try:
        await store.ping()
        checks["state_store"] = "ok"
    except StateStoreError as exc:
        checks["state_store"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return service version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
