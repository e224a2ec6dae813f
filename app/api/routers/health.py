"""Health check router."""

from fastapi import APIRouter

from phase_forge.config import VERSION

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness probe; the pipeline keeps no external connections."""
    return {"status": "ok"}


@router.get("/health/version")
async def health_version() -> dict:
    """Return the package version."""
    return {"version": VERSION}
