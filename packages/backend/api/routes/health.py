"""Health check endpoints."""

from fastapi import APIRouter

from api.deps import Services

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(services: Services) -> dict:
    """Readiness check including the inference engine."""
    state = services.lifecycle.loading_state
    return {
        "status": "ready" if state.is_ready else "not_ready",
        "services": {
            "model": state.status.value,
            "active_model": services.downloads.active_model,
            "loaded_model": services.lifecycle.loaded_model,
        },
    }
