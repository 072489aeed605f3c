"""
Health check endpoint.
"""
from typing import Any

from fastapi import APIRouter

from src.api.dependencies import Services

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(services: Services) -> dict[str, Any]:
    """Liveness plus streaming statistics."""
    return {
        "status": "ok",
        "activeStreams": services.registry.active_count,
        "runningGenerations": services.orchestrator.active_count,
    }
