"""Health check endpoint."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from closure.config import APP_VERSION

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Liveness probe plus the AI collaborator's current capability."""
    orchestrator = request.app.state.orchestrator
    availability = await orchestrator.ai.availability()

    return {
        "status": "healthy",
        "service": "Closure",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "ai": availability.value,
        "inflight": len(orchestrator.inflight),
    }
