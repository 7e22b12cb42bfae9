"""HTTP API layer: health and readiness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from trace_assistant.api.deps import get_container
from trace_assistant.core.container import AppContainer

router = APIRouter(tags=["health"])


@router.get("/health")
def health(container: AppContainer = Depends(get_container)) -> dict:
    return {
        "status": "ok",
        "sessions": len(container.session_store),
        "pacing_profile": container.pacing.profile_name,
        "env": container.settings.env,
    }
