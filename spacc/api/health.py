"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from spacc.api.deps import get_progress_manager, get_settings
from spacc.config import Settings
from spacc.services.progress_service import ProgressSessionManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    reports_dir: str
    active_sessions: int


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    settings: Annotated[Settings, Depends(get_settings)],
    manager: Annotated[ProgressSessionManager, Depends(get_progress_manager)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    reports_status = "ok"
    if not settings.reports_dir.is_dir():
        logger.warning("Health check: reports directory %s is missing", settings.reports_dir)
        reports_status = "missing"

    return HealthResponse(
        status="ok" if reports_status == "ok" else "degraded",
        version="0.1.0",
        reports_dir=reports_status,
        active_sessions=len(manager.list_sessions()),
    )
