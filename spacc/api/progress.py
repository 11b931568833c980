"""Progress session API endpoints: cancel and introspection."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from spacc.api.deps import get_progress_manager
from spacc.schemas.progress import CancelResponse, SessionInfoResponse, SessionListResponse
from spacc.services.progress_service import ProgressSessionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.post("/{session_id}/cancel", response_model=CancelResponse)
async def cancel_session_endpoint(
    session_id: str,
    manager: Annotated[ProgressSessionManager, Depends(get_progress_manager)],
) -> CancelResponse:
    """Request cooperative cancellation. Repeated calls are no-ops."""
    result = manager.cancel(session_id)
    if not result.ok:
        raise HTTPException(status_code=404, detail="Session not found")
    return CancelResponse(ok=True, session_id=session_id, message=result.message)


@router.get("/{session_id}", response_model=SessionInfoResponse)
async def get_session_endpoint(
    session_id: str,
    manager: Annotated[ProgressSessionManager, Depends(get_progress_manager)],
) -> SessionInfoResponse:
    """Return the live state of one session."""
    session = manager.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionInfoResponse(**session.info())


@router.get("", response_model=SessionListResponse)
async def list_sessions_endpoint(
    manager: Annotated[ProgressSessionManager, Depends(get_progress_manager)],
) -> SessionListResponse:
    """Return every active session."""
    return SessionListResponse(
        sessions=[SessionInfoResponse(**session.info()) for session in manager.list_sessions()]
    )
