"""Progress session schemas."""

from __future__ import annotations

from pydantic import BaseModel


class SessionInfoResponse(BaseModel):
    """Live state of one progress session."""

    session_id: str
    cancelled: bool
    client_disconnected: bool
    completed: bool
    started_at: str
    running_for_ms: int


class SessionListResponse(BaseModel):
    sessions: list[SessionInfoResponse]


class CancelResponse(BaseModel):
    ok: bool
    session_id: str
    message: str
