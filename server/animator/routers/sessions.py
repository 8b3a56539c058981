"""Session status endpoints for the animator."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from ..models import schemas

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/{session_id}", response_model=schemas.AnimationState)
async def get_session_status(session_id: str, request: Request) -> schemas.AnimationState:
    """Return the current state for a connected socket session."""

    state = request.app.state.sessions.get_state(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return state
