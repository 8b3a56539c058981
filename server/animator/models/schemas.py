"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GenerationStep(str, Enum):
    """UI state of one generation session."""

    IDLE = "IDLE"
    INITIALIZING = "INITIALIZING"
    UPLOADING = "UPLOADING"
    GENERATING = "GENERATING"
    FETCHING = "FETCHING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class AnimationState(BaseModel):
    """Snapshot of a socket session, as rendered by the browser."""

    session_id: str
    is_generating: bool = False
    step: GenerationStep = GenerationStep.IDLE
    progress_message: str = ""
    error: Optional[str] = None
    video_url: Optional[str] = Field(default=None, description="Locator of the finished video")
    has_image: bool = False


class CredentialStatusResponse(BaseModel):
    has_credential: bool


class CredentialSelectRequest(BaseModel):
    """Payload for selecting the Gemini API key used by new generations."""

    api_key: str = Field(..., min_length=1, description="Gemini API key")
