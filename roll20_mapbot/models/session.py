"""Pydantic models for session state."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from .artifact import ArtifactInfo


class SessionState(str, Enum):
    """Lifecycle of the automated browser session."""

    CLOSED = "closed"
    LAUNCHING = "launching"
    LOGGING_IN = "logging_in"
    SELECTING_WORKSPACE = "selecting_workspace"
    READY = "ready"


class SessionStatus(BaseModel):
    """Current state of one target's browser session and cache."""

    target: str
    game: str
    state: SessionState = SessionState.CLOSED
    closed: bool = False
    map_ready: bool = False
    sheets_ready: bool = False
    sheet_count: int = 0
    artifacts: list[ArtifactInfo] = Field(default_factory=list)
