"""Pydantic models for cached artifacts."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ArtifactKind(str, Enum):
    """Kinds of artifact extracted from a Roll20 game."""

    MAP = "map"
    MAP_HD = "map_hd"
    CHARACTER_SHEET = "character_sheet"


class CachedArtifact(BaseModel):
    """One fully extracted artifact. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    kind: ArtifactKind
    name: Optional[str] = None  # sheet name, character sheets only
    data: bytes
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def size(self) -> int:
        return len(self.data)


class ArtifactInfo(BaseModel):
    """Artifact metadata without the payload, for status responses."""

    kind: ArtifactKind
    name: Optional[str] = None
    size: int
    fetched_at: str

    @classmethod
    def from_artifact(cls, artifact: CachedArtifact) -> ArtifactInfo:
        return cls(
            kind=artifact.kind,
            name=artifact.name,
            size=artifact.size,
            fetched_at=artifact.fetched_at.isoformat(),
        )
