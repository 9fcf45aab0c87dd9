"""Latest-value cache for extracted artifacts."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional

from ..constants import RESERVED_SHEET_NAME
from ..errors import NotFound, NotReady
from ..models.artifact import ArtifactInfo, ArtifactKind, CachedArtifact

IMAGE_KINDS = (ArtifactKind.MAP, ArtifactKind.MAP_HD)


class ArtifactCache:
    """Holds the most recent artifact of each kind.

    Every slot holds either nothing or one immutable value, and writers
    replace a slot with a single reference assignment. Readers therefore
    need no lock and never see a partially written value. Only
    last-write-wins ordering is guaranteed.
    """

    def __init__(self):
        self._images: Mapping[ArtifactKind, CachedArtifact] = MappingProxyType({})
        self._sheets: Optional[Mapping[str, CachedArtifact]] = None

    # ── Writes ───────────────────────────────────────────────────────────

    def write(self, kind: ArtifactKind, data: bytes):
        """Replace the cached image for ``kind``."""
        if kind not in IMAGE_KINDS:
            raise ValueError(f"{kind.value} is not an image artifact; use write_index")
        images = dict(self._images)
        images[kind] = CachedArtifact(kind=kind, data=bytes(data))
        self._images = MappingProxyType(images)

    def write_index(self, sheets: Mapping[str, bytes]):
        """Replace the whole character sheet index.

        Sheets missing from ``sheets`` disappear from the cache only here,
        when the new index is swapped in.
        """
        index = {
            name: CachedArtifact(kind=ArtifactKind.CHARACTER_SHEET, name=name, data=bytes(data))
            for name, data in sheets.items()
            if name != RESERVED_SHEET_NAME
        }
        self._sheets = MappingProxyType(index)

    # ── Reads ────────────────────────────────────────────────────────────

    def read(self, kind: ArtifactKind) -> bytes:
        """Return the cached image bytes for ``kind``.

        Raises:
            NotReady: nothing has been written for ``kind`` yet.
        """
        artifact = self._images.get(kind)
        if artifact is None:
            raise NotReady(f"cached {kind.value} not yet ready")
        return artifact.data

    def sheet_names(self) -> list[str]:
        """Sorted names in the current sheet index.

        Raises:
            NotReady: no sheet index has been built yet.
        """
        sheets = self._sheets
        if sheets is None:
            raise NotReady("cached character sheets not yet ready")
        return sorted(name for name in sheets if name != RESERVED_SHEET_NAME)

    def read_sheet(self, name: str) -> bytes:
        """Return one character sheet document.

        Raises:
            NotReady: no sheet index has been built yet.
            NotFound: the current index has no sheet called ``name``.
        """
        sheets = self._sheets
        if sheets is None:
            raise NotReady("cached character sheets not yet ready")
        artifact = sheets.get(name)
        if artifact is None:
            raise NotFound(f"character sheet {name!r} not found")
        return artifact.data

    def has(self, kind: ArtifactKind) -> bool:
        if kind is ArtifactKind.CHARACTER_SHEET:
            return self._sheets is not None
        return kind in self._images

    def artifacts(self) -> list[ArtifactInfo]:
        """Metadata for everything currently cached."""
        images = self._images
        sheets = self._sheets or {}
        infos = [ArtifactInfo.from_artifact(images[kind]) for kind in IMAGE_KINDS if kind in images]
        infos.extend(ArtifactInfo.from_artifact(sheets[name]) for name in sorted(sheets))
        return infos
