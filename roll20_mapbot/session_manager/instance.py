"""One configured Roll20 target: session, lock, cache and refresh loops."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Awaitable, Callable, Optional

from ..config import AppConfig, TargetConfig
from ..models.artifact import ArtifactKind
from ..models.session import SessionStatus
from .browser import Roll20Session
from .cache import ArtifactCache
from .scheduler import RefreshScheduler

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class Roll20Instance:
    """Read and lifecycle API for one target.

    ``lock`` serializes every interaction with the browser session. Cache
    reads never take it, so they return immediately even while a fetch or
    relaunch is in progress.
    """

    def __init__(
        self,
        target: TargetConfig,
        settings: AppConfig,
        session: Optional[Roll20Session] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        **scheduler_options,
    ):
        self.name = target.name
        self.lock = asyncio.Lock()
        self.cache = ArtifactCache()
        self.session = session or Roll20Session(
            email=target.email,
            password=target.password.get_secret_value(),
            game=target.game,
            viewport_width=settings.viewport_width,
            viewport_height=settings.viewport_height,
        )
        self.scheduler = RefreshScheduler(
            self.session,
            self.cache,
            self.lock,
            resolutions=(settings.standard_resolution, settings.hd_resolution),
            sleep=sleep,
            **scheduler_options,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def launch(self):
        """Launch the session, preload every artifact kind, then start refreshing.

        The cache is populated before this returns. Setup errors propagate.
        """
        async with self.lock:
            await self.session.launch()
            await self.scheduler.preload()
        self.scheduler.start()
        logger.info(f"[{self.name}] Roll20 instance is ready")

    async def relaunch(self):
        """Tear the browser down and log in again."""
        async with self.lock:
            await self.session.relaunch()

    async def close(self):
        """Close the session for good and stop the refresh loops."""
        async with self.lock:
            await self.session.close()
        await self.scheduler.stop()
        logger.info(f"[{self.name}] Roll20 instance closed")

    # ── Reads (no lock) ──────────────────────────────────────────────────

    def get_map(self, hd: bool = False) -> bytes:
        return self.cache.read(ArtifactKind.MAP_HD if hd else ArtifactKind.MAP)

    def list_character_sheets(self) -> list[str]:
        return self.cache.sheet_names()

    def get_character_sheet(self, name: str) -> bytes:
        return self.cache.read_sheet(name)

    def status(self) -> SessionStatus:
        sheets_ready = self.cache.has(ArtifactKind.CHARACTER_SHEET)
        return SessionStatus(
            target=self.name,
            game=self.session.game,
            state=self.session.state,
            closed=self.session.closed,
            map_ready=self.cache.has(ArtifactKind.MAP),
            sheets_ready=sheets_ready,
            sheet_count=len(self.cache.sheet_names()) if sheets_ready else 0,
            artifacts=self.cache.artifacts(),
        )
