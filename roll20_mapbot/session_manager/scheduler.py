"""Periodic refresh loops feeding the artifact cache from the browser session."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import nullcontext
from typing import Awaitable, Callable

from ..config import MAP_FORMAT, MAP_QUALITY, MAP_REFRESH_SECONDS, SHEET_REFRESH_SECONDS
from ..errors import ExtractionFailed, SetupFailed
from ..models.artifact import ArtifactKind
from .browser import Roll20Session
from .cache import ArtifactCache
from .imaging import render_map

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class RefreshScheduler:
    """Keeps the map and character sheet caches fresh.

    Each artifact kind has its own loop and cadence. Every call into the
    session goes through ``guard`` except during preload, which runs while
    the launching caller already holds it. A failed cycle relaunches the
    session and is retried straight away, with no retry limit.
    """

    def __init__(
        self,
        session: Roll20Session,
        cache: ArtifactCache,
        guard: asyncio.Lock,
        resolutions: tuple[int, int] = (1000, 2000),
        map_interval: float = MAP_REFRESH_SECONDS,
        sheet_interval: float = SHEET_REFRESH_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        map_format: str = MAP_FORMAT,
        map_quality: int = MAP_QUALITY,
    ):
        self._session = session
        self._cache = cache
        self._guard = guard
        self._resolutions = resolutions
        self._map_interval = map_interval
        self._sheet_interval = sheet_interval
        self._sleep = sleep
        self._map_format = map_format
        self._map_quality = map_quality
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def preload(self):
        """Fill the cache once for every kind. The caller must hold the guard."""
        await self._refresh_until_success("map", self.refresh_map, guarded=False)
        await self._refresh_until_success("character sheets", self.refresh_sheets, guarded=False)

    def start(self):
        """Spawn the background loops."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._loop("map", self.refresh_map, self._map_interval)),
            asyncio.create_task(self._loop("character sheets", self.refresh_sheets, self._sheet_interval)),
        ]

    async def stop(self):
        """Cancel the loops. Call after the session was closed under the guard."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── Loops ────────────────────────────────────────────────────────────

    async def _loop(self, label: str, refresh: Callable[[bool], Awaitable[None]], interval: float):
        while not self._session.closed:
            await self._sleep(interval)
            if self._session.closed:
                break
            await self._refresh_until_success(label, refresh, guarded=True)
        logger.info(f"Periodic {label} fetch stopped")

    async def _refresh_until_success(
        self, label: str, refresh: Callable[[bool], Awaitable[None]], guarded: bool
    ):
        while not self._session.closed:
            logger.info(f"Starting periodic {label} fetch")
            try:
                await refresh(guarded)
                return
            except ExtractionFailed as e:
                logger.error(f"Error getting {label}: {e}")
                await self._relaunch(guarded)

    async def _relaunch(self, guarded: bool):
        try:
            async with self._lock(guarded):
                await self._session.relaunch()
        except SetupFailed as e:
            logger.error(f"Error relaunching roll20 session: {e}")

    def _lock(self, guarded: bool):
        return self._guard if guarded else nullcontext()

    # ── Refresh cycles ───────────────────────────────────────────────────

    async def refresh_map(self, guarded: bool = True):
        """Export, post-process and cache the map in every configured resolution."""
        async with self._lock(guarded):
            img = await self._session.fetch_map()

        logger.info("Getting visible parts of image")
        standard, hd = await asyncio.to_thread(
            render_map, img, self._resolutions, self._map_format, self._map_quality
        )
        self._cache.write(ArtifactKind.MAP, standard)
        self._cache.write(ArtifactKind.MAP_HD, hd)
        logger.info("Image saved")

    async def refresh_sheets(self, guarded: bool = True):
        """Print every character sheet and swap in the new index.

        A failure on any single sheet fails the whole cycle and the previous
        index stays in place.
        """
        async with self._lock(guarded):
            names = await self._session.list_sheet_names()

        sheets: dict[str, bytes] = {}
        for name in names:
            logger.info(f"Getting character sheet: {name}")
            async with self._lock(guarded):
                sheets[name] = await self._session.fetch_sheet(name)

        self._cache.write_index(sheets)
        logger.info(f"Character sheets saved ({len(sheets)})")
