"""Camoufox browser automation: launch, login, game selection, artifact extraction."""

from __future__ import annotations

import io
import logging
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

from camoufox.async_api import AsyncCamoufox
from PIL import Image
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from ..config import (
    BROWSER_HEADLESS,
    BROWSER_TIMEOUT,
    DIALOG_CLOSE_SETTLE_SECONDS,
    EDITOR_LOAD_TIMEOUT_SECONDS,
    EDITOR_SETTLE_SECONDS,
    JOURNAL_OPEN_SETTLE_SECONDS,
    LANDING_SETTLE_SECONDS,
    LOGIN_SETTLE_SECONDS,
    MAP_EXPORT_TIMEOUT_SECONDS,
    POLL_INTERVAL_SECONDS,
    PRINT_TIMEOUT_SECONDS,
)
from ..constants import (
    EDITOR_READY_SCRIPT,
    MAP_DOWNLOAD_NAME,
    ROLL20_BASE,
    ROLL20_EDITOR_URL,
    SELECTORS,
    SHEET_PRINT_NAME,
    SIGN_IN_LABEL,
)
from ..errors import ExtractionFailed, LoginFailed, SetupFailed, SheetNotFound, WorkspaceNotFound
from ..models.session import SessionState
from .parser import find_campaign_id, parse_game_links, parse_journal_names
from .scripts import EXPORT_MAP_SCRIPT
from .waits import Waiter, WaitTimeout

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

# Given the print-to-file target, returns an async context manager whose
# __aenter__ yields a Playwright Browser.
BrowserFactory = Callable[[Path], Any]


def silent_print_prefs(pdf_path: Path) -> dict:
    """Firefox preferences that make window.print() write a PDF to ``pdf_path``."""
    return {
        "print.always_print_silent": True,
        "print.show_print_progress": False,
        "print_printer": "Mozilla Save to PDF",
        "print.printer_Mozilla_Save_to_PDF.print_to_file": True,
        "print.printer_Mozilla_Save_to_PDF.print_to_filename": str(pdf_path),
    }


def _file_settled(path: Path) -> Callable[[], bool]:
    """Predicate that is true once ``path`` exists and its size stopped changing."""
    last_size = -1

    def check() -> bool:
        nonlocal last_size
        if not path.exists():
            return False
        size = path.stat().st_size
        settled = size > 0 and size == last_size
        last_size = size
        return settled

    return check


class Roll20Session:
    """Drives one Camoufox browser logged in to one Roll20 game.

    Not safe for concurrent use: callers serialize every method through the
    owning instance's session lock.
    """

    def __init__(
        self,
        email: str,
        password: str,
        game: str,
        viewport_width: int = 1920,
        viewport_height: int = 1080,
        headless: Optional[bool] = None,
        waiter: Optional[Waiter] = None,
        browser_factory: Optional[BrowserFactory] = None,
    ):
        self._email = email
        self._password = password
        self._game = game
        self._viewport = {"width": viewport_width, "height": viewport_height}
        self._headless = headless if headless is not None else BROWSER_HEADLESS
        self._waiter = waiter or Waiter()
        self._browser_factory = browser_factory or self._camoufox_factory

        self._state = SessionState.CLOSED
        self._closed = False
        self._camoufox = None
        self._browser = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._scratch_dir: Optional[Path] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        """True once close() has been called; the session never launches again."""
        return self._closed

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY and not self._closed

    @property
    def game(self) -> str:
        return self._game

    @property
    def scratch_dir(self) -> Optional[Path]:
        return self._scratch_dir

    def _camoufox_factory(self, pdf_path: Path) -> AsyncCamoufox:
        return AsyncCamoufox(
            headless=self._headless,
            humanize=True,
            i_know_what_im_doing=True,
            disable_coop=True,
            firefox_user_prefs=silent_print_prefs(pdf_path),
        )

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def launch(self):
        """Start the browser, sign in and open the configured game.

        A no-op after close(). On failure everything started so far is torn
        down before the error propagates.

        Raises:
            LoginFailed: signing in failed.
            WorkspaceNotFound: the configured game is not in the listing.
            SetupFailed: any other step failed.
            RuntimeError: the session is already launched.
        """
        if self._closed:
            logger.info("Session has been closed, not launching")
            return
        if self._state is not SessionState.CLOSED:
            raise RuntimeError(f"Cannot launch a session in state {self._state.value}")

        try:
            await self._launch_impl()
        except Exception as e:
            logger.error(f"Failed to launch roll20 session: {e}")
            await self._teardown()
            if isinstance(e, SetupFailed):
                raise
            raise SetupFailed(f"could not launch roll20 session: {e}") from e

    async def _launch_impl(self):
        self._state = SessionState.LAUNCHING

        # The print-to-file target must be known before the browser starts.
        self._scratch_dir = Path(tempfile.mkdtemp(prefix="roll20-"))

        logger.info(f"Launching Camoufox (headless={self._headless})...")
        self._camoufox = self._browser_factory(self._scratch_dir / SHEET_PRINT_NAME)
        self._browser = await self._camoufox.__aenter__()
        self._context = await self._browser.new_context(
            viewport=self._viewport,
            accept_downloads=True,
        )
        self._page = await self._context.new_page()
        self._page.set_default_timeout(BROWSER_TIMEOUT)

        logger.info(f"Navigating to {ROLL20_BASE}")
        await self._page.goto(ROLL20_BASE, wait_until="domcontentloaded")
        await self._waiter.settle(LANDING_SETTLE_SECONDS)

        await self._login()
        await self._waiter.settle(LOGIN_SETTLE_SECONDS)

        await self._select_game()
        await self._page.click(SELECTORS["journal_tab"])

        self._state = SessionState.READY
        logger.info("Browser is ready")

    async def _login(self):
        self._state = SessionState.LOGGING_IN
        logger.info("Logging in to roll20")
        try:
            await self._page.click(SELECTORS["signin_menu"])
            await self._page.fill(SELECTORS["login_email"], self._email)
            await self._page.fill(SELECTORS["login_password"], self._password)

            # The submit control has no id; it is one of many generic buttons.
            for button in await self._page.query_selector_all(SELECTORS["button"]):
                if (await button.inner_text()).strip() == SIGN_IN_LABEL:
                    await button.click()
                    return
        except PlaywrightError as e:
            raise LoginFailed(f"could not sign in: {e}") from e

        raise LoginFailed("could not find submit button from button candidates")

    async def _select_game(self):
        self._state = SessionState.SELECTING_WORKSPACE
        logger.info(f"Finding desired game: {self._game}")

        links = parse_game_links(await self._page.content())
        if not links:
            raise LoginFailed("no game links found after signing in")

        campaign_id = find_campaign_id(links, self._game)
        if campaign_id is None:
            raise WorkspaceNotFound(f"could not find game {self._game!r} among {len(links)} games")

        await self._page.goto(f"{ROLL20_EDITOR_URL}{campaign_id}", wait_until="domcontentloaded")

        logger.info("Waiting for roll20 editor to load")
        try:
            await self._waiter.until(
                self._editor_loaded,
                timeout=EDITOR_LOAD_TIMEOUT_SECONDS,
                interval=POLL_INTERVAL_SECONDS,
                description="roll20 editor",
            )
        except WaitTimeout as e:
            raise SetupFailed(str(e)) from e
        await self._waiter.settle(EDITOR_SETTLE_SECONDS)

    async def _editor_loaded(self) -> bool:
        return bool(await self._page.evaluate(EDITOR_READY_SCRIPT))

    async def relaunch(self):
        """Tear down whatever is running and launch again."""
        logger.info("Restarting roll20 browser")
        await self._teardown()
        await self.launch()

    async def close(self):
        """Permanently close the session. Safe to call more than once."""
        self._closed = True
        await self._teardown()

    async def _teardown(self):
        """Release each resource that exists. Errors are logged, never raised."""
        logger.info("Stopping browser session...")

        try:
            if self._context:
                await self._context.close()
        except Exception as e:
            logger.warning(f"Error closing context: {e}")
        finally:
            self._context = None
            self._page = None

        try:
            if self._camoufox:
                await self._camoufox.__aexit__(None, None, None)
        except Exception as e:
            logger.warning(f"Error closing camoufox: {e}")
        finally:
            self._camoufox = None
            self._browser = None

        try:
            if self._scratch_dir:
                shutil.rmtree(self._scratch_dir)
        except OSError as e:
            logger.warning(f"Error removing scratch directory {self._scratch_dir}: {e}")
        finally:
            self._scratch_dir = None

        self._state = SessionState.CLOSED
        logger.info("Browser session stopped.")

    # ── Extraction ───────────────────────────────────────────────────────

    def _require_ready(self) -> Page:
        if self._closed:
            raise ExtractionFailed("browser closed")
        if self._state is not SessionState.READY or self._page is None:
            raise ExtractionFailed("browser page not active")
        return self._page

    async def fetch_map(self) -> Image.Image:
        """Export the active map page and decode it.

        Raises:
            ExtractionFailed: the session is not ready, the export did not
                produce a download, or the file is not a readable image.
        """
        page = self._require_ready()
        target = self._scratch_dir / MAP_DOWNLOAD_NAME

        try:
            logger.info("Evaluating map export script")
            async with page.expect_download(timeout=MAP_EXPORT_TIMEOUT_SECONDS * 1000) as download_info:
                await page.evaluate(EXPORT_MAP_SCRIPT)
            download = await download_info.value

            logger.info("Saving map")
            await download.save_as(target)
            await self._waiter.until(
                target.exists,
                timeout=MAP_EXPORT_TIMEOUT_SECONDS,
                interval=POLL_INTERVAL_SECONDS,
                description="map download",
            )

            logger.info("Reading map as image")
            data = target.read_bytes()
            target.unlink()
            img = Image.open(io.BytesIO(data))
            img.load()
            return img
        except Exception as e:
            raise ExtractionFailed(f"could not export map: {e}") from e

    async def list_sheet_names(self) -> list[str]:
        """Character names in the journal, reserved shared entry excluded.

        Raises:
            ExtractionFailed: the session is not ready or the page could not be read.
        """
        page = self._require_ready()
        try:
            html = await page.content()
        except PlaywrightError as e:
            raise ExtractionFailed(f"could not read journal: {e}") from e
        return parse_journal_names(html)

    async def fetch_sheet(self, name: str) -> bytes:
        """Print one character sheet to PDF and return the document bytes.

        Raises:
            SheetNotFound: no journal entry contains ``name``.
            ExtractionFailed: any other step failed.
        """
        page = self._require_ready()
        pdf_path = self._scratch_dir / SHEET_PRINT_NAME

        try:
            entry = None
            for item in await page.query_selector_all(SELECTORS["journal_item"]):
                if name in await item.inner_html():
                    entry = item
                    break
            if entry is None:
                raise SheetNotFound(f"could not find journal item {name!r}")

            await entry.click()
            await self._waiter.settle(JOURNAL_OPEN_SETTLE_SECONDS)

            pdf_path.unlink(missing_ok=True)
            await page.click(SELECTORS["print_sheet"])
            await self._waiter.until(
                _file_settled(pdf_path),
                timeout=PRINT_TIMEOUT_SECONDS,
                interval=POLL_INTERVAL_SECONDS,
                description=f"printed sheet for {name}",
            )
            data = pdf_path.read_bytes()
            pdf_path.unlink()

            await page.click(SELECTORS["dialog_close"])
            await self._waiter.settle(DIALOG_CLOSE_SETTLE_SECONDS)
            return data
        except ExtractionFailed:
            raise
        except Exception as e:
            raise ExtractionFailed(f"could not print character sheet {name!r}: {e}") from e
