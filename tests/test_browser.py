"""Tests for Roll20Session against fake Playwright objects."""

import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import FakeDownload, FakeElement, make_map_image, png_bytes
from roll20_mapbot.constants import ROLL20_BASE, ROLL20_EDITOR_URL, SELECTORS
from roll20_mapbot.errors import (
    ExtractionFailed,
    LoginFailed,
    SetupFailed,
    SheetNotFound,
    WorkspaceNotFound,
)
from roll20_mapbot.models.session import SessionState
from roll20_mapbot.session_manager.browser import Roll20Session, silent_print_prefs
from roll20_mapbot.session_manager.scripts import EXPORT_MAP_SCRIPT
from roll20_mapbot.session_manager.waits import Waiter


def make_session(browser_factory, clock, game="My Game") -> Roll20Session:
    return Roll20Session(
        email="gm@example.com",
        password="hunter2",
        game=game,
        viewport_width=1280,
        viewport_height=720,
        headless=True,
        waiter=Waiter(sleep=clock.sleep, clock=clock),
        browser_factory=browser_factory,
    )


class TestLaunch:
    """Tests for the launch / relaunch / close lifecycle."""

    @pytest.mark.asyncio
    async def test_launch_signs_in_and_opens_game(self, browser_factory, clock):
        """A full launch ends READY inside the configured game's editor."""
        session = make_session(browser_factory, clock)
        await session.launch()

        page = browser_factory.page
        assert session.state is SessionState.READY
        assert session.is_ready
        assert page.visited == [ROLL20_BASE, f"{ROLL20_EDITOR_URL}4242"]
        assert page.filled == {
            SELECTORS["login_email"]: "gm@example.com",
            SELECTORS["login_password"]: "hunter2",
        }
        assert [b.clicked for b in page.buttons] == [False, True, False]
        assert page.clicked == [SELECTORS["signin_menu"], SELECTORS["journal_tab"]]
        assert browser_factory.context.options == {
            "viewport": {"width": 1280, "height": 720},
            "accept_downloads": True,
        }

    @pytest.mark.asyncio
    async def test_scratch_dir_holds_print_target(self, browser_factory, clock):
        """The browser prints sheets into the session's scratch directory."""
        session = make_session(browser_factory, clock)
        await session.launch()
        assert session.scratch_dir.is_dir()
        assert browser_factory.pdf_paths[0].parent == session.scratch_dir

    @pytest.mark.asyncio
    async def test_unknown_game_tears_down(self, browser_factory, clock):
        """No matching game raises WorkspaceNotFound and releases everything."""
        session = make_session(browser_factory, clock, game="Missing Game")
        with pytest.raises(WorkspaceNotFound):
            await session.launch()

        assert session.state is SessionState.CLOSED
        assert session.scratch_dir is None
        assert browser_factory.pdf_paths[0].parent.exists() is False
        assert browser_factory.context.closed
        assert browser_factory.instances[0].exited

    @pytest.mark.asyncio
    async def test_missing_submit_button_is_login_failure(self, browser_factory, clock):
        """Without a 'Sign in' button the launch fails with LoginFailed."""
        browser_factory.page.buttons = [FakeElement("Cancel")]
        session = make_session(browser_factory, clock)
        with pytest.raises(LoginFailed):
            await session.launch()
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_empty_listing_is_login_failure(self, browser_factory, clock):
        """No games at all after signing in means the login did not work."""
        browser_factory.page.html = "<html><body>Wrong password</body></html>"
        session = make_session(browser_factory, clock)
        with pytest.raises(LoginFailed):
            await session.launch()

    @pytest.mark.asyncio
    async def test_playwright_error_during_login(self, browser_factory, clock):
        """Playwright errors while signing in are wrapped in LoginFailed."""
        page = browser_factory.page

        async def broken_fill(selector, value):
            raise PlaywrightError("element is not visible")

        page.fill = broken_fill
        session = make_session(browser_factory, clock)
        with pytest.raises(LoginFailed, match="not visible"):
            await session.launch()

    @pytest.mark.asyncio
    async def test_engine_start_failure_is_setup_failure(self, browser_factory, clock):
        """Errors before login are reported as SetupFailed."""
        browser_factory.error = RuntimeError("firefox binary missing")
        session = make_session(browser_factory, clock)
        with pytest.raises(SetupFailed, match="firefox binary missing"):
            await session.launch()
        assert session.state is SessionState.CLOSED
        assert session.scratch_dir is None

    @pytest.mark.asyncio
    async def test_editor_never_loads(self, browser_factory, clock):
        """The editor poll times out into SetupFailed."""
        browser_factory.page.editor_ready = False
        session = make_session(browser_factory, clock)
        with pytest.raises(SetupFailed, match="roll20 editor"):
            await session.launch()
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_launch_twice_is_caller_error(self, browser_factory, clock):
        """Launching a READY session raises RuntimeError."""
        session = make_session(browser_factory, clock)
        await session.launch()
        with pytest.raises(RuntimeError):
            await session.launch()

    @pytest.mark.asyncio
    async def test_launch_failure_then_retry(self, browser_factory, clock):
        """A session that never launched can be launched again."""
        browser_factory.page.editor_ready = False
        session = make_session(browser_factory, clock)
        with pytest.raises(SetupFailed):
            await session.launch()
        browser_factory.page.editor_ready = True
        await session.launch()
        assert session.is_ready

    @pytest.mark.asyncio
    async def test_relaunch_starts_a_new_browser(self, browser_factory, clock):
        """relaunch() tears down the old browser and logs in again."""
        session = make_session(browser_factory, clock)
        await session.launch()
        first_scratch = session.scratch_dir
        await session.relaunch()

        assert len(browser_factory.instances) == 2
        assert browser_factory.instances[0].exited
        assert not first_scratch.exists()
        assert session.is_ready

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_final(self, browser_factory, clock):
        """close() twice is fine and the session never launches again."""
        session = make_session(browser_factory, clock)
        await session.launch()
        await session.close()
        await session.close()
        assert session.closed
        assert session.state is SessionState.CLOSED

        await session.launch()
        assert len(browser_factory.instances) == 1
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_teardown_errors_are_swallowed(self, browser_factory, clock):
        """A context that fails to close does not stop the teardown."""
        session = make_session(browser_factory, clock)
        await session.launch()
        browser_factory.context.close_error = PlaywrightError("target closed")
        await session.close()
        assert browser_factory.instances[0].exited
        assert session.scratch_dir is None


class TestExtraction:
    """Tests for map export and character sheet printing."""

    @pytest.mark.asyncio
    async def test_fetch_requires_ready_session(self, browser_factory, clock):
        """Every extraction fails with ExtractionFailed before launch."""
        session = make_session(browser_factory, clock)
        with pytest.raises(ExtractionFailed):
            await session.fetch_map()
        with pytest.raises(ExtractionFailed):
            await session.list_sheet_names()
        with pytest.raises(ExtractionFailed):
            await session.fetch_sheet("Aragorn")

    @pytest.mark.asyncio
    async def test_fetch_map_decodes_download(self, browser_factory, clock):
        """The downloaded PNG is decoded into an image."""
        session = make_session(browser_factory, clock)
        await session.launch()
        browser_factory.page.download = FakeDownload(png_bytes(make_map_image(64, 32)))

        img = await session.fetch_map()
        assert img.size == (64, 32)
        assert browser_factory.page.evaluated[-1] == EXPORT_MAP_SCRIPT
        assert not (session.scratch_dir / "map.png").exists()

    @pytest.mark.asyncio
    async def test_fetch_map_rejects_garbage(self, browser_factory, clock):
        """An undecodable download is an ExtractionFailed."""
        session = make_session(browser_factory, clock)
        await session.launch()
        browser_factory.page.download = FakeDownload(b"not an image")
        with pytest.raises(ExtractionFailed):
            await session.fetch_map()

    @pytest.mark.asyncio
    async def test_list_sheet_names(self, browser_factory, clock):
        """Journal names come back in page order without the shared inventory."""
        session = make_session(browser_factory, clock)
        await session.launch()
        assert await session.list_sheet_names() == ["Aragorn", "Gandalf"]

    @pytest.mark.asyncio
    async def test_fetch_sheet_reads_printed_pdf(self, browser_factory, clock):
        """Printing writes the PDF, which is read, removed and returned."""
        session = make_session(browser_factory, clock)
        await session.launch()
        page = browser_factory.page
        pdf_path = browser_factory.pdf_paths[0]
        page.click_handlers[SELECTORS["print_sheet"]] = lambda: pdf_path.write_bytes(b"%PDF-1.4 gandalf")

        data = await session.fetch_sheet("Gandalf")

        assert data == b"%PDF-1.4 gandalf"
        assert not pdf_path.exists()
        assert page.journal_items[2].clicked
        assert not page.journal_items[0].clicked
        assert page.clicked[-2:] == [SELECTORS["print_sheet"], SELECTORS["dialog_close"]]

    @pytest.mark.asyncio
    async def test_fetch_unknown_sheet(self, browser_factory, clock):
        """A name with no journal entry raises SheetNotFound."""
        session = make_session(browser_factory, clock)
        await session.launch()
        with pytest.raises(SheetNotFound):
            await session.fetch_sheet("Sauron")

    @pytest.mark.asyncio
    async def test_print_never_produces_file(self, browser_factory, clock):
        """A print that writes nothing times out into ExtractionFailed."""
        session = make_session(browser_factory, clock)
        await session.launch()
        with pytest.raises(ExtractionFailed) as excinfo:
            await session.fetch_sheet("Aragorn")
        assert not isinstance(excinfo.value, SheetNotFound)


def test_silent_print_prefs_target_file(tmp_path):
    """The Firefox prefs point the PDF printer at the given file."""
    prefs = silent_print_prefs(tmp_path / "sheet.pdf")
    assert prefs["print.always_print_silent"] is True
    assert prefs["print.printer_Mozilla_Save_to_PDF.print_to_filename"] == str(tmp_path / "sheet.pdf")
