"""Pytest fixtures and fakes for roll20-mapbot tests.

No real browser is ever started: ``FakeSession`` stands in for the whole
session driver, and ``FakeCamoufox``/``FakePage`` stand in for the
Playwright objects underneath ``Roll20Session``.
"""

from __future__ import annotations

import asyncio
import io
from pathlib import Path
from typing import Callable, Optional

import pytest
from PIL import Image

from roll20_mapbot.config import AppConfig, TargetConfig
from roll20_mapbot.errors import ExtractionFailed, SetupFailed, SheetNotFound
from roll20_mapbot.models.session import SessionState
from roll20_mapbot.session_manager.instance import Roll20Instance


def make_map_image(width: int = 120, height: int = 80, box=(20, 10, 70, 50)) -> Image.Image:
    """Black canvas with a white rectangle covering the half-open ``box``."""
    img = Image.new("RGB", (width, height), (0, 0, 0))
    img.paste((255, 255, 255), box)
    return img


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0):
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def fast_sleep(seconds: float):
    await asyncio.sleep(0)


# ── Session driver fake ──────────────────────────────────────────────────────


class FakeSession:
    """In-memory stand-in for Roll20Session."""

    def __init__(self, game: str = "My Game"):
        self.game = game
        self.state = SessionState.CLOSED
        self.closed = False
        self.image = make_map_image()
        self.sheets = {"Aragorn": b"%PDF aragorn", "Gandalf": b"%PDF gandalf"}

        self.map_failures = 0
        self.list_failures = 0
        self.sheet_failures = 0
        self.relaunch_failures = 0

        self.launch_count = 0
        self.relaunch_count = 0
        self.map_fetches = 0
        self.sheet_fetches = 0
        self.relaunch_gate: Optional[asyncio.Event] = None

    async def launch(self):
        if self.closed:
            return
        self.launch_count += 1
        self.state = SessionState.READY

    async def relaunch(self):
        self.relaunch_count += 1
        self.state = SessionState.CLOSED
        if self.relaunch_gate is not None:
            await self.relaunch_gate.wait()
        if self.relaunch_failures > 0:
            self.relaunch_failures -= 1
            raise SetupFailed("login page did not load")
        await self.launch()

    async def close(self):
        self.closed = True
        self.state = SessionState.CLOSED

    async def fetch_map(self) -> Image.Image:
        if self.map_failures > 0:
            self.map_failures -= 1
            raise ExtractionFailed("could not export map")
        self.map_fetches += 1
        return self.image

    async def list_sheet_names(self) -> list[str]:
        if self.list_failures > 0:
            self.list_failures -= 1
            raise ExtractionFailed("could not read journal")
        return list(self.sheets)

    async def fetch_sheet(self, name: str) -> bytes:
        if self.sheet_failures > 0:
            self.sheet_failures -= 1
            raise ExtractionFailed(f"could not print {name}")
        if name not in self.sheets:
            raise SheetNotFound(name)
        self.sheet_fetches += 1
        return self.sheets[name]


class FakeInstanceFactory:
    """Builds Roll20Instances around FakeSessions and remembers them by target."""

    def __init__(self, session_class=FakeSession):
        self.session_class = session_class
        self.sessions: dict[str, FakeSession] = {}

    def __call__(self, target: TargetConfig, config: AppConfig) -> Roll20Instance:
        session = self.session_class(target.game)
        self.sessions[target.name] = session
        return Roll20Instance(target, config, session=session, map_interval=3600, sheet_interval=3600)


# ── Playwright fakes ─────────────────────────────────────────────────────────


class FakeClock:
    """Clock and sleep pair for Waiter; sleeping advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeElement:
    def __init__(self, text: str = "", html: str = "", on_click: Optional[Callable[[], None]] = None):
        self.text = text
        self.html = html or text
        self.on_click = on_click
        self.clicked = False

    async def inner_text(self) -> str:
        return self.text

    async def inner_html(self) -> str:
        return self.html

    async def click(self):
        self.clicked = True
        if self.on_click:
            self.on_click()


class FakeDownload:
    def __init__(self, data: bytes):
        self.data = data

    async def save_as(self, path):
        Path(path).write_bytes(self.data)


class _DownloadInfo:
    def __init__(self, download: FakeDownload):
        self._download = download

    @property
    def value(self):
        async def _value():
            return self._download

        return _value()


class _ExpectDownload:
    def __init__(self, download: FakeDownload):
        self._download = download

    async def __aenter__(self):
        return _DownloadInfo(self._download)

    async def __aexit__(self, *args):
        return False


LISTING_HTML = """
<div class="listing">
  <div class="gameinfo"><a href="/campaigns/details/111">Other Game</a><a href="/x">extra</a></div>
  <div class="gameinfo"><a href="/campaigns/details/4242/">My Game</a></div>
</div>
"""

JOURNAL_HTML = """
<div class="journalitem"><div class="name">Aragorn
<span>Ranger</span></div></div>
<div class="journalitem"><div class="name">Shared Inventory</div></div>
<div class="journalitem"><div class="name"> Gandalf </div></div>
"""


class FakePage:
    def __init__(self):
        self.url = ""
        self.visited: list[str] = []
        self.clicked: list[str] = []
        self.filled: dict[str, str] = {}
        self.html = LISTING_HTML + JOURNAL_HTML
        self.editor_ready = True
        self.buttons = [FakeElement("Cancel"), FakeElement(" Sign in "), FakeElement("Sign up")]
        self.journal_items = [
            FakeElement(html='<div class="name">Aragorn</div>'),
            FakeElement(html='<div class="name">Shared Inventory</div>'),
            FakeElement(html='<div class="name">Gandalf</div>'),
        ]
        self.click_handlers: dict[str, Callable[[], None]] = {}
        self.download: Optional[FakeDownload] = None
        self.evaluated: list[str] = []

    def set_default_timeout(self, timeout):
        self.timeout = timeout

    async def goto(self, url, wait_until=None):
        self.visited.append(url)
        self.url = url

    async def click(self, selector):
        self.clicked.append(selector)
        handler = self.click_handlers.get(selector)
        if handler:
            handler()

    async def fill(self, selector, value):
        self.filled[selector] = value

    async def query_selector_all(self, selector):
        if selector == ".btn":
            return self.buttons
        if selector == ".journalitem":
            return self.journal_items
        return []

    async def content(self) -> str:
        return self.html

    async def evaluate(self, script):
        self.evaluated.append(script)
        return self.editor_ready

    def expect_download(self, timeout=None):
        return _ExpectDownload(self.download)


class FakeContext:
    def __init__(self, page: FakePage):
        self.page = page
        self.options: dict = {}
        self.closed = False
        self.close_error: Optional[Exception] = None

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self):
        self.closed = True
        if self.close_error:
            raise self.close_error


class FakeBrowser:
    def __init__(self, context: FakeContext):
        self.context = context

    async def new_context(self, **options) -> FakeContext:
        self.context.options = options
        return self.context


class FakeCamoufox:
    def __init__(self, browser: FakeBrowser):
        self.browser = browser
        self.entered = False
        self.exited = False

    async def __aenter__(self) -> FakeBrowser:
        self.entered = True
        return self.browser

    async def __aexit__(self, *args):
        self.exited = True


class FakeBrowserFactory:
    """Records each launch and hands out the same fake page."""

    def __init__(self):
        self.page = FakePage()
        self.context = FakeContext(self.page)
        self.pdf_paths: list[Path] = []
        self.instances: list[FakeCamoufox] = []
        self.error: Optional[Exception] = None

    def __call__(self, pdf_path: Path) -> FakeCamoufox:
        self.pdf_paths.append(pdf_path)
        if self.error:
            raise self.error
        camoufox = FakeCamoufox(FakeBrowser(self.context))
        self.instances.append(camoufox)
        return camoufox


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> AppConfig:
    return AppConfig(
        targets=[TargetConfig(name="table", game="My Game", target_channels=["100", "101"])],
        standard_resolution=40,
        hd_resolution=80,
    )


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def factory() -> FakeInstanceFactory:
    return FakeInstanceFactory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def browser_factory() -> FakeBrowserFactory:
    return FakeBrowserFactory()
