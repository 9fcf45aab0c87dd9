"""Parse Roll20 page snapshots.

Handles the two listings the session driver has to read:
1. The game listing shown after sign in (game name -> campaign link)
2. The journal in the game editor (character sheet names)

Matching is done on visible label text because Roll20 offers no stable
identifiers for these elements.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from ..constants import RESERVED_SHEET_NAME, SELECTORS

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


# ── Utility Functions ────────────────────────────────────────────────────────


def _clean_text(text: str | None) -> str:
    """Strip whitespace and collapse internal runs of it."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def _first_line(tag: Tag) -> str:
    """First non-empty line of an element's text, like innerText.split("\\n")[0]."""
    for line in tag.get_text("\n").split("\n"):
        line = line.strip()
        if line:
            return line
    return ""


def campaign_id_from_href(href: str) -> str:
    """Last path segment of a game link, e.g. ``/campaigns/details/1234567`` -> ``1234567``."""
    path = urlparse(href).path.rstrip("/")
    return path.rsplit("/", 1)[-1] if path else ""


# ── Game Listing ─────────────────────────────────────────────────────────────


def parse_game_links(html: str) -> list[tuple[str, str]]:
    """Extract ``(label, href)`` for every game in the post-login listing."""
    soup = BeautifulSoup(html, "html.parser")
    links = []
    for anchor in soup.select(SELECTORS["game_link"]):
        href = anchor.get("href")
        if not href:
            continue
        links.append((_clean_text(anchor.get_text()), str(href)))
    logger.info(f"[PARSER] Found {len(links)} game links")
    return links


def find_campaign_id(links: list[tuple[str, str]], game: str) -> Optional[str]:
    """Campaign id of the game whose label exactly matches ``game``.

    Returns None when no label matches or the matching link has no id.
    """
    for label, href in links:
        if label == game:
            campaign_id = campaign_id_from_href(href)
            return campaign_id or None
    return None


# ── Journal ──────────────────────────────────────────────────────────────────


def parse_journal_names(html: str, reserved: str = RESERVED_SHEET_NAME) -> list[str]:
    """Names of the character entries in the journal, in page order.

    The reserved shared-container entry and empty names are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    names = []
    for tag in soup.select(SELECTORS["journal_name"]):
        name = _first_line(tag)
        if not name or name == reserved:
            continue
        names.append(name)
    logger.info(f"[PARSER] Found {len(names)} journal entries")
    return names
