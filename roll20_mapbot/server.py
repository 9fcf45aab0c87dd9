"""MCP Server entry point for roll20-mapbot.

Exposes the cached Roll20 artifacts as tools via the Model Context Protocol:
- Session management: session_status, relaunch_session
- Artifacts: get_map, list_character_sheets, get_character_sheet

The Session Manager HTTP service (aiohttp on localhost:8024) is auto-started
as part of the MCP server lifecycle, no separate process needed. Starting it
logs in to every configured game, which can take a minute or more.
"""

from __future__ import annotations

import logging
import socket
import sys
from contextlib import asynccontextmanager
from typing import Optional

from aiohttp.web import AppRunner, SockSite
from mcp.server.fastmcp import FastMCP, Image

from .config import SESSION_MANAGER_HOST, SESSION_MANAGER_PORT, ensure_dirs
from .tools.artifact_tools import get_character_sheet, get_map, list_character_sheets
from .tools.session_tools import relaunch_session, session_status

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("roll20-mapbot")

# Ensure data directories exist
ensure_dirs()


# ── Lifespan: auto-start Session Manager ─────────────────────────────────────


def _claim_port() -> Optional[socket.socket]:
    """Bind and listen on the Session Manager port; None if another process holds it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((SESSION_MANAGER_HOST, SESSION_MANAGER_PORT))
        sock.listen()
    except OSError:
        sock.close()
        return None
    return sock


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the Session Manager HTTP service alongside the MCP server.

    The port is claimed before any Roll20 session is launched, so when a
    Session Manager is already running no second browser logs in.
    """
    from .session_manager.manager import create_app

    sock = _claim_port()
    if sock is None:
        # Port already in use: assume Session Manager was started manually
        logger.info(
            "Session Manager already running on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        yield {}
        return

    app = runner = None
    try:
        app = create_app()
        runner = AppRunner(app)
        await runner.setup()  # launches every target
        await SockSite(runner, sock).start()
    except BaseException:
        # on_cleanup does not run when startup failed; close what was launched.
        if app is not None:
            await app["manager"].cleanup()
        if runner is not None:
            await runner.cleanup()
        sock.close()
        raise
    logger.info("Session Manager auto-started on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT)

    try:
        yield {}
    finally:
        await runner.cleanup()
        sock.close()
        logger.info("Session Manager stopped.")


# ── MCP Server ───────────────────────────────────────────────────────────────

mcp = FastMCP(
    "roll20-mapbot",
    lifespan=lifespan,
    instructions=(
        "Roll20 Map Bot - Tools to read the current battle map and character sheets "
        "of configured Roll20 games. Artifacts are refreshed in the background: the map "
        "every 30 seconds, character sheets every 5 minutes. "
        "Call session_status to see the configured targets and what is cached. "
        "Use get_map for the map image and list_character_sheets / get_character_sheet "
        "for character sheets. Use relaunch_session if a target looks stuck."
    ),
)


# ── Session Management Tools ─────────────────────────────────────────────────


@mcp.tool()
async def tool_session_status() -> str:
    """Show each target's browser session state and cached artifacts."""
    return await session_status()


@mcp.tool()
async def tool_relaunch_session(target: str) -> str:
    """Restart a target's browser session and log in again.

    Args:
        target: Target name from the configuration (defaults to the game name).
    """
    return await relaunch_session(target)


# ── Artifact Tools (instant, from the cache) ─────────────────────────────────


@mcp.tool()
async def tool_get_map(target: str, hd: bool = False) -> Image:
    """Get the latest map of a Roll20 game as an image.

    Args:
        target: Target name from the configuration.
        hd: Return the high resolution rendering.
    """
    return Image(data=await get_map(target, hd), format="jpeg")


@mcp.tool()
async def tool_list_character_sheets(target: str) -> str:
    """List the character sheets available for a Roll20 game.

    Args:
        target: Target name from the configuration.
    """
    return await list_character_sheets(target)


@mcp.tool()
async def tool_get_character_sheet(target: str, name: str) -> str:
    """Save a character sheet PDF locally and return its path.

    Args:
        target: Target name from the configuration.
        name: Character name exactly as listed by list_character_sheets.
    """
    return await get_character_sheet(target, name)


# ── Entry Point ──────────────────────────────────────────────────────────────


def main():
    """Run the MCP server on STDIO transport."""
    logger.info("Starting roll20-mapbot MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
