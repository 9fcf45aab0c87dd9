"""MCP tools for reading cached maps and character sheets."""

from __future__ import annotations

import re
from urllib.parse import quote

from ..config import EXPORT_DIR
from .session_tools import _call_session_manager, _fetch_bytes, target_path


async def get_map(target: str, hd: bool = False) -> bytes:
    """Fetch the latest cached map image of a target.

    Raises:
        RuntimeError: the map is not cached yet or the service is unreachable.
    """
    path = f"{target_path(target)}/map" + ("?hd=1" if hd else "")
    data, error = await _fetch_bytes(path)
    if error is not None:
        raise RuntimeError(error)
    return data


async def list_character_sheets(target: str) -> str:
    """List the character sheets cached for a target, one name per line."""
    result = await _call_session_manager("GET", f"{target_path(target)}/sheets")

    if "error" in result:
        return f"Error: {result['error']}"

    names = result.get("sheets", [])
    if not names:
        return "No character sheets found."
    return f"Found {len(names)} character sheets:\n" + "\n".join(f"- {name}" for name in names)


async def get_character_sheet(target: str, name: str) -> str:
    """Save a cached character sheet PDF under the export directory.

    Returns:
        The path of the written file, or an error message.
    """
    data, error = await _fetch_bytes(f"{target_path(target)}/sheets/{quote(name, safe='')}")
    if error is not None:
        return f"Error: {error}"

    EXPORT_DIR.mkdir(parents=True, exist_ok=True)
    safe_name = re.sub(r"[^\w.-]+", "_", f"{target}-{name}").strip("_")
    path = EXPORT_DIR / f"{safe_name}.pdf"
    path.write_bytes(data)
    return f"Saved character sheet for {name} to {path} ({len(data)} bytes)."
