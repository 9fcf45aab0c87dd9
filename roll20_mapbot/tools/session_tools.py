"""MCP tools for managing the Roll20 browser sessions."""

from __future__ import annotations

import json
from typing import Optional
from urllib.parse import quote

import httpx

from ..config import SESSION_MANAGER_URL


async def _request(method: str, path: str, json_body: dict | None = None) -> httpx.Response:
    url = f"{SESSION_MANAGER_URL}{path}"
    async with httpx.AsyncClient(timeout=300.0) as client:
        if method == "GET":
            return await client.get(url)
        return await client.post(url, json=json_body or {})


def _error_message(exc: Exception) -> str:
    if isinstance(exc, httpx.ConnectError):
        return (
            "Session Manager is not reachable at "
            f"{SESSION_MANAGER_URL}. It should auto-start with the MCP server. "
            "If running standalone: python -m roll20_mapbot.session_manager"
        )
    if isinstance(exc, httpx.TimeoutException):
        return "Session Manager timed out. The browser may be logging in."
    return f"Failed to connect to Session Manager: {exc}"


def _response_error(resp: httpx.Response) -> Optional[str]:
    if resp.status_code < 400:
        return None
    try:
        return resp.json().get("error", f"HTTP {resp.status_code}")
    except ValueError:
        return f"HTTP {resp.status_code}"


async def _call_session_manager(method: str, path: str, json_body: dict | None = None) -> dict:
    """Make a JSON request to the session manager HTTP service."""
    try:
        resp = await _request(method, path, json_body)
    except Exception as e:
        return {"error": _error_message(e)}

    error = _response_error(resp)
    if error is not None:
        return {"error": error}
    return resp.json()


async def _fetch_bytes(path: str) -> tuple[Optional[bytes], Optional[str]]:
    """GET a binary artifact. Returns ``(data, None)`` or ``(None, error)``."""
    try:
        resp = await _request("GET", path)
    except Exception as e:
        return None, _error_message(e)

    error = _response_error(resp)
    if error is not None:
        return None, error
    return resp.content, None


def target_path(target: str) -> str:
    return f"/targets/{quote(target, safe='')}"


async def session_status() -> str:
    """Report every target's session state and what is cached.

    Returns:
        JSON-formatted status for each configured target.
    """
    result = await _call_session_manager("GET", "/status")

    if "error" in result:
        return f"Error: {result['error']}"

    return json.dumps(result, indent=2)


async def relaunch_session(target: str) -> str:
    """Tear down a target's browser and log in to Roll20 again.

    This takes a while: the editor needs up to a minute to load.

    Args:
        target: Target name from the configuration.

    Returns:
        Confirmation message.
    """
    result = await _call_session_manager("POST", f"{target_path(target)}/relaunch")

    if "error" in result:
        return f"Error: {result['error']}"

    return result.get("message", "Session relaunched.")
