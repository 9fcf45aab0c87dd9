"""Session Manager HTTP service.

Runs as a lightweight local web server that owns one Roll20 instance per
configured target and serves their cached artifacts. Chat front ends and
the MCP server consume it over HTTP.

Endpoints:
    GET  /status                            - Per-target session and cache state
    GET  /targets/{target}/map              - Cached map image (?hd=1 for HD)
    GET  /targets/{target}/sheets           - Sorted character sheet names
    GET  /targets/{target}/sheets/{name}    - Cached character sheet PDF
    POST /targets/{target}/relaunch         - Log in again from scratch
    POST /command                           - Dispatch a chat command from a channel
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

from aiohttp import web

from ..commands import CommandRegistry
from ..config import (
    RELAUNCH_ERROR_PAUSE_SECONDS,
    RELAUNCH_INTERVAL_SECONDS,
    SESSION_MANAGER_HOST,
    SESSION_MANAGER_PORT,
    AppConfig,
    config_template,
    ensure_dirs,
    load_config,
)
from ..errors import ConfigError, NotFound, NotReady, SetupFailed
from .instance import Roll20Instance

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

InstanceFactory = Callable[..., Roll20Instance]


class SessionManager:
    """Owns every configured Roll20 instance and the channel routing table."""

    def __init__(
        self,
        config: AppConfig,
        instance_factory: InstanceFactory = Roll20Instance,
        relaunch_interval: float = RELAUNCH_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        # Raises ConfigError before anything is launched.
        self.channel_routes = config.channel_routes()
        self.instances: dict[str, Roll20Instance] = {
            target.name: instance_factory(target, config) for target in config.targets
        }
        self.commands = CommandRegistry.default()
        self._relaunch_interval = relaunch_interval
        self._sleep = sleep
        self._relaunch_task: Optional[asyncio.Task] = None
        self._closed = False

    def instance_for_channel(self, channel: str) -> Optional[Roll20Instance]:
        name = self.channel_routes.get(channel)
        return self.instances.get(name) if name is not None else None

    async def launch(self):
        """Launch every instance in turn; the first failure aborts startup."""
        for instance in self.instances.values():
            try:
                await instance.launch()
            except SetupFailed as e:
                raise SetupFailed(f"error launching roll20 target {instance.name!r}: {e}") from e
        if self._relaunch_interval > 0:
            self._relaunch_task = asyncio.create_task(self._periodic_relaunch())
        logger.info("Session Manager is ready")

    async def _periodic_relaunch(self):
        await self._sleep(self._relaunch_interval)
        while not self._closed:
            logger.info("Starting periodic reload")
            for instance in self.instances.values():
                if self._closed:
                    return
                try:
                    await instance.relaunch()
                except SetupFailed as e:
                    logger.error(f"Error reloading roll20 target {instance.name!r}: {e}")
                    await self._sleep(RELAUNCH_ERROR_PAUSE_SECONDS)
            await self._sleep(self._relaunch_interval)

    async def cleanup(self):
        """Close every instance. Safe to call more than once."""
        self._closed = True
        if self._relaunch_task:
            self._relaunch_task.cancel()
            await asyncio.gather(self._relaunch_task, return_exceptions=True)
            self._relaunch_task = None
        for instance in self.instances.values():
            await instance.close()


# ── HTTP Handlers ────────────────────────────────────────────────────────────


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _get_instance(request: web.Request) -> Roll20Instance:
    mgr: SessionManager = request.app["manager"]
    name = request.match_info["target"]
    instance = mgr.instances.get(name)
    if instance is None:
        raise web.HTTPNotFound(
            text=json.dumps({"error": f"Unknown target: {name}"}),
            content_type="application/json",
        )
    return instance


async def handle_status(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    statuses = [instance.status().model_dump(mode="json") for instance in mgr.instances.values()]
    return web.json_response({"targets": statuses})


async def handle_map(request: web.Request) -> web.Response:
    instance = _get_instance(request)
    hd = request.query.get("hd", "").lower() in ("1", "true", "yes")
    try:
        data = instance.get_map(hd=hd)
    except NotReady as e:
        return _error(str(e), 503)
    return web.Response(body=data, content_type="image/jpeg")


async def handle_list_sheets(request: web.Request) -> web.Response:
    instance = _get_instance(request)
    try:
        names = instance.list_character_sheets()
    except NotReady as e:
        return _error(str(e), 503)
    return web.json_response({"sheets": names, "count": len(names)})


async def handle_get_sheet(request: web.Request) -> web.Response:
    instance = _get_instance(request)
    name = request.match_info["name"]
    try:
        data = instance.get_character_sheet(name)
    except NotReady as e:
        return _error(str(e), 503)
    except NotFound as e:
        return _error(str(e), 404)
    return web.Response(body=data, content_type="application/pdf")


async def handle_relaunch(request: web.Request) -> web.Response:
    instance = _get_instance(request)
    try:
        await instance.relaunch()
    except SetupFailed as e:
        logger.error(f"Manual relaunch of {instance.name!r} failed: {e}", exc_info=True)
        return _error(str(e), 502)
    return web.json_response({"message": f"Session for {instance.name} relaunched."})


async def handle_command(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    body = await request.json() if request.content_length else {}
    channel = str(body.get("channel", ""))
    content = body.get("content", "")

    instance = mgr.instance_for_channel(channel)
    if instance is None:
        logger.info(f"Ignoring untracked channel {channel}")
        return _error(f"Channel {channel} is not routed to any roll20 target.", 404)

    reply = await mgr.commands.dispatch(instance, content)
    if reply is None:
        return web.json_response({"reply": None})

    payload = {"text": reply.text, "filename": reply.filename, "attachment": None}
    if reply.attachment is not None:
        payload["attachment"] = base64.b64encode(reply.attachment).decode("ascii")
    return web.json_response({"reply": payload})


# ── App Factory ──────────────────────────────────────────────────────────────


def create_app(config: Optional[AppConfig] = None, manager: Optional[SessionManager] = None) -> web.Application:
    """Build the service. Configuration errors surface here, before any launch."""
    if manager is None:
        manager = SessionManager(config if config is not None else load_config())

    app = web.Application()
    app["manager"] = manager

    async def on_startup(app: web.Application):
        ensure_dirs()
        await app["manager"].launch()
        logger.info(f"Session Manager started on {SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}")

    async def on_cleanup(app: web.Application):
        await app["manager"].cleanup()
        logger.info("Session Manager stopped.")

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/status", handle_status)
    app.router.add_get("/targets/{target}/map", handle_map)
    app.router.add_get("/targets/{target}/sheets", handle_list_sheets)
    app.router.add_get("/targets/{target}/sheets/{name}", handle_get_sheet)
    app.router.add_post("/targets/{target}/relaunch", handle_relaunch)
    app.router.add_post("/command", handle_command)

    return app


def main(argv: Optional[list[str]] = None):
    """Run the session manager as a standalone HTTP service."""
    parser = argparse.ArgumentParser(
        prog="roll20-mapbot",
        description="Serve maps and character sheets scraped from Roll20 games",
    )
    parser.add_argument("-c", "--config", type=Path, default=None, help="config file")
    parser.add_argument("--spec", action="store_true", help="display config specification and exit")
    args = parser.parse_args(argv)

    if args.spec:
        print(config_template())
        return

    try:
        config = load_config(args.config)
        app = create_app(config)
    except ConfigError as e:
        logger.error(f"could not load config: {e}")
        sys.exit(1)

    web.run_app(app, host=SESSION_MANAGER_HOST, port=SESSION_MANAGER_PORT)


if __name__ == "__main__":
    main()
