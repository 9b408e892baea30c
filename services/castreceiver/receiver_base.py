# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
ReceiverBase — HTTP + WebSocket plumbing for the cast receiver.

Senders connect to ``/ws``: inbound text frames are sender commands,
outbound frames are MessageBus messages (reports and errors).  Commands can
also be POSTed to ``/command`` by tools that do not keep a socket open.

Routes:
    GET  /ws        sender channel
    POST /command   one sender command, answered with {"status": ...}
    GET  /status    receiver name, sender count, stream state
    GET  /state     reporting params of the current PlaybackState

Subclass contract:

    class MyReceiver(ReceiverBase):
        name = "Living Room"
        port = 8780

        async def handle_message(self, data) -> dict: ...

Optional overrides:
    on_start()   — called after the HTTP server is up
    on_stop()    — called during shutdown (before sockets are closed)
    get_status() — dict for GET /status
    get_state()  — dict for GET /state
"""

import asyncio
import logging
import signal

import aiohttp
from aiohttp import web

from .errors import MalformedCommandError
from .message_bus import MessageBus
from .watchdog import watchdog_loop

log = logging.getLogger(__name__)


class ReceiverBase:
    name: str = ""
    port: int = 8780

    def __init__(self):
        self.bus = MessageBus()
        self.running: bool = False
        self._runner: web.AppRunner | None = None
        self._http_session: aiohttp.ClientSession | None = None
        self._watchdog_task: asyncio.Task | None = None

    # ── Subclass hooks ──

    async def handle_message(self, data) -> dict:
        """Handle one sender command.  Must be implemented by subclass."""
        raise NotImplementedError

    async def on_start(self):
        """Called after HTTP server is up."""

    async def on_stop(self):
        """Called during shutdown."""

    async def get_status(self) -> dict:
        return {"receiver": self.name, "senders": len(self.bus)}

    async def get_state(self) -> dict:
        return {}

    def stream_status(self) -> str:
        """One-line status for systemd."""
        return "Idle"

    def add_routes(self, app: web.Application):
        """Add extra aiohttp routes to the app."""

    # ── HTTP + WebSocket server ──

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_post("/command", self._handle_command_route)
        app.router.add_options("/command", self._handle_cors)
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/state", self._handle_state)
        self.add_routes(app)
        return app

    async def start(self):
        """Create the aiohttp app, start listening, start the watchdog."""
        self.running = True
        self._http_session = aiohttp.ClientSession()

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await site.start()
        log.info("Receiver %s: HTTP + WebSocket on port %d", self.name, self.port)

        await self.on_start()

        self._watchdog_task = asyncio.create_task(
            watchdog_loop(status=self.stream_status))

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Clean up resources."""
        self.running = False
        await self.on_stop()

        if self._watchdog_task:
            self._watchdog_task.cancel()
            try:
                await self._watchdog_task
            except asyncio.CancelledError:
                pass
            self._watchdog_task = None

        if self._http_session:
            await self._http_session.close()
            self._http_session = None

        await self.bus.close()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ── Sender channel ──

    async def _dispatch(self, data) -> dict:
        """Run one command; malformed ones are answered on the bus."""
        try:
            return await self.handle_message(data)
        except MalformedCommandError as e:
            log.warning("Invalid message from sender: %s", e)
            await self.bus.send_error(str(e))
            raise

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.bus.add(ws)
        try:
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue
                try:
                    await self._dispatch(msg.data)
                except MalformedCommandError:
                    pass
                except Exception:
                    log.exception("Command error")
        finally:
            self.bus.discard(ws)
        return ws

    # ── HTTP route handlers ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    async def _handle_command_route(self, request: web.Request) -> web.Response:
        try:
            data = await request.text()
            result = await self._dispatch(data)
            resp = {"status": "ok"}
            if result:
                resp.update(result)
            return web.json_response(resp, headers=self._cors_headers())
        except MalformedCommandError as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=400,
                headers=self._cors_headers(),
            )
        except Exception as e:
            log.exception("Command error")
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500,
                headers=self._cors_headers(),
            )

    async def _handle_status(self, request: web.Request) -> web.Response:
        status = await self.get_status()
        return web.json_response(status, headers=self._cors_headers())

    async def _handle_state(self, request: web.Request) -> web.Response:
        state = await self.get_state()
        return web.json_response(state, headers=self._cors_headers())
