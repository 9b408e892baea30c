#!/usr/bin/env python3
# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Cast receiver service.

Plays media from a Jellyfin/Emby-style catalog server on this device, driven
by paired senders over WebSocket.  Playback runs in an mpv child process.

One ReceiverSession exists per (server, user) pair; a command from a
different server or user ends the current session and starts a new one.
"""

import asyncio
import logging
import os
import re

from castreceiver.catalog import CatalogClient
from castreceiver.commands import CommandHandler, validate_message
from castreceiver.config import cfg
from castreceiver.device_profile import get_max_bitrate_support, supported_containers
from castreceiver.mpv_engine import MpvEngine
from castreceiver.playback_state import reporting_params
from castreceiver.receiver_base import ReceiverBase
from castreceiver.session import ReceiverSession

logging.basicConfig(
    level=os.environ.get("RECEIVER_LOG_LEVEL", "INFO").upper(),
    format="[%(asctime)s] %(levelname)s %(message)s",
)
log = logging.getLogger("castreceiver")


def _device_id(name: str) -> str:
    return cfg("receiver", "device_id") or re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class CastReceiver(ReceiverBase):

    def __init__(self):
        super().__init__()
        self.name = cfg("receiver", "name", default="Cast Receiver")
        self.port = int(cfg("receiver", "port", default=8780))
        self.device_id = _device_id(self.name)
        mpv = cfg("mpv", default={})
        self.engine = MpvEngine(
            ipc_socket=mpv.get("ipc_socket", "/tmp/castreceiver-mpv.sock"),
            ao=mpv.get("ao", "pulse"),
            extra_args=mpv.get("extra_args"),
        )
        self.commands = CommandHandler()
        self.session: ReceiverSession | None = None
        self._session_key = None

    async def _session_for(self, data: dict) -> ReceiverSession:
        key = (data["serverAddress"].rstrip("/"), data["userId"])
        if self.session is not None and key == self._session_key:
            # tokens can be refreshed without ending the session
            self.session.catalog.access_token = data["accessToken"]
            self.session.stream.builder.access_token = data["accessToken"]
            return self.session

        if self.session is not None:
            log.info("Sender switched to %s as %s, ending current session", *key)
            await self.session.close()

        catalog = CatalogClient(
            self._http_session, key[0], key[1], data["accessToken"],
            self.device_id, data.get("receiverName") or self.name)
        session = ReceiverSession(
            catalog, self.engine, self.bus,
            max_supported=get_max_bitrate_support,
            bitrate_ttl_ms=int(cfg("bitrate", "ttl_ms", default=600000)),
            containers=supported_containers(),
            server_interval_ms=cfg("progress", "server_interval_ms", default=5000),
            local_interval_ms=cfg("progress", "local_interval_ms", default=1500),
            stop_encodings_before_load=bool(
                cfg("playback", "stop_encodings_before_load", default=False)),
        )
        session.bitrate.override = cfg("bitrate", "max")
        session.start(float(cfg("progress", "tick_interval", default=0.5)))
        self.session = session
        self._session_key = key
        log.info("New session for %s (user %s)", *key)
        return session

    async def handle_message(self, data) -> dict:
        data = validate_message(data)
        session = await self._session_for(data)
        accepted = await self.commands.process(session, data)
        return {"command": data["command"], "accepted": accepted}

    async def on_stop(self):
        if self.session is not None:
            await self.session.close()
            self.session = None
        await self.engine.close()

    def stream_status(self) -> str:
        if self.session is None:
            return "Idle"
        state = self.session.state
        if state.item_id:
            return f"{state.stream_state.value} {state.item_id}"
        return state.stream_state.value

    async def get_status(self) -> dict:
        status = await super().get_status()
        status["device_id"] = self.device_id
        status["stream"] = self.stream_status()
        if self.session is not None:
            status["playlist"] = len(self.session.playlist)
            status["playlist_index"] = self.session.playlist_index
            status["max_bitrate"] = self.session.bitrate.override or self.session.bitrate.detected
        return status

    async def get_state(self) -> dict:
        if self.session is None:
            return {}
        state = reporting_params(self.session.state)
        state["StreamState"] = self.session.state.stream_state.value
        return state


def main():
    service = CastReceiver()
    asyncio.run(service.run())


if __name__ == "__main__":
    main()
