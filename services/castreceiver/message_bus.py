"""
Outbound message bus to paired senders.

Every sender holds a WebSocket on ``/ws``; messages are JSON objects with a
``type`` field:

  error            — malformed command      {"type": "error", "message": ...}
  playbackerror    — renegotiation aborted  {"type": "playbackerror", "message": code}
  connectionerror  — catalog unreachable    {"type": "connectionerror", "message": ...}
  playbackprogress / playbackstart / playbackstop / playstatechange
                   — state reports          {"type": ..., "data": {...}}
"""

import json
import logging

log = logging.getLogger(__name__)


class MessageBus:

    def __init__(self):
        self._clients: set = set()

    def add(self, ws):
        self._clients.add(ws)
        log.info("Sender connected (%d total)", len(self._clients))

    def discard(self, ws):
        self._clients.discard(ws)
        log.info("Sender disconnected (%d remaining)", len(self._clients))

    def __len__(self):
        return len(self._clients)

    async def send(self, message: dict):
        """Push *message* to all connected senders, dropping dead sockets."""
        if not self._clients:
            return

        text = json.dumps(message)
        disconnected = set()
        for ws in list(self._clients):
            try:
                await ws.send_str(text)
            except Exception:
                disconnected.add(ws)

        self._clients -= disconnected
        log.debug("→ %d senders: %s", len(self._clients), message.get("type"))

    async def send_error(self, message: str):
        await self.send({"type": "error", "message": message})

    async def send_playback_error(self, code: str):
        await self.send({"type": "playbackerror", "message": code})

    async def send_connection_error(self, message: str = ""):
        await self.send({"type": "connectionerror", "message": message})

    async def send_report(self, event_type: str, data: dict):
        await self.send({"type": event_type, "data": data})

    async def close(self):
        for ws in list(self._clients):
            await ws.close()
        self._clients.clear()
