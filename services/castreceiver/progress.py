"""
Playback reporting.

PlaybackReporter is the sink: every report goes to the connected senders,
and to the catalog server unless the caller asks for a local-only update.

ProgressReporter samples PlaybackState on a timer, independent of intents:

  elapsed since last server report > 5000 ms  → full report, timer reset
  1500 ms < elapsed ≤ 5000 ms                 → sender-only update
  elapsed ≤ 1500 ms                           → nothing

Nothing is reported while the stream is being renegotiated.
"""

import asyncio
import logging
import time

from .errors import CatalogError
from .playback_state import PlaybackState, reporting_params

log = logging.getLogger(__name__)

SERVER_INTERVAL_MS = 5000
LOCAL_INTERVAL_MS = 1500


class PlaybackReporter:

    def __init__(self, catalog, bus):
        self.catalog = catalog
        self.bus = bus

    async def _post(self, send, params: dict, what: str):
        if not params.get("ItemId"):
            return
        try:
            await send(params)
        except CatalogError as e:
            log.warning("Could not report playback %s: %s", what, e)

    async def report_progress(self, state: PlaybackState, send_to_server=True,
                              event_name="playbackprogress"):
        params = reporting_params(state)
        await self.bus.send_report(event_name, params)
        if send_to_server:
            await self._post(self.catalog.report_playback_progress, params, "progress")

    async def report_start(self, state: PlaybackState):
        params = reporting_params(state)
        await self.bus.send_report("playbackstart", params)
        await self._post(self.catalog.report_playback_start, params, "start")

    async def report_stopped(self, state: PlaybackState):
        params = reporting_params(state)
        await self.bus.send_report("playbackstop", params)
        await self._post(self.catalog.report_playback_stopped, params, "stop")


class ProgressReporter:

    def __init__(self, state: PlaybackState, reporter: PlaybackReporter,
                 server_interval_ms=SERVER_INTERVAL_MS,
                 local_interval_ms=LOCAL_INTERVAL_MS,
                 clock=time.monotonic):
        self.state = state
        self.reporter = reporter
        self.server_interval_ms = server_interval_ms
        self.local_interval_ms = local_interval_ms
        self._clock = clock
        self._last_server_report = clock()

    def mark_reported(self):
        """Restart the server interval after an out-of-band server report."""
        self._last_server_report = self._clock()

    async def tick(self) -> str | None:
        """Emit whatever report is due; returns "server", "local" or None."""
        state = self.state
        if state.is_changing_stream or state.item is None or state.is_paused:
            return None

        now = self._clock()
        elapsed = (now - self._last_server_report) * 1000
        if elapsed > self.server_interval_ms:
            await self.reporter.report_progress(state)
            self._last_server_report = now
            return "server"
        if elapsed > self.local_interval_ms:
            await self.reporter.report_progress(state, send_to_server=False)
            return "local"
        return None

    async def run(self, interval: float = 0.5):
        while True:
            try:
                await self.tick()
            except Exception as e:
                log.error("Progress tick failed: %s", e)
            await asyncio.sleep(interval)
