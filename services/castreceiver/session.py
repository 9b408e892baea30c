"""
ReceiverSession — the explicit context of one sender session.

Owns the PlaybackState and everything that reads or writes it: bitrate
cache, stream-change protocol, progress reporter and playlist.  All state
changes run on a single consumer task draining one asyncio.Queue; engine
callbacks and inbound commands only ``submit()``.

Dropping rules at submit time:
  - a stream change (seek, track change, load, playlist move) while a
    renegotiation is in flight or another change is already queued; a seek
    behind a queued seek replaces its target instead
  - player events while the stream is changing, except load-complete
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from .bitrate import DEFAULT_TTL_MS, BitrateCache
from .device_profile import get_device_profile, get_max_bitrate_support
from .engine import PlayerEngine, text_track_style
from .media_source import DEFAULT_CONTAINERS, StreamDescriptorBuilder
from .playback_state import PlaybackState, seconds_to_ticks
from .progress import LOCAL_INTERVAL_MS, SERVER_INTERVAL_MS, PlaybackReporter, ProgressReporter
from .stream_change import STREAM_CHANGE_INTENTS, Load, Seek, StreamChangeProtocol

log = logging.getLogger(__name__)


# ── Session intents (besides the stream-change ones) ──

@dataclass(frozen=True, eq=False)
class PlayItems:
    items: list
    start_index: int = 0
    start_ticks: int = 0
    media_source_id: str | None = None
    audio_index: int | None = None
    subtitle_index: int | None = None


@dataclass(frozen=True, eq=False)
class QueueItems:
    items: list
    play_next: bool = False


@dataclass(frozen=True)
class NextItem:
    pass


@dataclass(frozen=True)
class PreviousItem:
    pass


@dataclass(frozen=True)
class Transport:
    action: str          # pause | unpause | toggle | stop


@dataclass(frozen=True)
class Volume:
    level: int | None = None      # absolute, 0-100
    step: int = 0                 # relative change
    muted: bool | None = None     # None toggles when nothing else is set


@dataclass(frozen=True, eq=False)
class PlayerEvent:
    name: str
    data: object = None


CHANGE_INTENTS = STREAM_CHANGE_INTENTS + (PlayItems, NextItem, PreviousItem)


class ReceiverSession:

    def __init__(self, catalog, engine: PlayerEngine, bus, *,
                 text_tracks=None,
                 max_supported=get_max_bitrate_support,
                 bitrate_ttl_ms: int = DEFAULT_TTL_MS,
                 containers=DEFAULT_CONTAINERS,
                 device_profile=get_device_profile,
                 server_interval_ms: int = SERVER_INTERVAL_MS,
                 local_interval_ms: int = LOCAL_INTERVAL_MS,
                 stop_encodings_before_load: bool = False,
                 clock=time.monotonic):
        self.catalog = catalog
        self.engine = engine
        self.bus = bus
        self.subtitle_appearance: dict = {}
        self.capabilities_reported = False

        self.state = PlaybackState()
        self.bitrate = BitrateCache(catalog.detect_bitrate, max_supported,
                                    bitrate_ttl_ms, clock)
        self.reporter = PlaybackReporter(catalog, bus)
        self.progress = ProgressReporter(self.state, self.reporter,
                                         server_interval_ms, local_interval_ms,
                                         clock)
        self.stream = StreamChangeProtocol(
            self.state, self.bitrate, catalog, engine,
            text_tracks or engine, bus, self.reporter,
            StreamDescriptorBuilder(catalog.server_address,
                                    catalog.access_token, containers),
            device_profile=device_profile,
            subtitle_style=self._subtitle_style,
            stop_encodings_before_load=stop_encodings_before_load,
        )

        self.playlist: list[dict] = []
        self.playlist_index = -1

        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending_changes = 0
        self._queued_seek: Seek | None = None
        self._consumer: asyncio.Task | None = None
        self._progress_task: asyncio.Task | None = None
        engine.set_event_handler(self.on_engine_event)

    def _subtitle_style(self):
        if not self.subtitle_appearance:
            return None
        return text_track_style(self.subtitle_appearance)

    # ── Lifecycle ──

    def start(self, tick_interval: float = 0.5):
        """Start the consumer and progress tasks."""
        if self._consumer is None:
            self._consumer = asyncio.create_task(self.run())
        if self._progress_task is None:
            self._progress_task = asyncio.create_task(
                self.progress.run(tick_interval))

    async def close(self):
        """End of session: report the current item stopped and halt playback."""
        for task in (self._progress_task, self._consumer):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._progress_task = self._consumer = None
        self.engine.set_event_handler(None)

        if self.state.item is not None:
            await self.reporter.report_stopped(self.state)
        await self.engine.stop()
        self.state.reset()
        log.info("Session closed")

    # ── Intent queue ──

    def submit(self, intent) -> bool:
        """Queue *intent* for the consumer.  False when it was dropped."""
        if isinstance(intent, CHANGE_INTENTS):
            if self.state.is_changing_stream:
                log.warning("Stream change in progress, dropping %s",
                            type(intent).__name__)
                return False
            if isinstance(intent, Seek) and self._queued_seek is not None:
                log.debug("Replacing queued seek with %d", intent.ticks)
                self._queued_seek = intent
                return True
            if self._pending_changes:
                log.warning("Stream change in progress, dropping %s",
                            type(intent).__name__)
                return False
            self._pending_changes += 1
            if isinstance(intent, Seek):
                self._queued_seek = intent
        elif isinstance(intent, PlayerEvent):
            if self.state.is_changing_stream and intent.name != "load-complete":
                log.debug("Dropping player event %s while changing stream",
                          intent.name)
                return False
        self._queue.put_nowait(intent)
        return True

    async def run(self):
        """Consume intents forever, one at a time."""
        while True:
            intent = await self._queue.get()
            if isinstance(intent, Seek):
                intent, self._queued_seek = self._queued_seek or intent, None
            try:
                await self.apply(intent)
            except Exception:
                log.exception("Error applying %s", type(intent).__name__)
            finally:
                if isinstance(intent, CHANGE_INTENTS):
                    self._pending_changes -= 1
                self._queue.task_done()

    async def drain(self):
        """Wait until every queued intent has been applied."""
        await self._queue.join()

    async def apply(self, intent) -> bool | None:
        if isinstance(intent, STREAM_CHANGE_INTENTS):
            ok = await self.stream.handle(intent)
            if ok:
                self.progress.mark_reported()
            return ok
        if isinstance(intent, PlayerEvent):
            return await self.on_player_event(intent.name, intent.data)
        if isinstance(intent, PlayItems):
            return await self.play_items(intent)
        if isinstance(intent, QueueItems):
            return self.queue_items(intent.items, intent.play_next)
        if isinstance(intent, NextItem):
            return await self.next_item()
        if isinstance(intent, PreviousItem):
            return await self.previous_item()
        if isinstance(intent, Transport):
            return await self.transport(intent.action)
        if isinstance(intent, Volume):
            return await self.set_volume(intent)
        raise TypeError(f"unknown intent: {intent!r}")

    # ── Player events ──

    async def on_engine_event(self, name: str, data=None):
        self.submit(PlayerEvent(name, data))

    async def on_player_event(self, name: str, data=None):
        state = self.state
        if state.is_changing_stream and name != "load-complete":
            return

        if name == "time-update":
            descriptor = state.descriptor
            offset = 0
            if descriptor:
                offset = descriptor.start_position_ticks - descriptor.player_start_ticks
            state.position_ticks = seconds_to_ticks(data) + offset
        elif name in ("play", "pause"):
            state.is_paused = name == "pause"
            await self.reporter.report_progress(state, event_name="playstatechange")
        elif name == "ended":
            log.info("Item %s ended", state.item_id)
            await self.reporter.report_stopped(state)
            state.reset()
            if not await self._play_at(self.playlist_index + 1):
                self.playlist = []
                self.playlist_index = -1
        elif name == "load-complete":
            descriptor = state.descriptor
            index = descriptor.subtitle_stream_index if descriptor else None
            await self.stream.activate_text_track(index)
        else:
            log.debug("Ignoring player event %s", name)

    # ── Playlist ──

    async def play_items(self, request: PlayItems) -> bool:
        if not request.items:
            log.warning("PlayNow without items")
            return False
        self.playlist = list(request.items)
        index = min(max(request.start_index, 0), len(self.playlist) - 1)
        return await self._play_at(
            index, request.start_ticks, request.media_source_id,
            request.audio_index, request.subtitle_index)

    def queue_items(self, items: list, play_next: bool = False) -> bool:
        if not items:
            return False
        if play_next and self.playlist_index >= 0:
            at = self.playlist_index + 1
            self.playlist[at:at] = items
        else:
            self.playlist.extend(items)
        log.info("Queued %d items (%s), playlist now %d", len(items),
                 "next" if play_next else "last", len(self.playlist))
        return True

    async def next_item(self) -> bool:
        return await self._play_at(self.playlist_index + 1)

    async def previous_item(self) -> bool:
        return await self._play_at(self.playlist_index - 1)

    async def _play_at(self, index: int, start_ticks: int = 0,
                       media_source_id=None, audio_index=None,
                       subtitle_index=None) -> bool:
        if not 0 <= index < len(self.playlist):
            log.info("No playlist entry at %d", index)
            return False
        self.playlist_index = index
        ok = await self.stream.handle(Load(
            self.playlist[index], start_ticks, media_source_id,
            audio_index, subtitle_index))
        if ok:
            self.progress.mark_reported()
        return ok

    # ── Transport ──

    async def transport(self, action: str) -> bool:
        state = self.state
        if action == "toggle":
            action = "unpause" if state.is_paused else "pause"
        if action == "pause":
            await self.engine.pause()
        elif action == "unpause":
            await self.engine.play()
        elif action == "stop":
            if state.item is not None:
                await self.reporter.report_stopped(state)
            await self.engine.stop()
            state.reset()
            self.playlist = []
            self.playlist_index = -1
        else:
            log.warning("Unknown transport action %s", action)
            return False
        return True

    async def set_volume(self, request: Volume) -> bool:
        state = self.state
        if request.level is not None:
            state.volume_level = request.level
        state.volume_level = min(100, max(0, state.volume_level + request.step))
        if request.muted is not None:
            state.is_muted = request.muted
        elif request.level is None and not request.step:
            state.is_muted = not state.is_muted
        await self.engine.set_volume(state.volume_level, state.is_muted)
        await self.reporter.report_progress(state, event_name="volumechange")
        return True

    def pause(self) -> bool:
        return self.submit(Transport("pause"))

    def unpause(self) -> bool:
        return self.submit(Transport("unpause"))

    def toggle_pause(self) -> bool:
        return self.submit(Transport("toggle"))

    def stop(self) -> bool:
        return self.submit(Transport("stop"))
