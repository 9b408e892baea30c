"""
Stream change protocol.

Decides, for every change intent, whether the stream that is already
loaded can satisfy it in place or whether a new stream has to be negotiated
with the catalog server and loaded into the player.

States:

    Idle ──▶ Negotiating ──▶ Loaded ──▶ Idle
                  │
                  └────────▶ Failed ──▶ Idle

Only one renegotiation can be in flight.  Any intent that arrives while the
state is Negotiating is rejected, not queued.  A failed renegotiation leaves
the previous stream playing and the PlaybackState untouched.

Intents:
  Seek(ticks)                in place when the stream allows client seeks
  ChangeAudioTrack(index)    always renegotiates
  ChangeSubtitleTrack(index) in place for external tracks, renegotiates when
                             subtitles are (or would be) burned into the video
  Load(item, ...)            always renegotiates, starts a new play session
"""

import logging
from dataclasses import dataclass
from typing import Callable

from .bitrate import BitrateCache
from .device_profile import get_device_profile
from .engine import PlayerEngine, TextTrackEngine, TextTrackStyle
from .errors import (
    CatalogError,
    InvalidTransitionError,
    NoCompatibleSourceError,
    NoCompatibleStreamError,
    PlaybackNegotiationError,
    ProtocolValidationError,
    TrackNotFoundError,
)
from .media_source import MediaSourceSelector, StreamDescriptorBuilder
from .playback_state import SUBTITLES_OFF, PlaybackState, StreamState, ticks_to_seconds

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Seek:
    ticks: int


@dataclass(frozen=True)
class ChangeAudioTrack:
    index: int


@dataclass(frozen=True)
class ChangeSubtitleTrack:
    index: int | None


@dataclass(frozen=True, eq=False)
class Load:
    item: dict
    start_ticks: int = 0
    media_source_id: str | None = None
    audio_index: int | None = None
    subtitle_index: int | None = None


STREAM_CHANGE_INTENTS = (Seek, ChangeAudioTrack, ChangeSubtitleTrack, Load)

_TRANSITIONS = {
    StreamState.IDLE: {StreamState.NEGOTIATING},
    StreamState.NEGOTIATING: {StreamState.LOADED, StreamState.FAILED},
    StreamState.LOADED: {StreamState.IDLE},
    StreamState.FAILED: {StreamState.IDLE},
}


class StreamChangeProtocol:

    def __init__(self, state: PlaybackState, bitrate: BitrateCache, catalog,
                 engine: PlayerEngine, text_tracks: TextTrackEngine, bus,
                 reporter, builder: StreamDescriptorBuilder,
                 selector: MediaSourceSelector | None = None,
                 device_profile: Callable[[int], dict] = get_device_profile,
                 subtitle_style: Callable[[], TextTrackStyle | None] = lambda: None,
                 stop_encodings_before_load: bool = False):
        self.state = state
        self.bitrate = bitrate
        self.catalog = catalog
        self.engine = engine
        self.text_tracks = text_tracks
        self.bus = bus
        self.reporter = reporter
        self.builder = builder
        self.selector = selector or MediaSourceSelector()
        self.device_profile = device_profile
        self.subtitle_style = subtitle_style
        self.stop_encodings_before_load = stop_encodings_before_load

    def _transition(self, new: StreamState):
        old = self.state.stream_state
        if new not in _TRANSITIONS[old]:
            raise InvalidTransitionError(f"{old.value} -> {new.value}")
        self.state.stream_state = new
        log.debug("Stream state %s -> %s", old.value, new.value)

    # ── Intent dispatch ──

    async def handle(self, intent) -> bool:
        """Apply *intent*.  False when it was rejected or dropped."""
        if self.state.is_changing_stream:
            log.warning("Renegotiation in flight, rejecting %s", intent)
            return False
        if isinstance(intent, Load):
            return await self.load(intent)
        if self.state.item is None:
            log.warning("Nothing loaded, ignoring %s", intent)
            return False
        if isinstance(intent, Seek):
            return await self.seek(intent.ticks)
        if isinstance(intent, ChangeAudioTrack):
            return await self.change_audio_track(intent.index)
        if isinstance(intent, ChangeSubtitleTrack):
            return await self.change_subtitle_track(intent.index)
        raise TypeError(f"not a stream change intent: {intent!r}")

    async def seek(self, ticks: int) -> bool:
        if self.state.can_client_seek:
            await self.engine.seek(ticks_to_seconds(ticks))
            self.state.position_ticks = ticks
            await self.reporter.report_progress(self.state)
            return True
        log.info("Stream cannot seek locally, renegotiating at %d", ticks)
        return await self._renegotiate(ticks)

    async def change_audio_track(self, index: int) -> bool:
        log.info("Audio stream change to %s", index)
        return await self._renegotiate(self.state.position_ticks, audio_index=index)

    async def change_subtitle_track(self, index: int | None) -> bool:
        state = self.state
        current = state.subtitle_stream(state.subtitle_stream_index)
        current_method = current.get("DeliveryMethod") if current else None

        if index is None or index < 0:
            if current_method == "Encode":
                log.info("Subtitles are burned in, stream change required to turn them off")
                return await self._renegotiate(
                    state.position_ticks, subtitle_index=SUBTITLES_OFF)
            state.subtitle_stream_index = SUBTITLES_OFF
            await self.activate_text_track(None)
            return True

        target = state.subtitle_stream(index)
        if target is None:
            log.warning("Dropping subtitle change: %s", TrackNotFoundError(index))
            return False

        method = target.get("DeliveryMethod")
        log.info("Subtitle stream change to %d (delivery=%s, current=%s)",
                 index, method, current_method)
        if current_method == "Encode" or method != "External":
            return await self._renegotiate(state.position_ticks, subtitle_index=index)

        await self.activate_text_track(index)
        state.subtitle_stream_index = index
        return True

    async def load(self, intent: Load) -> bool:
        log.info("Loading item %s at %d", intent.item.get("Id"), intent.start_ticks)
        return await self._renegotiate(
            intent.start_ticks, audio_index=intent.audio_index,
            subtitle_index=intent.subtitle_index, load=intent)

    async def activate_text_track(self, index: int | None):
        """Show local text track *index* (None or -1 hides subtitles)."""
        if index is None or index < 0:
            await self.text_tracks.set_active_track(None)
            return
        if not any(t.id == index for t in self.text_tracks.list_tracks()):
            log.warning("Text track %d is not available on the player", index)
            return
        await self.text_tracks.set_active_track(index)
        style = self.subtitle_style()
        if style:
            await self.text_tracks.set_track_style(style)

    # ── Renegotiation ──

    async def _renegotiate(self, start_ticks: int, *, audio_index=None,
                           subtitle_index=None, load: Load | None = None) -> bool:
        self._transition(StreamState.NEGOTIATING)
        try:
            await self._negotiate(start_ticks or 0, audio_index, subtitle_index, load)
            self._transition(StreamState.LOADED)
            return True
        except PlaybackNegotiationError as e:
            log.warning("Playback negotiation failed: %s", e.code)
            await self.bus.send_playback_error(e.code)
            return False
        except CatalogError as e:
            log.warning("Catalog server error during negotiation: %s", e)
            await self.bus.send_connection_error(str(e))
            return False
        finally:
            if self.state.stream_state is StreamState.NEGOTIATING:
                self._transition(StreamState.FAILED)
            self._transition(StreamState.IDLE)

    async def _negotiate(self, start_ticks, audio_index, subtitle_index, load):
        state = self.state
        if load is not None:
            item = load.item
            if not item.get("MediaType"):
                item = await self.catalog.get_item(item["Id"])
            media_source_id = load.media_source_id
            live_stream_id = None
        else:
            item = state.item
            media_source_id = state.media_source_id
            live_stream_id = state.live_stream_id
            if audio_index is None:
                audio_index = state.audio_stream_index
            if subtitle_index is None:
                subtitle_index = state.subtitle_stream_index

        max_bitrate = await self.bitrate.get()
        info = await self.catalog.get_playback_info(
            item, max_bitrate, self.device_profile(max_bitrate), start_ticks,
            media_source_id, audio_index, subtitle_index, live_stream_id)
        if info.get("ErrorCode"):
            raise ProtocolValidationError(info["ErrorCode"])

        source = self.selector.select(info.get("MediaSources") or [])
        if source is None:
            raise NoCompatibleSourceError()

        descriptor = self.builder.build(item, source, start_ticks,
                                        audio_index, subtitle_index)
        if not descriptor.playable:
            raise NoCompatibleStreamError()

        if load is not None and state.item is not None:
            await self.reporter.report_stopped(state)

        if (self.stop_encodings_before_load and state.descriptor
                and not state.descriptor.is_static):
            await self.engine.pause()
            try:
                await self.catalog.stop_active_encodings(state.play_session_id)
            except CatalogError as e:
                log.warning("Could not stop active encodings: %s", e)

        await self.engine.load(descriptor)
        await self.engine.play()

        state.item = item
        state.media_source = source
        state.media_source_id = source.get("Id")
        state.live_stream_id = source.get("LiveStreamId")
        state.audio_stream_index = descriptor.audio_stream_index
        state.subtitle_stream_index = descriptor.subtitle_stream_index
        state.position_ticks = start_ticks
        state.descriptor = descriptor
        state.is_paused = False
        if load is not None:
            state.play_session_id = info.get("PlaySessionId")
            await self.reporter.report_start(state)
        log.info("Loaded %s via %s (audio=%s, subtitle=%s)", item.get("Id"),
                 descriptor.play_method, state.audio_stream_index,
                 state.subtitle_stream_index)
