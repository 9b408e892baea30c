"""
PlaybackState — the single mutable session record — and the immutable
StreamDescriptor that describes what the player currently has loaded.

Positions and durations on the wire are in ticks (100 ns).
"""

from dataclasses import dataclass
from enum import Enum

TICKS_PER_SECOND = 10_000_000
SUBTITLES_OFF = -1


def ticks_to_seconds(ticks: int | None) -> float:
    return (ticks or 0) / TICKS_PER_SECOND


def seconds_to_ticks(seconds: float | None) -> int:
    return int(round((seconds or 0) * TICKS_PER_SECOND))


class StreamState(Enum):
    IDLE = "Idle"
    NEGOTIATING = "Negotiating"
    LOADED = "Loaded"
    FAILED = "Failed"


@dataclass(frozen=True)
class TextTrack:
    """An out-of-band subtitle track the player can render locally."""

    id: int                  # server-side stream Index
    url: str
    language: str | None = None
    name: str | None = None
    content_type: str = "text/vtt"


@dataclass(frozen=True)
class StreamDescriptor:
    """A fully resolved, playable stream.  Rebuilt on every renegotiation."""

    url: str
    content_type: str
    container: str
    item_id: str
    media_source_id: str | None
    play_method: str                     # DirectPlay | DirectStream | Transcode
    is_static: bool
    can_seek: bool
    can_client_seek: bool
    duration: int | None                 # whole seconds, None for live
    runtime_ticks: int | None
    start_position_ticks: int
    player_start_ticks: int              # where the player itself must seek to
    audio_stream_index: int | None
    subtitle_stream_index: int
    live_stream_id: str | None = None
    tracks: tuple[TextTrack, ...] = ()

    @property
    def playable(self) -> bool:
        return bool(self.url)


@dataclass
class PlaybackState:
    item: dict | None = None
    media_source: dict | None = None
    media_source_id: str | None = None
    play_session_id: str | None = None
    live_stream_id: str | None = None
    audio_stream_index: int | None = None
    subtitle_stream_index: int = SUBTITLES_OFF
    position_ticks: int = 0
    descriptor: StreamDescriptor | None = None
    stream_state: StreamState = StreamState.IDLE
    is_paused: bool = False
    is_muted: bool = False
    volume_level: int = 100

    @property
    def is_changing_stream(self) -> bool:
        return self.stream_state is StreamState.NEGOTIATING

    @property
    def can_client_seek(self) -> bool:
        return bool(self.descriptor and self.descriptor.can_client_seek)

    @property
    def item_id(self) -> str | None:
        return self.item.get("Id") if self.item else None

    def subtitle_stream(self, index: int | None) -> dict | None:
        """Return the active source's subtitle stream with *index*, if any."""
        if index is None or index < 0 or not self.media_source:
            return None
        return get_stream_by_index(
            self.media_source.get("MediaStreams") or [], "Subtitle", index)

    def reset(self):
        """Back to the no-media defaults.  Volume and mute survive."""
        self.item = None
        self.media_source = None
        self.media_source_id = None
        self.play_session_id = None
        self.live_stream_id = None
        self.audio_stream_index = None
        self.subtitle_stream_index = SUBTITLES_OFF
        self.position_ticks = 0
        self.descriptor = None
        self.stream_state = StreamState.IDLE
        self.is_paused = False


def get_stream_by_index(streams: list, stream_type: str, index: int) -> dict | None:
    for stream in streams:
        if stream.get("Type") == stream_type and stream.get("Index") == index:
            return stream
    return None


def reporting_params(state: PlaybackState) -> dict:
    """Progress payload for the catalog server's Sessions/Playing endpoints."""
    descriptor = state.descriptor
    return {
        "ItemId": state.item_id,
        "MediaSourceId": state.media_source_id,
        "PositionTicks": state.position_ticks,
        "IsPaused": state.is_paused,
        "IsMuted": state.is_muted,
        "VolumeLevel": state.volume_level,
        "AudioStreamIndex": state.audio_stream_index,
        "SubtitleStreamIndex": state.subtitle_stream_index,
        "PlayMethod": descriptor.play_method if descriptor else None,
        "CanSeek": descriptor.can_seek if descriptor else False,
        "PlaySessionId": state.play_session_id,
        "LiveStreamId": state.live_stream_id,
    }
