"""
Media source selection and stream descriptor building.

The catalog server returns one or more candidate versions ("media sources")
of an item, each flagged with what it supports:

  SupportsDirectPlay    — the receiver fetches the original file itself
  SupportsDirectStream  — the server remuxes without re-encoding
  SupportsTranscoding   — the server re-encodes on the fly

Selection takes the first direct-play candidate in input order, then the
first direct-stream one, then the first transcode one.  The builder turns
the chosen source into a StreamDescriptor the player engine can load.
"""

import logging
from urllib.parse import urlencode

from .playback_state import (
    SUBTITLES_OFF,
    TICKS_PER_SECOND,
    StreamDescriptor,
    TextTrack,
)

log = logging.getLogger(__name__)

MIME_TYPE_HLS = "application/x-mpegURL"

DEFAULT_CONTAINERS = frozenset({
    "mp4", "m4v", "mkv", "webm", "mov", "ts", "m3u8",
    "mp3", "aac", "m4a", "flac", "ogg", "oga", "opus", "wav", "webma",
})


def check_direct_play(source: dict) -> None:
    """Clear SupportsDirectPlay unless the source is plain HTTP without
    required headers.  The player cannot attach custom headers to a direct
    fetch, so such sources must go through the server's stream proxy."""
    if (source.get("SupportsDirectPlay")
            and source.get("Protocol") == "Http"
            and not source.get("RequiredHttpHeaders")):
        return
    source["SupportsDirectPlay"] = False


def select_media_source(candidates: list[dict]) -> dict | None:
    direct_play = []
    for source in candidates:
        check_direct_play(source)
        if source.get("SupportsDirectPlay"):
            direct_play.append(source)
    if direct_play:
        return direct_play[0]

    for flag in ("SupportsDirectStream", "SupportsTranscoding"):
        for source in candidates:
            if source.get(flag):
                return source
    return None


class MediaSourceSelector:
    """Thin wrapper so the selection step can be swapped in tests."""

    def select(self, candidates: list[dict]) -> dict | None:
        chosen = select_media_source(candidates or [])
        if chosen is None:
            log.warning("No playable media source among %d candidates",
                        len(candidates or []))
        else:
            log.info("Selected media source %s (direct play=%s, direct stream=%s)",
                     chosen.get("Id"), bool(chosen.get("SupportsDirectPlay")),
                     bool(chosen.get("SupportsDirectStream")))
        return chosen


class StreamDescriptorBuilder:
    """Builds StreamDescriptors for one catalog server.  No I/O."""

    def __init__(self, server_address: str, access_token: str,
                 supported_containers=DEFAULT_CONTAINERS):
        self.server_address = server_address.rstrip("/")
        self.access_token = access_token
        self.supported_containers = frozenset(
            c.lower() for c in supported_containers)

    def create_url(self, path: str) -> str:
        return f"{self.server_address}/{path.lstrip('/')}"

    def _supports(self, container: str | None) -> bool:
        return bool(container) and container.lower() in self.supported_containers

    def _direct_stream_url(self, item: dict, source: dict, container: str) -> str:
        kind = "Audio" if _is_audio(item) else "Videos"
        query = urlencode({
            "mediaSourceId": source.get("Id", ""),
            "static": "true",
            "api_key": self.access_token,
        })
        return self.create_url(f"{kind}/{item['Id']}/stream.{container}?{query}")

    def _transcode_url(self, source: dict, start_ticks: int) -> str:
        url = self.create_url(source["TranscodingUrl"])
        if start_ticks and "starttimeticks=" not in url.lower():
            sep = "&" if "?" in url else "?"
            url = f"{url}{sep}StartTimeTicks={start_ticks}"
        return url

    def text_tracks(self, source: dict) -> tuple[TextTrack, ...]:
        tracks = []
        for stream in source.get("MediaStreams") or []:
            if stream.get("Type") != "Subtitle" or not stream.get("DeliveryUrl"):
                continue
            url = stream["DeliveryUrl"]
            if not stream.get("IsExternalUrl"):
                url = self.create_url(url)
            tracks.append(TextTrack(
                id=stream["Index"],
                url=url,
                language=stream.get("Language"),
                name=stream.get("DisplayTitle") or stream.get("Title"),
            ))
        return tuple(tracks)

    def build(self, item: dict, source: dict, start_ticks: int = 0,
              audio_index: int | None = None,
              subtitle_index: int | None = None) -> StreamDescriptor:
        start_ticks = start_ticks or 0
        media = "audio" if _is_audio(item) else "video"
        container = (source.get("Container") or "").lower()
        url = ""
        is_static = False
        player_start_ticks = 0

        if source.get("SupportsDirectPlay"):
            play_method = "DirectPlay"
            is_static = True
            player_start_ticks = start_ticks
            content_type = f"{media}/{container}"
            if source.get("Path") and self._supports(container):
                url = source["Path"]
        elif source.get("SupportsDirectStream"):
            play_method = "DirectStream"
            is_static = True
            player_start_ticks = start_ticks
            content_type = f"{media}/{container}"
            if self._supports(container):
                url = self._direct_stream_url(item, source, container)
        else:
            play_method = "Transcode"
            if source.get("TranscodingSubProtocol") == "hls":
                container = "m3u8"
                content_type = MIME_TYPE_HLS
            else:
                container = (source.get("TranscodingContainer") or "").lower()
                content_type = f"{media}/{container}"
            if source.get("TranscodingUrl") and self._supports(container):
                url = self._transcode_url(source, start_ticks)

        if not url:
            log.warning("No compatible stream for source %s (method=%s, container=%s)",
                        source.get("Id"), play_method, container or "?")

        runtime_ticks = source.get("RunTimeTicks")
        duration = runtime_ticks // TICKS_PER_SECOND if runtime_ticks else None

        if audio_index is None:
            audio_index = source.get("DefaultAudioStreamIndex")
        if subtitle_index is None:
            subtitle_index = source.get("DefaultSubtitleStreamIndex")
        if subtitle_index is None:
            subtitle_index = SUBTITLES_OFF

        return StreamDescriptor(
            url=url,
            content_type=content_type,
            container=container,
            item_id=item["Id"],
            media_source_id=source.get("Id"),
            play_method=play_method,
            is_static=is_static,
            can_seek=bool(runtime_ticks),
            can_client_seek=is_static,
            duration=duration,
            runtime_ticks=runtime_ticks,
            start_position_ticks=start_ticks,
            player_start_ticks=player_start_ticks,
            audio_stream_index=audio_index,
            subtitle_stream_index=subtitle_index,
            live_stream_id=source.get("LiveStreamId"),
            tracks=self.text_tracks(source),
        )


def _is_audio(item: dict) -> bool:
    return (item.get("MediaType") or "").lower() == "audio"
