"""Hand-written fakes and sample catalog payloads shared by the tests."""

import asyncio
import copy
import json

from castreceiver.bitrate import ProbeResult
from castreceiver.engine import PlayerEngine, TextTrackEngine
from castreceiver.message_bus import MessageBus
from castreceiver.playback_state import TICKS_PER_SECOND
from castreceiver.session import ReceiverSession
from castreceiver.stream_change import Load

SERVER = "http://catalog.local:8096"
TOKEN = "token-1"
RUNTIME_TICKS = 7200 * TICKS_PER_SECOND


class FakeClock:
    """Monotonic clock in seconds, advanced by hand."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms / 1000


class FakeWebSocket:
    def __init__(self):
        self.messages = []
        self.closed = False

    async def send_str(self, text):
        self.messages.append(json.loads(text))

    async def close(self):
        self.closed = True

    def of_type(self, message_type):
        return [m for m in self.messages if m["type"] == message_type]


class FakeCatalog:

    def __init__(self, playback_info=None, items=None,
                 probe=ProbeResult.success(20_000_000)):
        self.server_address = SERVER
        self.access_token = TOKEN
        self.playback_info = playback_info or {}
        self.items = items or {}
        self.probe = probe
        self.error = None
        self.gate: asyncio.Event | None = None
        self.probe_gate: asyncio.Event | None = None
        self.calls = []
        self.reports = []

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    def last(self, name):
        return [call for call in self.calls if call[0] == name][-1][1]

    async def get_playback_info(self, item, max_bitrate, device_profile,
                                start_ticks=0, media_source_id=None,
                                audio_index=None, subtitle_index=None,
                                live_stream_id=None):
        self.calls.append(("playback_info", {
            "item_id": item["Id"],
            "max_bitrate": max_bitrate,
            "start_ticks": start_ticks,
            "media_source_id": media_source_id,
            "audio_index": audio_index,
            "subtitle_index": subtitle_index,
            "live_stream_id": live_stream_id,
        }))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.playback_info)

    async def get_item(self, item_id):
        self.calls.append(("get_item", item_id))
        return dict(self.items[item_id])

    async def stop_active_encodings(self, play_session_id):
        self.calls.append(("stop_encodings", play_session_id))

    async def detect_bitrate(self):
        self.calls.append(("detect_bitrate", None))
        if self.probe_gate is not None:
            await self.probe_gate.wait()
        return self.probe

    async def report_capabilities(self, capabilities):
        self.reports.append(("capabilities", capabilities))

    async def report_playback_start(self, params):
        self.reports.append(("start", params))

    async def report_playback_progress(self, params):
        self.reports.append(("progress", params))

    async def report_playback_stopped(self, params):
        self.reports.append(("stopped", params))

    def reported(self, kind):
        return [params for k, params in self.reports if k == kind]


class FakeEngine(PlayerEngine, TextTrackEngine):

    def __init__(self):
        super().__init__()
        self.calls = []
        self.tracks = []
        self.active_track = "unset"

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    def last(self, name):
        return [call for call in self.calls if call[0] == name][-1][1]

    async def load(self, descriptor):
        self.calls.append(("load", descriptor))
        self.tracks = list(descriptor.tracks)

    async def seek(self, seconds):
        self.calls.append(("seek", seconds))

    async def play(self):
        self.calls.append(("play", None))

    async def pause(self):
        self.calls.append(("pause", None))

    async def stop(self):
        self.calls.append(("stop", None))

    async def set_volume(self, level, muted):
        self.calls.append(("set_volume", (level, muted)))

    def list_tracks(self):
        return list(self.tracks)

    async def set_active_track(self, index):
        self.calls.append(("set_active_track", index))
        self.active_track = index

    async def set_track_style(self, style):
        self.calls.append(("set_track_style", style))


# ── Catalog payloads ──

def video_item(item_id="item-1", name="Movie"):
    return {"Id": item_id, "Name": name, "Type": "Movie", "MediaType": "Video"}


def media_streams():
    return [
        {"Index": 0, "Type": "Video", "Codec": "h264"},
        {"Index": 1, "Type": "Audio", "Codec": "aac", "Language": "eng"},
        {"Index": 2, "Type": "Subtitle", "Codec": "subrip", "Language": "eng",
         "DisplayTitle": "English", "DeliveryMethod": "External",
         "DeliveryUrl": "/Videos/item-1/src-1/Subtitles/2/0/Stream.vtt",
         "IsExternalUrl": False},
        {"Index": 3, "Type": "Subtitle", "Codec": "pgssub", "Language": "fre",
         "DisplayTitle": "French", "DeliveryMethod": "Encode"},
        {"Index": 4, "Type": "Audio", "Codec": "ac3", "Language": "ger"},
    ]


def direct_play_source(**overrides):
    source = {
        "Id": "src-1",
        "Protocol": "Http",
        "Path": "http://files.local/movie.mp4",
        "Container": "mp4",
        "RunTimeTicks": RUNTIME_TICKS,
        "SupportsDirectPlay": True,
        "SupportsDirectStream": True,
        "SupportsTranscoding": True,
        "RequiredHttpHeaders": {},
        "MediaStreams": media_streams(),
        "DefaultAudioStreamIndex": 1,
    }
    source.update(overrides)
    return source


def transcode_source(**overrides):
    source = {
        "Id": "src-1",
        "Protocol": "File",
        "Path": "/media/movie.mkv",
        "Container": "mkv",
        "RunTimeTicks": RUNTIME_TICKS,
        "SupportsDirectPlay": False,
        "SupportsDirectStream": False,
        "SupportsTranscoding": True,
        "TranscodingUrl": "/videos/item-1/master.m3u8?MediaSourceId=src-1",
        "TranscodingSubProtocol": "hls",
        "TranscodingContainer": "ts",
        "MediaStreams": media_streams(),
        "DefaultAudioStreamIndex": 1,
    }
    source.update(overrides)
    return source


def playback_info(*sources, play_session_id="session-1"):
    return {"MediaSources": list(sources), "PlaySessionId": play_session_id}


class Harness:
    """A ReceiverSession wired to fakes, plus a connected sender socket."""

    def __init__(self, info=None, stop_encodings_before_load=False):
        self.clock = FakeClock()
        self.catalog = FakeCatalog(info or playback_info(direct_play_source()))
        self.engine = FakeEngine()
        self.bus = MessageBus()
        self.ws = FakeWebSocket()
        self.bus.add(self.ws)
        self.session = ReceiverSession(
            self.catalog, self.engine, self.bus,
            max_supported=lambda: 120_000_000,
            device_profile=lambda bitrate: {"MaxStreamingBitrate": bitrate},
            stop_encodings_before_load=stop_encodings_before_load,
            clock=self.clock,
        )
        self.state = self.session.state
        self.stream = self.session.stream

    async def load(self, item=None, **kwargs):
        return await self.stream.handle(Load(item or video_item(), **kwargs))
