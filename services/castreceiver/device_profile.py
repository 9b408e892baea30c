"""Device capability profile sent with every playback-info request."""

from .config import cfg
from .media_source import DEFAULT_CONTAINERS

DEFAULT_MAX_BITRATE = 120_000_000

VIDEO_CONTAINERS = ("mp4", "m4v", "mkv", "webm", "mov")
AUDIO_CONTAINERS = ("mp3", "aac", "m4a", "flac", "ogg", "oga", "opus", "wav", "webma")


def get_max_bitrate_support() -> int:
    """Highest bitrate the device claims to handle; used when probing fails."""
    return int(cfg("device", "max_bitrate", default=DEFAULT_MAX_BITRATE))


def supported_containers() -> frozenset:
    configured = cfg("device", "containers")
    if configured:
        return frozenset(c.lower() for c in configured)
    return DEFAULT_CONTAINERS


def get_device_profile(max_bitrate: int) -> dict:
    containers = supported_containers()
    video = ",".join(c for c in VIDEO_CONTAINERS if c in containers)
    audio = ",".join(c for c in AUDIO_CONTAINERS if c in containers)
    return {
        "Name": cfg("receiver", "name", default="Cast Receiver"),
        "MaxStreamingBitrate": max_bitrate,
        "MaxStaticBitrate": max_bitrate,
        "MusicStreamingTranscodingBitrate": min(max_bitrate, 192_000),
        "DirectPlayProfiles": [
            {"Container": video, "Type": "Video",
             "VideoCodec": "h264,hevc,vp9,av1", "AudioCodec": "aac,mp3,opus,flac,ac3,eac3"},
            {"Container": audio, "Type": "Audio"},
        ],
        "TranscodingProfiles": [
            {"Container": "ts", "Type": "Video", "Protocol": "hls",
             "VideoCodec": "h264", "AudioCodec": "aac", "Context": "Streaming",
             "BreakOnNonKeyFrames": True},
            {"Container": "mp3", "Type": "Audio", "AudioCodec": "mp3",
             "Context": "Streaming", "Protocol": "http"},
        ],
        "SubtitleProfiles": [
            {"Format": "vtt", "Method": "External"},
            {"Format": "srt", "Method": "External"},
            {"Format": "ass", "Method": "External"},
        ],
    }
