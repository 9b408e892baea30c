"""
Inbound sender commands.

Every sender message is a JSON object:

    {"command": "PlayNow", "options": {...},
     "serverAddress": ..., "userId": ..., "accessToken": ...,
     "receiverName": ..., "subtitleAppearance": {...}, "maxBitrate": ...}

Commands are translated into session intents and submitted; none of them
touch the playback state directly.
"""

import json
import logging

from .errors import CatalogError, MalformedCommandError
from .playback_state import TICKS_PER_SECOND
from .session import (
    NextItem,
    PlayItems,
    PreviousItem,
    QueueItems,
    ReceiverSession,
    Volume,
)
from .stream_change import ChangeAudioTrack, ChangeSubtitleTrack, Seek

log = logging.getLogger(__name__)

REQUIRED_PARAMS = ("command", "serverAddress", "userId", "accessToken")
MISSING_PARAMS_MESSAGE = (
    "Missing one or more required params - "
    "command,options,userId,accessToken,serverAddress")

UNSUPPORTED_COMMANDS = ("Shuffle", "InstantMix", "DisplayContent", "SetRepeatMode")

VOLUME_STEP = 2


def validate_message(data) -> dict:
    """Decode and check a sender message; raises MalformedCommandError."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise MalformedCommandError(MISSING_PARAMS_MESSAGE) from e
    if not isinstance(data, dict) or not all(data.get(k) for k in REQUIRED_PARAMS):
        raise MalformedCommandError(MISSING_PARAMS_MESSAGE)
    data["options"] = data.get("options") or {}
    return data


def _int_or_none(value):
    if value is None or value == "":
        return None
    return int(value)


class CommandHandler:

    async def report_capabilities(self, session: ReceiverSession):
        session.capabilities_reported = True
        max_bitrate = await session.bitrate.get()
        capabilities = {
            "DeviceProfile": session.stream.device_profile(max_bitrate),
            "PlayableMediaTypes": ["Audio", "Video"],
            "SupportsMediaControl": True,
            "SupportsPersistentIdentifier": False,
        }
        try:
            await session.catalog.report_capabilities(capabilities)
        except CatalogError as e:
            log.warning("Could not report device capabilities: %s", e)

    async def process(self, session: ReceiverSession, data: dict) -> bool:
        """Apply per-message settings and submit the command's intent."""
        options = data.get("options") or {}

        if data.get("subtitleAppearance"):
            session.subtitle_appearance = data["subtitleAppearance"]
        if data.get("maxBitrate"):
            session.bitrate.override = int(data["maxBitrate"])

        if not session.capabilities_reported:
            await self.report_capabilities(session)

        cmd = data["command"]
        log.info("Command %s", cmd)

        if cmd == "PlayNow":
            return session.submit(PlayItems(
                options.get("items") or [],
                start_index=int(options.get("startIndex") or 0),
                start_ticks=int(options.get("startPositionTicks") or 0),
                media_source_id=options.get("mediaSourceId"),
                audio_index=_int_or_none(options.get("audioStreamIndex")),
                subtitle_index=_int_or_none(options.get("subtitleStreamIndex")),
            ))
        elif cmd in ("PlayNext", "PlayLast"):
            return session.submit(QueueItems(
                options.get("items") or [], play_next=cmd == "PlayNext"))
        elif cmd == "NextTrack":
            return session.submit(NextItem())
        elif cmd == "PreviousTrack":
            return session.submit(PreviousItem())
        elif cmd == "Seek":
            # position arrives in seconds
            ticks = int(float(options.get("position") or 0) * TICKS_PER_SECOND)
            return session.submit(Seek(ticks))
        elif cmd == "SetAudioStreamIndex":
            return session.submit(ChangeAudioTrack(int(options["index"])))
        elif cmd == "SetSubtitleStreamIndex":
            return session.submit(ChangeSubtitleTrack(_int_or_none(options.get("index"))))
        elif cmd == "Pause":
            return session.pause()
        elif cmd == "Unpause":
            return session.unpause()
        elif cmd == "PlayPause":
            return session.toggle_pause()
        elif cmd == "Stop":
            return session.stop()
        elif cmd == "SetVolume":
            return session.submit(Volume(level=int(options.get("volume", 100))))
        elif cmd == "VolumeUp":
            return session.submit(Volume(step=VOLUME_STEP))
        elif cmd == "VolumeDown":
            return session.submit(Volume(step=-VOLUME_STEP))
        elif cmd == "Mute":
            return session.submit(Volume(muted=True))
        elif cmd == "Unmute":
            return session.submit(Volume(muted=False))
        elif cmd == "ToggleMute":
            return session.submit(Volume())
        elif cmd == "Identify":
            log.info("Identify requested by %s", data.get("receiverName") or "sender")
            return True
        elif cmd in UNSUPPORTED_COMMANDS:
            log.warning("Command %s is not supported", cmd)
            return False

        log.warning("Unknown command %s", cmd)
        return False
