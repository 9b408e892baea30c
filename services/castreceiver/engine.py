# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Abstract player and text-track engines.

The stream-change protocol only talks to these interfaces.  Load and seek
calls are fire-and-forget from the protocol's point of view; the engine
reports back through the event handler with one of ENGINE_EVENTS.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable

from .playback_state import StreamDescriptor, TextTrack

ENGINE_EVENTS = ("play", "pause", "ended", "load-complete", "time-update")

EventHandler = Callable[[str, object], Awaitable[None]]


class PlayerEngine(ABC):
    """Interface every playback engine must implement."""

    def __init__(self):
        self._event_handler: EventHandler | None = None

    def set_event_handler(self, handler: EventHandler | None):
        """Register ``async def handler(event_name, data)``."""
        self._event_handler = handler

    async def emit(self, event: str, data=None):
        if self._event_handler:
            await self._event_handler(event, data)

    @abstractmethod
    async def load(self, descriptor: StreamDescriptor) -> None: ...

    @abstractmethod
    async def seek(self, seconds: float) -> None: ...

    @abstractmethod
    async def play(self) -> None: ...

    @abstractmethod
    async def pause(self) -> None: ...

    # -- Optional: override in engines with a separate stop/unload --

    async def stop(self) -> None:
        await self.pause()

    async def set_volume(self, level: int, muted: bool) -> None:
        pass

    async def close(self) -> None:
        pass


class TextTrackEngine(ABC):

    @abstractmethod
    async def set_active_track(self, index: int | None) -> None: ...

    @abstractmethod
    async def set_track_style(self, style: "TextTrackStyle") -> None: ...

    @abstractmethod
    def list_tracks(self) -> list[TextTrack]: ...


@dataclass(frozen=True)
class TextTrackStyle:
    """Subtitle styling, colours as #RRGGBBAA."""

    font_scale: float = 1.0
    font_family: str | None = None
    foreground_color: str | None = None
    background_color: str | None = None
    edge_type: str | None = None
    edge_color: str | None = None


FONT_SCALES = {
    "smaller": 0.6,
    "small": 0.8,
    "large": 1.15,
    "larger": 1.3,
    "extralarge": 1.45,
}


def text_track_style(appearance: dict) -> TextTrackStyle:
    """Translate the sender's subtitleAppearance block into a TextTrackStyle."""
    edge_type = edge_color = None
    drop_shadow = appearance.get("dropShadow")
    if drop_shadow is not None:
        # empty string means the default drop shadow
        edge_type = drop_shadow.upper() or "DROP_SHADOW"
        edge_color = "#000000FF"

    text_color = appearance.get("textColor")
    background = None
    if appearance.get("textBackground") == "transparent":
        background = "#00000000"

    return TextTrackStyle(
        font_scale=FONT_SCALES.get(appearance.get("textSize"), 1.0),
        font_family=appearance.get("font") or None,
        foreground_color=f"{text_color}FF" if text_color else None,
        background_color=background,
        edge_type=edge_type,
        edge_color=edge_color,
    )
