"""
mpv-backed player and text-track engine.

Keeps one idle mpv process alive and drives it over its JSON IPC socket.
Stream loads replace the current file; out-of-band subtitles are attached
with ``sub-add`` once the file has loaded and activated through ``sid``.

Events emitted (see engine.ENGINE_EVENTS):
  time-update   — observed ``time-pos`` (seconds)
  play / pause  — observed ``pause`` flips, only while a file is loaded
  load-complete — after ``file-loaded`` and all text tracks are attached
  ended         — ``end-file`` with reason ``eof``
"""

import asyncio
import itertools
import json
import logging
import os
import subprocess

from .engine import PlayerEngine, TextTrackEngine, TextTrackStyle
from .playback_state import StreamDescriptor, TextTrack, ticks_to_seconds

log = logging.getLogger(__name__)

IPC_TIMEOUT = 5.0


def mpv_color(rgba: str) -> str:
    """#RRGGBBAA → mpv's #AARRGGBB."""
    value = rgba.lstrip("#")
    if len(value) == 8:
        return f"#{value[6:]}{value[:6]}"
    return f"#{value}"


class MpvEngine(PlayerEngine, TextTrackEngine):

    def __init__(self, ipc_socket="/tmp/castreceiver-mpv.sock", ao="pulse",
                 extra_args=None):
        super().__init__()
        self._ipc_socket = ipc_socket
        self._ao = ao
        self._extra_args = list(extra_args or [])
        self.process = None
        self._ipc_reader = None
        self._ipc_writer = None
        self._ipc_task = None
        self._request_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._tracks: list[TextTrack] = []
        self._sid_by_track: dict[int, int] = {}
        self._loaded = False

    # ── mpv lifecycle ──

    def _mpv_running(self):
        return self.process is not None and self.process.poll() is None

    async def _launch(self):
        if self._mpv_running() and self._ipc_writer:
            return

        try:
            os.unlink(self._ipc_socket)
        except FileNotFoundError:
            pass

        env = os.environ.copy()
        env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
        cmd = [
            "mpv", f"--ao={self._ao}",
            "--idle=yes", "--force-window=yes", "--no-terminal",
            "--keep-open=no",
            f"--input-ipc-server={self._ipc_socket}",
            *self._extra_args,
        ]
        self.process = subprocess.Popen(
            cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, env=env)

        # Wait for IPC socket and connect
        connected = False
        for _ in range(50):  # up to 5 s
            await asyncio.sleep(0.1)
            if self.process.poll() is not None:
                raise RuntimeError("mpv exited immediately")
            if os.path.exists(self._ipc_socket):
                try:
                    self._ipc_reader, self._ipc_writer = \
                        await asyncio.open_unix_connection(self._ipc_socket)
                    connected = True
                    break
                except (ConnectionRefusedError, FileNotFoundError):
                    continue

        if not connected:
            raise RuntimeError("Could not connect to mpv IPC")

        self._ipc_task = asyncio.create_task(self._read_ipc_events())
        await self._send_ipc({"command": ["observe_property", 1, "time-pos"]})
        await self._send_ipc({"command": ["observe_property", 2, "pause"]})
        log.info("mpv launched (ipc=%s, ao=%s)", self._ipc_socket, self._ao)

    async def close(self):
        if self._ipc_task:
            self._ipc_task.cancel()
            try:
                await self._ipc_task
            except asyncio.CancelledError:
                pass
            self._ipc_task = None
        await self._close_ipc()
        if self.process:
            self.process.terminate()
            try:
                await asyncio.get_running_loop().run_in_executor(
                    None, self.process.wait, 2)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None
        self._loaded = False

    # ── IPC communication ──

    async def _send_ipc(self, cmd_obj):
        if not self._ipc_writer:
            return
        try:
            self._ipc_writer.write(json.dumps(cmd_obj).encode() + b"\n")
            await self._ipc_writer.drain()
        except Exception as e:
            log.error("mpv IPC send error: %s", e)

    async def _command(self, *args):
        """Send a command and wait for mpv's reply; returns its ``data``."""
        if not self._ipc_writer:
            log.debug("mpv not running, dropping %s", args[0])
            return None
        request_id = next(self._request_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        await self._send_ipc({"command": list(args), "request_id": request_id})
        try:
            reply = await asyncio.wait_for(future, IPC_TIMEOUT)
        finally:
            self._pending.pop(request_id, None)
        if reply.get("error") not in (None, "success"):
            log.warning("mpv %s failed: %s", args[0], reply.get("error"))
            return None
        return reply.get("data")

    async def _set_property(self, name, value):
        return await self._command("set_property", name, value)

    async def _close_ipc(self):
        if self._ipc_writer:
            try:
                self._ipc_writer.close()
                await self._ipc_writer.wait_closed()
            except Exception:
                pass
        self._ipc_reader = None
        self._ipc_writer = None
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    async def _read_ipc_events(self):
        """Background task — resolves replies and turns mpv events into engine events."""
        try:
            while self._ipc_reader:
                line = await self._ipc_reader.readline()
                if not line:
                    break  # mpv closed
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    continue
                request_id = msg.get("request_id")
                if request_id in self._pending:
                    future = self._pending[request_id]
                    if not future.done():
                        future.set_result(msg)
                    continue
                await self._handle_event(msg)
        except asyncio.CancelledError:
            return
        except Exception as e:
            log.debug("IPC reader ended: %s", e)

        log.warning("mpv IPC closed")
        self.process = None
        self._loaded = False
        await self._close_ipc()

    async def _handle_event(self, msg):
        event = msg.get("event")
        if event == "property-change":
            name, data = msg.get("name"), msg.get("data")
            if name == "time-pos" and isinstance(data, (int, float)):
                await self.emit("time-update", float(data))
            elif name == "pause" and self._loaded:
                await self.emit("pause" if data else "play")
        elif event == "file-loaded":
            self._loaded = True
            # sub-add needs replies from this reader, so it can't run inline
            asyncio.create_task(self._attach_text_tracks())
        elif event == "end-file":
            if msg.get("reason") == "eof":
                self._loaded = False
                await self.emit("ended")

    async def _attach_text_tracks(self):
        try:
            for track in self._tracks:
                args = ["sub-add", track.url, "auto"]
                if track.name or track.language:
                    args += [track.name or "", track.language or ""]
                await self._command(*args)
            track_list = await self._command("get_property", "track-list") or []
            by_url = {t.get("external-filename"): t.get("id")
                      for t in track_list if t.get("type") == "sub"}
            self._sid_by_track = {
                t.id: by_url[t.url] for t in self._tracks if t.url in by_url}
            log.info("Attached %d/%d text tracks",
                     len(self._sid_by_track), len(self._tracks))
        except (asyncio.TimeoutError, asyncio.CancelledError) as e:
            log.warning("Attaching text tracks failed: %r", e)
        await self.emit("load-complete")

    # ── PlayerEngine ──

    async def load(self, descriptor: StreamDescriptor):
        await self._launch()
        self._tracks = list(descriptor.tracks)
        self._sid_by_track = {}
        self._loaded = False
        start = ticks_to_seconds(descriptor.player_start_ticks)
        await self._set_property("start", f"{start:.3f}" if start else "none")
        await self._command("loadfile", descriptor.url, "replace")
        await self._set_property("pause", False)
        log.info("Loading %s (%s, start %.1fs)",
                 descriptor.url, descriptor.play_method, start)

    async def seek(self, seconds: float):
        await self._command("seek", seconds, "absolute")

    async def play(self):
        await self._set_property("pause", False)

    async def pause(self):
        await self._set_property("pause", True)

    async def stop(self):
        if self._mpv_running():
            self._loaded = False
            await self._command("stop")

    async def set_volume(self, level: int, muted: bool):
        await self._set_property("volume", level)
        await self._set_property("mute", muted)

    # ── TextTrackEngine ──

    def list_tracks(self) -> list[TextTrack]:
        return list(self._tracks)

    async def set_active_track(self, index: int | None):
        if index is None:
            await self._set_property("sid", "no")
            return
        sid = self._sid_by_track.get(index)
        if sid is None:
            log.warning("Text track %s is not attached to the player", index)
            return
        await self._set_property("sid", sid)

    async def set_track_style(self, style: TextTrackStyle):
        await self._set_property("sub-scale", style.font_scale)
        if style.font_family:
            await self._set_property("sub-font", style.font_family)
        if style.foreground_color:
            await self._set_property("sub-color", mpv_color(style.foreground_color))
        if style.background_color:
            await self._set_property("sub-back-color", mpv_color(style.background_color))
        if style.edge_type == "DROP_SHADOW":
            await self._set_property("sub-shadow-offset", 2)
            await self._set_property("sub-shadow-color", mpv_color(style.edge_color))
        elif style.edge_type:
            await self._set_property("sub-border-color", mpv_color(style.edge_color))
