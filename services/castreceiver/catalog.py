"""
Catalog server HTTP client.

Talks to the media catalog server on behalf of the current sender session:
playback info negotiation, item lookups, playback reporting, capability
registration, encode cleanup and bitrate probing.  Every HTTP or network
failure surfaces as CatalogError; the caller decides what it means.
"""

import asyncio
import logging
import time

import aiohttp

from .bitrate import ProbeResult
from .errors import CatalogError

log = logging.getLogger(__name__)

CLIENT_NAME = "Cast Receiver"
CLIENT_VERSION = "0.1.0"

BITRATE_TEST_START_BYTES = 500_000
BITRATE_TEST_MAX_BYTES = 10_000_000  # server-side limit on the test size


class CatalogClient:

    def __init__(self, session: aiohttp.ClientSession, server_address: str,
                 user_id: str, access_token: str, device_id: str,
                 device_name: str = CLIENT_NAME):
        self._session = session
        self.server_address = server_address.rstrip("/")
        self.user_id = user_id
        self.access_token = access_token
        self.device_id = device_id
        self.device_name = device_name

    def _auth_header(self) -> str:
        return (f'MediaBrowser Client="{CLIENT_NAME}", Device="{self.device_name}", '
                f'DeviceId="{self.device_id}", Version="{CLIENT_VERSION}", '
                f'Token="{self.access_token}"')

    async def _request(self, method: str, path: str, *, params=None,
                       json_body=None, timeout: float = 10):
        url = f"{self.server_address}/{path}"
        if params:
            params = {k: str(v) for k, v in params.items() if v is not None}
        try:
            async with self._session.request(
                method, url,
                params=params,
                json=json_body,
                headers={"Authorization": self._auth_header()},
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status >= 400:
                    raise CatalogError(
                        f"{method} {path} returned HTTP {resp.status}",
                        status=resp.status)
                if resp.content_type == "application/json":
                    return await resp.json()
                return None
        except aiohttp.ClientError as e:
            raise CatalogError(f"{method} {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise CatalogError(f"{method} {path} timed out") from e

    # ── Playback negotiation ──

    async def get_playback_info(self, item: dict, max_bitrate: int,
                                device_profile: dict, start_ticks: int = 0,
                                media_source_id: str | None = None,
                                audio_index: int | None = None,
                                subtitle_index: int | None = None,
                                live_stream_id: str | None = None) -> dict:
        query = {
            "UserId": self.user_id,
            "StartTimeTicks": start_ticks or 0,
            "MaxStreamingBitrate": max_bitrate,
            "AudioStreamIndex": audio_index,
            "SubtitleStreamIndex": subtitle_index,
            "MediaSourceId": media_source_id or None,
            "LiveStreamId": live_stream_id or None,
        }
        log.info("PlaybackInfo for %s (start=%s, audio=%s, subtitle=%s)",
                 item.get("Id"), start_ticks, audio_index, subtitle_index)
        result = await self._request(
            "POST", f"Items/{item['Id']}/PlaybackInfo",
            params=query, json_body={"DeviceProfile": device_profile})
        return result or {}

    async def get_item(self, item_id: str) -> dict:
        return await self._request("GET", f"Users/{self.user_id}/Items/{item_id}") or {}

    async def stop_active_encodings(self, play_session_id: str | None):
        await self._request("DELETE", "Videos/ActiveEncodings", params={
            "deviceId": self.device_id,
            "PlaySessionId": play_session_id,
        })

    # ── Reporting ──

    async def report_capabilities(self, capabilities: dict):
        await self._request("POST", "Sessions/Capabilities/Full", json_body=capabilities)

    async def report_playback_start(self, params: dict):
        await self._request("POST", "Sessions/Playing", json_body=params)

    async def report_playback_progress(self, params: dict):
        await self._request("POST", "Sessions/Playing/Progress", json_body=params)

    async def report_playback_stopped(self, params: dict):
        await self._request("POST", "Sessions/Playing/Stopped", json_body=params)

    # ── Bitrate probe ──

    async def _download_speed(self, size: int) -> float:
        """Download *size* test bytes, return bits per second."""
        url = f"{self.server_address}/Playback/BitrateTest"
        t0 = time.monotonic()
        received = 0
        async with self._session.get(
            url, params={"Size": str(size)},
            headers={"Authorization": self._auth_header()},
            timeout=aiohttp.ClientTimeout(total=30),
        ) as resp:
            resp.raise_for_status()
            async for chunk in resp.content.iter_chunked(65536):
                received += len(chunk)
        dt = max(1e-3, time.monotonic() - t0)
        return (received * 8) / dt

    async def detect_bitrate(self) -> ProbeResult:
        """Grow the test download until it takes at least a second."""
        size = BITRATE_TEST_START_BYTES
        try:
            while True:
                bps = await self._download_speed(size)
                if bps <= 0:
                    return ProbeResult.failure("empty bitrate test response")
                took_long_enough = size * 8 >= bps
                if took_long_enough or size >= BITRATE_TEST_MAX_BYTES:
                    return ProbeResult.success(round(bps * 0.8))
                size = min(size * 2, BITRATE_TEST_MAX_BYTES)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ProbeResult.failure(str(e) or type(e).__name__)
