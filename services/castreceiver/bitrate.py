"""
Bitrate detection cache.

Resolution order for ``BitrateCache.get()``:
  1. operator/sender override  — returned as is, never expires
  2. last detected value        — while younger than the TTL
  3. a fresh network probe      — stored on success; on failure the device
                                  maximum is returned and nothing is cached

Concurrent callers share one in-flight probe.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

log = logging.getLogger(__name__)

DEFAULT_TTL_MS = 600_000


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a bitrate probe: either a bitrate or an error message."""

    bitrate: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.bitrate is not None

    @classmethod
    def success(cls, bitrate: int) -> "ProbeResult":
        return cls(bitrate=int(bitrate))

    @classmethod
    def failure(cls, error: str) -> "ProbeResult":
        return cls(error=error)


class BitrateCache:

    def __init__(self, probe: Callable[[], Awaitable[ProbeResult]],
                 max_supported: Callable[[], int],
                 ttl_ms: int = DEFAULT_TTL_MS,
                 clock: Callable[[], float] = time.monotonic):
        self._probe = probe
        self._max_supported = max_supported
        self.ttl_ms = ttl_ms
        self._clock = clock
        self.override: int | None = None
        self._detected: int | None = None
        self._detected_at: float = 0.0
        self._probing: asyncio.Task | None = None

    @property
    def detected(self) -> int | None:
        return self._detected

    def _age_ms(self) -> float:
        return (self._clock() - self._detected_at) * 1000

    async def get(self) -> int:
        if self.override:
            log.debug("Bitrate is set to %d", self.override)
            return self.override

        if self._detected and self._age_ms() < self.ttl_ms:
            log.debug("Returning previous detected bitrate of %d", self._detected)
            return self._detected

        if self._probing is None:
            self._probing = asyncio.create_task(self._detect())
        return await asyncio.shield(self._probing)

    async def _detect(self) -> int:
        log.info("Detecting bitrate")
        try:
            result = await self._probe()
        finally:
            self._probing = None
        if result.ok:
            self._detected = result.bitrate
            self._detected_at = self._clock()
            log.info("Max bitrate auto detected to %d", result.bitrate)
            return result.bitrate

        fallback = self._max_supported()
        log.warning("Bitrate detection failed (%s), using device maximum %d",
                    result.error, fallback)
        return fallback

    def invalidate(self):
        self._detected = None
        self._detected_at = 0.0
