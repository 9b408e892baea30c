"""Systemd notify helpers for the receiver.

Sends READY=1 once, then WATCHDOG=1 at regular intervals together with a
STATUS= line describing what the receiver is doing.  Silently no-ops when
NOTIFY_SOCKET is unset (dev mode).

Usage:
    from castreceiver.watchdog import watchdog_loop
    asyncio.create_task(watchdog_loop(status=lambda: "Idle"))
"""

import asyncio
import logging
import os
import socket
from typing import Callable

logger = logging.getLogger(__name__)


def sd_notify(msg: str):
    """Send a notification message to the systemd notify socket."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
    finally:
        sock.close()


def notify_status(status: str):
    sd_notify(f"STATUS={status}")


async def watchdog_loop(interval: int = 20, status: Callable[[], str] | None = None):
    """Send WATCHDOG=1 (and STATUS=) every *interval* seconds."""
    sd_notify("READY=1")
    logger.info("Watchdog started (interval=%ds)", interval)
    while True:
        msg = "WATCHDOG=1"
        if status:
            msg += f"\nSTATUS={status()}"
        sd_notify(msg)
        await asyncio.sleep(interval)
