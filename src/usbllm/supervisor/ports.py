"""Loopback port probing and TCP readiness polling."""

from __future__ import annotations

import asyncio
import logging
import socket

from usbllm.errors import NoFreePortError, ReadinessTimeoutError
from usbllm.protocol import DEFAULT_HOST

log = logging.getLogger(__name__)

READY_POLL_INTERVAL = 0.25


def _can_bind(port: int, host: str = DEFAULT_HOST) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
            s.listen(1)
        except OSError:
            return False
    return True


def find_free_port(base: int, max_attempts: int, host: str = DEFAULT_HOST) -> int:
    """Return the lowest port in ``base .. base+max_attempts-1`` that can be bound."""
    for port in range(base, base + max_attempts):
        if _can_bind(port, host):
            return port
        log.debug("port %d busy", port)
    raise NoFreePortError(base, max_attempts)


async def wait_for_ready(
    port: int,
    timeout: float = 40.0,
    interval: float = READY_POLL_INTERVAL,
    host: str = DEFAULT_HOST,
) -> None:
    """Poll until *host:port* accepts a TCP connection.

    Readiness is purely "accepts a connection": the socket is closed right
    away without exchanging any bytes. The retry interval is constant.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    while True:
        try:
            _, writer = await asyncio.open_connection(host, port)
        except OSError:
            if loop.time() - start > timeout:
                raise ReadinessTimeoutError(port, timeout) from None
            await asyncio.sleep(interval)
            continue
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return
