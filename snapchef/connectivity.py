from __future__ import annotations

import asyncio
import logging
import socket
import time
from enum import Enum
from typing import Protocol

from snapchef.errors import NetworkError

logger = logging.getLogger(__name__)


class ConnectivityStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class Connectivity(Protocol):
    async def status(self) -> ConnectivityStatus: ...


class StaticConnectivity:
    """Fixed reachability answer, for tests and forced offline mode."""

    def __init__(self, status: ConnectivityStatus = ConnectivityStatus.ONLINE) -> None:
        self.current = status

    async def status(self) -> ConnectivityStatus:
        return self.current


class ConnectivityMonitor:
    def __init__(
        self,
        probe_host: str = "api.openai.com",
        *,
        probe_port: int = 443,
        timeout: float = 5.0,
        max_age: float = 10.0,
    ) -> None:
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.timeout = timeout
        self.max_age = max_age
        self._status = ConnectivityStatus.UNKNOWN
        self._checked_at: float | None = None

    @property
    def current(self) -> ConnectivityStatus:
        return self._status

    async def status(self) -> ConnectivityStatus:
        fresh = (
            self._checked_at is not None
            and time.monotonic() - self._checked_at < self.max_age
        )
        if not fresh or self._status is ConnectivityStatus.UNKNOWN:
            await self.check()
        return self._status

    async def check(self) -> ConnectivityStatus:
        loop = asyncio.get_running_loop()
        try:
            addresses = await asyncio.wait_for(
                loop.getaddrinfo(self.probe_host, self.probe_port, type=socket.SOCK_STREAM),
                timeout=self.timeout,
            )
            new_status = ConnectivityStatus.ONLINE if addresses else ConnectivityStatus.OFFLINE
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("Connectivity probe for %s failed: %s", self.probe_host, exc)
            new_status = ConnectivityStatus.OFFLINE
        if new_status is not self._status:
            logger.info("Connectivity changed: %s -> %s", self._status.value, new_status.value)
        self._status = new_status
        self._checked_at = time.monotonic()
        return new_status


async def require_online(connectivity: Connectivity | None) -> None:
    if connectivity is None:
        return
    if await connectivity.status() is not ConnectivityStatus.ONLINE:
        raise NetworkError.no_connection()
