"""Connectivity gate: a cheap TCP reachability check run once per cycle."""
import asyncio
import logging
from typing import Sequence

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """Reports whether any of a list of well-known hosts accepts a connection."""

    def __init__(self, hosts: Sequence[str], port: int = 80, timeout: float = 3.0):
        self.hosts = list(hosts)
        self.port = port
        self.timeout = min(timeout, 3.0)

    async def is_online(self) -> bool:
        """First successful connection wins. An empty host list counts as online."""
        if not self.hosts:
            return True
        for host in self.hosts:
            if await self._try_connect(host):
                return True
        logger.debug("No probe host reachable: %s", ", ".join(self.hosts))
        return False

    async def _try_connect(self, host: str) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, self.port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
