"""Out-of-band refresh of an egress route's network identity."""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from chatsdk_gateway.egress.rotator import EgressRoute

logger = logging.getLogger("csg.egress")


class RouteRefreshError(Exception):
    def __init__(self, handle: str, message: str):
        super().__init__(message)
        self.handle = handle
        self.message = message


class RouteRefresher(Protocol):
    async def refresh(self, route: EgressRoute) -> None:
        """Ask the route's egress to come back with a fresh network identity."""


class DockerRestartRefresher:
    """Restarts the container that backs a route (for example a WARP proxy)."""

    def __init__(self, command: str = "docker restart"):
        self._argv = shlex.split(command)
        if not self._argv:
            raise ValueError("refresh command must not be empty")

    async def refresh(self, route: EgressRoute) -> None:
        argv = [*self._argv, route.refresh_handle]
        logger.debug(
            "egress_refresh_exec",
            extra={"route_index": route.index, "refresh_handle": route.refresh_handle},
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RouteRefreshError(route.refresh_handle, f"cannot start {argv[0]}: {exc}") from exc
        _, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:200]
            raise RouteRefreshError(
                route.refresh_handle,
                f"{' '.join(argv)} exited with {process.returncode}: {detail}",
            )
