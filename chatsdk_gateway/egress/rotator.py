"""Ordered pool of egress routes with rotate-on-rate-limit semantics."""

import asyncio
import logging
import threading
from dataclasses import dataclass

from chatsdk_gateway.egress.refresh import RouteRefresher
from chatsdk_gateway.metrics import record_rotation

logger = logging.getLogger("csg.egress")

NO_ROUTE_INDEX = -1


@dataclass(frozen=True)
class EgressRoute:
    index: int
    address: str
    refresh_handle: str = ""


def build_routes(addresses: list[str], refresh_handles: list[str]) -> list[EgressRoute]:
    """Pair addresses with refresh handles by position, dropping blank addresses.

    A handle stays attached to the position it was configured at, so a blank
    address does not shift the handles of the addresses that follow it.
    """
    routes: list[EgressRoute] = []
    for position, raw_address in enumerate(addresses):
        address = raw_address.strip()
        if not address:
            continue
        handle = refresh_handles[position].strip() if position < len(refresh_handles) else ""
        routes.append(EgressRoute(index=len(routes), address=address, refresh_handle=handle))
    return routes


class EgressRotator:
    """Tracks the active egress route and recovers routes that hit a rate limit.

    Recovery runs as a detached task: its failures are visible only in the
    logs and through ``is_recovering``, never in the outcome of the request
    that triggered it.
    """

    def __init__(
        self,
        routes: list[EgressRoute],
        refresher: RouteRefresher | None = None,
        warmup_s: float = 15.0,
    ):
        self._routes = list(routes)
        self._refresher = refresher
        self._warmup_s = warmup_s
        self._index = 0
        self._lock = threading.Lock()
        self._recovering: set[int] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def size(self) -> int:
        return len(self._routes)

    @property
    def routes(self) -> list[EgressRoute]:
        return list(self._routes)

    def current(self) -> tuple[EgressRoute | None, int]:
        with self._lock:
            if not self._routes:
                return None, NO_ROUTE_INDEX
            return self._routes[self._index], self._index

    def route(self, index: int) -> EgressRoute | None:
        if 0 <= index < len(self._routes):
            return self._routes[index]
        return None

    def on_rate_limit(self, reason: str = "rate_limited", failed_index: int | None = None) -> bool:
        """Move off the active route and schedule its recovery.

        With ``failed_index`` the rotation only happens while that route is
        still the active one, so concurrent failures on one route rotate once.
        Returns whether a rotation happened.
        """
        with self._lock:
            if not self._routes:
                return False
            stale = failed_index is not None and failed_index != self._index
            if not stale:
                failed = self._routes[self._index]
                self._index = (self._index + 1) % len(self._routes)
                promoted = self._routes[self._index]

        if stale:
            logger.debug(
                "egress_rotation_skipped",
                extra={"from_index": failed_index, "reason": reason},
            )
            return False

        record_rotation(reason)
        logger.warning(
            "egress_rotated",
            extra={
                "from_index": failed.index,
                "to_index": promoted.index,
                "reason": reason,
                "refresh_handle": failed.refresh_handle,
            },
        )
        self._schedule_recovery(failed)
        return True

    def is_recovering(self, index: int) -> bool:
        with self._lock:
            return index in self._recovering

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "active_index": self._index if self._routes else NO_ROUTE_INDEX,
                "size": len(self._routes),
                "recovering": sorted(self._recovering),
            }

    async def wait_for_recoveries(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule_recovery(self, route: EgressRoute) -> None:
        if self._refresher is None or not route.refresh_handle:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "egress_recovery_skipped",
                extra={"route_index": route.index, "error": "no_running_loop"},
            )
            return
        with self._lock:
            self._recovering.add(route.index)
        task = loop.create_task(self._recover(route))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _recover(self, route: EgressRoute) -> None:
        assert self._refresher is not None
        logger.info(
            "egress_recovery_started",
            extra={"route_index": route.index, "refresh_handle": route.refresh_handle},
        )
        try:
            try:
                await self._refresher.refresh(route)
            except Exception as exc:
                logger.error(
                    "egress_recovery_failed",
                    extra={
                        "route_index": route.index,
                        "refresh_handle": route.refresh_handle,
                        "error": str(exc),
                    },
                )
                return
            await asyncio.sleep(self._warmup_s)
            logger.info(
                "egress_recovered",
                extra={"route_index": route.index, "refresh_handle": route.refresh_handle},
            )
        finally:
            with self._lock:
                self._recovering.discard(route.index)
