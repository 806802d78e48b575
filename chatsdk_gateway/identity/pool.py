"""Per-route upstream identities (guest sessions or registered accounts)."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from time import time

import httpx

from chatsdk_gateway.core.ids import IdGenerator, RandomIdGenerator
from chatsdk_gateway.egress.rotator import EgressRotator, EgressRoute
from chatsdk_gateway.metrics import inc_counter
from chatsdk_gateway.upstream.client import ChatSDKUpstream

logger = logging.getLogger("csg.identity")


class IdentityKind(Enum):
    ANONYMOUS = "anonymous"
    REGISTERED = "registered"


@dataclass(eq=False)
class Identity:
    kind: IdentityKind
    client: httpx.AsyncClient
    route_index: int
    email: str = ""
    password: str = ""
    created_at: float = field(default_factory=time)
    last_used_at: float = field(default_factory=time)
    # Leases handed out by get_or_create() and not yet released.
    in_flight: int = 0
    evicted: bool = False

    def touch(self) -> None:
        self.last_used_at = time()


class IdentityError(Exception):
    code = "identity_error"

    def __init__(self, route_index: int, message: str):
        super().__init__(message)
        self.route_index = route_index
        self.message = message


class TransientIdentityError(IdentityError):
    code = "identity_transient"


class RateLimitedIdentityError(IdentityError):
    code = "identity_rate_limited"


class RegistrationRejectedError(IdentityError):
    code = "registration_rejected"


@dataclass
class _RouteSlot:
    identity: Identity | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class IdentityPool:
    """Owns at most one live identity per egress route.

    Slots are fixed at construction: one per configured route, plus a direct
    slot used when no routes are configured. A slot's lock is held while an
    identity is being acquired for it, so concurrent callers on the same
    route share a single acquisition.

    Every identity returned by ``get_or_create`` is leased to the caller, who
    must hand it back with ``release``. An evicted identity keeps its client
    open until its last lease is released.
    """

    def __init__(
        self,
        rotator: EgressRotator,
        upstream: ChatSDKUpstream,
        kind: IdentityKind = IdentityKind.ANONYMOUS,
        id_generator: IdGenerator | None = None,
    ):
        self._rotator = rotator
        self._upstream = upstream
        self._kind = kind
        self._ids = id_generator or RandomIdGenerator()
        self._slots = [_RouteSlot() for _ in range(rotator.size)]
        self._direct_slot = _RouteSlot()
        self._retired: set[Identity] = set()
        self._closing: set[asyncio.Task[None]] = set()

    @property
    def kind(self) -> IdentityKind:
        return self._kind

    def cached(self, route_index: int) -> Identity | None:
        return self._slot(route_index).identity

    async def get_or_create(self) -> Identity:
        route, index = self._rotator.current()
        slot = self._slot(index)
        async with slot.lock:
            if slot.identity is not None:
                slot.identity.touch()
                slot.identity.in_flight += 1
                return slot.identity
            identity = await self._acquire(route, index)
            identity.in_flight += 1
            slot.identity = identity

        inc_counter("csg_identities_created_total", {"kind": identity.kind.value})
        logger.info(
            "identity_created",
            extra={
                "route_index": index,
                "identity_kind": identity.kind.value,
                "email": identity.email or None,
            },
        )
        return identity

    def evict(self, route_index: int, identity: Identity | None = None) -> None:
        """Drop the cached identity of ``route_index``.

        When ``identity`` is given, the slot is only cleared if it still holds
        that identity; a replacement created in the meantime stays cached.
        """
        slot = self._slot(route_index)
        if slot.identity is None or (identity is not None and slot.identity is not identity):
            return
        evicted, slot.identity = slot.identity, None
        evicted.evicted = True
        inc_counter("csg_identities_evicted_total", {"kind": evicted.kind.value})
        logger.info(
            "identity_evicted",
            extra={
                "route_index": route_index,
                "identity_kind": evicted.kind.value,
                "in_flight": evicted.in_flight,
            },
        )
        self._retired.add(evicted)
        if evicted.in_flight == 0:
            self._schedule_close(evicted)

    async def release(self, identity: Identity) -> None:
        identity.in_flight = max(identity.in_flight - 1, 0)
        if identity.evicted and identity.in_flight == 0 and identity in self._retired:
            self._retired.discard(identity)
            await identity.client.aclose()

    async def aclose(self) -> None:
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        retired, self._retired = list(self._retired), set()
        for identity in retired:
            await identity.client.aclose()
        for slot in [*self._slots, self._direct_slot]:
            identity, slot.identity = slot.identity, None
            if identity is not None:
                await identity.client.aclose()

    def _slot(self, route_index: int) -> _RouteSlot:
        if 0 <= route_index < len(self._slots):
            return self._slots[route_index]
        return self._direct_slot

    def _schedule_close(self, identity: Identity) -> None:
        # Without a running loop the client stays retired until aclose().
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._retired.discard(identity)
        task = loop.create_task(identity.client.aclose())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _acquire(self, route: EgressRoute | None, index: int) -> Identity:
        logger.info(
            "identity_acquiring",
            extra={
                "route_index": index,
                "route_address": route.address if route else None,
                "identity_kind": self._kind.value,
            },
        )
        try:
            client = self._upstream.build_client(route)
        except (ValueError, httpx.InvalidURL) as exc:
            raise TransientIdentityError(index, f"Cannot build egress client: {exc}") from exc

        try:
            if self._kind is IdentityKind.REGISTERED:
                return await self._register(client, index)
            return await self._open_guest_session(client, index)
        except BaseException:
            await client.aclose()
            raise

    async def _open_guest_session(self, client: httpx.AsyncClient, index: int) -> Identity:
        try:
            response = await self._upstream.open_guest_session(client)
        except httpx.HTTPError as exc:
            logger.error(
                "identity_acquire_failed",
                extra={"route_index": index, "identity_kind": "anonymous", "error": str(exc)},
            )
            raise TransientIdentityError(index, f"Guest session request failed: {exc}") from exc

        if response.status_code == 429:
            self._rotator.on_rate_limit(failed_index=index)
            raise RateLimitedIdentityError(index, "Guest session request was rate limited")

        return Identity(kind=IdentityKind.ANONYMOUS, client=client, route_index=index)

    async def _register(self, client: httpx.AsyncClient, index: int) -> Identity:
        email = self._ids.new_email()
        password = self._ids.new_credential()
        try:
            response = await self._upstream.register(client, email, password)
        except httpx.HTTPError as exc:
            logger.error(
                "identity_acquire_failed",
                extra={"route_index": index, "identity_kind": "registered", "error": str(exc)},
            )
            raise TransientIdentityError(index, f"Registration request failed: {exc}") from exc

        if response.status_code == 429:
            self._rotator.on_rate_limit(failed_index=index)
            raise RateLimitedIdentityError(index, "Registration was rate limited")

        if not self._upstream.has_session_cookie(client, response):
            logger.error(
                "registration_rejected",
                extra={
                    "route_index": index,
                    "status_code": response.status_code,
                    "email": email,
                },
            )
            raise RegistrationRejectedError(index, "Registration returned no session token")

        return Identity(
            kind=IdentityKind.REGISTERED,
            client=client,
            route_index=index,
            email=email,
            password=password,
        )
