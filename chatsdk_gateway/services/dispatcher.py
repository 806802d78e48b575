import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from time import perf_counter

import httpx

from chatsdk_gateway.config.settings import Settings
from chatsdk_gateway.core.errors import (
    AppError,
    identity_unavailable,
    upstream_error,
    upstream_rate_limited,
    upstream_request_failed,
)
from chatsdk_gateway.core.ids import IdGenerator, RandomIdGenerator
from chatsdk_gateway.egress.rotator import EgressRotator
from chatsdk_gateway.identity.pool import Identity, IdentityError, IdentityPool
from chatsdk_gateway.metrics import record_request
from chatsdk_gateway.models.anthropic import MessagesResponse
from chatsdk_gateway.models.openai import ChatCompletionResponse
from chatsdk_gateway.translation.conversation import ConversationMessage, flatten, is_trivial
from chatsdk_gateway.translation.models import map_model
from chatsdk_gateway.translation.stream import (
    CANNED_MODELS,
    Dialect,
    StreamStats,
    UpstreamEvent,
    aggregate,
    canned_reply,
    iter_upstream_events,
    stream_translate,
)
from chatsdk_gateway.upstream.client import ChatSDKUpstream

logger = logging.getLogger("csg.dispatch")

UPSTREAM_ERROR_PEEK_BYTES = 512


@dataclass(frozen=True)
class DialectCall:
    """A parsed client request, independent of the dialect it arrived in."""

    dialect: Dialect
    model: str
    conversation: list[ConversationMessage]
    stream: bool


@dataclass(frozen=True)
class UpstreamChatRequest:
    id: str
    message_id: str
    text: str
    selected_chat_model: str

    def as_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "message": {
                "role": "user",
                "parts": [{"type": "text", "text": self.text}],
                "id": self.message_id,
            },
            "selectedChatModel": self.selected_chat_model,
            "selectedVisibilityType": "private",
        }


class RequestDispatcher:
    def __init__(
        self,
        settings: Settings,
        rotator: EgressRotator,
        pool: IdentityPool,
        upstream: ChatSDKUpstream,
        ids: IdGenerator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._rotator = rotator
        self._pool = pool
        self._upstream = upstream
        self._ids = ids or RandomIdGenerator()
        self._sleep = sleep

    def build_upstream_request(self, call: DialectCall) -> UpstreamChatRequest:
        return UpstreamChatRequest(
            id=self._ids.new_id(),
            message_id=self._ids.new_id(),
            text=flatten(call.conversation),
            selected_chat_model=map_model(call.model),
        )

    async def complete(
        self, request_id: str, call: DialectCall
    ) -> ChatCompletionResponse | MessagesResponse:
        started = perf_counter()
        self._log_started(request_id, call)

        if is_trivial(call.conversation):
            logger.info("trivial_request_short_circuit", extra={"request_id": request_id})
            result = await aggregate(
                canned_reply(), call.dialect, CANNED_MODELS[call.dialect], self._ids
            )
            self._finish(request_id, call, started, outcome="canned", stats=None)
            return result

        upstream_request = self.build_upstream_request(call)
        identity, response = await self._dispatch(request_id, call, upstream_request, started)
        stats = StreamStats()
        try:
            result = await aggregate(
                self._counted(self._upstream_events(request_id, response), stats),
                call.dialect,
                upstream_request.selected_chat_model,
                self._ids,
            )
        finally:
            await response.aclose()
            await self._pool.release(identity)
        self._finish(request_id, call, started, outcome="success", stats=stats)
        return result

    async def stream(self, request_id: str, call: DialectCall) -> AsyncIterator[str]:
        """Resolve everything that can fail before the first byte is sent.

        Errors raised here still become regular JSON error responses; once the
        returned iterator is handed to the transport, the status is 200.
        """
        started = perf_counter()
        self._log_started(request_id, call)

        if is_trivial(call.conversation):
            logger.info("trivial_request_short_circuit", extra={"request_id": request_id})
            return self._frames(
                request_id,
                call,
                canned_reply(),
                CANNED_MODELS[call.dialect],
                started,
                outcome="canned",
            )

        upstream_request = self.build_upstream_request(call)
        identity, response = await self._dispatch(request_id, call, upstream_request, started)
        return self._frames(
            request_id,
            call,
            self._upstream_events(request_id, response),
            upstream_request.selected_chat_model,
            started,
            outcome="success",
            response=response,
            identity=identity,
        )

    async def _frames(
        self,
        request_id: str,
        call: DialectCall,
        events: AsyncIterable[UpstreamEvent],
        model: str,
        started: float,
        outcome: str,
        response: httpx.Response | None = None,
        identity: Identity | None = None,
    ) -> AsyncIterator[str]:
        stats = StreamStats()
        try:
            async for frame in stream_translate(events, call.dialect, model, self._ids, stats):
                yield frame
        finally:
            # Also reached when the client disconnects and the transport
            # cancels this generator, which releases the upstream connection.
            if response is not None:
                await response.aclose()
            if identity is not None:
                await self._pool.release(identity)
            self._finish(request_id, call, started, outcome=outcome, stats=stats)

    async def _dispatch(
        self,
        request_id: str,
        call: DialectCall,
        upstream_request: UpstreamChatRequest,
        started: float,
    ) -> tuple[Identity, httpx.Response]:
        """Return a leased identity and the open 200 response streamed through it."""
        try:
            identity = await self._acquire_identity(request_id)
        except AppError as exc:
            self._record_failure(call, exc.status_code, started)
            raise
        try:
            response = await self._open_upstream(request_id, identity, upstream_request)
        except AppError as exc:
            await self._pool.release(identity)
            self._record_failure(call, exc.status_code, started)
            raise
        except BaseException:
            await self._pool.release(identity)
            raise
        return identity, response

    async def _acquire_identity(self, request_id: str) -> Identity:
        attempts = self._settings.identity_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._pool.get_or_create()
            except IdentityError as exc:
                logger.warning(
                    "identity_acquire_retry",
                    extra={
                        "request_id": request_id,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "route_index": exc.route_index,
                        "reason": exc.code,
                        "error": exc.message,
                    },
                )
                if attempt < attempts:
                    await self._sleep(self._settings.identity_retry_delay_s)

        logger.error(
            "identity_unavailable",
            extra={"request_id": request_id, "max_attempts": attempts},
        )
        raise identity_unavailable(attempts)

    async def _open_upstream(
        self,
        request_id: str,
        identity: Identity,
        upstream_request: UpstreamChatRequest,
    ) -> httpx.Response:
        route = self._rotator.route(identity.route_index)
        logger.info(
            "upstream_dispatch",
            extra={
                "request_id": request_id,
                "route_index": identity.route_index,
                "refresh_handle": route.refresh_handle if route else None,
                "identity_kind": identity.kind.value,
                "email": identity.email or None,
                "upstream_model": upstream_request.selected_chat_model,
                "text_length": len(upstream_request.text),
            },
        )
        if self._rotator.is_recovering(identity.route_index):
            logger.warning(
                "upstream_dispatch_on_recovering_route",
                extra={"request_id": request_id, "route_index": identity.route_index},
            )

        try:
            response = await self._upstream.open_chat(
                identity.client, upstream_request.as_payload()
            )
        except httpx.HTTPError as exc:
            logger.error(
                "upstream_request_failed",
                extra={"request_id": request_id, "error": str(exc)},
            )
            raise upstream_request_failed(f"Request failed: {exc}") from exc

        if response.status_code == 200:
            return response

        body = await self._peek_body(response)
        status_code = response.status_code
        logger.error(
            "upstream_error_status",
            extra={
                "request_id": request_id,
                "status_code": status_code,
                "route_index": identity.route_index,
                "upstream_body": body,
            },
        )
        # No finer signal exists upstream, so every failure counts as the
        # route being limited.
        reason = "upstream_429" if status_code == 429 else "upstream_error"
        self._rotator.on_rate_limit(reason=reason, failed_index=identity.route_index)
        self._pool.evict(identity.route_index, identity)
        if status_code == 429:
            raise upstream_rate_limited()
        raise upstream_error(status_code)

    async def _upstream_events(
        self, request_id: str, response: httpx.Response
    ) -> AsyncIterator[UpstreamEvent]:
        try:
            async for event in iter_upstream_events(response.aiter_lines()):
                yield event
        except httpx.HTTPError as exc:
            # Whatever arrived is still delivered and the stream is closed normally.
            logger.error(
                "upstream_stream_interrupted",
                extra={"request_id": request_id, "error": str(exc)},
            )

    @staticmethod
    async def _counted(
        events: AsyncIterable[UpstreamEvent], stats: StreamStats
    ) -> AsyncIterator[UpstreamEvent]:
        async for event in events:
            if event.is_text_delta:
                stats.chunk_count += 1
                stats.response_chars += len(event.text or "")
            yield event

    @staticmethod
    async def _peek_body(response: httpx.Response) -> str:
        peeked = b""
        try:
            async for chunk in response.aiter_bytes():
                peeked += chunk
                if len(peeked) >= UPSTREAM_ERROR_PEEK_BYTES:
                    break
        except httpx.HTTPError as exc:
            logger.debug("upstream_error_body_unreadable", extra={"error": str(exc)})
        finally:
            await response.aclose()
        return peeked[:UPSTREAM_ERROR_PEEK_BYTES].decode("utf-8", errors="replace")

    def _log_started(self, request_id: str, call: DialectCall) -> None:
        logger.info(
            "request_started",
            extra={
                "request_id": request_id,
                "dialect": call.dialect.value,
                "model": call.model,
                "message_count": len(call.conversation),
                "stream": call.stream,
            },
        )
        for position, message in enumerate(call.conversation):
            logger.debug(
                "request_message",
                extra={
                    "request_id": request_id,
                    "position": position,
                    "role": message.role,
                    "text_length": len(message.text),
                },
            )

    def _finish(
        self,
        request_id: str,
        call: DialectCall,
        started: float,
        outcome: str,
        stats: StreamStats | None,
    ) -> None:
        latency_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "dialect": call.dialect.value,
                "model": call.model,
                "stream": call.stream,
                "reason": outcome,
                "chunk_count": stats.chunk_count if stats else None,
                "response_chars": stats.response_chars if stats else None,
                "latency_ms": latency_ms,
            },
        )
        if self._settings.metrics_enabled:
            record_request(
                dialect=call.dialect.value,
                model=call.model,
                outcome=outcome,
                status_code=200,
                latency_s=latency_ms / 1000.0,
                stream=call.stream,
                response_chars=stats.response_chars if stats else 0,
            )

    def _record_failure(self, call: DialectCall, status_code: int, started: float) -> None:
        if not self._settings.metrics_enabled:
            return
        record_request(
            dialect=call.dialect.value,
            model=call.model,
            outcome="error",
            status_code=status_code,
            latency_s=perf_counter() - started,
            stream=call.stream,
        )
