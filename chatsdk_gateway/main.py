import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chatsdk_gateway.api.routes import router
from chatsdk_gateway.config.settings import IDENTITY_MODES, Settings, get_settings
from chatsdk_gateway.core.errors import (
    AppError,
    app_error_response,
    parse_error,
    request_id_from_request,
)
from chatsdk_gateway.core.ids import IdGenerator
from chatsdk_gateway.core.logging import configure_logging
from chatsdk_gateway.egress.refresh import DockerRestartRefresher, RouteRefresher
from chatsdk_gateway.egress.rotator import EgressRotator, build_routes
from chatsdk_gateway.identity.pool import IdentityKind, IdentityPool
from chatsdk_gateway.middleware.request_id import RequestIDMiddleware
from chatsdk_gateway.services.dispatcher import RequestDispatcher
from chatsdk_gateway.upstream.client import ChatSDKUpstream

logger = logging.getLogger("csg.main")


def _identity_kind(settings: Settings) -> IdentityKind:
    mode = settings.identity_mode_normalized
    if mode not in IDENTITY_MODES:
        raise RuntimeError(f"Unsupported CSG_IDENTITY_MODE value: {mode}")
    return IdentityKind(mode)


def _build_rotator(settings: Settings, refresher: RouteRefresher | None) -> EgressRotator:
    routes = build_routes(settings.egress_proxy_list, settings.egress_refresh_handle_list)
    if refresher is None and any(route.refresh_handle for route in routes):
        refresher = DockerRestartRefresher(settings.egress_refresh_command)
    return EgressRotator(routes, refresher=refresher, warmup_s=settings.egress_warmup_s)


def create_app(
    settings: Settings | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
    refresher: RouteRefresher | None = None,
    ids: IdGenerator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, debug=settings.debug)

    kind = _identity_kind(settings)
    rotator = _build_rotator(settings, refresher)
    upstream = ChatSDKUpstream(
        base_url=settings.normalized_base_url,
        timeout_s=settings.upstream_timeout_s,
        transport=upstream_transport,
    )
    pool = IdentityPool(
        rotator=rotator,
        upstream=upstream,
        kind=kind,
        id_generator=ids,
    )
    dispatcher = RequestDispatcher(
        settings=settings,
        rotator=rotator,
        pool=pool,
        upstream=upstream,
        ids=ids,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "gateway_started",
            extra={
                "route_address": upstream.base_url,
                "identity_kind": kind.value,
                "max_attempts": settings.identity_retry_attempts,
            },
        )
        for route in rotator.routes:
            logger.info(
                "egress_route_configured",
                extra={
                    "route_index": route.index,
                    "route_address": route.address,
                    "refresh_handle": route.refresh_handle or None,
                },
            )
        if rotator.size == 0:
            logger.warning("egress_pool_empty", extra={"reason": "direct_connection"})
        yield
        await pool.aclose()
        snapshot = rotator.snapshot()
        logger.info(
            "gateway_stopped",
            extra={"route_index": snapshot["active_index"], "reason": "shutdown"},
        )

    app = FastAPI(title="Chat SDK Gateway", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)

    app.state.settings = settings
    app.state.rotator = rotator
    app.state.identity_pool = pool
    app.state.dispatcher = dispatcher

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            exc.status_code, exc.code, exc.error_type, exc.message, request_id
        )

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        logger.error(
            "request_parse_failed",
            extra={"request_id": request_id, "error": str(exc.errors())[:500]},
        )
        error = parse_error("Invalid request")
        return app_error_response(
            error.status_code, error.code, error.error_type, error.message, request_id
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        logger.error(
            "unhandled_error",
            extra={"request_id": request_id, "error": repr(exc)},
        )
        return app_error_response(
            500, "internal_error", "internal", "Internal server error", request_id
        )

    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
