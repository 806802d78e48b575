from itertools import count

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with a correlation id (``REQ-000001``, ...).

    A caller-supplied ``x-request-id`` header wins over the generated one.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self._sequence = count(1)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or f"REQ-{next(self._sequence):06d}"
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response
