"""HTTP client for the upstream chat SDK deployment."""

import httpx

from chatsdk_gateway.egress.rotator import EgressRoute

FIREFOX_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:128.0) Gecko/20100101 Firefox/128.0"
)
ACCEPT_HTML = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,"
    "image/avif,image/webp,image/png,image/svg+xml,*/*;q=0.8"
)
ACCEPT_JSON = "application/json, text/plain, */*"
ACCEPT_LANGUAGE = "zh-CN,zh;q=0.8,zh-TW;q=0.7,zh-HK;q=0.5,en-US;q=0.3,en;q=0.2"
SESSION_COOKIE_MARKER = "session-token"
REGISTER_STATE_FIELD = '[{"status":"idle"},"$K1"]'


class ChatSDKUpstream:
    """Builds route-bound clients and speaks the upstream's wire contract.

    Every identity owns its own ``httpx.AsyncClient`` so cookies never leak
    between routes.
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_client(self, route: EgressRoute | None) -> httpx.AsyncClient:
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout, follow_redirects=True
            )
        proxy = route.address if route is not None else None
        return httpx.AsyncClient(proxy=proxy, timeout=self._timeout, follow_redirects=True)

    async def open_guest_session(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(f"{self._base_url}/", headers=self._headers(ACCEPT_HTML))

    async def register(
        self, client: httpx.AsyncClient, email: str, password: str
    ) -> httpx.Response:
        form = {
            "1_email": (None, email),
            "1_password": (None, password),
            "0": (None, REGISTER_STATE_FIELD),
        }
        return await client.post(
            f"{self._base_url}/register",
            files=form,
            headers=self._headers(ACCEPT_HTML),
        )

    def has_session_cookie(self, client: httpx.AsyncClient, response: httpx.Response) -> bool:
        if any(SESSION_COOKIE_MARKER in name for name in response.cookies.keys()):
            return True
        return any(SESSION_COOKIE_MARKER in cookie.name for cookie in client.cookies.jar)

    async def open_chat(
        self, client: httpx.AsyncClient, payload: dict[str, object]
    ) -> httpx.Response:
        """Send the chat request and return the response with its body unread.

        The caller owns the response and must ``aclose()`` it.
        """
        headers = self._headers(ACCEPT_JSON)
        headers["Origin"] = self._base_url
        headers["Referer"] = f"{self._base_url}/"
        request = client.build_request(
            "POST", f"{self._base_url}/api/chat", json=payload, headers=headers
        )
        return await client.send(request, stream=True)

    @staticmethod
    def _headers(accept: str) -> dict[str, str]:
        return {
            "User-Agent": FIREFOX_USER_AGENT,
            "Accept": accept,
            "Accept-Language": ACCEPT_LANGUAGE,
            "Accept-Encoding": "gzip, deflate",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-origin",
        }
