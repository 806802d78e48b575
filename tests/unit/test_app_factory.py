import pytest
from fastapi.testclient import TestClient

from chatsdk_gateway.config.settings import Settings
from chatsdk_gateway.egress.refresh import DockerRestartRefresher
from chatsdk_gateway.identity.pool import IdentityKind
from chatsdk_gateway.main import create_app


def test_unknown_identity_mode_fails_fast() -> None:
    with pytest.raises(RuntimeError, match="CSG_IDENTITY_MODE"):
        create_app(Settings(identity_mode="borrowed"))


def test_routes_and_refresher_built_from_settings() -> None:
    app = create_app(
        Settings(
            egress_proxies="socks5://warp-a:1080,,socks5://warp-b:1080",
            egress_refresh_handles="warp-a,,warp-b",
            egress_refresh_command="docker restart",
        )
    )
    rotator = app.state.rotator
    assert [route.address for route in rotator.routes] == [
        "socks5://warp-a:1080",
        "socks5://warp-b:1080",
    ]
    assert [route.refresh_handle for route in rotator.routes] == ["warp-a", "warp-b"]
    assert isinstance(rotator._refresher, DockerRestartRefresher)


def test_no_refresher_without_handles() -> None:
    app = create_app(Settings(egress_proxies="socks5://a:1080"))
    assert app.state.rotator._refresher is None


def test_registered_mode_round_trip(upstream, ids) -> None:
    app = create_app(
        Settings(base_url="https://chat.test", identity_mode="registered"),
        upstream_transport=upstream.transport(),
        ids=ids,
    )
    assert app.state.identity_pool.kind is IdentityKind.REGISTERED

    with TestClient(app) as client:
        response = client.post(
            "/v1/chat/completions",
            json={"model": "gpt-5.2", "messages": [{"role": "user", "content": "Write a haiku"}]},
        )

    assert response.status_code == 200
    assert upstream.paths() == ["/register", "/api/chat"]
