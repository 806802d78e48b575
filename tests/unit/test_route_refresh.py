import asyncio

import pytest

from chatsdk_gateway.egress.refresh import DockerRestartRefresher, RouteRefreshError
from chatsdk_gateway.egress.rotator import EgressRoute

ROUTE = EgressRoute(index=0, address="socks5://warp-0:1080", refresh_handle="warp-0")


class FinishedProcess:
    returncode = 0

    async def communicate(self) -> tuple[bytes, bytes]:
        return b"", b""


def test_command_is_split_into_argv(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, ...]] = []

    async def fake_exec(*argv: str, **kwargs) -> FinishedProcess:
        calls.append(argv)
        return FinishedProcess()

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    asyncio.run(DockerRestartRefresher("docker --context edge restart").refresh(ROUTE))
    assert calls == [("docker", "--context", "edge", "restart", "warp-0")]


def test_empty_command_is_rejected() -> None:
    with pytest.raises(ValueError):
        DockerRestartRefresher("   ")


def test_successful_command() -> None:
    asyncio.run(DockerRestartRefresher("true").refresh(ROUTE))


def test_non_zero_exit_raises() -> None:
    with pytest.raises(RouteRefreshError, match="exited with 1") as exc_info:
        asyncio.run(DockerRestartRefresher("false").refresh(ROUTE))
    assert exc_info.value.handle == "warp-0"


def test_missing_binary_raises() -> None:
    with pytest.raises(RouteRefreshError, match="cannot start"):
        asyncio.run(DockerRestartRefresher("csg-no-such-binary restart").refresh(ROUTE))
