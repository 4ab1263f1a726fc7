"""Registry visibility probe tests using fake aiohttp sessions."""

import asyncio

import aiohttp
import pytest

from release_pipeline.exceptions import TimeoutExceededError
from release_pipeline.stages.registry import RegistryClient


class FakeResponse:
    def __init__(self, status: int):
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Returns queued statuses (or raises queued exceptions), then ``default``."""

    def __init__(self, items, default=404):
        self.items = list(items)
        self.default = default
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        item = self.items.pop(0) if self.items else self.default
        if isinstance(item, BaseException):
            raise item
        return FakeResponse(item)


def test_version_url_strips_trailing_slash():
    client = RegistryClient("https://crates.io/api/v1/crates/")
    assert client.version_url("valu3", "2.3.0") == "https://crates.io/api/v1/crates/valu3/2.3.0"


@pytest.mark.asyncio
async def test_version_visible_on_200_only():
    client = RegistryClient("https://registry.invalid/api", user_agent="ua-test")
    session = FakeSession([200, 404, 503])
    assert await client.version_visible(session, "valu3", "2.3.0") is True
    assert await client.version_visible(session, "valu3", "2.3.0") is False
    assert await client.version_visible(session, "valu3", "2.3.0") is False
    url, kwargs = session.requests[0]
    assert url == "https://registry.invalid/api/valu3/2.3.0"
    assert kwargs["headers"]["User-Agent"] == "ua-test"


@pytest.mark.asyncio
async def test_client_errors_mean_not_visible():
    client = RegistryClient("https://registry.invalid/api")
    session = FakeSession([aiohttp.ClientConnectionError("down"), asyncio.TimeoutError()])
    assert await client.version_visible(session, "valu3", "2.3.0") is False
    assert await client.version_visible(session, "valu3", "2.3.0") is False


@pytest.mark.asyncio
async def test_wait_until_visible_polls_until_200():
    client = RegistryClient("https://registry.invalid/api")
    session = FakeSession([404, aiohttp.ClientConnectionError("blip"), 200])
    await client.wait_until_visible(
        "valu3-derive", "2.3.0", timeout=5, interval=0.01, session=session
    )
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_wait_until_visible_times_out():
    client = RegistryClient("https://registry.invalid/api")
    session = FakeSession([], default=404)
    with pytest.raises(TimeoutExceededError) as info:
        await client.wait_until_visible(
            "valu3", "2.3.0", timeout=0.05, interval=0.01, session=session
        )
    assert info.value.context["unit"] == "valu3"
    assert info.value.context["attempts"] >= 1


@pytest.mark.asyncio
async def test_wait_until_visible_owns_session_when_none_given(monkeypatch):
    created = []

    class OwnedSession(FakeSession):
        async def __aenter__(self):
            created.append(self)
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr(aiohttp, "ClientSession", lambda: OwnedSession([200]))
    await RegistryClient("https://registry.invalid/api").wait_until_visible(
        "valu3", "2.3.0", timeout=1, interval=0.01
    )
    assert len(created) == 1
    assert len(created[0].requests) == 1
